"""Media resolver tests."""

import asyncio
import logging
import random
from unittest.mock import AsyncMock

import pytest

from conftest import make_raw
from partygame.config import Environment
from partygame.engine.resolver import (
    FALLBACK_ITEMS,
    MediaResolver,
    parse_playlist_reference,
)
from partygame.lib.exceptions import (
    InvalidReferenceError,
    MediaFetchError,
    MediaTimeoutError,
    NoPlayableItemsError,
)

PLAYLIST_ID = "37i9dQZF1DXcBWIGoYBM5M"


def provider_returning(items) -> AsyncMock:
    provider = AsyncMock()
    provider.fetch_candidates.return_value = items
    return provider


# =============================================================================
# Reference parsing
# =============================================================================


@pytest.mark.parametrize(
    "ref",
    [
        f"https://open.spotify.com/playlist/{PLAYLIST_ID}?si=abc",
        f"spotify:playlist:{PLAYLIST_ID}",
        PLAYLIST_ID,
    ],
)
def test_parse_playlist_reference(ref):
    assert parse_playlist_reference(ref) == PLAYLIST_ID


@pytest.mark.parametrize("ref", ["", "   ", "not a playlist", "https://example.com/album/x"])
def test_parse_rejects_malformed_reference(ref):
    with pytest.raises(InvalidReferenceError):
        parse_playlist_reference(ref)


# =============================================================================
# Selection
# =============================================================================


async def test_selects_distinct_playable_items(settings):
    raw = [make_raw(n) for n in range(8)]
    raw += [make_raw(20, playable=False), make_raw(21, playable=False), make_raw(3)]
    resolver = MediaResolver(provider_returning(raw), settings, rng=random.Random(1))

    resolved = await resolver.resolve(PLAYLIST_ID, 5)

    ids = [item.id for item in resolved.items]
    assert len(ids) == 5
    assert len(set(ids)) == 5
    assert set(ids) <= {f"track-{n}" for n in range(8)}
    assert all(item.media_url for item in resolved.items)
    assert resolved.is_fallback is False


async def test_short_playlist_yields_smaller_set(settings, caplog):
    raw = [make_raw(1), make_raw(2), make_raw(3, playable=False)]
    resolver = MediaResolver(provider_returning(raw), settings)

    with caplog.at_level(logging.WARNING):
        resolved = await resolver.resolve(PLAYLIST_ID, 5)

    assert sorted(item.id for item in resolved.items) == ["track-1", "track-2"]
    assert resolved.requested == 5
    assert "Only 2 playable items" in caplog.text


async def test_requests_extra_candidates(settings):
    provider = provider_returning([make_raw(1)])
    resolver = MediaResolver(provider, settings)

    await resolver.resolve(PLAYLIST_ID, 5)

    provider.fetch_candidates.assert_awaited_once_with(PLAYLIST_ID, 20)
    assert resolver.candidate_limit(30) == 60
    assert resolver.candidate_limit(80) == 100


async def test_no_playable_items_fails(settings):
    provider = provider_returning([make_raw(1, playable=False)])
    resolver = MediaResolver(provider, settings)

    with pytest.raises(NoPlayableItemsError):
        await resolver.resolve(PLAYLIST_ID, 3)


async def test_round_item_carries_answer(settings):
    resolver = MediaResolver(provider_returning([make_raw(4)]), settings)

    resolved = await resolver.resolve(PLAYLIST_ID, 1)

    assert resolved.items[0].answer == "Song 4 - Artist 4"


# =============================================================================
# Timeout, retry & fallback
# =============================================================================


async def test_slow_provider_times_out(settings):
    async def slow(source_id, limit):
        await asyncio.sleep(5)
        return []

    provider = AsyncMock()
    provider.fetch_candidates.side_effect = slow
    resolver = MediaResolver(provider, settings)

    with pytest.raises(MediaTimeoutError):
        await resolver.resolve(PLAYLIST_ID, 5)
    assert provider.fetch_candidates.await_count == 2


async def test_failure_is_retried_once(settings):
    provider = AsyncMock()
    provider.fetch_candidates.side_effect = [MediaFetchError("boom"), [make_raw(1)]]
    resolver = MediaResolver(provider, settings)

    resolved = await resolver.resolve(PLAYLIST_ID, 1)

    assert [item.id for item in resolved.items] == ["track-1"]
    assert provider.fetch_candidates.await_count == 2


async def test_second_failure_propagates(settings):
    provider = AsyncMock()
    provider.fetch_candidates.side_effect = MediaFetchError("boom")
    resolver = MediaResolver(provider, settings)

    with pytest.raises(MediaFetchError):
        await resolver.resolve(PLAYLIST_ID, 1)
    assert provider.fetch_candidates.await_count == 2


async def test_retry_failure_is_the_one_raised(settings):
    provider = AsyncMock()
    provider.fetch_candidates.side_effect = [MediaFetchError("first"), MediaFetchError("second")]
    resolver = MediaResolver(provider, settings)

    with pytest.raises(MediaFetchError) as excinfo:
        await resolver.resolve(PLAYLIST_ID, 1)
    assert excinfo.value.message == "second"


async def test_invalid_reference_is_not_retried(settings):
    settings.allow_fallback = True
    provider = provider_returning([make_raw(1)])
    resolver = MediaResolver(provider, settings)

    with pytest.raises(InvalidReferenceError):
        await resolver.resolve("nope", 1)
    provider.fetch_candidates.assert_not_called()


async def test_fallback_rounds_are_flagged(settings):
    settings.allow_fallback = True
    provider = AsyncMock()
    provider.fetch_candidates.side_effect = MediaFetchError("down")
    resolver = MediaResolver(provider, settings)

    resolved = await resolver.resolve(PLAYLIST_ID, 3)

    assert resolved.is_fallback is True
    assert [item.id for item in resolved.items] == [item.id for item in FALLBACK_ITEMS[:3]]


async def test_production_never_falls_back(settings):
    settings.allow_fallback = True
    settings.environment = Environment.PRODUCTION
    provider = AsyncMock()
    provider.fetch_candidates.side_effect = MediaFetchError("down")
    resolver = MediaResolver(provider, settings)

    with pytest.raises(MediaFetchError):
        await resolver.resolve(PLAYLIST_ID, 3, allow_fallback=True)


async def test_rejects_non_positive_count(settings):
    resolver = MediaResolver(provider_returning([]), settings)
    with pytest.raises(ValueError):
        await resolver.resolve(PLAYLIST_ID, 0)


# =============================================================================
# Alternative previews
# =============================================================================


async def test_preview_finder_fills_short_playlists(settings):
    raw = [make_raw(1), make_raw(2, playable=False)]

    async def fill(items, needed):
        for item in items:
            if not item.preview_url:
                item.preview_url = "https://itunes.test/2.m4a"
        return 1

    finder = AsyncMock()
    finder.fill_missing.side_effect = fill
    resolver = MediaResolver(provider_returning(raw), settings, preview_finder=finder)

    resolved = await resolver.resolve(PLAYLIST_ID, 2)

    assert sorted(item.id for item in resolved.items) == ["track-1", "track-2"]
    finder.fill_missing.assert_awaited_once()
