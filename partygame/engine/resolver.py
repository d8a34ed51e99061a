"""Media resolution.

Turns a source reference (a playlist) into a finite, deduplicated set of
playable round items, applying timeout, retry and fallback policy.
"""

import asyncio
import logging
import random
import re

from partygame.config import Settings, get_settings
from partygame.lib.exceptions import (
    InvalidReferenceError,
    MediaFetchError,
    MediaTimeoutError,
    NoPlayableItemsError,
)
from partygame.lib.models import RawItem, ResolvedRounds, RoundItem
from partygame.lib.provider import MediaProvider, PreviewFinder

logger = logging.getLogger(__name__)

_PLAYLIST_URL = re.compile(r"playlist/([A-Za-z0-9]+)")
_PLAYLIST_URI = re.compile(r"^spotify:playlist:([A-Za-z0-9]+)$")
_PLAYLIST_ID = re.compile(r"^[A-Za-z0-9]{22}$")


# Built-in sample rounds for development when the provider is unusable.
FALLBACK_ITEMS: list[RoundItem] = [
    RoundItem(
        id="fallback-1",
        prompt="Shape of You",
        artist="Ed Sheeran",
        answer="Shape of You - Ed Sheeran",
        media_url="https://p.scdn.co/mp3-preview/84462d8e1e4d0f9e5ccd06f0da390f65843774a2",
    ),
    RoundItem(
        id="fallback-2",
        prompt="Uptown Funk",
        artist="Mark Ronson ft. Bruno Mars",
        answer="Uptown Funk - Mark Ronson ft. Bruno Mars",
        media_url="https://p.scdn.co/mp3-preview/064c51d0852c62d088c8f455c85fd3d5d33ddae0",
    ),
    RoundItem(
        id="fallback-3",
        prompt="Blinding Lights",
        artist="The Weeknd",
        answer="Blinding Lights - The Weeknd",
        media_url="https://p.scdn.co/mp3-preview/3ebf4544e5a4aff5efa9ab746984d9745a739dd2",
    ),
    RoundItem(
        id="fallback-4",
        prompt="Dance Monkey",
        artist="Tones and I",
        answer="Dance Monkey - Tones and I",
        media_url="https://p.scdn.co/mp3-preview/eef5e7c5d0dc1b06f5791c93f9c65a5dd6eaf0c2",
    ),
    RoundItem(
        id="fallback-5",
        prompt="Someone Like You",
        artist="Adele",
        answer="Someone Like You - Adele",
        media_url="https://p.scdn.co/mp3-preview/4299c7f2ba8134a5f41f6904548a32a65f0d097d",
    ),
]


def parse_playlist_reference(source_ref: str) -> str:
    """
    Extract a playlist id from a URL, a `spotify:playlist:` URI or a bare id.

    Raises:
        InvalidReferenceError: If no playlist id can be extracted
    """
    ref = (source_ref or "").strip()
    if not ref:
        raise InvalidReferenceError(source_ref or "")

    for pattern in (_PLAYLIST_URI, _PLAYLIST_URL):
        match = pattern.search(ref)
        if match:
            return match.group(1)

    if _PLAYLIST_ID.match(ref):
        return ref

    raise InvalidReferenceError(ref)


class MediaResolver:
    """
    Resolves a playlist reference into playable round items.

    Policy:
    - Malformed references fail fast and are never retried
    - Each attempt races the provider against a fixed timeout
    - Over-fetches candidates because some have no playable preview
    - Any other failure is retried exactly once after a fixed backoff
    - Outside production, a failed resolve may fall back to sample rounds
    """

    def __init__(
        self,
        provider: MediaProvider,
        settings: Settings | None = None,
        preview_finder: PreviewFinder | None = None,
        rng: random.Random | None = None,
    ):
        self.provider = provider
        self.settings = settings or get_settings()
        self.preview_finder = preview_finder
        self.rng = rng or random.Random()

    def candidate_limit(self, desired_count: int) -> int:
        """How many raw candidates to request for a desired round count."""
        return min(
            self.settings.resolver_max_candidates,
            max(desired_count * 2, self.settings.resolver_min_candidates),
        )

    async def resolve(
        self,
        source_ref: str,
        desired_count: int,
        allow_fallback: bool | None = None,
    ) -> ResolvedRounds:
        """
        Resolve `source_ref` into at most `desired_count` playable items.

        Args:
            source_ref: Playlist URL, URI or id
            desired_count: Number of rounds wanted
            allow_fallback: Override the configured fallback switch. Ignored
                in production.

        Returns:
            ResolvedRounds, possibly shorter than desired_count

        Raises:
            MediaFetchError: After the single retry, unless falling back
        """
        if desired_count < 1:
            raise ValueError("desired_count must be at least 1")

        source_id = parse_playlist_reference(source_ref)

        fallback = self.settings.fallback_enabled if allow_fallback is None else allow_fallback
        if self.settings.is_production:
            fallback = False

        try:
            items = await self._attempt(source_id, desired_count)
        except MediaFetchError as e:
            logger.warning(
                f"Resolving playlist {source_id} failed ({e.message}), "
                f"retrying in {self.settings.resolver_retry_backoff_seconds}s"
            )
            await asyncio.sleep(self.settings.resolver_retry_backoff_seconds)
            try:
                items = await self._attempt(source_id, desired_count)
            except MediaFetchError as retry_error:
                if not fallback:
                    logger.error(
                        f"Resolving playlist {source_id} failed: {retry_error.message}"
                    )
                    raise
                logger.warning(
                    f"Using fallback rounds for playlist {source_id}: {retry_error.message}"
                )
                return self.fallback_rounds(desired_count)

        return ResolvedRounds(items=items, requested=desired_count)

    async def _attempt(self, source_id: str, desired_count: int) -> list[RoundItem]:
        """One timed fetch-filter-select pass."""
        timeout = self.settings.resolver_timeout_seconds
        limit = self.candidate_limit(desired_count)

        try:
            raw = await asyncio.wait_for(
                self.provider.fetch_candidates(source_id, limit), timeout=timeout
            )
        except asyncio.TimeoutError:
            raise MediaTimeoutError(timeout)

        logger.info(f"Received {len(raw)} candidates for playlist {source_id}")

        playable = self._playable(raw)
        if len(playable) < desired_count and self.preview_finder is not None:
            try:
                await asyncio.wait_for(
                    self.preview_finder.fill_missing(raw, desired_count - len(playable)),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("Alternative preview lookup timed out")
            playable = self._playable(raw)

        if not playable:
            raise NoPlayableItemsError(
                f"No playable items in playlist {source_id}", candidates=len(raw)
            )

        if len(playable) < desired_count:
            logger.warning(
                f"Only {len(playable)} playable items for {desired_count} requested rounds"
            )

        chosen = self.rng.sample(playable, min(desired_count, len(playable)))
        return [item.to_round_item() for item in chosen]

    def _playable(self, raw: list[RawItem]) -> list[RawItem]:
        """Playable candidates, first occurrence of each id kept."""
        seen: set[str] = set()
        playable = []
        for item in raw:
            if not item.id or item.id in seen:
                continue
            if not (item.preview_url and item.preview_url.strip()):
                continue
            seen.add(item.id)
            playable.append(item)
        return playable

    def fallback_rounds(self, desired_count: int) -> ResolvedRounds:
        """Sample rounds, flagged so the UI can disclose them."""
        items = [item.model_copy() for item in FALLBACK_ITEMS[:desired_count]]
        return ResolvedRounds(items=items, requested=desired_count, is_fallback=True)
