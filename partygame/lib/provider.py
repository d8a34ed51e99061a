"""Media provider clients.

Fetches candidate round media from the Spotify Web API and, optionally, looks
up substitute preview clips on the iTunes Search API.
"""

import asyncio
import logging
import re
from typing import Any, Protocol

import httpx

from partygame.config import Settings, get_settings
from partygame.lib.exceptions import (
    MediaFetchError,
    MediaNotFoundError,
    MediaTimeoutError,
    RateLimitedError,
)
from partygame.lib.models import RawItem

logger = logging.getLogger(__name__)

TRACK_FIELDS = "items(track(id,name,preview_url,duration_ms,album(name,images),artists(name)))"


class MediaProvider(Protocol):
    """Anything that can list raw candidates for a source id."""

    async def fetch_candidates(self, source_id: str, limit: int) -> list[RawItem]: ...


# =============================================================================
# Spotify
# =============================================================================


class SpotifyProvider:
    """
    Playlist track source backed by the Spotify Web API.

    Raises MediaNotFoundError, RateLimitedError or MediaTimeoutError; every
    other transport failure surfaces as a plain MediaFetchError.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings or get_settings()
        self._http_client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> "SpotifyProvider":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.settings.spotify_api_base_url,
                timeout=httpx.Timeout(30.0, connect=10.0),
            )
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if we created it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def fetch_candidates(self, source_id: str, limit: int) -> list[RawItem]:
        """Fetch up to `limit` tracks of a playlist, playable or not."""
        client = await self._ensure_client()
        headers = {}
        if self.settings.has_spotify_token:
            headers["Authorization"] = f"Bearer {self.settings.spotify_access_token}"

        try:
            response = await client.get(
                f"/playlists/{source_id}/tracks",
                params={"limit": limit, "fields": TRACK_FIELDS},
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise MediaTimeoutError(
                self.settings.resolver_timeout_seconds, details={"error": str(e)}
            )
        except httpx.RequestError as e:
            raise MediaFetchError(f"Spotify connection error: {e}")

        if response.status_code == 404:
            raise MediaNotFoundError(f"Playlist not found: {source_id}")
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitedError(
                "Spotify rate limit exceeded",
                retry_after=float(retry_after) if retry_after else None,
            )
        if response.status_code == 401:
            raise MediaFetchError("Spotify authentication failed")

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise MediaFetchError(f"Spotify HTTP error: {e}")

        return parse_playlist_tracks(response.json())


def parse_playlist_tracks(data: dict[str, Any]) -> list[RawItem]:
    """Map a playlist tracks page to RawItems, dropping null tracks."""
    items = []
    for entry in data.get("items", []):
        track = entry.get("track") if isinstance(entry, dict) else None
        if not track:
            continue
        album = track.get("album") or {}
        images = album.get("images") or []
        items.append(
            RawItem(
                id=track.get("id"),
                name=track.get("name") or "",
                artist=", ".join(a.get("name", "") for a in track.get("artists") or []),
                album=album.get("name") or "",
                artwork_url=images[0].get("url", "") if images else "",
                preview_url=track.get("preview_url"),
                duration_ms=track.get("duration_ms") or 0,
            )
        )
    return items


# =============================================================================
# Alternative previews
# =============================================================================


def normalize_artist(name: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    name = re.sub(r"[^\w\s]", "", name.lower())
    return re.sub(r"\s+", " ", name).strip()


def artists_match(expected: str, found: str) -> bool:
    """
    Loose artist comparison.

    Accepts containment either way, a leading "The", and featured-artist
    suffixes ("feat", "featuring", "ft", "with").
    """
    if not expected or not found:
        return False

    a = normalize_artist(expected)
    b = normalize_artist(found)

    if a == b or a in b or b in a:
        return True
    if a.startswith("the ") and a[4:] == b:
        return True
    if b.startswith("the ") and b[4:] == a:
        return True

    for feat in ("feat", "featuring", "ft", "with"):
        pattern = rf"\s{feat}\s"
        if re.search(pattern, a) and re.split(pattern, a)[0].strip() == b:
            return True
        if re.search(pattern, b) and re.split(pattern, b)[0].strip() == a:
            return True

    return False


def _sanitize_term(term: str) -> str:
    term = re.sub(r"[^\w\s]", " ", term)
    return re.sub(r"\s+", " ", term).strip()


class PreviewFinder:
    """Looks up substitute preview clips on the iTunes Search API."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 8.0,
    ):
        self.settings = settings or get_settings()
        self._http_client = http_client
        self._owns_client = http_client is None
        self.timeout = timeout

    async def close(self) -> None:
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def find_preview(self, name: str, artist: str) -> str | None:
        """Return a preview URL for the track, or None when nothing matches."""
        primary_artist = artist.split(",")[0].strip()
        clean_name = _sanitize_term(name)
        clean_artist = _sanitize_term(primary_artist)
        if len(clean_name) < 2 or len(clean_artist) < 2:
            logger.debug(f"Skipping preview search for {name!r} by {artist!r}")
            return None

        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)

        try:
            response = await self._http_client.get(
                self.settings.itunes_search_url,
                params={
                    "term": f"{clean_name} - {clean_artist}",
                    "media": "music",
                    "entity": "song",
                    "limit": 1,
                },
            )
            response.raise_for_status()
            results = response.json().get("results") or []
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Preview search failed for {name!r}: {e}")
            return None

        for result in results:
            url = result.get("previewUrl")
            if url and artists_match(primary_artist, result.get("artistName", "")):
                return url
            if url:
                logger.info(
                    f"Preview for {name!r} rejected: artist "
                    f"{result.get('artistName')!r} does not match {primary_artist!r}"
                )
        return None

    async def fill_missing(self, items: list[RawItem], needed: int) -> int:
        """
        Fill preview URLs on up to `needed` unplayable items in place.

        Returns the number of items that gained a preview.
        """
        targets = [i for i in items if i.id and not i.preview_url][:needed]
        if not targets:
            return 0

        results = await asyncio.gather(
            *(self.find_preview(t.name, t.artist) for t in targets),
            return_exceptions=True,
        )
        found = 0
        for target, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning(f"Preview search raised for {target.name!r}: {result}")
                continue
            if result:
                target.preview_url = result
                found += 1

        logger.info(f"Found alternative previews for {found}/{len(targets)} tracks")
        return found
