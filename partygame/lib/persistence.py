"""File-backed session progress persistence.

Stores resume snapshots as JSON on disk with in-memory caching.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any
from uuid import UUID

import aiofiles
import aiofiles.os

from partygame.config import Settings, get_settings
from partygame.lib.exceptions import SessionPersistenceError
from partygame.lib.models import SavedState

logger = logging.getLogger(__name__)


class ProgressStore:
    """
    File-backed progress storage with in-memory caching.

    Features:
    - Async save/load of SavedState as JSON
    - Cache of recently saved snapshots
    - Unreadable files are treated as missing progress
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._cache: dict[UUID, SavedState] = {}
        self._lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the progress store."""
        if self._initialized:
            return

        self.settings.ensure_progress_dir()
        self._initialized = True
        logger.info(f"Progress store initialized at {self.settings.progress_dir}")

    async def shutdown(self) -> None:
        """Drop the cache. Every save is already on disk."""
        async with self._lock:
            self._cache.clear()
        logger.info("Progress store shut down")

    def _get_path(self, session_id: UUID) -> Path:
        """Get file path for a session's progress."""
        return self.settings.progress_dir / f"{session_id}.json"

    async def _read_from_disk(self, session_id: UUID) -> SavedState | None:
        """Read progress from disk."""
        path = self._get_path(session_id)
        if not path.exists():
            return None

        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                content = await f.read()
            return SavedState.model_validate_json(content)
        except Exception as e:
            logger.error(f"Failed to read progress for {session_id}: {e}")
            return None

    async def _write_to_disk(self, state: SavedState) -> None:
        """Write progress to disk."""
        path = self._get_path(state.session_id)
        try:
            content = state.model_dump_json(indent=2)
            async with aiofiles.open(path, "w", encoding="utf-8") as f:
                await f.write(content)
            logger.debug(f"Progress for {state.session_id} written to disk")
        except Exception as e:
            logger.error(f"Failed to write progress for {state.session_id}: {e}")
            raise SessionPersistenceError(f"Failed to persist progress: {e}")

    async def save_progress(self, state: SavedState) -> None:
        """
        Save a resume snapshot (update cache and persist to disk).

        Raises:
            SessionPersistenceError: If the snapshot cannot be written
        """
        await self.initialize()

        async with self._lock:
            self._cache[state.session_id] = state.model_copy(deep=True)

        await self._write_to_disk(state)

    async def load_progress(self, session_id: UUID) -> SavedState | None:
        """
        Load the last snapshot saved for a session.

        Returns:
            SavedState, or None if nothing was saved
        """
        await self.initialize()

        async with self._lock:
            if session_id in self._cache:
                return self._cache[session_id].model_copy(deep=True)

        state = await self._read_from_disk(session_id)
        if state is not None:
            async with self._lock:
                self._cache[session_id] = state.model_copy(deep=True)
        return state

    async def delete_progress(self, session_id: UUID) -> None:
        """Forget a session's progress."""
        async with self._lock:
            self._cache.pop(session_id, None)

        path = self._get_path(session_id)
        if path.exists():
            try:
                await aiofiles.os.remove(path)
                logger.info(f"Deleted progress for {session_id}")
            except OSError as e:
                logger.error(f"Failed to delete progress for {session_id}: {e}")

    async def list_saved(self) -> list[UUID]:
        """IDs of every session with saved progress."""
        await self.initialize()

        session_ids = set()
        async with self._lock:
            session_ids.update(self._cache.keys())

        for path in self.settings.progress_dir.glob("*.json"):
            try:
                session_ids.add(UUID(path.stem))
            except ValueError:
                pass

        return list(session_ids)

    def get_cache_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        return {
            "cached_sessions": len(self._cache),
            "progress_dir": str(self.settings.progress_dir),
        }


# =============================================================================
# Module-level store instance
# =============================================================================


_default_store: ProgressStore | None = None


async def get_progress_store() -> ProgressStore:
    """Get the default progress store instance."""
    global _default_store
    if _default_store is None:
        _default_store = ProgressStore()
        await _default_store.initialize()
    return _default_store


async def close_progress_store() -> None:
    """Close the default progress store."""
    global _default_store
    if _default_store:
        await _default_store.shutdown()
        _default_store = None
