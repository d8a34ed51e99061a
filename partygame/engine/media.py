"""Per-round media handles.

A handle is what the playback controller starts and stops. Quiz questions use
StaticMedia, which is always ready. Audio rounds use SignalledMedia: the
actual audio element lives in the client, which reports readiness and
failures back through the API.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable

from partygame.lib.exceptions import (
    AutoplayBlockedError,
    PlaybackError,
    PlaybackUnavailableError,
)

logger = logging.getLogger(__name__)

FailureCallback = Callable[[PlaybackError], None]


class MediaHandle(ABC):
    """Playable media for one round."""

    def __init__(self) -> None:
        self.on_failure: FailureCallback | None = None
        # Bumped by reload(); failures are tagged with the load they belong to
        self.load_generation = 0

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        """Whether the media is loaded enough to start."""

    @abstractmethod
    async def wait_ready(self) -> None:
        """Return once the media is ready. Callers bound this with a timeout."""

    @abstractmethod
    async def start(self, position: float) -> None:
        """
        Start playing from `position` seconds.

        Raises:
            PlaybackUnavailableError: Media cannot be played
            AutoplayBlockedError: Playback needs a user gesture
        """

    @abstractmethod
    async def stop(self) -> None:
        """Stop playing. Safe to call when not playing."""

    @abstractmethod
    async def reload(self) -> None:
        """Drop any failure state and load the media again."""

    def fail(self, error: PlaybackError) -> None:
        """Report a failure that happened outside a start() call."""
        if self.on_failure is not None:
            self.on_failure(error)


class StaticMedia(MediaHandle):
    """Media that needs no loading, such as a quiz question."""

    @property
    def is_ready(self) -> bool:
        return True

    async def wait_ready(self) -> None:
        return None

    async def start(self, position: float) -> None:
        return None

    async def stop(self) -> None:
        return None

    async def reload(self) -> None:
        return None


class SignalledMedia(MediaHandle):
    """
    Media played by a remote client.

    The client calls mark_ready() when its player can play and report_error()
    when loading or playback fails. reload() bumps the load generation so the
    client knows to fetch the source again.
    """

    def __init__(self, url: str | None):
        super().__init__()
        self.url = url
        self.playing = False
        self._ready = asyncio.Event()
        self._failure: PlaybackError | None = None

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    async def wait_ready(self) -> None:
        await self._ready.wait()

    def mark_ready(self) -> None:
        """Client player can play."""
        self._failure = None
        self._ready.set()

    def report_error(self, reason: str = "", autoplay_blocked: bool = False) -> None:
        """Client player failed to load or to keep playing."""
        was_playing = self.playing
        self.playing = False
        if autoplay_blocked:
            error: PlaybackError = AutoplayBlockedError(
                reason or "Autoplay was blocked by the client",
                details={"load_generation": self.load_generation},
            )
        else:
            error = PlaybackUnavailableError(
                reason or "Media failed to load",
                details={"url": self.url, "load_generation": self.load_generation},
            )
            self._failure = error
            self._ready.clear()
        logger.warning(f"Media error for {self.url} (playing={was_playing}): {error.message}")
        self.fail(error)

    async def start(self, position: float) -> None:
        if not self.url or not self.url.strip():
            raise PlaybackUnavailableError("Round has no media URL")
        if self._failure is not None:
            raise PlaybackUnavailableError(
                self._failure.message,
                details={"url": self.url, "load_generation": self.load_generation},
            )
        # Not confirmed ready yet: try anyway, the client reports if it cannot play
        self.playing = True

    async def stop(self) -> None:
        self.playing = False

    async def reload(self) -> None:
        self.load_generation += 1
        self.playing = False
        self._failure = None
        self._ready.clear()
        logger.info(f"Reloading media {self.url} (load #{self.load_generation})")
