"""Per-round playback control."""

import asyncio
import logging
from typing import Awaitable, Callable

from partygame.lib.exceptions import (
    AutoplayBlockedError,
    PlaybackError,
    SessionStateError,
)
from partygame.lib.models import PlaybackState, Round

from .media import MediaHandle

logger = logging.getLogger(__name__)

StateCallback = Callable[[PlaybackState, float], Awaitable[None]]
FailureCallback = Callable[[PlaybackError], None]


class PlaybackController:
    """
    Drives one round's media through idle, playing, paused, stopped and
    revealed.

    While playing, a duration timer stops playback when the round's time is
    up and a ticker reports progress at a fixed interval. Both are cancelled
    on pause, reveal and dispose. Once disposed, nothing it owns reports back.
    """

    def __init__(
        self,
        round: Round,
        media: MediaHandle,
        ready_timeout: float = 2.0,
        tick_interval: float = 0.1,
        on_state_change: StateCallback | None = None,
        on_failure: FailureCallback | None = None,
    ):
        self.round = round
        self.media = media
        self.ready_timeout = ready_timeout
        self.tick_interval = tick_interval
        self.on_state_change = on_state_change
        self.on_failure = on_failure

        self._state = PlaybackState.REVEALED if round.revealed else PlaybackState.IDLE
        self._elapsed = 0.0
        self._started_at: float | None = None
        self._timer_task: asyncio.Task | None = None
        self._ticker_task: asyncio.Task | None = None
        self._disposed = False

        self.media.on_failure = self._handle_media_failure

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def elapsed(self) -> float:
        """Seconds of the round played so far."""
        elapsed = self._elapsed
        if self._started_at is not None:
            elapsed += self._now() - self._started_at
        return min(elapsed, self.round.duration_seconds)

    @property
    def progress(self) -> float:
        """Played fraction of the round, 0.0 to 1.0."""
        return self.elapsed / self.round.duration_seconds

    # =========================================================================
    # Commands
    # =========================================================================

    async def play(self) -> None:
        """
        Start or resume playback.

        Waits up to `ready_timeout` for the media, then tries to start it
        anyway. Playing from stopped starts over.

        Raises:
            SessionStateError: The round is revealed or the controller is disposed
            PlaybackUnavailableError: The media cannot be played
            AutoplayBlockedError: The client needs a user gesture first
        """
        self._ensure_live()
        if self._state == PlaybackState.REVEALED:
            raise SessionStateError("Round is already revealed")
        if self._state == PlaybackState.PLAYING:
            return
        if self._state == PlaybackState.STOPPED:
            self._elapsed = 0.0

        if not self.media.is_ready:
            try:
                await asyncio.wait_for(self.media.wait_ready(), timeout=self.ready_timeout)
            except asyncio.TimeoutError:
                logger.info(
                    f"Media for round {self.round.id} not ready after "
                    f"{self.ready_timeout}s, trying to play anyway"
                )
            if self._disposed:
                return

        try:
            await self.media.start(self._elapsed)
        except AutoplayBlockedError:
            logger.info(f"Autoplay blocked for round {self.round.id}")
            raise

        if self._disposed:
            await self.media.stop()
            return

        self._started_at = self._now()
        self._start_timers()
        await self._set_state(PlaybackState.PLAYING)

    async def pause(self) -> None:
        """Pause playback, keeping the position. No-op unless playing."""
        self._ensure_live()
        if self._state != PlaybackState.PLAYING:
            return
        self._halt()
        await self.media.stop()
        await self._set_state(PlaybackState.PAUSED)

    async def restart(self) -> None:
        """Play the round from the beginning. Not allowed after reveal."""
        self._ensure_live()
        if self._state == PlaybackState.REVEALED:
            raise SessionStateError("Cannot restart a revealed round")
        self._halt()
        await self.media.stop()
        self._elapsed = 0.0
        self._state = PlaybackState.IDLE
        await self.play()

    async def reveal(self) -> None:
        """Stop playback and show the answer. Idempotent."""
        self._ensure_live()
        if self._state == PlaybackState.REVEALED:
            return
        self._halt()
        await self.media.stop()
        self.round.revealed = True
        await self._set_state(PlaybackState.REVEALED)

    async def dispose(self) -> None:
        """Cancel timers and release the media. Further callbacks are ignored."""
        if self._disposed:
            return
        self._disposed = True
        self._halt()
        self.media.on_failure = None
        await self.media.stop()
        logger.debug(f"Disposed playback for round {self.round.id}")

    # =========================================================================
    # Timers
    # =========================================================================

    def _start_timers(self) -> None:
        remaining = max(self.round.duration_seconds - self._elapsed, 0.0)
        self._timer_task = asyncio.create_task(self._run_timer(remaining))
        self._ticker_task = asyncio.create_task(self._run_ticker())

    def _halt(self) -> None:
        """Freeze the position and cancel timers, leaving the state as is."""
        self._elapsed = self.elapsed
        self._started_at = None
        current = asyncio.current_task()
        for task in (self._timer_task, self._ticker_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._timer_task = None
        self._ticker_task = None

    async def _run_timer(self, remaining: float) -> None:
        await asyncio.sleep(remaining)
        if self._disposed or self._state != PlaybackState.PLAYING:
            return
        self._halt()
        self._elapsed = self.round.duration_seconds
        await self.media.stop()
        logger.debug(f"Round {self.round.id} time is up")
        await self._set_state(PlaybackState.STOPPED)

    async def _run_ticker(self) -> None:
        while True:
            await asyncio.sleep(self.tick_interval)
            if self._disposed or self._state != PlaybackState.PLAYING:
                return
            await self._notify()

    # =========================================================================
    # Internals
    # =========================================================================

    def _handle_media_failure(self, error: PlaybackError) -> None:
        if self._disposed:
            return
        if self._state == PlaybackState.PLAYING:
            self._halt()
            self._state = PlaybackState.PAUSED
        logger.warning(f"Playback failed for round {self.round.id}: {error.message}")
        if self.on_failure is not None:
            self.on_failure(error)

    async def _set_state(self, state: PlaybackState) -> None:
        self._state = state
        await self._notify()

    async def _notify(self) -> None:
        if self.on_state_change is None or self._disposed:
            return
        try:
            await self.on_state_change(self._state, self.progress)
        except Exception as e:
            logger.error(f"Playback state listener failed: {e}")

    def _ensure_live(self) -> None:
        if self._disposed:
            raise SessionStateError("Playback for this round has ended")

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()
