"""Challenge session controller.

Composes the strategy, sequencer, playback and ledger into one session and
runs it from start to completion (or abort), emitting events on the way.
"""

import asyncio
import logging
from functools import partial
from typing import Any, Coroutine
from uuid import UUID, uuid4

from partygame.config import Settings, get_settings
from partygame.lib.exceptions import (
    AutoplayBlockedError,
    PlaybackError,
    PlaybackUnavailableError,
    SessionPersistenceError,
    SessionStateError,
    ValidationError,
)
from partygame.lib.models import (
    DefaultWinnerPolicy,
    PlaybackState,
    Round,
    RoundView,
    SavedState,
    SessionConfig,
    SessionOutcome,
    SessionSnapshot,
    SessionStatus,
)
from partygame.lib.persistence import ProgressStore
from partygame.lib.streaming import EventHub, EventType

from .ledger import ScoreSink, ScoringLedger
from .media import MediaHandle, SignalledMedia
from .playback import PlaybackController
from .sequencer import SESSION_COMPLETE, RoundSequencer
from .strategies import ChallengeStrategy

logger = logging.getLogger(__name__)

# Failures tolerated per round before it is skipped; the first one gets a reload
MAX_MEDIA_FAILURES = 2


class SessionController:
    """
    Runs one challenge session.

    Lifecycle: initializing -> active -> completed, or aborted from any
    state before completion.

    Commands are serialized by a lock so round transitions happen one at a
    time. Work started for a round (timers, media recovery) carries the
    session generation and round index it was started for, and is dropped
    when either has moved on.
    """

    def __init__(
        self,
        config: SessionConfig,
        strategy: ChallengeStrategy,
        score_sink: ScoreSink,
        progress_store: ProgressStore | None = None,
        events: EventHub | None = None,
        settings: Settings | None = None,
        session_id: UUID | None = None,
    ):
        """
        Initialize a session.

        Args:
            config: Session configuration
            strategy: Source of rounds and media for the challenge kind
            score_sink: Receives signed score deltas
            progress_store: Resume snapshots; None disables saving
            events: Event hub; one is created when omitted
            settings: Application settings
            session_id: Reuse an id to resume saved progress
        """
        if config.kind != strategy.kind:
            raise ValidationError(
                f"Strategy for {strategy.kind.value} cannot run a {config.kind.value} session",
                field="kind",
                value=config.kind.value,
            )

        self.config = config
        self.strategy = strategy
        self.progress_store = progress_store
        self.settings = settings or get_settings()
        self.session_id = session_id or uuid4()
        self.events = events or EventHub(self.session_id)

        self.sequencer = RoundSequencer()
        self.ledger = ScoringLedger(score_sink, config.points_per_round)

        self._status = SessionStatus.INITIALIZING
        self._generation = 0
        self._is_fallback = False
        self._outcome: SessionOutcome | None = None

        self._playback: PlaybackController | None = None
        self._media: MediaHandle | None = None
        self._media_failures = 0
        self._wants_playback = False

        self._lock = asyncio.Lock()
        self._resolve_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    # =========================================================================
    # State
    # =========================================================================

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_fallback(self) -> bool:
        return self._is_fallback

    @property
    def outcome(self) -> SessionOutcome | None:
        return self._outcome

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> SessionSnapshot:
        """
        Load the rounds and activate the session.

        Resumes from saved progress when the store has some for this session
        id; otherwise asks the strategy for fresh rounds.

        Returns:
            Snapshot of the activated (or, for finished saved progress,
            completed) session

        Raises:
            MediaFetchError: Rounds could not be resolved
            NotEnoughRoundsError: Nothing playable to start with
            SessionStateError: Already started, or aborted while starting
        """
        if self._status != SessionStatus.INITIALIZING:
            raise SessionStateError(
                "Session has already been started",
                session_id=str(self.session_id),
                expected_status=SessionStatus.INITIALIZING.value,
                actual_status=self._status.value,
            )

        generation = self._generation
        try:
            saved = None
            if self.progress_store is not None:
                saved = await self.progress_store.load_progress(self.session_id)

            if saved is not None:
                self._restore(saved)
            else:
                rounds = await self._resolve_rounds()
                self.sequencer.load(rounds)
        except asyncio.CancelledError:
            if self._status == SessionStatus.ABORTED:
                raise SessionStateError(
                    "Session was aborted while starting", session_id=str(self.session_id)
                )
            raise
        except Exception as e:
            if self._status != SessionStatus.ABORTED:
                await self._fail_start(e)
            raise
        finally:
            self._resolve_task = None

        if generation != self._generation:
            raise SessionStateError(
                "Session was aborted while starting", session_id=str(self.session_id)
            )

        self._status = SessionStatus.ACTIVE
        await self.events.publish(
            EventType.SESSION_START,
            {
                "session_id": str(self.session_id),
                "kind": self.config.kind.value,
                "total_rounds": self.sequencer.total,
                "is_fallback": self._is_fallback,
            },
            round_index=self.sequencer.current_index,
        )
        logger.info(
            f"Session {self.session_id} active with {self.sequencer.total} rounds"
            f"{' (fallback data)' if self._is_fallback else ''}"
        )

        if self.sequencer.is_complete:
            await self._complete()
        else:
            await self._enter_round()
            await self._save_progress()

        return self.snapshot()

    async def _resolve_rounds(self) -> list[Round]:
        self._resolve_task = asyncio.create_task(self.strategy.resolve(self.config))
        resolved = await self._resolve_task
        self._is_fallback = resolved.is_fallback
        if len(resolved.items) < self.config.desired_count:
            logger.info(
                f"Session {self.session_id} runs {len(resolved.items)} of "
                f"{self.config.desired_count} requested rounds"
            )
        return [
            Round(item=item, duration_seconds=self.config.duration_seconds)
            for item in resolved.items
        ]

    def _restore(self, saved: SavedState) -> None:
        """Reuse saved rounds and ledger as they are."""
        self.config = saved.config
        self.ledger.points_per_round = saved.config.points_per_round
        self.sequencer.load(saved.rounds, saved.current_index)
        self.ledger.restore(saved.ledger, saved.closed_rounds)
        self._is_fallback = saved.is_fallback
        logger.info(
            f"Resumed session {self.session_id} at round "
            f"{saved.current_index + 1}/{len(saved.rounds)}"
        )

    async def _fail_start(self, error: Exception) -> None:
        self._status = SessionStatus.ABORTED
        self._generation += 1
        reason = getattr(error, "message", str(error))
        logger.error(f"Session {self.session_id} failed to start: {reason}")
        await self.events.publish(
            EventType.SESSION_ABORTED,
            {"reason": reason, "code": getattr(error, "code", type(error).__name__)},
        )

    async def abort(self, reason: str = "aborted") -> None:
        """
        Stop the session for good.

        Cancels the in-flight resolve and every timer, discards saved progress
        and emits no further score deltas. Aborting twice is a no-op.

        Raises:
            SessionStateError: The session already completed
        """
        if self._status == SessionStatus.ABORTED:
            return
        if self._status == SessionStatus.COMPLETED:
            raise SessionStateError(
                "Cannot abort a completed session",
                session_id=str(self.session_id),
                actual_status=self._status.value,
            )

        self._status = SessionStatus.ABORTED
        self._generation += 1

        if self._resolve_task is not None and not self._resolve_task.done():
            self._resolve_task.cancel()
        await self._cancel_tasks()
        await self._release_round()

        logger.info(f"Session {self.session_id} aborted: {reason}")
        await self.events.publish(
            EventType.SESSION_ABORTED,
            {"reason": reason},
            round_index=self.sequencer.current_index,
        )
        if self.progress_store is not None:
            await self.progress_store.delete_progress(self.session_id)

    async def shutdown(self) -> None:
        """Release timers without touching saved progress, so it can resume later."""
        self._generation += 1
        await self._cancel_tasks()
        await self._release_round()
        await self.events.close()

    # =========================================================================
    # Round Commands
    # =========================================================================

    async def play(self) -> None:
        """Start or resume the current round's media."""
        async with self._lock:
            self._ensure_active()
            self._wants_playback = True
            await self._start_playback()

    async def pause(self) -> None:
        async with self._lock:
            self._ensure_active()
            self._wants_playback = False
            await self._playback.pause()

    async def restart(self) -> None:
        """Play the current round from the top."""
        async with self._lock:
            self._ensure_active()
            self._wants_playback = True
            await self._start_playback(from_start=True)

    async def reveal(self) -> None:
        """Show the current round's answer. Revealing never scores."""
        async with self._lock:
            self._ensure_active()
            self._wants_playback = False
            was_revealed = self._playback.state == PlaybackState.REVEALED
            await self._playback.reveal()
            if was_revealed:
                return

            round = self.sequencer.current()
            await self.events.publish(
                EventType.REVEALED,
                {"round_id": round.id, "answer": round.item.answer, "artist": round.item.artist},
                round_index=self.sequencer.current_index,
            )
            await self._save_progress()

    async def select_winner(self, participant_id: str | None) -> bool:
        """
        Credit the current round to `participant_id`, or to nobody with None.

        Returns:
            True if the selection changed anything

        Raises:
            ValidationError: The participant is not in the session's scope
        """
        async with self._lock:
            self._ensure_active()
            round = self.sequencer.current()

            if participant_id is None:
                changed = self.ledger.revoke(round.id)
            else:
                if participant_id not in self.config.scope.candidate_ids:
                    raise ValidationError(
                        f"{participant_id} is not a {self.config.scope.type.value} in this session",
                        field="participant_id",
                        value=participant_id,
                    )
                changed = self.ledger.award(round.id, participant_id, self._points_for(round))

            if changed:
                await self._publish_winner(round, participant_id)
                await self._save_progress()
            return changed

    async def next_round(self) -> SessionSnapshot:
        """
        Close the current round and move on, completing after the last one.

        An unselected round awards nobody unless the session opted into the
        first-candidate policy.
        """
        async with self._lock:
            self._ensure_active()
            round = self.sequencer.current()

            if (
                self.config.default_winner_policy == DefaultWinnerPolicy.FIRST_CANDIDATE
                and self.ledger.entry_for(round.id) is None
                and self.config.scope.candidate_ids
            ):
                default_id = self.config.scope.candidate_ids[0]
                self.ledger.award(round.id, default_id, self._points_for(round))
                logger.info(f"Round {round.id} defaulted to {default_id}")
                await self._publish_winner(round, default_id, default=True)

            self.ledger.close(round.id)
            await self._advance()
            return self.snapshot()

    # =========================================================================
    # Client Media Signals
    # =========================================================================

    def media_ready(self, round_index: int | None = None) -> bool:
        """
        The client's player loaded the current round's media.

        Not serialized with commands: play() may be waiting for exactly this.

        Returns:
            False when the signal is for a round that is no longer current
        """
        media = self._signalled_media(round_index)
        if media is None:
            return False
        media.mark_ready()
        return True

    def media_error(
        self, reason: str = "", autoplay_blocked: bool = False, round_index: int | None = None
    ) -> bool:
        """The client's player failed to load or play the current round's media."""
        media = self._signalled_media(round_index)
        if media is None:
            return False
        media.report_error(reason, autoplay_blocked)
        return True

    def _signalled_media(self, round_index: int | None) -> SignalledMedia | None:
        self._ensure_active()
        if round_index is not None and round_index != self.sequencer.current_index:
            logger.debug(
                f"Ignoring media signal for round {round_index}, "
                f"current is {self.sequencer.current_index}"
            )
            return None
        if not isinstance(self._media, SignalledMedia):
            raise SessionStateError(
                "Current round media is not played by the client",
                session_id=str(self.session_id),
            )
        return self._media

    # =========================================================================
    # Snapshot
    # =========================================================================

    def snapshot(self) -> SessionSnapshot:
        """Current state for clients. Answers stay hidden until revealed."""
        current_round = None
        current_winner = None
        if self._status == SessionStatus.ACTIVE and not self.sequencer.is_complete:
            round = self.sequencer.current()
            current_round = self._round_view(self.sequencer.current_index, round)
            entry = self.ledger.entry_for(round.id)
            current_winner = entry.awardee_id if entry else None

        return SessionSnapshot(
            session_id=self.session_id,
            kind=self.config.kind,
            status=self._status,
            current_index=self.sequencer.current_index,
            total_rounds=self.sequencer.total,
            is_fallback=self._is_fallback,
            playback_state=self._playback.state if self._playback else None,
            progress=self._playback.progress if self._playback else 0.0,
            current_round=current_round,
            current_winner=current_winner,
            scores=self.ledger.final_scores(),
            outcome=self._outcome,
        )

    @staticmethod
    def _round_view(index: int, round: Round) -> RoundView:
        return RoundView(
            index=index,
            id=round.id,
            prompt=round.item.prompt,
            media_url=round.item.media_url,
            artwork_url=round.item.artwork_url,
            options=[option.text for option in round.item.options],
            duration_seconds=round.duration_seconds,
            revealed=round.revealed,
            answer=round.item.answer if round.revealed else None,
        )

    # =========================================================================
    # Round Transitions
    # =========================================================================

    async def _enter_round(self) -> None:
        """Set up playback for the round under the cursor."""
        round = self.sequencer.current()
        index = self.sequencer.current_index

        self._media = self.strategy.media_for(round)
        self._media_failures = 0
        self._wants_playback = False
        self._playback = PlaybackController(
            round,
            self._media,
            ready_timeout=self.settings.ready_timeout_seconds,
            tick_interval=self.settings.tick_interval_seconds,
            on_state_change=partial(self._on_playback_state, self._generation, index),
            on_failure=partial(self._on_media_failure, self._generation, index),
        )

        await self.events.publish(
            EventType.ROUND_CHANGED,
            {
                "index": index,
                "total": self.sequencer.total,
                "round": self._round_view(index, round).model_dump(mode="json"),
            },
            round_index=index,
        )

    async def _advance(self, skip: bool = False) -> None:
        await self._release_round()
        result = self.sequencer.skip() if skip else self.sequencer.advance()
        if result is SESSION_COMPLETE:
            await self._complete()
            return
        await self._enter_round()
        await self._save_progress()

    async def _release_round(self) -> None:
        if self._playback is not None:
            await self._playback.dispose()
        self._playback = None
        self._media = None

    async def _complete(self) -> None:
        self._status = SessionStatus.COMPLETED
        self._generation += 1
        await self._release_round()

        self._outcome = self._build_outcome()
        logger.info(
            f"Session {self.session_id} completed: scores={self._outcome.final_scores}, "
            f"winners={self._outcome.winners}"
        )
        await self.events.publish(
            EventType.SESSION_COMPLETED,
            self._outcome.model_dump(mode="json"),
            round_index=self.sequencer.current_index,
        )
        if self.progress_store is not None:
            await self.progress_store.delete_progress(self.session_id)

    def _build_outcome(self) -> SessionOutcome:
        scores = {pid: 0 for pid in self.config.scope.candidate_ids}
        scores.update(self.ledger.final_scores())

        top = max(scores.values(), default=0)
        winners = [pid for pid, score in scores.items() if score == top] if top > 0 else []
        skipped = sum(1 for round in self.sequencer.rounds if round.unplayable)

        return SessionOutcome(
            final_scores=scores,
            winners=winners,
            winner_id=winners[0] if len(winners) == 1 else None,
            rounds_played=self.sequencer.total - skipped,
            rounds_skipped=skipped,
        )

    # =========================================================================
    # Playback & Failure Handling
    # =========================================================================

    async def _start_playback(self, from_start: bool = False) -> None:
        """Play the current round, routing media failures to recovery."""
        try:
            if from_start:
                await self._playback.restart()
            else:
                await self._playback.play()
        except AutoplayBlockedError as e:
            self._wants_playback = False
            await self._publish_notice(e)
        except PlaybackUnavailableError as e:
            await self._handle_playback_failure(e)

    async def _on_playback_state(
        self, generation: int, index: int, state: PlaybackState, progress: float
    ) -> None:
        if self._is_stale(generation, index):
            return
        if state == PlaybackState.STOPPED:
            self._wants_playback = False
        await self.events.publish(
            EventType.PLAYBACK_STATE_CHANGED,
            {"state": state.value, "progress": round(progress, 3)},
            round_index=index,
        )

    def _on_media_failure(self, generation: int, index: int, error: PlaybackError) -> None:
        if self._is_stale(generation, index):
            return
        self._spawn(self._recover_media(generation, index, error))

    async def _recover_media(self, generation: int, index: int, error: PlaybackError) -> None:
        async with self._lock:
            if self._is_stale(generation, index):
                return
            if self._is_superseded(error):
                logger.debug(
                    f"Round {index} media failure already handled by a reload: {error.message}"
                )
                return
            if isinstance(error, AutoplayBlockedError):
                self._wants_playback = False
                await self._publish_notice(error)
                return
            await self._handle_playback_failure(error)

    async def _handle_playback_failure(self, error: PlaybackError) -> None:
        """One reload-and-play retry per round, then skip it. Lock must be held."""
        generation, index = self._generation, self.sequencer.current_index
        self._media_failures += 1

        if self._media_failures < MAX_MEDIA_FAILURES:
            logger.info(
                f"Round {index} media failed ({error.message}), reloading in "
                f"{self.settings.reload_delay_seconds}s"
            )
            await asyncio.sleep(self.settings.reload_delay_seconds)
            if self._is_stale(generation, index):
                return
            round = self.sequencer.current()
            await self._media.reload()
            await self.events.publish(
                EventType.MEDIA_RELOAD,
                {"round_id": round.id, "url": round.item.media_url},
                round_index=index,
            )
            if self._wants_playback:
                await self._start_playback()
            return

        await self._skip_unplayable(error)

    async def _skip_unplayable(self, error: PlaybackError) -> None:
        round = self.sequencer.current()
        index = self.sequencer.current_index
        logger.warning(f"Skipping round {index} ({round.item.prompt!r}): {error.message}")

        if self.ledger.revoke(round.id):
            await self._publish_winner(round, None)
        self.ledger.close(round.id)

        await self._publish_notice(error, skipped=True)
        await self._advance(skip=True)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _points_for(self, round: Round) -> int:
        if round.item.points is not None:
            return round.item.points
        return self.config.points_per_round

    def _is_stale(self, generation: int, index: int) -> bool:
        return (
            generation != self._generation
            or self._status != SessionStatus.ACTIVE
            or index != self.sequencer.current_index
        )

    def _is_superseded(self, error: PlaybackError) -> bool:
        """Whether the media was reloaded after the load that `error` reports on."""
        loaded = error.details.get("load_generation")
        return (
            loaded is not None
            and self._media is not None
            and loaded < self._media.load_generation
        )

    def _ensure_active(self) -> None:
        if self._status != SessionStatus.ACTIVE:
            raise SessionStateError(
                f"Session is {self._status.value}",
                session_id=str(self.session_id),
                expected_status=SessionStatus.ACTIVE.value,
                actual_status=self._status.value,
            )

    async def _publish_winner(
        self, round: Round, participant_id: str | None, default: bool = False
    ) -> None:
        entry = self.ledger.entry_for(round.id)
        await self.events.publish(
            EventType.WINNER_CHANGED,
            {
                "round_id": round.id,
                "participant_id": participant_id,
                "points": entry.points if entry else 0,
                "default": default,
                "scores": self.ledger.final_scores(),
            },
            round_index=self.sequencer.current_index,
        )

    async def _publish_notice(self, error: PlaybackError, skipped: bool = False) -> None:
        await self.events.publish(
            EventType.PLAYBACK_NOTICE,
            {"code": error.code, "message": error.message, "skipped": skipped},
            round_index=self.sequencer.current_index,
        )

    async def _save_progress(self) -> None:
        if self.progress_store is None or self._status != SessionStatus.ACTIVE:
            return
        state = SavedState(
            session_id=self.session_id,
            config=self.config,
            current_index=self.sequencer.current_index,
            rounds=self.sequencer.rounds,
            ledger=self.ledger.snapshot(),
            closed_rounds=self.ledger.closed_rounds,
            is_fallback=self._is_fallback,
        )
        try:
            await self.progress_store.save_progress(state)
        except SessionPersistenceError as e:
            logger.warning(f"Progress for session {self.session_id} not saved: {e.message}")

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Background task for session {self.session_id} failed: {task.exception()}"
            )

    async def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
