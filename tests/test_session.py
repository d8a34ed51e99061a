"""Session controller tests."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError as PydanticValidationError

from conftest import make_question, make_raw
from partygame.engine.resolver import MediaResolver
from partygame.engine.session import SessionController
from partygame.engine.strategies import AudioGuessStrategy, QuizStrategy
from partygame.lib.exceptions import (
    MediaFetchError,
    NotEnoughRoundsError,
    SessionStateError,
    ValidationError,
)
from partygame.lib.models import (
    ChallengeKind,
    DefaultWinnerPolicy,
    ParticipantScope,
    ParticipantType,
    PlaybackState,
    ResolvedRounds,
    RoundItem,
    SessionConfig,
    SessionStatus,
)
from partygame.lib.streaming import EventType

PLAYLIST_ID = "37i9dQZF1DXcBWIGoYBM5M"


def quiz_config(**overrides) -> SessionConfig:
    values = dict(
        kind=ChallengeKind.QUIZ,
        desired_count=3,
        points_per_round=2,
        duration_seconds=5.0,
        scope=ParticipantScope(type=ParticipantType.TEAM, candidate_ids=["A", "B"]),
    )
    values.update(overrides)
    return SessionConfig(**values)


def audio_config(**overrides) -> SessionConfig:
    return quiz_config(kind=ChallengeKind.AUDIO_GUESS, source_ref=PLAYLIST_ID, **overrides)


def audio_strategy(items: list[RoundItem]) -> AudioGuessStrategy:
    resolver = AsyncMock(spec=MediaResolver)
    resolver.resolve.return_value = ResolvedRounds(items=items, requested=len(items))
    return AudioGuessStrategy(resolver)


def song(n: int) -> RoundItem:
    return make_raw(n).to_round_item()


@pytest.fixture
def quiz(settings, scoreboard):
    def build(config=None, questions=None, **kwargs):
        questions = questions or [make_question(n) for n in range(3)]
        return SessionController(
            config or quiz_config(),
            QuizStrategy(questions),
            scoreboard,
            settings=settings,
            **kwargs,
        )

    return build


# =============================================================================
# Scoring scenarios
# =============================================================================


async def test_three_round_tie(quiz, scoreboard):
    session = quiz()
    await session.start()

    await session.select_winner("A")
    await session.next_round()
    await session.select_winner("B")
    await session.next_round()
    await session.select_winner(None)
    snapshot = await session.next_round()

    assert snapshot.status == SessionStatus.COMPLETED
    outcome = session.outcome
    assert outcome.final_scores == {"A": 2, "B": 2}
    assert outcome.winners == ["A", "B"]
    assert outcome.winner_id is None
    assert outcome.rounds_played == 3
    assert scoreboard.snapshot() == {"A": 2, "B": 2}
    assert len(session.events.events_of(EventType.SESSION_COMPLETED)) == 1


async def test_single_winner_and_zero_scores(quiz):
    session = quiz()
    await session.start()

    await session.select_winner("B")
    for _ in range(3):
        await session.next_round()

    assert session.outcome.final_scores == {"A": 0, "B": 2}
    assert session.outcome.winners == ["B"]
    assert session.outcome.winner_id == "B"


async def test_nobody_scored_has_no_winner(quiz):
    session = quiz()
    await session.start()
    for _ in range(3):
        await session.next_round()

    assert session.outcome.winners == []
    assert session.outcome.winner_id is None


async def test_changing_winner_emits_reversal(quiz, scoreboard):
    session = quiz()
    await session.start()

    assert await session.select_winner("A") is True
    assert await session.select_winner("A") is False
    assert await session.select_winner("B") is True

    assert scoreboard.history == [("A", 2), ("A", -2), ("B", 2)]
    assert session.snapshot().current_winner == "B"
    assert len(session.events.events_of(EventType.WINNER_CHANGED)) == 2


async def test_winner_must_be_in_scope(quiz, scoreboard):
    session = quiz()
    await session.start()

    with pytest.raises(ValidationError):
        await session.select_winner("Z")
    assert scoreboard.history == []


async def test_question_points_override_default(quiz, scoreboard):
    session = quiz(questions=[make_question(0, points=5), make_question(1)])
    await session.start()

    await session.select_winner("A")
    await session.next_round()
    await session.select_winner("A")

    assert scoreboard.history == [("A", 5), ("A", 2)]


def test_question_points_must_be_positive():
    for points in (0, -1):
        with pytest.raises(PydanticValidationError):
            make_question(0, points=points)


async def test_first_candidate_policy_is_opt_in(quiz):
    session = quiz(quiz_config(default_winner_policy=DefaultWinnerPolicy.FIRST_CANDIDATE))
    await session.start()
    await session.next_round()
    await session.select_winner("B")
    await session.next_round()
    await session.select_winner("B")
    await session.select_winner(None)
    await session.next_round()

    assert session.outcome.final_scores == {"A": 2, "B": 2}


# =============================================================================
# Rounds & playback
# =============================================================================


async def test_answer_hidden_until_reveal(quiz):
    session = quiz()
    await session.start()

    assert session.snapshot().current_round.answer is None

    await session.reveal()
    await session.reveal()

    view = session.snapshot().current_round
    assert view.revealed
    assert view.answer == "Right 0"
    assert len(session.events.events_of(EventType.REVEALED)) == 1


async def test_play_pause_and_events(quiz):
    session = quiz()
    await session.start()

    await session.play()
    await asyncio.sleep(0.03)
    await session.pause()

    states = [e.data["state"] for e in session.events.events_of(EventType.PLAYBACK_STATE_CHANGED)]
    assert states[0] == "playing"
    assert states[-1] == "paused"
    assert session.snapshot().playback_state == PlaybackState.PAUSED

    await session.next_round()
    assert session.snapshot().playback_state == PlaybackState.IDLE
    await session.abort()


async def test_short_playlist_runs_short_session(settings, scoreboard):
    provider = AsyncMock()
    provider.fetch_candidates.return_value = [make_raw(1), make_raw(2), make_raw(3, playable=False)]
    resolver = MediaResolver(provider, settings)
    session = SessionController(
        audio_config(desired_count=5), AudioGuessStrategy(resolver), scoreboard, settings=settings
    )

    snapshot = await session.start()

    assert snapshot.total_rounds == 2
    assert snapshot.status == SessionStatus.ACTIVE
    await session.abort()


async def test_media_failing_twice_skips_round(settings, scoreboard):
    session = SessionController(
        audio_config(), audio_strategy([song(1), song(2)]), scoreboard, settings=settings
    )
    await session.start()
    first = session.sequencer.current()

    await session.select_winner("A")
    await session.play()
    session.media_error("network error")
    await asyncio.sleep(0.2)

    # First failure reloads and plays again
    assert session.sequencer.current_index == 0
    assert len(session.events.events_of(EventType.MEDIA_RELOAD)) == 1
    assert session.snapshot().playback_state == PlaybackState.PLAYING

    session.media_error("network error")
    await asyncio.sleep(0.2)

    notices = session.events.events_of(EventType.PLAYBACK_NOTICE)
    assert len(notices) == 1
    assert notices[0].data["code"] == "unavailable"
    assert notices[0].round_index == 0
    assert first.unplayable
    assert session.sequencer.current_index == 1
    assert session.ledger.entry_for(first.id).awardee_id is None
    assert scoreboard.history == [("A", 2), ("A", -2)]

    await session.next_round()
    assert session.outcome.rounds_skipped == 1
    assert session.outcome.rounds_played == 1


async def test_single_error_during_ready_wait_reloads_without_skipping(settings, scoreboard):
    session = SessionController(
        audio_config(), audio_strategy([song(1), song(2)]), scoreboard, settings=settings
    )
    await session.start()
    first = session.sequencer.current()

    playing = asyncio.create_task(session.play())
    await asyncio.sleep(0.01)
    session.media_error("network error")
    await playing
    await asyncio.sleep(0.2)

    assert session.sequencer.current_index == 0
    assert not first.unplayable
    assert len(session.events.events_of(EventType.MEDIA_RELOAD)) == 1
    assert session.events.events_of(EventType.PLAYBACK_NOTICE) == []
    assert session.snapshot().playback_state == PlaybackState.PLAYING
    await session.abort()


async def test_stale_media_signal_is_ignored(settings, scoreboard):
    session = SessionController(
        audio_config(), audio_strategy([song(1), song(2)]), scoreboard, settings=settings
    )
    await session.start()
    await session.next_round()

    assert session.media_error("late", round_index=0) is False
    assert session.media_ready(round_index=1) is True
    assert session.events.events_of(EventType.PLAYBACK_NOTICE) == []
    await session.abort()


async def test_autoplay_block_is_a_notice_not_a_skip(settings, scoreboard):
    session = SessionController(
        audio_config(), audio_strategy([song(1)]), scoreboard, settings=settings
    )
    await session.start()
    await session.play()

    session.media_error("needs gesture", autoplay_blocked=True)
    await asyncio.sleep(0.05)

    notices = session.events.events_of(EventType.PLAYBACK_NOTICE)
    assert [n.data["code"] for n in notices] == ["autoplay_blocked"]
    assert session.sequencer.current_index == 0
    await session.abort()


# =============================================================================
# Lifecycle
# =============================================================================


async def test_start_failure_aborts(settings, scoreboard):
    resolver = AsyncMock(spec=MediaResolver)
    resolver.resolve.side_effect = MediaFetchError("provider down")
    session = SessionController(
        audio_config(), AudioGuessStrategy(resolver), scoreboard, settings=settings
    )

    with pytest.raises(MediaFetchError):
        await session.start()

    assert session.status == SessionStatus.ABORTED
    aborted = session.events.events_of(EventType.SESSION_ABORTED)
    assert aborted[0].data["reason"] == "provider down"


async def test_empty_quiz_cannot_start(settings, scoreboard):
    session = SessionController(quiz_config(), QuizStrategy([]), scoreboard, settings=settings)

    with pytest.raises(NotEnoughRoundsError):
        await session.start()
    assert session.status == SessionStatus.ABORTED


async def test_abort_during_resolve(settings, scoreboard):
    started = asyncio.Event()

    async def slow_resolve(source_ref, count):
        started.set()
        await asyncio.sleep(5)

    resolver = AsyncMock(spec=MediaResolver)
    resolver.resolve.side_effect = slow_resolve
    session = SessionController(
        audio_config(), AudioGuessStrategy(resolver), scoreboard, settings=settings
    )

    start = asyncio.create_task(session.start())
    await started.wait()
    await session.abort("host left")

    with pytest.raises(SessionStateError):
        await start
    assert session.status == SessionStatus.ABORTED


async def test_abort_emits_no_deltas(quiz, scoreboard):
    session = quiz()
    await session.start()
    await session.select_winner("A")
    history = scoreboard.history

    await session.abort("host left")
    await session.abort()

    assert scoreboard.history == history
    assert len(session.events.events_of(EventType.SESSION_ABORTED)) == 1
    with pytest.raises(SessionStateError):
        await session.select_winner("B")
    with pytest.raises(SessionStateError):
        await session.next_round()


async def test_cannot_abort_completed_session(quiz):
    session = quiz(questions=[make_question(0)])
    await session.start()
    await session.next_round()

    with pytest.raises(SessionStateError):
        await session.abort()


async def test_resume_skips_resolver_and_reemits_nothing(quiz, progress_store, scoreboard):
    session = quiz(progress_store=progress_store)
    await session.start()
    await session.select_winner("A")
    await session.next_round()
    await session.shutdown()
    history = scoreboard.history

    strategy = QuizStrategy([])
    strategy.resolve = AsyncMock()
    resumed = SessionController(
        quiz_config(),
        strategy,
        scoreboard,
        progress_store=progress_store,
        settings=session.settings,
        session_id=session.session_id,
    )
    snapshot = await resumed.start()

    strategy.resolve.assert_not_awaited()
    assert snapshot.current_index == 1
    assert [r.id for r in resumed.sequencer.rounds] == [r.id for r in session.sequencer.rounds]
    assert resumed.ledger.final_scores() == {"A": 2}
    assert scoreboard.history == history

    await resumed.next_round()
    await resumed.next_round()
    assert resumed.outcome.final_scores == {"A": 2, "B": 0}
    assert await progress_store.load_progress(session.session_id) is None


async def test_cannot_start_twice(quiz):
    session = quiz()
    await session.start()

    with pytest.raises(SessionStateError):
        await session.start()


async def test_fallback_rounds_are_disclosed(settings, scoreboard):
    resolver = AsyncMock(spec=MediaResolver)
    resolver.resolve.return_value = ResolvedRounds(items=[song(1)], requested=3, is_fallback=True)
    session = SessionController(
        audio_config(), AudioGuessStrategy(resolver), scoreboard, settings=settings
    )

    snapshot = await session.start()

    assert session.is_fallback
    assert snapshot.is_fallback
    assert session.events.events_of(EventType.SESSION_START)[0].data["is_fallback"] is True
    await session.abort()
