"""Scoring ledger tests."""

import logging
import random

import pytest

from partygame.engine.ledger import ScoringLedger
from partygame.lib.exceptions import LedgerClosedError
from partygame.lib.models import ScoreEntry


@pytest.fixture
def ledger(scoreboard) -> ScoringLedger:
    return ScoringLedger(scoreboard, points_per_round=1)


def test_award_twice_credits_once(ledger, scoreboard):
    assert ledger.award("r1", "A") is True
    assert ledger.award("r1", "A") is False

    assert scoreboard.history == [("A", 1)]
    assert ledger.final_scores() == {"A": 1}


def test_revoke_reverses_award(ledger, scoreboard):
    ledger.award("r1", "A")
    assert ledger.revoke("r1") is True

    assert scoreboard.history == [("A", 1), ("A", -1)]
    assert ledger.final_scores() == {}
    assert ledger.emitted_totals() == {}
    assert ledger.entry_for("r1").awardee_id is None


def test_revoke_without_award_is_noop(ledger, scoreboard):
    assert ledger.revoke("r1") is False
    ledger.award("r1", "A")
    ledger.revoke("r1")
    assert ledger.revoke("r1") is False

    assert scoreboard.history == [("A", 1), ("A", -1)]


def test_changing_winner_moves_the_point(ledger, scoreboard):
    ledger.award("r1", "A")
    ledger.award("r1", "B")

    assert scoreboard.history == [("A", 1), ("A", -1), ("B", 1)]
    assert ledger.final_scores() == {"B": 1}
    assert scoreboard.snapshot() == {"A": 0, "B": 1}


def test_round_points_override_default(scoreboard):
    ledger = ScoringLedger(scoreboard, points_per_round=2)
    ledger.award("r1", "A")
    ledger.award("r2", "A", points=5)
    ledger.award("r2", "B", points=5)

    assert ledger.final_scores() == {"A": 2, "B": 5}
    assert scoreboard.history[-2:] == [("A", -5), ("B", 5)]


def test_final_scores_always_match_emitted(ledger, scoreboard):
    rng = random.Random(7)
    rounds = [f"r{i}" for i in range(6)]
    people = ["A", "B", "C", None]

    for _ in range(200):
        round_id = rng.choice(rounds)
        who = rng.choice(people)
        if who is None:
            ledger.revoke(round_id)
        else:
            ledger.award(round_id, who)
        assert ledger.final_scores() == ledger.emitted_totals()

    assert all(delta != 0 for _, delta in scoreboard.history)
    sink_totals = {pid: total for pid, total in scoreboard.snapshot().items() if total}
    assert sink_totals == ledger.final_scores()


def test_closed_round_is_frozen(ledger):
    ledger.award("r1", "A")
    entry = ledger.close("r1")

    assert entry.awardee_id == "A"
    assert ledger.is_closed("r1")
    with pytest.raises(LedgerClosedError):
        ledger.award("r1", "B")
    with pytest.raises(LedgerClosedError):
        ledger.revoke("r1")


def test_close_records_nobody_scored(ledger, scoreboard):
    entry = ledger.close("r1")

    assert entry == ScoreEntry(round_id="r1", awardee_id=None, points=0)
    assert scoreboard.history == []


def test_sink_failure_is_logged_and_ledger_kept(caplog):
    class BrokenSink:
        def apply_delta(self, participant_id, signed_points):
            raise RuntimeError("offline")

    ledger = ScoringLedger(BrokenSink(), points_per_round=1)
    with caplog.at_level(logging.ERROR):
        assert ledger.award("r1", "A") is True

    assert ledger.final_scores() == {"A": 1}
    assert "offline" in caplog.text


def test_restore_does_not_reemit(scoreboard):
    original = ScoringLedger(scoreboard, points_per_round=1)
    original.award("r1", "A")
    original.award("r2", "B")
    original.close("r1")

    scoreboard.reset()
    restored = ScoringLedger(scoreboard, points_per_round=1)
    restored.restore(original.snapshot(), original.closed_rounds)

    assert scoreboard.history == []
    assert restored.final_scores() == {"A": 1, "B": 1}
    assert restored.emitted_totals() == {"A": 1, "B": 1}
    assert restored.is_closed("r1")

    restored.revoke("r2")
    assert scoreboard.history == [("B", -1)]


def test_points_per_round_must_be_positive(scoreboard):
    with pytest.raises(ValueError):
        ScoringLedger(scoreboard, points_per_round=0)
