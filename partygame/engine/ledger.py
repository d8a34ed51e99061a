"""Per-round scoring ledger."""

import logging
from collections import defaultdict
from typing import Protocol

from partygame.lib.exceptions import LedgerClosedError
from partygame.lib.models import ScoreEntry

logger = logging.getLogger(__name__)


class ScoreSink(Protocol):
    """Authoritative player/team score store."""

    def apply_delta(self, participant_id: str, signed_points: int) -> None: ...


class ScoringLedger:
    """
    Records who (if anyone) was credited for each round.

    Guarantees:
    - Awarding the same participant twice credits them once
    - Changing the winner revokes the old credit before crediting the new one
    - Every effective change sends exactly one signed delta per participant
      to the sink, never a zero delta
    - final_scores() always equals the deltas actually sent
    """

    def __init__(self, sink: ScoreSink, points_per_round: int):
        if points_per_round < 1:
            raise ValueError("points_per_round must be positive")
        self.sink = sink
        self.points_per_round = points_per_round
        self._entries: dict[str, ScoreEntry] = {}
        self._closed: set[str] = set()
        self._emitted: dict[str, int] = defaultdict(int)

    # =========================================================================
    # Commands
    # =========================================================================

    def award(self, round_id: str, participant_id: str, points: int | None = None) -> bool:
        """
        Credit `participant_id` for `round_id`.

        Args:
            round_id: Round being scored
            participant_id: Winner
            points: Round value; defaults to points_per_round

        Returns:
            True if the ledger changed, False for a repeated award
        """
        self._ensure_open(round_id)
        value = points if points is not None else self.points_per_round

        existing = self._entries.get(round_id)
        if existing and existing.awardee_id == participant_id:
            return False

        # Swap the entry first so readers never see both participants credited
        self._entries[round_id] = ScoreEntry(
            round_id=round_id, awardee_id=participant_id, points=value
        )
        if existing and existing.awardee_id is not None:
            self._emit(existing.awardee_id, -existing.points)
        self._emit(participant_id, value)

        logger.info(f"Round {round_id}: awarded {value} to {participant_id}")
        return True

    def revoke(self, round_id: str) -> bool:
        """
        Remove any credit for `round_id`.

        Returns:
            True if a credit was removed, False if there was nothing to revoke
        """
        self._ensure_open(round_id)

        existing = self._entries.get(round_id)
        if existing is None or existing.awardee_id is None:
            return False

        self._entries[round_id] = ScoreEntry(round_id=round_id, awardee_id=None, points=0)
        self._emit(existing.awardee_id, -existing.points)

        logger.info(f"Round {round_id}: revoked {existing.points} from {existing.awardee_id}")
        return True

    def close(self, round_id: str) -> ScoreEntry:
        """Freeze the round's entry, recording "nobody scored" if it has none."""
        entry = self._entries.get(round_id)
        if entry is None:
            entry = ScoreEntry(round_id=round_id, awardee_id=None, points=0)
            self._entries[round_id] = entry
        self._closed.add(round_id)
        return entry

    # =========================================================================
    # Queries
    # =========================================================================

    def entry_for(self, round_id: str) -> ScoreEntry | None:
        return self._entries.get(round_id)

    def is_closed(self, round_id: str) -> bool:
        return round_id in self._closed

    def final_scores(self) -> dict[str, int]:
        """Aggregate score per credited participant, derived from entries."""
        totals: dict[str, int] = defaultdict(int)
        for entry in self._entries.values():
            if entry.awardee_id is not None:
                totals[entry.awardee_id] += entry.points
        return dict(totals)

    def emitted_totals(self) -> dict[str, int]:
        """Net deltas sent to the sink per participant, zero totals omitted."""
        return {pid: total for pid, total in self._emitted.items() if total != 0}

    # =========================================================================
    # Persistence
    # =========================================================================

    def snapshot(self) -> list[ScoreEntry]:
        return [entry.model_copy() for entry in self._entries.values()]

    @property
    def closed_rounds(self) -> list[str]:
        return sorted(self._closed)

    def restore(self, entries: list[ScoreEntry], closed_rounds: list[str]) -> None:
        """
        Reload entries from a saved snapshot.

        The sink already holds these credits, so nothing is re-emitted; the
        emitted totals are rebuilt to match.
        """
        self._entries = {entry.round_id: entry.model_copy() for entry in entries}
        self._closed = set(closed_rounds)
        self._emitted = defaultdict(int, self.final_scores())

    # =========================================================================
    # Internals
    # =========================================================================

    def _ensure_open(self, round_id: str) -> None:
        if round_id in self._closed:
            raise LedgerClosedError(round_id)

    def _emit(self, participant_id: str, signed_points: int) -> None:
        if signed_points == 0:
            return
        self._emitted[participant_id] += signed_points
        try:
            self.sink.apply_delta(participant_id, signed_points)
        except Exception as e:
            # Delivery is the sink's concern; the ledger stays authoritative
            logger.error(f"Score sink rejected {signed_points:+d} for {participant_id}: {e}")
