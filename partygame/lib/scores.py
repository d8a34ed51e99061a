"""In-memory player/team score store."""

import logging
from collections import defaultdict, deque

logger = logging.getLogger(__name__)


class Scoreboard:
    """
    Running totals for players and teams.

    Implements the ScoreSink interface the scoring ledger reports to. Totals
    are shared across sessions of the same game, so the engine only ever
    sends signed deltas and never reads totals back.
    """

    def __init__(self, history_limit: int = 1000) -> None:
        self._totals: dict[str, int] = defaultdict(int)
        self._history: deque[tuple[str, int]] = deque(maxlen=history_limit)

    def apply_delta(self, participant_id: str, signed_points: int) -> None:
        """Add `signed_points` to the participant's total."""
        self._totals[participant_id] += signed_points
        self._history.append((participant_id, signed_points))
        logger.debug(
            f"Score {participant_id}: {signed_points:+d} -> {self._totals[participant_id]}"
        )

    def total(self, participant_id: str) -> int:
        return self._totals.get(participant_id, 0)

    def snapshot(self) -> dict[str, int]:
        return dict(self._totals)

    @property
    def history(self) -> list[tuple[str, int]]:
        """The most recent deltas applied, oldest first."""
        return list(self._history)

    def reset(self) -> None:
        self._totals.clear()
        self._history.clear()


# =============================================================================
# Module-level scoreboard
# =============================================================================


_default_scoreboard: Scoreboard | None = None


def get_scoreboard() -> Scoreboard:
    """Get the default scoreboard instance."""
    global _default_scoreboard
    if _default_scoreboard is None:
        _default_scoreboard = Scoreboard()
    return _default_scoreboard
