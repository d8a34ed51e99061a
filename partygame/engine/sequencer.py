"""Round sequencing."""

import logging

from partygame.lib.exceptions import NotEnoughRoundsError, SessionStateError
from partygame.lib.models import Round

logger = logging.getLogger(__name__)


class _SessionComplete:
    """Terminal marker returned once every round has been passed."""

    _instance: "_SessionComplete | None" = None

    def __new__(cls) -> "_SessionComplete":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SESSION_COMPLETE"

    def __bool__(self) -> bool:
        return False


SESSION_COMPLETE = _SessionComplete()


class RoundSequencer:
    """
    Owns the ordered rounds and the current-round cursor.

    The cursor only moves forward. `current_index == len(rounds)` is the
    completed state and is reached exactly once.
    """

    def __init__(self) -> None:
        self._rounds: list[Round] = []
        self._index = 0

    def load(self, rounds: list[Round], start_index: int = 0) -> None:
        """
        Load the round set, optionally restarting from a saved index.

        Raises:
            NotEnoughRoundsError: If `rounds` is empty
        """
        if not rounds:
            raise NotEnoughRoundsError()
        if not 0 <= start_index <= len(rounds):
            raise SessionStateError(
                f"Start index {start_index} outside 0..{len(rounds)}"
            )
        self._rounds = list(rounds)
        self._index = start_index
        logger.debug(f"Loaded {len(rounds)} rounds at index {start_index}")

    @property
    def rounds(self) -> list[Round]:
        return list(self._rounds)

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def total(self) -> int:
        return len(self._rounds)

    @property
    def is_complete(self) -> bool:
        return bool(self._rounds) and self._index >= len(self._rounds)

    def current(self) -> Round:
        """The round under the cursor."""
        if not self._rounds:
            raise SessionStateError("No rounds loaded")
        if self.is_complete:
            raise SessionStateError("Session is complete, there is no current round")
        return self._rounds[self._index]

    def has_next(self) -> bool:
        """Whether a round follows the current one."""
        return self._index + 1 < len(self._rounds)

    def advance(self) -> Round | _SessionComplete:
        """Move past the current round."""
        if self.is_complete:
            raise SessionStateError("Cannot advance a completed session")
        self._index += 1
        if self._index == len(self._rounds):
            return SESSION_COMPLETE
        return self._rounds[self._index]

    def skip(self) -> Round | _SessionComplete:
        """Mark the current round unplayable and move past it."""
        self.current().unplayable = True
        return self.advance()
