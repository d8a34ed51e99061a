"""Engine package - runs challenge sessions."""

from partygame.engine.ledger import ScoreSink, ScoringLedger
from partygame.engine.manager import SessionManager, get_session_manager
from partygame.engine.media import MediaHandle, SignalledMedia, StaticMedia
from partygame.engine.playback import PlaybackController
from partygame.engine.resolver import MediaResolver, parse_playlist_reference
from partygame.engine.sequencer import SESSION_COMPLETE, RoundSequencer
from partygame.engine.session import SessionController
from partygame.engine.strategies import (
    AudioGuessStrategy,
    ChallengeStrategy,
    QuizStrategy,
)

__all__ = [
    # Scoring
    "ScoreSink",
    "ScoringLedger",
    # Sessions
    "SessionController",
    "SessionManager",
    "get_session_manager",
    # Rounds
    "RoundSequencer",
    "SESSION_COMPLETE",
    "PlaybackController",
    # Media
    "MediaHandle",
    "SignalledMedia",
    "StaticMedia",
    "MediaResolver",
    "parse_playlist_reference",
    # Strategies
    "AudioGuessStrategy",
    "ChallengeStrategy",
    "QuizStrategy",
]
