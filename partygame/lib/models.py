"""Pydantic models for the party game engine."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Enums
# =============================================================================


class ChallengeKind(str, Enum):
    """Round content type a session is built from."""

    AUDIO_GUESS = "audio_guess"  # Streaming preview clips
    QUIZ = "quiz"  # Authored questions


class ParticipantType(str, Enum):
    """Who competes in a session."""

    PLAYER = "player"
    TEAM = "team"


class PlaybackState(str, Enum):
    """Per-round playback state."""

    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"
    REVEALED = "revealed"


class SessionStatus(str, Enum):
    """Session lifecycle status."""

    INITIALIZING = "initializing"
    ACTIVE = "active"
    COMPLETED = "completed"
    ABORTED = "aborted"


class DefaultWinnerPolicy(str, Enum):
    """What happens to a round nobody was selected for."""

    NONE = "none"  # Unscored round awards nobody
    FIRST_CANDIDATE = "first_candidate"  # Credit the first candidate in scope


# =============================================================================
# Round Content
# =============================================================================


class QuizOption(BaseModel):
    """An answer option for a quiz question."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    text: str = Field(default="")
    is_correct: bool = Field(default=False)


class RoundItem(BaseModel):
    """Opaque content of one round: a preview clip or a quiz question."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(description="Provider or author identifier")
    prompt: str = Field(default="", description="Question text or track title")
    answer: str = Field(default="", description="What is shown on reveal")
    artist: str = Field(default="", description="Performing artist(s)")
    media_url: str | None = Field(default=None, description="Playable media location")
    artwork_url: str = Field(default="", description="Album art or question image")
    options: list[QuizOption] = Field(default_factory=list)
    points: int | None = Field(
        default=None, ge=1, description="Overrides points per round when set"
    )


class Round(BaseModel):
    """One unit of a session. Only `revealed` and `unplayable` change after creation."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    item: RoundItem
    duration_seconds: float = Field(default=30.0, gt=0)
    revealed: bool = Field(default=False)
    unplayable: bool = Field(default=False)


class ResolvedRounds(BaseModel):
    """Round items produced by a resolver."""

    items: list[RoundItem] = Field(default_factory=list)
    requested: int = Field(default=0)
    is_fallback: bool = Field(
        default=False, description="Built-in sample data, must be disclosed"
    )


class RawItem(BaseModel):
    """A candidate returned by a media provider before filtering."""

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    name: str = ""
    artist: str = ""
    album: str = ""
    artwork_url: str = ""
    preview_url: str | None = None
    duration_ms: int = 0

    def to_round_item(self) -> RoundItem:
        return RoundItem(
            id=self.id or "",
            prompt=self.name,
            answer=f"{self.name} - {self.artist}" if self.artist else self.name,
            artist=self.artist,
            media_url=self.preview_url,
            artwork_url=self.artwork_url,
        )


# =============================================================================
# Scoring
# =============================================================================


class ParticipantScope(BaseModel):
    """Participants eligible to win rounds."""

    type: ParticipantType = Field(default=ParticipantType.PLAYER)
    candidate_ids: list[str] = Field(default_factory=list)


class ScoreEntry(BaseModel):
    """Ledger record for a round. A None awardee means nobody scored."""

    round_id: str
    awardee_id: str | None = None
    points: int = Field(default=0, ge=0)


class SessionOutcome(BaseModel):
    """Aggregate result of a completed session."""

    final_scores: dict[str, int] = Field(default_factory=dict)
    winners: list[str] = Field(default_factory=list, description="All tied leaders")
    winner_id: str | None = Field(default=None, description="Set only without a tie")
    rounds_played: int = Field(default=0)
    rounds_skipped: int = Field(default=0)


# =============================================================================
# Session Configuration & Persistence
# =============================================================================


class SessionConfig(BaseModel):
    """Everything needed to construct a session."""

    kind: ChallengeKind = Field(default=ChallengeKind.AUDIO_GUESS)
    source_ref: str = Field(default="", description="Playlist URL/URI/id for audio rounds")
    desired_count: int = Field(default=5, ge=1)
    points_per_round: int = Field(default=1, ge=1)
    duration_seconds: float = Field(default=30.0, gt=0)
    scope: ParticipantScope = Field(default_factory=ParticipantScope)
    default_winner_policy: DefaultWinnerPolicy = Field(default=DefaultWinnerPolicy.NONE)


class SavedState(BaseModel):
    """Resume snapshot written by the persistence service."""

    session_id: UUID
    config: SessionConfig
    current_index: int = Field(default=0, ge=0)
    rounds: list[Round] = Field(default_factory=list)
    ledger: list[ScoreEntry] = Field(default_factory=list)
    closed_rounds: list[str] = Field(default_factory=list)
    is_fallback: bool = Field(default=False)
    saved_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# Events
# =============================================================================


class SessionEvent(BaseModel):
    """Event emitted to the UI, with sequencing for reconnects."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    sequence: int = Field(description="Monotonic counter for recovery")
    event_type: str = Field(description="Event type")
    data: dict[str, Any] = Field(default_factory=dict)
    round_index: int = Field(default=0, description="Round the event belongs to")
    timestamp: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# API Request/Response Models
# =============================================================================


class StartSessionRequest(BaseModel):
    """Request to start a challenge session."""

    kind: ChallengeKind = Field(default=ChallengeKind.AUDIO_GUESS)
    source_ref: str = Field(default="")
    questions: list[RoundItem] = Field(
        default_factory=list, description="Quiz questions, in play order"
    )
    desired_count: int = Field(default=5, ge=1)
    points_per_round: int | None = Field(default=None, ge=1)
    duration_seconds: float | None = Field(default=None, gt=0)
    scope: ParticipantScope = Field(default_factory=ParticipantScope)
    default_winner_policy: DefaultWinnerPolicy = Field(default=DefaultWinnerPolicy.NONE)
    session_id: UUID | None = Field(
        default=None, description="Resume this session if progress was saved"
    )


class SelectWinnerRequest(BaseModel):
    """Request to select (or clear, with null) the current round's winner."""

    participant_id: str | None = None


class MediaErrorRequest(BaseModel):
    """Client player report of a media failure."""

    reason: str = Field(default="")
    autoplay_blocked: bool = Field(default=False)


class RoundView(BaseModel):
    """Round as exposed to clients. The answer is hidden until reveal."""

    index: int
    id: str
    prompt: str
    media_url: str | None
    artwork_url: str
    options: list[str]
    duration_seconds: float
    revealed: bool
    answer: str | None = None


class SessionSnapshot(BaseModel):
    """Current session state for clients."""

    session_id: UUID
    kind: ChallengeKind
    status: SessionStatus
    current_index: int
    total_rounds: int
    is_fallback: bool
    playback_state: PlaybackState | None = None
    progress: float = 0.0
    current_round: RoundView | None = None
    current_winner: str | None = None
    scores: dict[str, int] = Field(default_factory=dict)
    outcome: SessionOutcome | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
