"""Session registry for the API.

A game instance runs at most one active session at a time; starting a new
one aborts whatever was running.
"""

import logging
from uuid import UUID

from partygame.config import Settings, get_settings
from partygame.lib.exceptions import SessionNotFoundError
from partygame.lib.models import (
    ChallengeKind,
    SessionConfig,
    SessionStatus,
    StartSessionRequest,
)
from partygame.lib.persistence import ProgressStore
from partygame.lib.provider import MediaProvider, PreviewFinder, SpotifyProvider
from partygame.lib.scores import Scoreboard

from .resolver import MediaResolver
from .session import SessionController
from .strategies import AudioGuessStrategy, ChallengeStrategy, QuizStrategy

logger = logging.getLogger(__name__)


class SessionManager:
    """Creates, tracks and tears down session controllers."""

    def __init__(
        self,
        scoreboard: Scoreboard,
        progress_store: ProgressStore | None = None,
        provider: MediaProvider | None = None,
        preview_finder: PreviewFinder | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.scoreboard = scoreboard
        self.progress_store = progress_store
        self._owns_provider = provider is None
        self.provider = provider or SpotifyProvider(self.settings)
        if preview_finder is None and self._owns_provider and self.settings.enable_preview_lookup:
            preview_finder = PreviewFinder(self.settings)
        self.preview_finder = preview_finder
        self._sessions: dict[UUID, SessionController] = {}

    def build_config(self, request: StartSessionRequest) -> SessionConfig:
        """Fill request gaps from settings."""
        return SessionConfig(
            kind=request.kind,
            source_ref=request.source_ref,
            desired_count=request.desired_count,
            points_per_round=request.points_per_round or self.settings.points_per_round,
            duration_seconds=request.duration_seconds or self.settings.default_round_seconds,
            scope=request.scope,
            default_winner_policy=request.default_winner_policy,
        )

    def build_strategy(self, request: StartSessionRequest) -> ChallengeStrategy:
        if request.kind == ChallengeKind.QUIZ:
            return QuizStrategy(request.questions)
        resolver = MediaResolver(self.provider, self.settings, self.preview_finder)
        return AudioGuessStrategy(resolver)

    async def start(self, request: StartSessionRequest) -> SessionController:
        """
        Start (or resume) a session, replacing any active one.

        Raises:
            MediaFetchError: Rounds could not be resolved
            NotEnoughRoundsError: Nothing playable to start with
        """
        running = self._sessions.get(request.session_id) if request.session_id else None
        if running is not None and running.status == SessionStatus.ACTIVE:
            return running

        for existing in list(self._sessions.values()):
            if existing.status == SessionStatus.ACTIVE:
                await existing.abort("replaced by a new session")
            self._sessions.pop(existing.session_id, None)

        controller = SessionController(
            config=self.build_config(request),
            strategy=self.build_strategy(request),
            score_sink=self.scoreboard,
            progress_store=self.progress_store,
            settings=self.settings,
            session_id=request.session_id,
        )
        self._sessions[controller.session_id] = controller
        try:
            await controller.start()
        except Exception:
            self._sessions.pop(controller.session_id, None)
            raise
        return controller

    def get(self, session_id: UUID) -> SessionController:
        """
        Raises:
            SessionNotFoundError: If no such session is tracked
        """
        controller = self._sessions.get(session_id)
        if controller is None:
            raise SessionNotFoundError(str(session_id))
        return controller

    async def abort(self, session_id: UUID, reason: str = "aborted by host") -> SessionController:
        controller = self.get(session_id)
        if controller.status != SessionStatus.COMPLETED:
            await controller.abort(reason)
        self._sessions.pop(session_id, None)
        return controller

    async def shutdown(self) -> None:
        """Stop every session, keeping saved progress for resume."""
        for controller in list(self._sessions.values()):
            await controller.shutdown()
        self._sessions.clear()
        if self._owns_provider and isinstance(self.provider, SpotifyProvider):
            await self.provider.close()
        if self.preview_finder is not None:
            await self.preview_finder.close()
        logger.info("Session manager shut down")


# =============================================================================
# Module-level manager
# =============================================================================


_default_manager: SessionManager | None = None


def get_session_manager() -> SessionManager:
    """Get the default session manager. Created by the application lifespan."""
    if _default_manager is None:
        raise RuntimeError("Session manager not initialized")
    return _default_manager


def set_session_manager(manager: SessionManager | None) -> None:
    global _default_manager
    _default_manager = manager


async def close_session_manager() -> None:
    """Shut down the default session manager."""
    global _default_manager
    if _default_manager:
        await _default_manager.shutdown()
        _default_manager = None
