"""Session lifecycle endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends

from partygame.engine.manager import SessionManager, get_session_manager
from partygame.lib.models import SessionSnapshot, StartSessionRequest

router = APIRouter()


@router.post("/sessions", response_model=SessionSnapshot, status_code=201)
async def start_session(
    request: StartSessionRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionSnapshot:
    """
    Start a challenge session, or resume one when `session_id` has saved
    progress. Any other active session is aborted.
    """
    controller = await manager.start(request)
    return controller.snapshot()


@router.get("/sessions/{session_id}", response_model=SessionSnapshot)
async def get_session(
    session_id: UUID,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionSnapshot:
    """Get current session state."""
    return manager.get(session_id).snapshot()


@router.delete("/sessions/{session_id}", response_model=SessionSnapshot)
async def abort_session(
    session_id: UUID,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionSnapshot:
    """Abort a session and discard its saved progress."""
    controller = await manager.abort(session_id)
    return controller.snapshot()
