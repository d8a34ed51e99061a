"""Round control endpoints: playback, reveal, scoring and client media signals."""

from uuid import UUID

from fastapi import APIRouter, Depends

from partygame.engine.manager import SessionManager, get_session_manager
from partygame.lib.models import MediaErrorRequest, SelectWinnerRequest, SessionSnapshot

router = APIRouter()


@router.post("/sessions/{session_id}/play", response_model=SessionSnapshot)
async def play(
    session_id: UUID,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionSnapshot:
    controller = manager.get(session_id)
    await controller.play()
    return controller.snapshot()


@router.post("/sessions/{session_id}/pause", response_model=SessionSnapshot)
async def pause(
    session_id: UUID,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionSnapshot:
    controller = manager.get(session_id)
    await controller.pause()
    return controller.snapshot()


@router.post("/sessions/{session_id}/restart", response_model=SessionSnapshot)
async def restart(
    session_id: UUID,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionSnapshot:
    controller = manager.get(session_id)
    await controller.restart()
    return controller.snapshot()


@router.post("/sessions/{session_id}/reveal", response_model=SessionSnapshot)
async def reveal(
    session_id: UUID,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionSnapshot:
    controller = manager.get(session_id)
    await controller.reveal()
    return controller.snapshot()


@router.post("/sessions/{session_id}/winner", response_model=SessionSnapshot)
async def select_winner(
    session_id: UUID,
    request: SelectWinnerRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionSnapshot:
    """Credit the current round to a participant, or clear it with null."""
    controller = manager.get(session_id)
    await controller.select_winner(request.participant_id)
    return controller.snapshot()


@router.post("/sessions/{session_id}/next", response_model=SessionSnapshot)
async def next_round(
    session_id: UUID,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionSnapshot:
    """Close the current round and move on. Completes after the last round."""
    controller = manager.get(session_id)
    return await controller.next_round()


@router.post("/sessions/{session_id}/media/ready")
async def media_ready(
    session_id: UUID,
    round_index: int | None = None,
    manager: SessionManager = Depends(get_session_manager),
) -> dict:
    """The client's player has loaded the round's media."""
    accepted = manager.get(session_id).media_ready(round_index)
    return {"session_id": str(session_id), "accepted": accepted}


@router.post("/sessions/{session_id}/media/error")
async def media_error(
    session_id: UUID,
    request: MediaErrorRequest,
    round_index: int | None = None,
    manager: SessionManager = Depends(get_session_manager),
) -> dict:
    """The client's player could not load or play the round's media."""
    accepted = manager.get(session_id).media_error(
        request.reason, request.autoplay_blocked, round_index
    )
    return {"session_id": str(session_id), "accepted": accepted}
