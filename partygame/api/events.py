"""Session event SSE endpoint."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from partygame.engine.manager import SessionManager, get_session_manager
from partygame.lib.streaming import parse_last_event_id

HEARTBEAT_INTERVAL = 10  # seconds

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/sessions/{session_id}/events")
async def session_events(
    session_id: UUID,
    request: Request,
    manager: SessionManager = Depends(get_session_manager),
) -> EventSourceResponse:
    """
    Stream session events via SSE.

    Supports reconnection via Last-Event-ID header: events after that
    sequence number are replayed first. The stream ends with the session.
    """
    controller = manager.get(session_id)
    last_sequence = parse_last_event_id(request.headers.get("Last-Event-ID"))
    stream = controller.events.subscribe(last_sequence, heartbeat_interval=HEARTBEAT_INTERVAL)

    async def event_generator():
        try:
            async for message in stream:
                if await request.is_disconnected():
                    logger.info(f"Client disconnected from session {session_id}")
                    break
                yield message
        finally:
            await stream.close()

    return EventSourceResponse(event_generator())
