"""Session event streaming.

Provides sequenced event building, per-session fan-out to SSE subscribers with
heartbeats, and replay of missed events for reconnecting clients.
"""

import asyncio
import json
import logging
from collections import deque
from typing import Any, AsyncIterator
from uuid import UUID

from partygame.lib.models import SessionEvent

logger = logging.getLogger(__name__)


# =============================================================================
# Event Types
# =============================================================================


class EventType:
    """Session event type constants."""

    # Session lifecycle
    SESSION_START = "session_start"
    SESSION_COMPLETED = "session_completed"
    SESSION_ABORTED = "session_aborted"

    # Rounds
    ROUND_CHANGED = "round_changed"
    PLAYBACK_STATE_CHANGED = "playback_state_changed"
    REVEALED = "revealed"
    WINNER_CHANGED = "winner_changed"
    PLAYBACK_NOTICE = "playback_notice"
    MEDIA_RELOAD = "media_reload"

    # Keep-alive
    HEARTBEAT = "heartbeat"


TERMINAL_EVENTS = {EventType.SESSION_COMPLETED, EventType.SESSION_ABORTED}


# =============================================================================
# Event Builder
# =============================================================================


class EventBuilder:
    """Builder for session events with automatic sequencing."""

    def __init__(self, session_id: UUID):
        self.session_id = session_id
        self._sequence = 0

    def build(
        self,
        event_type: str,
        data: dict[str, Any] | None = None,
        round_index: int = 0,
    ) -> SessionEvent:
        """Build an event with the next sequence number."""
        self._sequence += 1
        return SessionEvent(
            sequence=self._sequence,
            event_type=event_type,
            data=data or {},
            round_index=round_index,
        )

    def heartbeat(self) -> SessionEvent:
        """Heartbeats are not sequenced, so replay never includes them."""
        return SessionEvent(
            sequence=self._sequence,
            event_type=EventType.HEARTBEAT,
            data={"session_id": str(self.session_id)},
        )


# =============================================================================
# SSE Formatting
# =============================================================================


def to_sse_message(event: SessionEvent) -> dict[str, Any]:
    """Convert an event to the message dict EventSourceResponse sends."""
    message: dict[str, Any] = {
        "event": event.event_type,
        "data": json.dumps(event.model_dump(mode="json")),
    }
    if event.event_type != EventType.HEARTBEAT:
        # Sequence doubles as the SSE id so Last-Event-ID can be replayed
        message["id"] = str(event.sequence)
    return message


def parse_last_event_id(value: str | None) -> int:
    """Sequence number from a Last-Event-ID header, 0 when absent or invalid."""
    if not value:
        return 0
    try:
        return max(int(value), 0)
    except ValueError:
        logger.warning(f"Ignoring malformed Last-Event-ID: {value!r}")
        return 0


# =============================================================================
# Event Hub
# =============================================================================


class EventHub:
    """
    Publishes one session's events.

    Keeps a bounded history for reconnects and fans every event out to the
    currently connected streams. Publishing never blocks on slow clients.
    """

    def __init__(self, session_id: UUID, history_limit: int = 500):
        self.session_id = session_id
        self.builder = EventBuilder(session_id)
        self._history: deque[SessionEvent] = deque(maxlen=history_limit)
        self._streams: set["EventStream"] = set()
        self._closed = False

    @property
    def history(self) -> list[SessionEvent]:
        return list(self._history)

    @property
    def closed(self) -> bool:
        return self._closed

    def events_of(self, event_type: str) -> list[SessionEvent]:
        """Past events of one type, oldest first."""
        return [e for e in self._history if e.event_type == event_type]

    def history_after(self, sequence: int) -> list[SessionEvent]:
        """Events a client that last saw `sequence` has missed."""
        return [e for e in self._history if e.sequence > sequence]

    async def publish(
        self,
        event_type: str,
        data: dict[str, Any] | None = None,
        round_index: int = 0,
    ) -> SessionEvent | None:
        """Build, record and broadcast an event."""
        if self._closed:
            logger.debug(f"Dropping {event_type} for closed session {self.session_id}")
            return None

        event = self.builder.build(event_type, data, round_index)
        self._history.append(event)
        for stream in list(self._streams):
            stream.push(event)

        if event_type in TERMINAL_EVENTS:
            await self.close()
        return event

    def subscribe(
        self, last_sequence: int = 0, heartbeat_interval: float = 15.0
    ) -> "EventStream":
        """Open a stream, pre-filled with the events after `last_sequence`."""
        stream = EventStream(self, heartbeat_interval)
        for event in self.history_after(last_sequence):
            stream.push(event)
        if self._closed:
            stream.finish()
        else:
            self._streams.add(stream)
        return stream

    def unsubscribe(self, stream: "EventStream") -> None:
        self._streams.discard(stream)

    async def close(self) -> None:
        """End every open stream. Later publishes are dropped."""
        self._closed = True
        for stream in list(self._streams):
            stream.finish()
        self._streams.clear()


# =============================================================================
# Event Stream
# =============================================================================


class EventStream:
    """
    Async iterator over one subscriber's events.

    Supports:
    - Automatic heartbeats
    - Replay of missed events on subscribe
    - Ending when the session ends
    """

    def __init__(self, hub: EventHub, heartbeat_interval: float = 15.0):
        self.hub = hub
        self.heartbeat_interval = heartbeat_interval
        self._queue: asyncio.Queue[SessionEvent | None] = asyncio.Queue()
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._finished = False

    def push(self, event: SessionEvent) -> None:
        if not self._finished:
            self._queue.put_nowait(event)

    def finish(self) -> None:
        if not self._finished:
            self._finished = True
            self._queue.put_nowait(None)

    async def close(self) -> None:
        """Stop heartbeats and detach from the hub."""
        self.hub.unsubscribe(self)
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None

    async def _heartbeat_loop(self) -> None:
        """Send periodic heartbeats."""
        try:
            while not self._finished:
                await asyncio.sleep(self.heartbeat_interval)
                if not self._finished:
                    self._queue.put_nowait(self.hub.builder.heartbeat())
        except asyncio.CancelledError:
            pass

    async def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        """Iterate over SSE message dicts."""
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        try:
            while True:
                event = await self._queue.get()
                if event is None:
                    break
                yield to_sse_message(event)
        finally:
            await self.close()
