"""SSE streaming of broadcast events to the desktop front-end."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator

from starlette.responses import StreamingResponse

if TYPE_CHECKING:
    from openworld.engine_spine.broadcaster import EventBroadcaster

logger = logging.getLogger(__name__)


async def sse_event_generator(
    broadcaster: "EventBroadcaster",
    event_types: set[str] | None = None,
) -> AsyncIterator[str]:
    """Generate SSE events for streaming.

    Args:
        broadcaster: Event broadcaster for live events
        event_types: Optional filter on event_type

    Yields:
        SSE-formatted event strings
    """
    connection = broadcaster.add_connection()
    logger.debug(f"SSE connection established: {connection.id}")

    try:
        async for event in broadcaster.get_events(connection, timeout=30.0):
            if event_types and event.get("event_type") not in event_types:
                continue
            yield format_sse_event(event)
    except asyncio.CancelledError:
        logger.debug(f"SSE connection cancelled: {connection.id}")
        raise
    finally:
        broadcaster.remove_connection(connection.id)
        logger.debug(f"SSE connection closed: {connection.id}")


def format_sse_event(event: dict[str, Any]) -> str:
    """Format event as SSE message.

    Format:
        event: <event_type>
        id: <sequence_number>
        data: <payload json>
    """
    event_type = event.get("event_type", "message")
    sequence = event.get("sequence_number", 0)
    data = json.dumps(event.get("payload", {}), default=str)

    lines = [
        f"event: {event_type}",
        f"id: {sequence}",
        f"data: {data}",
        "",
        "",
    ]
    return "\n".join(lines)


def create_sse_response(
    broadcaster: "EventBroadcaster",
    event_types: set[str] | None = None,
) -> StreamingResponse:
    """Create SSE streaming response."""
    return StreamingResponse(
        sse_event_generator(broadcaster, event_types),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
