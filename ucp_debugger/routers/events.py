import asyncio
import logging
from typing import AsyncGenerator, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from ucp_debugger.config import Settings
from ucp_debugger.dependencies import get_channel, get_settings
from ucp_debugger.services.broadcast import EventChannel, Observer, connected_event

logger = logging.getLogger(__name__)

router = APIRouter()

KEEPALIVE_FRAME = ": keepalive\n\n"


async def event_stream(
    channel: EventChannel,
    keepalive_seconds: float,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncGenerator[str, None]:
    """
    Yield SSE frames for one observer until the client goes away.

    The observer is attached on first iteration, so a response that is never
    streamed never holds a slot on the channel.
    """
    observer = channel.attach(Observer())
    logger.info("Event stream opened (%d observers)", channel.count)
    try:
        yield connected_event()
        while True:
            if is_disconnected is not None and await is_disconnected():
                break
            try:
                yield await observer.receive(timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield KEEPALIVE_FRAME
    finally:
        channel.detach(observer)
        logger.info("Event stream closed (%d observers)", channel.count)


@router.get("/events")
async def stream_events(
    request: Request,
    channel: EventChannel = Depends(get_channel),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    """
    Live event stream (Server-Sent Events).

    First frame is {"type": "connected", "timestamp": ...}; afterwards one
    `data:` frame per store mutation or webhook delivery, from the moment of
    connection onward (no history replay).
    """
    return StreamingResponse(
        event_stream(
            channel,
            settings.get_sse_keepalive_seconds(),
            request.is_disconnected,
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
