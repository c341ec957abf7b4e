"""Server-Sent Events framing for chat streams.

One event becomes one ``data: <json>\\n\\n`` frame, written through the
transport before the next event is accepted. After a terminal event
(``done`` or ``error``) the framer is closed. ``EventStreamResponse`` drives
a ``StreamFramer`` over the ASGI send channel.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterable, Awaitable, Callable, Dict, Optional

from fastapi.responses import StreamingResponse

from agent_gateway.exceptions import StreamClosedError, TransportClosedError

from .events import BaseStreamEvent

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

SSE_MEDIA_TYPE = "text/event-stream"

FrameWriter = Callable[[str], Awaitable[None]]


def encode_event(event: BaseStreamEvent) -> str:
    """Serialize an event into one SSE frame."""
    payload = json.dumps(event.to_dict(), ensure_ascii=False, separators=(",", ":"))
    return f"data: {payload}\n\n"


class StreamFramer:
    """Writes events to a transport in order, one flushed frame per event.

    ``writer`` is an async callable that hands a frame to the transport and
    returns once it has been sent. Any exception it raises is treated as the
    client having gone away.
    """

    def __init__(self, writer: Optional[FrameWriter] = None):
        self._writer = writer
        self._closed = False
        self.frames_written = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _accept(self, event: BaseStreamEvent) -> str:
        if self._closed:
            raise StreamClosedError(
                f"Cannot write '{event.type}' event: stream already terminated"
            )
        if event.terminal:
            self._closed = True
        self.frames_written += 1
        return encode_event(event)

    async def emit(self, event: BaseStreamEvent) -> None:
        if self._writer is None:
            raise RuntimeError("StreamFramer.emit() needs a writer")
        frame = self._accept(event)
        try:
            await self._writer(frame)
        except (StreamClosedError, TransportClosedError):
            raise
        except Exception as e:
            self._closed = True
            raise TransportClosedError(f"Client transport closed: {e}") from e


class EventStreamResponse(StreamingResponse):
    """SSE response that writes each event through ``StreamFramer.emit``.

    Every frame is its own ``http.response.body`` message, so the event
    source is only asked for the next event once the previous frame was
    handed to the server. A failed write means the client is gone: the
    event source is closed and the response ends without another frame.
    """

    def __init__(
        self,
        events: AsyncIterable[BaseStreamEvent],
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(
            content=events,
            status_code=status_code,
            headers={**SSE_HEADERS, **(headers or {})},
            media_type=SSE_MEDIA_TYPE,
        )
        self.framer: Optional[StreamFramer] = None

    async def stream_response(self, send) -> None:
        await send({
            "type": "http.response.start",
            "status": self.status_code,
            "headers": self.raw_headers,
        })

        async def write(frame: str) -> None:
            await send({
                "type": "http.response.body",
                "body": frame.encode("utf-8"),
                "more_body": True,
            })

        self.framer = StreamFramer(write)
        events = self.body_iterator
        try:
            async for event in events:
                await self.framer.emit(event)
        except TransportClosedError as e:
            logger.info(
                "Client went away after %d frames: %s", self.framer.frames_written, e
            )
            return
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()

        await send({"type": "http.response.body", "body": b"", "more_body": False})
