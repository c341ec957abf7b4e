"""Chat streaming endpoints.

POST /chat/stream                 – chat with the default agent
POST /agents/{agent_id}/chat/stream – chat with a specific agent

Both answer with an SSE stream:
conversationId (new conversations only) → chunk* → usage? → done,
or an ``error`` frame in place of everything after the failure.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

from fastapi import APIRouter, Request

from agent_gateway.exceptions import ClientInputError
from agent_gateway.gateway.chat_gateway import ChatStreamGateway
from agent_gateway.gateway.framer import EventStreamResponse
from agent_gateway.server.schemas import ChatRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

TIMEOUT_HEADER = "X-Request-Timeout"


def _request_timeout(request: Request) -> Optional[float]:
    """Caller deadline in seconds from the X-Request-Timeout header."""
    raw = request.headers.get(TIMEOUT_HEADER)
    if raw is None:
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ClientInputError(f"{TIMEOUT_HEADER} must be a number of seconds, got '{raw}'")
    if not math.isfinite(value) or value <= 0:
        raise ClientInputError(f"{TIMEOUT_HEADER} must be a positive number of seconds")
    return value


async def _stream_chat(request: Request, body: ChatRequest, agent_id: Optional[str]):
    gateway: ChatStreamGateway = request.app.state.gateway

    # Failures before the first byte get a regular problem response
    try:
        timeout = _request_timeout(request)
        prepared = await gateway.prepare(body, agent_id)
    except Exception as exc:
        return gateway.translator.error_response(exc)

    return EventStreamResponse(gateway.run(prepared, timeout))


@router.post("/chat/stream")
async def stream_chat(body: ChatRequest, request: Request):
    """Stream the default agent's answer as Server-Sent Events."""
    return await _stream_chat(request, body, agent_id=None)


@router.post("/agents/{agent_id}/chat/stream")
async def stream_agent_chat(agent_id: str, body: ChatRequest, request: Request):
    """Stream a specific agent's answer; its client is cached for later requests."""
    return await _stream_chat(request, body, agent_id=agent_id)
