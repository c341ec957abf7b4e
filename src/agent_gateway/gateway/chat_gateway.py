"""End-to-end orchestration of one streaming chat request.

Per request::

    Init ──▶ SessionResolved ──▶ ConversationResolved ──▶ Streaming ──▶ Completed
      │              │                     │                    │
      └──────────────┴─────────────────────┴────────────────────┴──▶ Failed

``prepare`` covers Init → SessionResolved (plus attachment validation) and
raises, so the HTTP layer can still answer with a plain error response.
``run`` covers the rest and reports every failure in-stream as a single
``error`` event. A cancelled request (client gone, deadline elapsed) emits
nothing further and closes the upstream run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional, Tuple

from agent_gateway.errors import ErrorTranslator
from agent_gateway.gateway.events import (
    ChunkEvent,
    ConversationStartedEvent,
    DoneEvent,
    ErrorEvent,
    StreamEvent,
    UsageEvent,
    UsageStats,
)
from agent_gateway.gateway.session_cache import AgentSessionCache
from agent_gateway.observability import Metrics, Tracer, global_metrics, global_tracer
from agent_gateway.runtime.base_client import AgentRuntimeClient
from agent_gateway.runtime.images import ImageAttachment, validate_image_attachments
from agent_gateway.server.schemas import ChatRequest

logger = logging.getLogger(__name__)

DEFAULT_AGENT_KEY = "__default__"


class DeadlineExceeded(Exception):
    """The caller-supplied deadline elapsed while waiting on the runtime."""
    pass


@dataclass
class PreparedChat:
    """A request whose runtime client is resolved and inputs validated."""
    request: ChatRequest
    agent_key: str
    client: AgentRuntimeClient
    images: List[ImageAttachment] = field(default_factory=list)

    @property
    def image_data_uris(self) -> Optional[List[str]]:
        return [img.data_uri for img in self.images] or None


class ChatStreamGateway:
    """Drives chat runs against the default agent or any cached named agent."""

    def __init__(
        self,
        default_client: AgentRuntimeClient,
        session_cache: AgentSessionCache,
        translator: Optional[ErrorTranslator] = None,
        *,
        tracer: Tracer = global_tracer,
        metrics: Metrics = global_metrics,
    ):
        self.default_client = default_client
        self.session_cache = session_cache
        self.translator = translator or ErrorTranslator()
        self._tracer = tracer
        self._metrics = metrics

    # ── Init → SessionResolved ───────────────────────────────────────────────

    async def resolve_client(self, agent_id: Optional[str]) -> Tuple[str, AgentRuntimeClient]:
        """Default binding for the sentinel key, cache lookup otherwise."""
        if agent_id is None or agent_id == DEFAULT_AGENT_KEY:
            return DEFAULT_AGENT_KEY, self.default_client
        return agent_id, await self.session_cache.get_or_create(agent_id)

    async def prepare(
        self, request: ChatRequest, agent_id: Optional[str] = None
    ) -> PreparedChat:
        if agent_id is None:
            logger.info("Chat request to default agent")
        else:
            logger.info("Chat request for agent: %s", agent_id)

        # base64 decode and Pillow verify are CPU bound
        images = await asyncio.to_thread(
            validate_image_attachments, request.image_attachments
        )
        agent_key, client = await self.resolve_client(agent_id)
        return PreparedChat(request=request, agent_key=agent_key, client=client, images=images)

    # ── ConversationResolved → Streaming → Completed | Failed ────────────────

    async def run(
        self, prepared: PreparedChat, timeout: Optional[float] = None
    ) -> AsyncIterator[StreamEvent]:
        request = prepared.request
        client = prepared.client
        deadline_at = None
        if timeout is not None:
            deadline_at = asyncio.get_running_loop().time() + timeout

        span = self._tracer.begin_span(
            "chat.stream",
            attributes={
                "chat.agent": prepared.agent_key,
                "chat.images": len(prepared.images),
            },
        )
        started = time.monotonic()
        outcome = "failed"
        chunk_count = 0
        chunks = None

        try:
            conversation_id = request.conversation_id
            if conversation_id is None:
                conversation_id = await self._call(
                    client.create_conversation(request.message), deadline_at
                )
                span.set_attribute("chat.conversation_created", True)
                yield ConversationStartedEvent(conversation_id=conversation_id)
            span.set_attribute("chat.conversation_id", conversation_id)

            run_started = time.monotonic()
            chunks = client.stream_message(
                conversation_id, request.message, prepared.image_data_uris
            )
            while True:
                try:
                    text = await self._call(anext(chunks), deadline_at)
                except StopAsyncIteration:
                    break
                chunk_count += 1
                yield ChunkEvent(text=text)

            duration_ms = (time.monotonic() - run_started) * 1000.0
            tokens = await self._call(
                client.get_last_run_usage(conversation_id), deadline_at
            )
            if tokens is not None:
                yield UsageEvent(stats=UsageStats.from_tokens(tokens, duration_ms))

            outcome = "completed"
            yield DoneEvent()

        except (asyncio.CancelledError, GeneratorExit):
            outcome = "cancelled"
            logger.info(
                "Chat stream cancelled by client (agent=%s, chunks=%d)",
                prepared.agent_key, chunk_count,
            )
            raise
        except DeadlineExceeded:
            outcome = "cancelled"
            logger.info(
                "Chat stream deadline elapsed (agent=%s, chunks=%d)",
                prepared.agent_key, chunk_count,
            )
        except Exception as exc:
            outcome = "failed"
            with self._tracer.activate(span):
                problem = self.translator.translate(exc)
            span.set_attribute("chat.error_kind", problem.extensions.get("errorKind", ""))
            yield ErrorEvent(message=problem.message)
        finally:
            if chunks is not None:
                await self._close_upstream(chunks, prepared.agent_key)
            self._record(prepared.agent_key, outcome, started, chunk_count)
            span.set_attribute("chat.outcome", outcome)
            span.set_attribute("chat.chunks", chunk_count)
            span.end()

    async def stream(
        self,
        request: ChatRequest,
        agent_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[StreamEvent]:
        """``prepare`` + ``run``, reporting prepare failures in-stream."""
        try:
            prepared = await self.prepare(request, agent_id)
        except Exception as exc:
            self._record(agent_id or DEFAULT_AGENT_KEY, "failed", time.monotonic(), 0)
            yield ErrorEvent(message=self.translator.translate(exc).message)
            return

        events = self.run(prepared, timeout)
        try:
            async for event in events:
                yield event
        finally:
            await events.aclose()

    # ── Helpers ──────────────────────────────────────────────────────────────

    @staticmethod
    async def _call(awaitable, deadline_at: Optional[float]):
        """Await an upstream call, bounded by the request deadline if any."""
        if deadline_at is None:
            return await awaitable
        timeout_cm = asyncio.timeout_at(deadline_at)
        try:
            async with timeout_cm:
                return await awaitable
        except TimeoutError:
            if timeout_cm.expired():
                raise DeadlineExceeded() from None
            raise

    async def _close_upstream(self, chunks, agent_key: str) -> None:
        try:
            await chunks.aclose()
        except Exception:
            logger.warning(
                "Error while closing upstream run (agent=%s)", agent_key, exc_info=True
            )

    def _record(self, agent_key: str, outcome: str, started: float, chunks: int) -> None:
        tags = {"agent": agent_key}
        self._metrics.increment_counter(f"chat_stream_{outcome}", tags=tags)
        self._metrics.record_histogram(
            "chat_stream_duration_ms", (time.monotonic() - started) * 1000.0,
            tags={**tags, "outcome": outcome},
        )
        if outcome != "cancelled":
            self._metrics.record_histogram("chat_stream_chunks", chunks, tags=tags)
