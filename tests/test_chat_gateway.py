"""Tests for ChatStreamGateway event ordering, failures and cancellation."""
import asyncio
import threading
import time

import pytest

from agent_gateway.errors import ErrorTranslator
from agent_gateway.exceptions import (
    ClientInputError,
    UpstreamAuthError,
    UpstreamTransientError,
)
from agent_gateway.gateway.chat_gateway import DEFAULT_AGENT_KEY, ChatStreamGateway
from agent_gateway.gateway.events import (
    ChunkEvent,
    ConversationStartedEvent,
    DoneEvent,
    ErrorEvent,
    UsageEvent,
)
from agent_gateway.gateway.framer import EventStreamResponse
from agent_gateway.server.schemas import ChatRequest

from conftest import FakeAgentClient, collect, make_data_uri


def _types(events):
    return [e.type for e in events]


# ── Happy path ───────────────────────────────────────────────────────────────

async def test_new_conversation_scenario(gateway, default_client):
    events = await collect(gateway.stream(ChatRequest(message="hello")))

    assert isinstance(events[0], ConversationStartedEvent)
    assert events[0].conversation_id == "conv-1"
    assert [e.text for e in events if isinstance(e, ChunkEvent)] == ["Hello", ", ", "world"]
    assert isinstance(events[-2], UsageEvent)
    assert isinstance(events[-1], DoneEvent)
    assert default_client.runs[0]["conversation_id"] == "conv-1"
    assert default_client.runs[0]["message"] == "hello"


async def test_existing_conversation_emits_no_conversation_started(gateway, default_client):
    request = ChatRequest(message="again", conversation_id="conv-existing")
    events = await collect(gateway.stream(request))

    assert "conversationId" not in _types(events)
    assert events[0].type == "chunk"
    assert default_client.created == []
    assert default_client.runs[0]["conversation_id"] == "conv-existing"


async def test_usage_carries_tokens_and_duration(gateway):
    events = await collect(gateway.stream(ChatRequest(message="hello")))
    usage = next(e for e in events if isinstance(e, UsageEvent))

    assert usage.stats.prompt_tokens == 12
    assert usage.stats.completion_tokens == 3
    assert usage.stats.total_tokens == 15
    assert usage.stats.duration_ms >= 0


async def test_usage_omitted_when_runtime_reports_none(session_cache):
    client = FakeAgentClient(chunks=[], usage=None)
    gateway = ChatStreamGateway(client, session_cache)

    events = await collect(gateway.stream(ChatRequest(message="hi")))

    assert _types(events) == ["conversationId", "done"]


async def test_usage_follows_last_chunk(gateway):
    events = await collect(gateway.stream(ChatRequest(message="hello")))
    types = _types(events)

    last_chunk = max(i for i, t in enumerate(types) if t == "chunk")
    assert types.index("usage") > last_chunk
    assert types.count("usage") == 1


async def test_image_data_uris_reach_runtime(gateway, default_client):
    uri = make_data_uri()
    events = await collect(gateway.stream(ChatRequest(message="look", image_attachments=[uri])))

    assert events[-1].type == "done"
    assert default_client.runs[0]["images"] == [uri]


# ── Agent resolution ─────────────────────────────────────────────────────────

async def test_named_agent_uses_session_cache(gateway, session_cache, built_clients, default_client):
    events = await collect(gateway.stream(ChatRequest(message="hi"), agent_id="agent-x"))

    assert [e.text for e in events if isinstance(e, ChunkEvent)] == ["from agent-x"]
    assert "agent-x" in session_cache
    assert default_client.runs == []

    await collect(gateway.stream(ChatRequest(message="hi"), agent_id="agent-x"))
    assert len(built_clients) == 1
    assert len(built_clients[0].runs) == 2


async def test_default_agent_bypasses_cache(gateway, session_cache):
    key, client = await gateway.resolve_client(None)
    assert key == DEFAULT_AGENT_KEY
    assert client is gateway.default_client

    key, client = await gateway.resolve_client(DEFAULT_AGENT_KEY)
    assert client is gateway.default_client
    assert len(session_cache) == 0


async def test_session_construction_failure_is_single_error(default_client):
    from agent_gateway.gateway.session_cache import AgentSessionCache

    async def failing_factory(agent_id):
        raise UpstreamAuthError("credentials rejected")

    gateway = ChatStreamGateway(default_client, AgentSessionCache(failing_factory))
    events = await collect(gateway.stream(ChatRequest(message="hi"), agent_id="agent-x"))

    assert len(events) == 1
    assert isinstance(events[0], ErrorEvent)
    assert "credentials rejected" not in events[0].message


# ── Failures ─────────────────────────────────────────────────────────────────

async def test_invalid_image_fails_before_conversation(gateway, default_client):
    request = ChatRequest(message="look", image_attachments=["not-a-valid-ref"])

    with pytest.raises(ClientInputError):
        await gateway.prepare(request)

    events = await collect(gateway.stream(request))
    assert _types(events) == ["error"]
    assert "Invalid image attachments" in events[0].message
    assert default_client.created == []
    assert default_client.runs == []


async def test_image_validation_does_not_block_event_loop(gateway, monkeypatch):
    from agent_gateway.gateway import chat_gateway

    validator_threads = []

    def slow_validator(uris):
        validator_threads.append(threading.current_thread())
        time.sleep(0.2)
        return []

    monkeypatch.setattr(chat_gateway, "validate_image_attachments", slow_validator)
    ticks = 0
    stop = asyncio.Event()

    async def ticker():
        nonlocal ticks
        while not stop.is_set():
            ticks += 1
            await asyncio.sleep(0.005)

    ticker_task = asyncio.create_task(ticker())
    await gateway.prepare(ChatRequest(message="look", image_attachments=[make_data_uri()]))
    stop.set()
    await ticker_task

    assert validator_threads[0] is not threading.main_thread()
    assert ticks >= 5


async def test_transient_failure_mid_stream(session_cache):
    client = FakeAgentClient(
        chunks=["one", "two", "three"],
        fail_at=2,
        error=UpstreamTransientError("upstream 503"),
    )
    gateway = ChatStreamGateway(client, session_cache)

    events = await collect(gateway.stream(ChatRequest(message="hello")))

    assert _types(events) == ["conversationId", "chunk", "chunk", "error"]
    assert [e.text for e in events if isinstance(e, ChunkEvent)] == ["one", "two"]
    assert "temporarily unavailable" in events[-1].message
    assert client.usage_requests == []


async def test_failure_creating_conversation(session_cache):
    client = FakeAgentClient(create_error=UpstreamAuthError("bad key"))
    gateway = ChatStreamGateway(client, session_cache)

    events = await collect(gateway.stream(ChatRequest(message="hello")))

    assert _types(events) == ["error"]
    assert "bad key" not in events[0].message


async def test_development_profile_exposes_detail(session_cache):
    client = FakeAgentClient(fail_at=0, error=RuntimeError("kaboom in runtime"))
    gateway = ChatStreamGateway(
        client, session_cache, ErrorTranslator(development=True)
    )

    events = await collect(gateway.stream(ChatRequest(message="hello")))

    assert events[-1].type == "error"
    assert "kaboom in runtime" in events[-1].message


async def test_production_profile_hides_detail(session_cache):
    client = FakeAgentClient(fail_at=0, error=RuntimeError("kaboom in runtime"))
    gateway = ChatStreamGateway(client, session_cache)

    events = await collect(gateway.stream(ChatRequest(message="hello")))

    assert "kaboom" not in events[-1].message


async def test_exactly_one_terminal_event(gateway, session_cache):
    ok = await collect(gateway.stream(ChatRequest(message="hello")))
    failing = FakeAgentClient(fail_at=1, error=RuntimeError("x"))
    failed = await collect(
        ChatStreamGateway(failing, session_cache).stream(ChatRequest(message="hello"))
    )

    for events in (ok, failed):
        terminals = [e for e in events if e.terminal]
        assert len(terminals) == 1
        assert events[-1] is terminals[0]
    assert "done" not in _types(failed)
    assert "usage" not in _types(failed)


# ── Cancellation ─────────────────────────────────────────────────────────────

async def test_consumer_closing_stream_aborts_silently(gateway, default_client):
    events = gateway.stream(ChatRequest(message="hello"))
    received = []
    async for event in events:
        received.append(event)
        if isinstance(event, ChunkEvent):
            break
    await events.aclose()

    assert _types(received) == ["conversationId", "chunk"]
    assert default_client.stream_closed == 1
    assert default_client.usage_requests == []


async def test_task_cancellation_mid_stream(session_cache):
    client = FakeAgentClient(chunks=["a", "b", "c"], hang_at=1)
    gateway = ChatStreamGateway(client, session_cache)
    received = []

    async def consume():
        async for event in gateway.stream(ChatRequest(message="hello")):
            received.append(event)

    task = asyncio.create_task(consume())
    while len(received) < 2:
        await asyncio.sleep(0)
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert _types(received) == ["conversationId", "chunk"]
    assert not any(e.terminal for e in received)
    assert client.stream_closed == 1


async def test_deadline_aborts_without_terminal_event(session_cache):
    client = FakeAgentClient(chunks=["a", "b"], hang_at=1)
    gateway = ChatStreamGateway(client, session_cache)

    events = await collect(gateway.stream(ChatRequest(message="hello"), timeout=0.05))

    assert _types(events) == ["conversationId", "chunk"]
    assert client.stream_closed == 1
    assert client.usage_requests == []


async def test_cancellation_leaves_session_cached(gateway, session_cache):
    events = gateway.stream(ChatRequest(message="hi"), agent_id="agent-x")
    async for _ in events:
        break
    await events.aclose()

    assert "agent-x" in session_cache


async def test_client_disconnect_over_http_closes_upstream(gateway, default_client):
    sent = []

    async def send(message):
        # start + conversationId + first chunk, then the socket is gone
        if len(sent) == 3:
            raise ConnectionResetError("client went away")
        sent.append(message)

    async def receive():
        await asyncio.Event().wait()

    prepared = await gateway.prepare(ChatRequest(message="hello"))
    response = EventStreamResponse(gateway.run(prepared))
    scope = {"type": "http", "asgi": {"version": "3.0", "spec_version": "2.4"}}
    await response(scope, receive, send)

    frames = [m["body"].decode() for m in sent[1:]]
    assert [f.split('"type":"')[1].split('"')[0] for f in frames] == ["conversationId", "chunk"]
    assert default_client.stream_closed == 1
    assert default_client.usage_requests == []
    assert not any('"done"' in f or '"error"' in f for f in frames)
