"""Shared fakes and fixtures for gateway tests."""
import asyncio
import base64
import io
from typing import AsyncIterator, List, Optional, Sequence

import pytest
from PIL import Image

from agent_gateway.configs.settings import Settings
from agent_gateway.errors import ErrorTranslator
from agent_gateway.gateway.chat_gateway import ChatStreamGateway
from agent_gateway.gateway.events import TokenUsage
from agent_gateway.gateway.session_cache import AgentSessionCache
from agent_gateway.runtime.base_client import AgentRuntimeClient
from agent_gateway.runtime.catalog import AgentMetadata, AgentNotFoundError


# ---------------------------------------------------------------------------
# Fake runtime
# ---------------------------------------------------------------------------

class FakeAgentClient(AgentRuntimeClient):
    """Scriptable stand-in for an upstream agent.

    Args:
        chunks: Text chunks yielded by ``stream_message``.
        usage: Usage returned after a completed run (None = not reported).
        fail_at: Raise ``error`` before yielding the chunk at this index.
        hang_at: Block forever before yielding the chunk at this index.
        create_error: Raise this from ``create_conversation``.
    """

    def __init__(
        self,
        agent_id: str = "default-agent",
        chunks: Sequence[str] = ("Hello", ", ", "world"),
        usage: Optional[TokenUsage] = TokenUsage(
            prompt_tokens=12, completion_tokens=3, total_tokens=15
        ),
        fail_at: Optional[int] = None,
        error: Optional[Exception] = None,
        hang_at: Optional[int] = None,
        create_error: Optional[Exception] = None,
    ):
        super().__init__(agent_id)
        self.chunks = list(chunks)
        self.usage = usage
        self.fail_at = fail_at
        self.error = error
        self.hang_at = hang_at
        self.create_error = create_error
        self.created: List[str] = []
        self.runs: List[dict] = []
        self.usage_requests: List[str] = []
        self.stream_closed = 0
        self.closed = False

    async def create_conversation(self, first_message: Optional[str] = None) -> str:
        if self.create_error is not None:
            raise self.create_error
        conversation_id = f"conv-{len(self.created) + 1}"
        self.created.append(conversation_id)
        return conversation_id

    async def stream_message(
        self,
        conversation_id: str,
        message: str,
        image_data_uris: Optional[Sequence[str]] = None,
    ) -> AsyncIterator[str]:
        self.runs.append({
            "conversation_id": conversation_id,
            "message": message,
            "images": list(image_data_uris or []),
        })
        try:
            for i, chunk in enumerate(self.chunks):
                if self.fail_at == i:
                    raise self.error
                if self.hang_at == i:
                    await asyncio.Event().wait()
                await asyncio.sleep(0)
                yield chunk
            if self.fail_at is not None and self.fail_at >= len(self.chunks):
                raise self.error
        finally:
            self.stream_closed += 1

    async def get_last_run_usage(self, conversation_id: str) -> Optional[TokenUsage]:
        self.usage_requests.append(conversation_id)
        return self.usage

    async def aclose(self) -> None:
        self.closed = True


class FakeCatalog:
    def __init__(self, agents: Sequence[str] = ("default-agent", "agent-x")):
        self.agents = {
            agent_id: AgentMetadata(id=agent_id, name=agent_id.title(), created_at=1700000000)
            for agent_id in agents
        }
        self.error: Optional[Exception] = None
        self.closed = False

    async def list_agents(self) -> List[AgentMetadata]:
        if self.error:
            raise self.error
        return list(self.agents.values())

    async def get_agent(self, agent_id: str) -> AgentMetadata:
        if self.error:
            raise self.error
        if agent_id not in self.agents:
            raise AgentNotFoundError(f"Agent '{agent_id}' was not found")
        return self.agents[agent_id]

    async def aclose(self) -> None:
        self.closed = True


async def collect(events) -> list:
    return [event async for event in events]


def make_data_uri(fmt: str = "PNG", mime: str = "image/png") -> str:
    buffered = io.BytesIO()
    Image.new("RGB", (4, 4), color=(200, 30, 30)).save(buffered, format=fmt)
    return f"data:{mime};base64,{base64.b64encode(buffered.getvalue()).decode()}"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        AGENT_ENDPOINT="http://runtime.test/v1",
        DEFAULT_AGENT_ID="default-agent",
        ENVIRONMENT="production",
    )


@pytest.fixture
def default_client() -> FakeAgentClient:
    return FakeAgentClient()


@pytest.fixture
def built_clients() -> List[FakeAgentClient]:
    return []


@pytest.fixture
def client_factory(built_clients):
    async def factory(agent_id: str) -> FakeAgentClient:
        client = FakeAgentClient(agent_id=agent_id, chunks=[f"from {agent_id}"])
        built_clients.append(client)
        return client
    return factory


@pytest.fixture
async def session_cache(client_factory):
    cache = AgentSessionCache(client_factory)
    await cache.start()
    yield cache
    await cache.aclose()


@pytest.fixture
def gateway(default_client, session_cache) -> ChatStreamGateway:
    return ChatStreamGateway(
        default_client=default_client,
        session_cache=session_cache,
        translator=ErrorTranslator(development=False),
    )
