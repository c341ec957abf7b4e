"""Construction of runtime clients from settings."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from agent_gateway.configs.settings import Settings

from .base_client import AgentRuntimeClient
from .catalog import AgentCatalog
from .openai_client import OpenAIAgentClient

logger = logging.getLogger(__name__)

AgentClientFactory = Callable[[str], Awaitable[AgentRuntimeClient]]


def build_agent_client(settings: Settings, agent_id: str) -> OpenAIAgentClient:
    return OpenAIAgentClient(
        agent_id,
        endpoint=settings.AGENT_ENDPOINT,
        api_key=settings.AGENT_API_KEY,
        api_version=settings.AGENT_API_VERSION,
        timeout=settings.AGENT_REQUEST_TIMEOUT,
    )


def make_agent_client_factory(
    settings: Settings,
    catalog: Optional[AgentCatalog] = None,
) -> AgentClientFactory:
    """Return the async constructor used by the session cache.

    With a catalog, the agent is looked up before its client is built, so an
    unknown id or rejected credentials fail construction instead of the first
    chat run.
    """

    async def factory(agent_id: str) -> AgentRuntimeClient:
        if catalog is not None:
            await catalog.get_agent(agent_id)
        logger.info("Creating new agent runtime client for: %s", agent_id)
        return build_agent_client(settings, agent_id)

    return factory
