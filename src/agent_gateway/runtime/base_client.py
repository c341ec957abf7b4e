from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional, Sequence

from agent_gateway.gateway.events import TokenUsage


class AgentRuntimeClient(ABC):
    """Base class for clients bound to one upstream agent.

    One instance serves many concurrent requests for its agent, so
    implementations must not keep per-request state outside of
    conversation-keyed structures.
    """

    def __init__(self, agent_id: str):
        self.agent_id = agent_id

    @abstractmethod
    async def create_conversation(self, first_message: Optional[str] = None) -> str:
        """Create a new upstream conversation and return its id."""
        pass

    @abstractmethod
    def stream_message(
        self,
        conversation_id: str,
        message: str,
        image_data_uris: Optional[Sequence[str]] = None,
    ) -> AsyncIterator[str]:
        """Run the agent on ``message`` and yield response text chunks.

        Closing the returned iterator (``aclose``) cancels the upstream run.
        """
        pass

    @abstractmethod
    async def get_last_run_usage(self, conversation_id: str) -> Optional[TokenUsage]:
        """Token usage of the most recent completed run on a conversation."""
        pass

    async def aclose(self) -> None:
        """Release network resources held by the client."""
        return None
