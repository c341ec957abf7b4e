from .base_client import AgentRuntimeClient
from .catalog import AgentCatalog, AgentMetadata, AgentNotFoundError
from .factory import AgentClientFactory, build_agent_client, make_agent_client_factory
from .images import ImageAttachment, validate_image_attachments
from .openai_client import OpenAIAgentClient

__all__ = [
    "AgentRuntimeClient",
    "AgentCatalog",
    "AgentMetadata",
    "AgentNotFoundError",
    "AgentClientFactory",
    "build_agent_client",
    "make_agent_client_factory",
    "ImageAttachment",
    "validate_image_attachments",
    "OpenAIAgentClient",
]
