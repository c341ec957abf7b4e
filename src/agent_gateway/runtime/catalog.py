"""Read-through client for the agent runtime's agent listing.

Backs the non-streaming metadata endpoints and verifies that an agent exists
before a session is built for it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field

from agent_gateway.exceptions import (
    ClientInputError,
    GatewayError,
    UnclassifiedError,
    UpstreamAuthError,
    UpstreamTransientError,
)
from agent_gateway.resilience import UPSTREAM_RETRY_POLICY, RetryPolicy, retry_async

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = httpx.Timeout(connect=5.0, read=30.0, write=10.0, pool=5.0)

DEFAULT_AGENT_NAME = "AI Assistant"


class AgentNotFoundError(ClientInputError):
    """Raised when the requested agent id does not exist upstream."""
    pass


class AgentMetadata(BaseModel):
    """Agent description returned by ``GET /agents`` and ``GET /agents/{id}``."""
    id: str
    object: str = "agent"
    created_at: int = Field(default=0, serialization_alias="createdAt")
    name: str = DEFAULT_AGENT_NAME
    description: str = ""
    model: str = ""
    instructions: str = ""
    metadata: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "AgentMetadata":
        """Build from an agent record, preferring its latest version's fields."""
        latest = (record.get("versions") or {}).get("latest") or record
        definition = latest.get("definition") or {}
        return cls(
            id=record["id"],
            created_at=_to_unix_seconds(latest.get("created_at")),
            name=latest.get("name") or record.get("name") or DEFAULT_AGENT_NAME,
            description=latest.get("description") or "",
            model=definition.get("model") or latest.get("model") or "",
            instructions=definition.get("instructions") or latest.get("instructions") or "",
            metadata={str(k): str(v) for k, v in (latest.get("metadata") or {}).items()},
        )


def _to_unix_seconds(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    try:
        return int(datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp())
    except ValueError:
        return 0


def translate_http_error(exc: Exception, agent_id: Optional[str] = None) -> GatewayError:
    """Map an httpx exception onto the gateway's error taxonomy."""
    if isinstance(exc, httpx.TimeoutException):
        return UpstreamTransientError(f"Agent catalog timed out: {exc}")
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        body = exc.response.text[:200]
        if status in (401, 403):
            return UpstreamAuthError(
                f"Agent catalog rejected credentials ({status}): {body}",
                details={"status_code": status},
            )
        if status == 404 and agent_id is not None:
            return AgentNotFoundError(
                f"Agent '{agent_id}' was not found", details={"agent_id": agent_id}
            )
        if status == 429 or status >= 500:
            return UpstreamTransientError(
                f"Agent catalog error {status}: {body}", status_code=status
            )
        return UnclassifiedError(f"Agent catalog error {status}: {body}", status_code=status)
    if isinstance(exc, httpx.RequestError):
        return UpstreamTransientError(f"Agent catalog unreachable: {exc}")
    return UnclassifiedError(f"{type(exc).__name__}: {exc}")


class AgentCatalog:
    """Async HTTP client for agent metadata."""

    def __init__(
        self,
        endpoint: str,
        api_key: str = "",
        api_version: str = "",
        client: Optional[httpx.AsyncClient] = None,
        retry_policy: RetryPolicy = UPSTREAM_RETRY_POLICY,
    ):
        self.retry_policy = retry_policy
        self._params = {"api-version": api_version} if api_version else {}
        headers: Dict[str, str] = {}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(
            base_url=endpoint.rstrip("/"),
            timeout=_DEFAULT_TIMEOUT,
            headers=headers,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )

    async def _get(self, path: str, agent_id: Optional[str] = None) -> Any:
        try:
            resp = await self._client.get(path, params=self._params)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as exc:
            raise translate_http_error(exc, agent_id) from exc

    @retry_async()
    async def list_agents(self) -> List[AgentMetadata]:
        logger.info("Retrieving available agents")
        payload = await self._get("/agents")
        records = payload.get("data", []) if isinstance(payload, dict) else payload
        agents = [AgentMetadata.from_record(r) for r in records]
        logger.info("Retrieved %d agents", len(agents))
        return agents

    @retry_async()
    async def get_agent(self, agent_id: str) -> AgentMetadata:
        logger.info("Retrieving agent metadata for: %s", agent_id)
        record = await self._get(f"/agents/{quote(agent_id, safe='')}", agent_id=agent_id)
        return AgentMetadata.from_record(record)

    async def aclose(self) -> None:
        await self._client.aclose()
