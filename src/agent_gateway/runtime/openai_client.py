"""Agent runtime client for OpenAI-compatible agent endpoints.

Uses the Conversations API to create threads and the Responses API (with an
``agent_reference``) to run the agent and stream its answer. Works against
Azure AI Foundry agents as well as any server exposing the same surface.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from typing import AsyncIterator, Optional, Sequence

import openai
from openai import AsyncOpenAI

from agent_gateway.exceptions import (
    GatewayError,
    UnclassifiedError,
    UpstreamAuthError,
    UpstreamTransientError,
)
from agent_gateway.gateway.events import TokenUsage
from agent_gateway.resilience import UPSTREAM_RETRY_POLICY, RetryPolicy, retry_async

from .base_client import AgentRuntimeClient

logger = logging.getLogger(__name__)

_TITLE_MAX_CHARS = 64

# Completed runs whose usage was never asked for are dropped oldest first
MAX_PENDING_USAGE = 1024


def translate_openai_error(exc: Exception) -> GatewayError:
    """Map an OpenAI SDK exception onto the gateway's error taxonomy."""
    if isinstance(exc, GatewayError):
        return exc
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return UpstreamAuthError(
            f"Agent runtime rejected credentials: {exc}",
            details={"status_code": exc.status_code},
        )
    if isinstance(exc, openai.APITimeoutError):
        return UpstreamTransientError(f"Agent runtime timed out: {exc}")
    if isinstance(exc, openai.APIConnectionError):
        return UpstreamTransientError(f"Agent runtime unreachable: {exc}")
    if isinstance(exc, openai.RateLimitError):
        return UpstreamTransientError(
            f"Agent runtime is throttling requests: {exc}", status_code=429
        )
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code >= 500:
            return UpstreamTransientError(
                f"Agent runtime error {exc.status_code}: {exc}",
                status_code=exc.status_code,
            )
        return UnclassifiedError(
            f"Agent runtime rejected the request ({exc.status_code}): {exc}",
            status_code=exc.status_code,
        )
    return UnclassifiedError(f"{type(exc).__name__}: {exc}")


class OpenAIAgentClient(AgentRuntimeClient):
    """Runtime client bound to one agent behind an OpenAI-compatible endpoint."""

    def __init__(
        self,
        agent_id: str,
        *,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: float = 120.0,
        client: Optional[AsyncOpenAI] = None,
        retry_policy: RetryPolicy = UPSTREAM_RETRY_POLICY,
    ):
        super().__init__(agent_id)
        self.retry_policy = retry_policy
        if client is None:
            client = AsyncOpenAI(
                base_url=endpoint,
                api_key=api_key or "unused",
                default_query={"api-version": api_version} if api_version else None,
                timeout=timeout,
                max_retries=0,  # retries are ours, see agent_gateway.resilience
            )
        self.client = client
        # conversation_id -> usage of the last completed run
        self._last_usage: OrderedDict[str, TokenUsage] = OrderedDict()

    def _agent_reference(self) -> dict:
        return {"agent": {"name": self.agent_id, "type": "agent_reference"}}

    @retry_async()
    async def create_conversation(self, first_message: Optional[str] = None) -> str:
        metadata = {"agent_id": self.agent_id[:512]}
        if first_message:
            metadata["title"] = first_message.strip()[:_TITLE_MAX_CHARS]
        try:
            conversation = await self.client.conversations.create(metadata=metadata)
        except Exception as e:
            raise translate_openai_error(e) from e
        logger.info(
            "Created conversation %s for agent %s", conversation.id, self.agent_id
        )
        return conversation.id

    async def stream_message(
        self,
        conversation_id: str,
        message: str,
        image_data_uris: Optional[Sequence[str]] = None,
    ) -> AsyncIterator[str]:
        content = [{"type": "input_text", "text": message}]
        for uri in image_data_uris or ():
            content.append({"type": "input_image", "image_url": uri, "detail": "auto"})

        self._last_usage.pop(conversation_id, None)

        try:
            stream = await self.client.responses.create(
                conversation=conversation_id,
                input=[{"type": "message", "role": "user", "content": content}],
                stream=True,
                extra_body=self._agent_reference(),
            )
        except Exception as e:
            raise translate_openai_error(e) from e

        exhausted = False
        try:
            async for event in stream:
                if event.type == "response.output_text.delta":
                    if event.delta:
                        yield event.delta
                elif event.type == "response.completed":
                    usage = getattr(event.response, "usage", None)
                    if usage is not None:
                        self._store_usage(conversation_id, TokenUsage(
                            prompt_tokens=usage.input_tokens or 0,
                            completion_tokens=usage.output_tokens or 0,
                            total_tokens=usage.total_tokens or 0,
                        ))
                elif event.type in ("response.failed", "response.incomplete"):
                    raise self._run_failure(event)
                elif event.type == "error":
                    raise UpstreamTransientError(
                        f"Agent run error {getattr(event, 'code', None)}: "
                        f"{getattr(event, 'message', '')}"
                    )
            exhausted = True
        except GatewayError:
            raise
        except openai.OpenAIError as e:
            raise translate_openai_error(e) from e
        finally:
            if not exhausted:
                # abandoned or failed run: nobody will ask for its usage
                self._last_usage.pop(conversation_id, None)
            await stream.close()

    def _store_usage(self, conversation_id: str, usage: TokenUsage) -> None:
        self._last_usage[conversation_id] = usage
        self._last_usage.move_to_end(conversation_id)
        while len(self._last_usage) > MAX_PENDING_USAGE:
            self._last_usage.popitem(last=False)

    def _run_failure(self, event) -> GatewayError:
        response = getattr(event, "response", None)
        error = getattr(response, "error", None)
        if error is not None:
            code = getattr(error, "code", None) or "unknown"
            text = f"Agent run failed ({code}): {getattr(error, 'message', '')}"
            if code in ("server_error", "rate_limit_exceeded"):
                return UpstreamTransientError(text)
            return UnclassifiedError(text)
        details = getattr(response, "incomplete_details", None)
        reason = getattr(details, "reason", None) or "unknown"
        return UnclassifiedError(f"Agent run incomplete: {reason}")

    async def get_last_run_usage(self, conversation_id: str) -> Optional[TokenUsage]:
        return self._last_usage.pop(conversation_id, None)

    async def aclose(self) -> None:
        await self.client.close()
        logger.info("Closed runtime client for agent %s", self.agent_id)
