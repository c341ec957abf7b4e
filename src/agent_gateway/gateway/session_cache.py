"""Per-agent cache of live runtime clients.

Maps agent_id to one ``AgentRuntimeClient`` shared by every request for
that agent. Construction is single-flight: concurrent first requests for
the same agent wait on one in-flight construction instead of racing.

Usage::

    cache = AgentSessionCache(factory)
    await cache.start()

    client = await cache.get_or_create("agent-x")   # builds
    client = await cache.get_or_create("agent-x")   # same instance

    await cache.release("agent-x")
    await cache.aclose()

Concurrency
───────────
    ┌─────────────────────────────────────────────┐
    │ _sessions  "agent-a" → AgentSession(client) │  built, lock-free reads
    │ _pending   "agent-b" → Future               │  construction in flight
    └─────────────────────────────────────────────┘

A pending entry is claimed with ``dict.setdefault`` (compare-and-insert on
the event loop), so only the caller that inserted the future starts a
construction. The construction runs in its own task and callers await it
through ``asyncio.shield``: a cancelled request never cancels a shared
construction. Failed constructions are removed from ``_pending`` before the
error is delivered, so the next call retries.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from agent_gateway.exceptions import ConfigurationError
from agent_gateway.runtime.base_client import AgentRuntimeClient
from agent_gateway.runtime.factory import AgentClientFactory

logger = logging.getLogger(__name__)


@dataclass
class AgentSession:
    """A cached runtime client and its usage bookkeeping."""
    agent_id: str
    client: AgentRuntimeClient
    created_at: float = field(default_factory=time.monotonic)
    last_used: float = field(default_factory=time.monotonic)
    use_count: int = 0

    def touch(self) -> None:
        self.last_used = time.monotonic()
        self.use_count += 1

    @property
    def idle_seconds(self) -> float:
        return time.monotonic() - self.last_used

    @property
    def age_seconds(self) -> float:
        return time.monotonic() - self.created_at

    def to_dict(self) -> dict:
        return {
            "agent_id":     self.agent_id,
            "use_count":    self.use_count,
            "age_seconds":  round(self.age_seconds),
            "idle_seconds": round(self.idle_seconds),
        }


def _consume_result(fut: asyncio.Future) -> None:
    # Mark the outcome as retrieved even when every waiter was cancelled.
    if not fut.cancelled():
        fut.exception()


class AgentSessionCache:
    """Keyed store of live runtime clients, one per agent id."""

    def __init__(
        self,
        factory: AgentClientFactory,
        *,
        idle_timeout: float = 0.0,
        sweep_interval: float = 60.0,
    ):
        self._factory = factory
        self.idle_timeout = idle_timeout
        self.sweep_interval = sweep_interval
        self._sessions: Dict[str, AgentSession] = {}
        self._pending: Dict[str, asyncio.Future] = {}
        self._construct_tasks: Set[asyncio.Task] = set()
        self._cleanup_task: Optional[asyncio.Task] = None
        self._closed = False

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start idle eviction when an idle timeout is configured."""
        if self.idle_timeout > 0 and self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(
                self._cleanup_loop(), name="agent-session-cleanup"
            )
        logger.info(
            "AgentSessionCache started (idle_timeout=%s)",
            self.idle_timeout or "disabled",
        )

    async def aclose(self) -> None:
        """Dispose every cached client. The cache rejects new work afterwards."""
        self._closed = True
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        tasks = list(self._construct_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        # tasks cancelled before their first step never settle their future
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(ConfigurationError("Agent session cache is closed"))
        self._pending.clear()

        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await self._dispose(session)
        logger.info("AgentSessionCache closed (%d sessions released)", len(sessions))

    # ── Session access ────────────────────────────────────────────────────────

    async def get_or_create(self, agent_id: str) -> AgentRuntimeClient:
        """Return the agent's client, constructing it once if absent."""
        if self._closed:
            raise ConfigurationError("Agent session cache is closed")

        session = self._sessions.get(agent_id)
        if session is not None:
            session.touch()
            return session.client

        fut = asyncio.get_running_loop().create_future()
        pending = self._pending.setdefault(agent_id, fut)
        if pending is fut:
            fut.add_done_callback(_consume_result)
            task = asyncio.create_task(
                self._construct(agent_id, fut), name=f"agent-session-build:{agent_id}"
            )
            self._construct_tasks.add(task)
            task.add_done_callback(self._construct_tasks.discard)

        client = await asyncio.shield(pending)
        session = self._sessions.get(agent_id)
        if session is not None and session.client is client:
            session.touch()
        return client

    async def _construct(self, agent_id: str, fut: asyncio.Future) -> None:
        try:
            client = await self._factory(agent_id)
        except BaseException as exc:
            self._pending.pop(agent_id, None)
            logger.warning("Failed to build agent session %s: %s", agent_id, exc)
            if isinstance(exc, asyncio.CancelledError):
                if self._closed:
                    fut.set_exception(ConfigurationError("Agent session cache is closed"))
                else:
                    fut.cancel()
                raise
            fut.set_exception(exc)
            return

        if self._closed:
            self._pending.pop(agent_id, None)
            await self._dispose(AgentSession(agent_id=agent_id, client=client))
            fut.set_exception(ConfigurationError("Agent session cache is closed"))
            return

        self._sessions[agent_id] = AgentSession(agent_id=agent_id, client=client)
        self._pending.pop(agent_id, None)
        logger.info("Agent session created for: %s", agent_id)
        fut.set_result(client)

    async def release(self, agent_id: str) -> bool:
        """Remove and dispose the agent's session. Absent keys are a no-op.

        Requests still streaming on the released client are not drained.
        Returns whether a session was released.
        """
        session = self._sessions.pop(agent_id, None)
        if session is None:
            return False
        logger.info("Releasing agent session for: %s", agent_id)
        await self._dispose(session)
        return True

    def get(self, agent_id: str) -> Optional[AgentRuntimeClient]:
        session = self._sessions.get(agent_id)
        return session.client if session else None

    def snapshot(self) -> List[dict]:
        """Return a snapshot of all cached sessions."""
        return [s.to_dict() for s in self._sessions.values()]

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    # ── Background cleanup ────────────────────────────────────────────────────

    async def _cleanup_loop(self) -> None:
        """Release sessions idle longer than idle_timeout."""
        while True:
            try:
                await asyncio.sleep(self.sweep_interval)
                await self.evict_idle()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Session cleanup error: %s", exc, exc_info=True)

    async def evict_idle(self) -> int:
        if self.idle_timeout <= 0:
            return 0
        expired = [
            s for s in self._sessions.values()
            if s.idle_seconds > self.idle_timeout
        ]
        for session in expired:
            if self._sessions.get(session.agent_id) is session:
                del self._sessions[session.agent_id]
                logger.info(
                    "Agent session %s expired (idle=%.0fs)",
                    session.agent_id, session.idle_seconds,
                )
                await self._dispose(session)
        return len(expired)

    async def _dispose(self, session: AgentSession) -> None:
        try:
            await session.client.aclose()
        except Exception:
            logger.warning(
                "Error while closing agent session %s", session.agent_id, exc_info=True
            )
