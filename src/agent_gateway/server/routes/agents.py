"""Agent metadata and session endpoints.

GET    /agents                    – list agents known to the runtime
GET    /agents/{agent_id}         – metadata for one agent
GET    /agent                     – metadata for the default agent
GET    /agent/info                – default agent metadata and readiness
DELETE /agents/{agent_id}/session – release the cached session of an agent
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request, Response

from agent_gateway.server.schemas import AgentListOut

logger = logging.getLogger(__name__)

router = APIRouter(tags=["agents"])


@router.get("/agents", response_model=AgentListOut)
async def list_agents(request: Request):
    try:
        agents = await request.app.state.catalog.list_agents()
    except Exception as exc:
        return request.app.state.translator.error_response(exc)
    return AgentListOut(agents=agents, count=len(agents))


@router.get("/agent")
async def get_default_agent(request: Request):
    agent_id = request.app.state.settings.DEFAULT_AGENT_ID
    try:
        agent = await request.app.state.catalog.get_agent(agent_id)
    except Exception as exc:
        return request.app.state.translator.error_response(exc)
    return agent.model_dump(by_alias=True)


@router.get("/agent/info")
async def get_default_agent_info(request: Request):
    """Default agent metadata plus readiness, for debugging deployments."""
    agent_id = request.app.state.settings.DEFAULT_AGENT_ID
    try:
        agent = await request.app.state.catalog.get_agent(agent_id)
    except Exception as exc:
        return request.app.state.translator.error_response(exc)
    return {"info": agent.model_dump(by_alias=True), "status": "ready"}


@router.get("/agents/{agent_id}")
async def get_agent(agent_id: str, request: Request):
    try:
        agent = await request.app.state.catalog.get_agent(agent_id)
    except Exception as exc:
        return request.app.state.translator.error_response(exc)
    return agent.model_dump(by_alias=True)


@router.delete("/agents/{agent_id}/session", status_code=204)
async def release_agent_session(agent_id: str, request: Request):
    released = await request.app.state.session_cache.release(agent_id)
    logger.info("Release requested for agent %s (released=%s)", agent_id, released)
    return Response(status_code=204)
