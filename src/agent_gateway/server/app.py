"""FastAPI application for the streaming chat gateway.

Composition root:
  - Settings, logging and OpenTelemetry setup
  - Agent catalog, default agent client and per-agent session cache
  - ChatStreamGateway + ErrorTranslator shared through ``app.state``
  - Router mounting, CORS middleware, problem-details error handlers
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from agent_gateway.configs.settings import Settings, get_settings
from agent_gateway.errors import ErrorTranslator
from agent_gateway.exceptions import ClientInputError, GatewayError
from agent_gateway.gateway.chat_gateway import ChatStreamGateway
from agent_gateway.gateway.session_cache import AgentSessionCache
from agent_gateway.logger import setup_logging
from agent_gateway.observability.telemetry import (
    configure_opentelemetry,
    shutdown_opentelemetry,
)
from agent_gateway.runtime.base_client import AgentRuntimeClient
from agent_gateway.runtime.catalog import AgentCatalog
from agent_gateway.runtime.factory import (
    AgentClientFactory,
    build_agent_client,
    make_agent_client_factory,
)
from agent_gateway.server.routes.agents import router as agents_router
from agent_gateway.server.routes.chat import router as chat_router
from agent_gateway.server.schemas import HealthOut

logger = logging.getLogger(__name__)

_LOCALHOST_ORIGIN_REGEX = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"


def create_app(
    settings: Optional[Settings] = None,
    *,
    catalog: Optional[AgentCatalog] = None,
    default_client: Optional[AgentRuntimeClient] = None,
    client_factory: Optional[AgentClientFactory] = None,
    telemetry: bool = True,
) -> FastAPI:
    """Build the FastAPI application.

    Collaborators that are not passed in are built from ``settings`` at
    startup; tests inject fakes through the keyword arguments.
    """
    settings = settings or get_settings()

    # ── Lifespan ─────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # ---------- STARTUP ----------
        setup_logging(level=settings.LOG_LEVEL.upper())
        if telemetry:
            configure_opentelemetry(
                service_name="agent-gateway",
                otlp_trace_endpoint=settings.OTLP_TRACE_ENDPOINT or None,
                otlp_metric_endpoint=settings.OTLP_METRIC_ENDPOINT or None,
            )

        app_catalog = catalog or AgentCatalog(
            endpoint=settings.AGENT_ENDPOINT,
            api_key=settings.AGENT_API_KEY,
            api_version=settings.AGENT_API_VERSION,
        )
        app_default_client = default_client or build_agent_client(
            settings, settings.DEFAULT_AGENT_ID
        )
        session_cache = AgentSessionCache(
            client_factory or make_agent_client_factory(settings, app_catalog),
            idle_timeout=settings.AGENT_SESSION_IDLE_TIMEOUT,
        )
        await session_cache.start()

        translator = ErrorTranslator(development=settings.is_development)

        app.state.settings = settings
        app.state.translator = translator
        app.state.catalog = app_catalog
        app.state.session_cache = session_cache
        app.state.gateway = ChatStreamGateway(
            default_client=app_default_client,
            session_cache=session_cache,
            translator=translator,
        )
        logger.info(
            "Agent gateway ready (default agent=%s, environment=%s)",
            settings.DEFAULT_AGENT_ID, settings.ENVIRONMENT,
        )

        yield

        # ---------- SHUTDOWN ----------
        await session_cache.aclose()
        await app_default_client.aclose()
        await app_catalog.aclose()
        if telemetry:
            shutdown_opentelemetry()

    # ── App ──────────────────────────────────────────────────────────────────

    app = FastAPI(
        title="Agent Gateway",
        version="0.1.0",
        lifespan=lifespan,
    )

    if settings.is_development:
        app.add_middleware(
            CORSMiddleware,
            allow_origin_regex=_LOCALHOST_ORIGIN_REGEX,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Error handlers: everything leaves as application/problem+json
    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        reasons = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ())[1:]) or 'body'}: {err.get('msg')}"
            for err in exc.errors()
        )
        return request.app.state.translator.error_response(ClientInputError(reasons))

    @app.exception_handler(GatewayError)
    async def _gateway_error(request: Request, exc: GatewayError):
        return request.app.state.translator.error_response(exc)

    # Mount routers
    app.include_router(chat_router, prefix=settings.API_PREFIX)
    app.include_router(agents_router, prefix=settings.API_PREFIX)

    # Health check
    @app.get(f"{settings.API_PREFIX}/health", tags=["infra"], response_model=HealthOut)
    async def health(request: Request):
        return HealthOut(
            timestamp=datetime.now(timezone.utc),
            cached_sessions=len(request.app.state.session_cache),
        )

    if telemetry:
        FastAPIInstrumentor.instrument_app(app)

    return app
