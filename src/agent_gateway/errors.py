"""Translation of failures into caller-safe problem details (RFC 7807).

The same ``ProblemDetails`` backs both the ``error`` frame of a chat stream
and the JSON body of non-streaming error responses. ``translate`` never
raises: anything it cannot classify becomes a generic 500.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse

from agent_gateway.exceptions import (
    ClientInputError,
    UpstreamAuthError,
    UpstreamTransientError,
)
from agent_gateway.observability import current_trace_id

logger = logging.getLogger(__name__)

PROBLEM_MEDIA_TYPE = "application/problem+json"


@dataclass(frozen=True)
class ProblemDetails:
    status: int
    title: str
    detail: Optional[str] = None
    extensions: Dict[str, Any] = field(default_factory=dict)

    @property
    def message(self) -> str:
        """Text for an SSE error frame."""
        return self.detail or self.title

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"type": "about:blank", "title": self.title, "status": self.status}
        if self.detail:
            body["detail"] = self.detail
        body.update(self.extensions)
        return body


@dataclass(frozen=True)
class _Kind:
    name: str
    status: int
    title: str
    generic_detail: Optional[str]
    expose_detail: bool
    retryable: bool = False


CLIENT_INPUT = _Kind(
    "client_input", 400, "Invalid request",
    generic_detail=None, expose_detail=True,
)
UPSTREAM_AUTH = _Kind(
    "upstream_auth", 500, "Agent service configuration error",
    generic_detail="The agent service is not configured correctly. Please contact support.",
    expose_detail=False,
)
UPSTREAM_TRANSIENT = _Kind(
    "upstream_transient", 502, "Agent service unavailable",
    generic_detail="The agent service is temporarily unavailable. Please try again.",
    expose_detail=False, retryable=True,
)
UNCLASSIFIED = _Kind(
    "unclassified", 500, "An unexpected error occurred",
    generic_detail="An unexpected error occurred. Please try again.",
    expose_detail=False,
)


def classify(exc: BaseException) -> _Kind:
    if isinstance(exc, ClientInputError):
        return CLIENT_INPUT
    if isinstance(exc, UpstreamAuthError):
        return UPSTREAM_AUTH
    if isinstance(exc, (UpstreamTransientError, TimeoutError, ConnectionError)):
        return UPSTREAM_TRANSIENT
    return UNCLASSIFIED


def _describe(exc: BaseException) -> str:
    return getattr(exc, "message", None) or str(exc) or type(exc).__name__


class ErrorTranslator:
    """Maps exceptions to ``ProblemDetails`` for the active runtime profile."""

    def __init__(self, development: bool = False):
        self.development = development

    def translate(self, exc: BaseException) -> ProblemDetails:
        try:
            return self._translate(exc)
        except Exception:
            logger.exception("Error translation failed")
            return ProblemDetails(
                status=UNCLASSIFIED.status,
                title=UNCLASSIFIED.title,
                detail=UNCLASSIFIED.generic_detail,
                extensions={"errorKind": UNCLASSIFIED.name},
            )

    def _translate(self, exc: BaseException) -> ProblemDetails:
        kind = classify(exc)
        if kind.expose_detail or self.development:
            detail = _describe(exc)
        else:
            detail = kind.generic_detail

        extensions: Dict[str, Any] = {"errorKind": kind.name}
        if kind.retryable:
            extensions["retryable"] = True
        trace_id = current_trace_id()
        if trace_id:
            extensions["traceId"] = trace_id
        if self.development:
            extensions["exceptionType"] = type(exc).__name__

        if kind is CLIENT_INPUT:
            logger.warning("Rejected chat request: %s", _describe(exc))
        else:
            logger.error(
                "%s (%s): %s", kind.title, kind.name, _describe(exc),
                exc_info=(type(exc), exc, exc.__traceback__),
            )

        return ProblemDetails(
            status=kind.status, title=kind.title, detail=detail, extensions=extensions
        )

    def to_response(self, problem: ProblemDetails) -> JSONResponse:
        return JSONResponse(
            status_code=problem.status,
            content=problem.to_dict(),
            media_type=PROBLEM_MEDIA_TYPE,
        )

    def error_response(self, exc: BaseException) -> JSONResponse:
        return self.to_response(self.translate(exc))
