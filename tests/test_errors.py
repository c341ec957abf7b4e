"""Tests for ErrorTranslator classification and redaction."""
import json

from agent_gateway.errors import PROBLEM_MEDIA_TYPE, ErrorTranslator, classify
from agent_gateway.exceptions import (
    ClientInputError,
    ConfigurationError,
    UnclassifiedError,
    UpstreamAuthError,
    UpstreamTransientError,
)
from agent_gateway.runtime.catalog import AgentNotFoundError


def test_client_input_detail_is_exposed_in_production():
    problem = ErrorTranslator().translate(ClientInputError("message must not be blank"))

    assert problem.status == 400
    assert problem.detail == "message must not be blank"
    assert problem.extensions["errorKind"] == "client_input"
    assert "exceptionType" not in problem.extensions


def test_upstream_auth_is_redacted_in_production():
    problem = ErrorTranslator().translate(UpstreamAuthError("api key sk-123 rejected"))

    assert problem.status == 500
    assert "sk-123" not in problem.message
    assert "contact support" in problem.message


def test_configuration_error_counts_as_auth():
    assert classify(ConfigurationError("missing endpoint")).name == "upstream_auth"


def test_transient_errors_are_retryable():
    translator = ErrorTranslator()

    for exc in (
        UpstreamTransientError("503 from runtime", status_code=503),
        TimeoutError(),
        ConnectionResetError("reset"),
    ):
        problem = translator.translate(exc)
        assert problem.status == 502
        assert problem.extensions["retryable"] is True
        assert "temporarily unavailable" in problem.message


def test_unknown_errors_are_unclassified():
    translator = ErrorTranslator()

    for exc in (ValueError("secret internals"), UnclassifiedError("odd status", status_code=418)):
        problem = translator.translate(exc)
        assert problem.status == 500
        assert problem.extensions["errorKind"] == "unclassified"
        assert "secret internals" not in problem.message
        assert "retryable" not in problem.extensions


def test_agent_not_found_is_client_input():
    problem = ErrorTranslator().translate(AgentNotFoundError("Agent 'nope' was not found"))

    assert problem.status == 400
    assert "nope" in problem.message


def test_development_exposes_detail_and_type():
    problem = ErrorTranslator(development=True).translate(
        UpstreamTransientError("runtime returned 503")
    )

    assert problem.message == "runtime returned 503"
    assert problem.extensions["exceptionType"] == "UpstreamTransientError"


def test_translate_never_raises():
    class Unprintable(Exception):
        def __str__(self):
            raise RuntimeError("cannot render")

    problem = ErrorTranslator(development=True).translate(Unprintable())

    assert problem.status == 500
    assert problem.message


def test_problem_response_body():
    response = ErrorTranslator().error_response(ClientInputError("bad image"))
    body = json.loads(response.body)

    assert response.status_code == 400
    assert response.media_type == PROBLEM_MEDIA_TYPE
    assert body["type"] == "about:blank"
    assert body["title"] == "Invalid request"
    assert body["status"] == 400
    assert body["detail"] == "bad image"
