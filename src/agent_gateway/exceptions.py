class GatewayError(Exception):
    """Base exception for all errors raised by the chat gateway."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ClientInputError(GatewayError):
    """Raised when the request content is malformed (e.g. a bad image reference)."""
    pass


class UpstreamAuthError(GatewayError):
    """Raised when the agent runtime rejects our credentials or configuration."""
    pass


class ConfigurationError(UpstreamAuthError):
    """Raised when the gateway itself is misconfigured (e.g. missing endpoint)."""
    pass


class UpstreamTransientError(GatewayError):
    """Raised on timeouts, connection failures and 5xx answers from the runtime."""
    def __init__(self, message: str, status_code: int = None, details: dict = None):
        super().__init__(message, details)
        self.status_code = status_code


class UnclassifiedError(GatewayError):
    """Raised for runtime failures that fit no other category."""
    def __init__(self, message: str, status_code: int = None, details: dict = None):
        super().__init__(message, details)
        self.status_code = status_code


class StreamClosedError(GatewayError):
    """Raised when an event is written after the stream's terminal event."""
    pass


class TransportClosedError(GatewayError):
    """Raised when the client transport is gone while writing a frame."""
    pass
