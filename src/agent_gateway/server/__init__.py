"""Agent Gateway HTTP server.

FastAPI application exposing:
- SSE chat streaming against the default agent or a named agent
- Agent metadata read-through endpoints
- Explicit release of cached agent sessions
"""
