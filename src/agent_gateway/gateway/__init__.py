"""Streaming chat gateway: session cache, SSE framing and request orchestration."""
