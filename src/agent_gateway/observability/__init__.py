from .telemetry import (
    Metrics,
    Tracer,
    configure_opentelemetry,
    current_trace_id,
    global_metrics,
    global_tracer,
    shutdown_opentelemetry,
)

__all__ = [
    "global_tracer",
    "global_metrics",
    "Tracer",
    "Metrics",
    "configure_opentelemetry",
    "shutdown_opentelemetry",
    "current_trace_id",
]
