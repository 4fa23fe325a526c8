"""Prometheus metrics export."""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Request metrics
request_count = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
)

# AI backend metrics (normalization completions)
ai_calls_total = Counter(
    "ai_backend_calls_total",
    "Total AI backend completion calls",
    ["provider", "model", "status"],
)

ai_call_duration = Histogram(
    "ai_backend_call_duration_seconds",
    "AI backend completion duration in seconds",
    ["provider", "model"],
)

# Tool metrics
tool_calls_total = Counter(
    "tool_calls_total",
    "Total tool calls",
    ["merchant_id", "tool_name", "status"],
)

tool_call_duration = Histogram(
    "tool_call_duration_seconds",
    "Tool call duration in seconds",
    ["merchant_id", "tool_name"],
)

# Normalization metrics
normalization_total = Counter(
    "normalization_results_total",
    "Normalized tool results by winning source",
    ["source"],  # ai, heuristic or none
)

normalization_degraded_total = Counter(
    "normalization_degraded_total",
    "Normalization steps that degraded",
    ["step"],
)

# Event streams
active_streams = Gauge(
    "mcp_active_streams",
    "Number of open MCP event streams",
)

# Circuit breaker metrics
circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["service"],
)


def get_metrics_response() -> Response:
    """Get Prometheus metrics as HTTP response."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
