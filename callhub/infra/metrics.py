"""Prometheus metrics export."""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Tool execution metrics
tool_executions_total = Counter(
    "tool_executions_total",
    "Total tool executions",
    ["tool_type", "status"],
)

tool_execution_duration = Histogram(
    "tool_execution_duration_seconds",
    "Tool execution duration in seconds",
    ["tool_type"],
)

sms_messages_total = Counter(
    "sms_messages_total",
    "Total SMS sends per recipient",
    ["status"],
)

# Voice-agent platform metrics
platform_requests_total = Counter(
    "platform_requests_total",
    "Total voice-agent platform requests",
    ["operation", "status"],
)

platform_request_duration = Histogram(
    "platform_request_duration_seconds",
    "Voice-agent platform request duration in seconds",
    ["operation"],
)

# Lifecycle metrics
tool_lifecycle_operations_total = Counter(
    "tool_lifecycle_operations_total",
    "Total tool lifecycle operations",
    ["operation", "status"],
)

saga_compensations_total = Counter(
    "saga_compensations_total",
    "Total compensating actions run after a failed lifecycle step",
    ["saga", "status"],
)

# On-call-start metrics
on_call_start_runs_total = Counter(
    "on_call_start_runs_total",
    "Total on-call-start orchestrations",
    ["outcome"],
)

context_injections_total = Counter(
    "context_injections_total",
    "Total live-call context injections",
    ["status"],
)


def get_metrics_response() -> Response:
    """Get Prometheus metrics as HTTP response."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
