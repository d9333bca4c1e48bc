"""
Prometheus metrics for the Paygate gateway
Provides HTTP request metrics, routing and delivery counters, and the metrics endpoint
"""

import os
from prometheus_client import Counter, Histogram, Gauge, Info, CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response


# Application info
APP_INFO = Info("paygate_app", "Application information")
APP_INFO.info({
    "version": os.getenv("APP_VERSION", "0.1.0"),
    "service": "paygate-gateway"
})

# HTTP Request Metrics (low cardinality labels)
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "route", "status_code"]
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "route"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0]
)

HTTP_REQUESTS_IN_FLIGHT = Gauge(
    "http_requests_in_flight",
    "HTTP requests currently being processed",
    ["route"]
)

# Error Metrics
ERRORS_TOTAL = Counter(
    "errors_total",
    "Total errors by type",
    ["error_type", "component"]
)

# Retry Metrics
RETRY_ATTEMPTS_TOTAL = Counter(
    "retry_attempts_total",
    "Total retry attempts",
    ["service"]
)

RETRY_FAILURES_TOTAL = Counter(
    "retry_failures_total",
    "Total retry failures after exhausting attempts",
    ["service"]
)

# External Service Metrics
EXTERNAL_CALL_DURATION_SECONDS = Histogram(
    "external_call_duration_seconds",
    "External service call duration",
    ["service", "endpoint"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
)

# Payment routing
PAYMENTS_ROUTED_TOTAL = Counter(
    "payments_routed_total",
    "Payments routed to a provider adapter",
    ["provider", "fallback"]
)

DISPUTES_CLASSIFIED_TOTAL = Counter(
    "disputes_classified_total",
    "Provider dispute callbacks by resolution",
    ["provider", "resolution"]
)

# Webhook delivery
WEBHOOK_DELIVERY_ATTEMPTS_TOTAL = Counter(
    "webhook_delivery_attempts_total",
    "Webhook delivery attempts",
    ["result"]  # result: success/failure
)

WEBHOOK_DELIVERY_DURATION_SECONDS = Histogram(
    "webhook_delivery_duration_seconds",
    "Webhook delivery POST duration",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

WEBHOOK_SEQUENCES_EXHAUSTED_TOTAL = Counter(
    "webhook_sequences_exhausted_total",
    "Delivery sequences that ran out of attempts"
)

WEBHOOKS_DISABLED_TOTAL = Counter(
    "webhooks_disabled_total",
    "Webhooks automatically deactivated after repeated failures"
)

# API-key admission
ADMISSION_DECISIONS_TOTAL = Counter(
    "admission_decisions_total",
    "API key admission decisions",
    ["result"]  # result: allowed or the rejection error code
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint

    Returns:
        Response with Prometheus metrics in text format
    """
    if os.getenv("METRICS_ENABLED", "true").lower() == "false":
        return Response("Metrics disabled", status_code=404)

    return Response(
        generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
        headers={
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "Pragma": "no-cache",
            "Expires": "0"
        }
    )


def record_error(error_type: str, component: str):
    ERRORS_TOTAL.labels(error_type=error_type, component=component).inc()


def record_retry_attempt(service: str):
    RETRY_ATTEMPTS_TOTAL.labels(service=service).inc()


def record_retry_failure(service: str):
    RETRY_FAILURES_TOTAL.labels(service=service).inc()


def record_external_call(service: str, endpoint: str, duration_seconds: float):
    """
    Record external service call metrics

    Args:
        service: External service name
        endpoint: Low-cardinality endpoint label (e.g. "POST /payment_intents")
        duration_seconds: Call duration in seconds
    """
    EXTERNAL_CALL_DURATION_SECONDS.labels(
        service=service,
        endpoint=endpoint
    ).observe(duration_seconds)


def record_payment_routed(provider: str, fallback: bool):
    PAYMENTS_ROUTED_TOTAL.labels(provider=provider, fallback=str(fallback).lower()).inc()


def record_dispute(provider: str, resolution: str):
    DISPUTES_CLASSIFIED_TOTAL.labels(provider=provider, resolution=resolution).inc()


def record_webhook_attempt(success: bool, duration_seconds: float):
    WEBHOOK_DELIVERY_ATTEMPTS_TOTAL.labels(result="success" if success else "failure").inc()
    WEBHOOK_DELIVERY_DURATION_SECONDS.observe(duration_seconds)


def record_webhook_exhausted(disabled: bool):
    WEBHOOK_SEQUENCES_EXHAUSTED_TOTAL.inc()
    if disabled:
        WEBHOOKS_DISABLED_TOTAL.inc()


def record_admission(result: str):
    ADMISSION_DECISIONS_TOTAL.labels(result=result).inc()
