"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
payment_webhooks_total = Counter(
    "payment_webhooks_total",
    "Gateway webhook deliveries by outcome",
    ["outcome"],  # applied, duplicate, rejected_signature, not_found
)

payment_status_transitions_total = Counter(
    "payment_status_transitions_total",
    "Payment status transitions applied",
    ["status"],
)

payments_created_total = Counter(
    "payments_created_total",
    "Payment intents created",
)

certificate_assignments_total = Counter(
    "certificate_assignments_total",
    "Certificate assignment attempts by outcome",
    ["outcome"],  # assigned, existing, exhausted, lost_race
)

gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total payment gateway API requests",
    ["operation", "status"],
)

oauth_requests_total = Counter(
    "oauth_requests_total",
    "Total identity provider requests",
    ["operation", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Payment gateway API request duration",
    ["operation"],
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30],
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
