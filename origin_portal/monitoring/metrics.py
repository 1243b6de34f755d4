"""
Prometheus metrics for the certificate portal.

Tracks:
- Application lifecycle transitions
- Payment initializations and verifications
- Paystack API calls and latency
- Webhook events
- Dashboard cache hits
"""
from prometheus_client import Counter, Histogram

# Lifecycle metrics
application_transitions_total = Counter(
    "application_transitions_total",
    "Application status transition attempts",
    ["transition", "outcome"],  # transition: approve, reject
)

applications_registered_total = Counter(
    "applications_registered_total",
    "Applications created at registration",
)

# Payment metrics
payment_initializations_total = Counter(
    "payment_initializations_total",
    "Payment initialization attempts",
    ["outcome"],
)

payment_verifications_total = Counter(
    "payment_verifications_total",
    "Payment verification attempts",
    # outcome: success, already_verified, failed, or an error code such as not_found
    ["outcome"],
)

# Paystack API metrics
paystack_api_requests_total = Counter(
    "paystack_api_requests_total",
    "Total Paystack API requests",
    ["operation", "status"],
)

paystack_api_duration_seconds = Histogram(
    "paystack_api_duration_seconds",
    "Paystack API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

# Webhook metrics
webhook_events_total = Counter(
    "webhook_events_total",
    "Paystack webhook events received",
    ["event_type", "status"],
)

# Dashboard cache metrics
dashboard_cache_requests_total = Counter(
    "dashboard_cache_requests_total",
    "Dashboard cache lookups",
    ["view", "result"],  # result: hit, miss
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_transition(transition: str, outcome: str) -> None:
        """Record an approve/reject attempt."""
        application_transitions_total.labels(transition=transition, outcome=outcome).inc()

    @staticmethod
    def record_registration() -> None:
        applications_registered_total.inc()

    @staticmethod
    def record_payment_initialization(outcome: str) -> None:
        payment_initializations_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_payment_verification(outcome: str) -> None:
        payment_verifications_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_paystack_api_call(
        operation: str, status: str, duration_seconds: float
    ) -> None:
        """Record Paystack API call."""
        paystack_api_requests_total.labels(operation=operation, status=status).inc()
        paystack_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_webhook_event(event_type: str, status: str) -> None:
        webhook_events_total.labels(event_type=event_type, status=status).inc()

    @staticmethod
    def record_dashboard_cache(view: str, hit: bool) -> None:
        dashboard_cache_requests_total.labels(view=view, result="hit" if hit else "miss").inc()


# Export singleton instance
metrics = MetricsCollector()
