"""
Prometheus metrics for payment verification monitoring.

Tracks:
- Verification outcomes by mode (live/test) and result
- Verified payment amounts
- Deduplication hits (existing row vs. lost insert race)
- Paystack API calls, durations and errors
- Projection update failures
- Webhook events
"""
from prometheus_client import Counter, Histogram

# Verification metrics
payment_verifications_total = Counter(
    "payment_verifications_total",
    "Total number of payment verification requests",
    ["mode", "result"],  # mode: live, test; result: recorded, existing, or an error kind
)

payment_verification_duration_seconds = Histogram(
    "payment_verification_duration_seconds",
    "Payment verification duration in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

payment_amount_major = Histogram(
    "payment_amount_major",
    "Verified payment amounts in major currency units",
    ["currency"],
    buckets=(1, 5, 10, 50, 100, 500, 1000, 5000, 10000, 50000),
)

# Deduplication metrics
payment_dedup_hits_total = Counter(
    "payment_dedup_hits_total",
    "Verifications resolved to an already stored payment",
    ["source"],  # existing, race
)

# Provider metrics
provider_api_requests_total = Counter(
    "provider_api_requests_total",
    "Total payment provider API requests",
    ["operation", "status"],
)

provider_api_errors_total = Counter(
    "provider_api_errors_total",
    "Total payment provider API errors",
    ["error_kind"],  # provider_unavailable, provider_rejected
)

provider_api_duration_seconds = Histogram(
    "provider_api_duration_seconds",
    "Payment provider API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# Projection metrics
projection_update_failures_total = Counter(
    "projection_update_failures_total",
    "User payment-status projection updates that failed after a payment insert",
)

# Webhook metrics
webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook events processed",
    ["event_type", "status"],  # processed, ignored, not_found
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_verification(mode: str, result: str, duration_seconds: float) -> None:
        """Record a verification outcome."""
        payment_verifications_total.labels(mode=mode, result=result).inc()
        payment_verification_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_payment_amount(currency: str, amount: float) -> None:
        payment_amount_major.labels(currency=currency).observe(amount)

    @staticmethod
    def record_dedup_hit(source: str) -> None:
        """Record a verification that resolved to an existing payment."""
        payment_dedup_hits_total.labels(source=source).inc()

    @staticmethod
    def record_provider_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record a provider API call."""
        provider_api_requests_total.labels(operation=operation, status=status).inc()
        provider_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_provider_error(error_kind: str) -> None:
        provider_api_errors_total.labels(error_kind=error_kind).inc()

    @staticmethod
    def record_projection_failure() -> None:
        projection_update_failures_total.inc()

    @staticmethod
    def record_webhook_event(event_type: str, status: str) -> None:
        webhook_events_processed_total.labels(event_type=event_type, status=status).inc()


# Export singleton instance
metrics = MetricsCollector()
