"""
Prometheus metrics for payment creation and reconciliation.

Tracks:
- Payment session requests by outcome (created, reused, rejected, failed)
- Gateway call counts and latency
- Webhook notifications by outcome and orders updated
- Pending-payment reconciliation runs
"""
import time

from prometheus_client import Counter, Gauge, Histogram

# Payment session metrics
payment_sessions_total = Counter(
    "payment_sessions_total",
    "Total create-payment requests",
    ["outcome", "payment_method"],
)

payment_session_duration_seconds = Histogram(
    "payment_session_duration_seconds",
    "Create-payment handling duration in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0),
)

payment_update_failures_total = Counter(
    "payment_update_failures_total",
    "Gateway transactions created whose order update did not land",
    ["reason"],  # store_error, conflict
)

# Gateway metrics
gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total payment gateway requests",
    ["operation", "status"],
)

gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Payment gateway request duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 10.0, 15.0),
)

# Webhook metrics
webhook_notifications_total = Counter(
    "webhook_notifications_total",
    "Total payment notifications received",
    ["outcome"],  # applied, invalid_signature, foreign, malformed, error
)

webhook_orders_updated_total = Counter(
    "webhook_orders_updated_total",
    "Orders whose status was changed by a notification",
    ["status"],
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Notification processing duration in seconds",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Reconciliation metrics
reconciliation_transactions_checked_total = Counter(
    "reconciliation_transactions_checked_total",
    "Gateway transactions checked by pending-payment reconciliation",
    ["result"],  # applied, unknown, error
)

reconciliation_last_run_timestamp = Gauge(
    "reconciliation_last_run_timestamp",
    "Timestamp of last reconciliation run",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_payment_session(outcome: str, payment_method: str, duration_seconds: float) -> None:
        """Record a create-payment request."""
        payment_sessions_total.labels(outcome=outcome, payment_method=payment_method).inc()
        payment_session_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_payment_update_failure(reason: str) -> None:
        payment_update_failures_total.labels(reason=reason).inc()

    @staticmethod
    def record_gateway_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record a gateway API call."""
        gateway_requests_total.labels(operation=operation, status=status).inc()
        gateway_request_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_webhook(outcome: str, duration_seconds: float) -> None:
        """Record notification processing."""
        webhook_notifications_total.labels(outcome=outcome).inc()
        webhook_processing_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_orders_updated(status: str, count: int) -> None:
        if count > 0:
            webhook_orders_updated_total.labels(status=status).inc(count)

    @staticmethod
    def record_reconciliation_check(result: str) -> None:
        reconciliation_transactions_checked_total.labels(result=result).inc()

    @staticmethod
    def mark_reconciliation_run() -> None:
        reconciliation_last_run_timestamp.set(time.time())


# Export singleton instance
metrics = MetricsCollector()
