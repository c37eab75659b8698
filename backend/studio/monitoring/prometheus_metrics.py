"""
Prometheus metrics for the studio scheduling core.

Service operation timings come from ``@BaseService.measure_operation``; the
domain counters below are incremented by the services after a transition.
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "studio_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "studio_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "studio_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

conflicts_detected_total = Counter(
    "studio_conflicts_detected_total",
    "Scheduling writes rejected because a resource was already allocated",
    ["resource_kind"],
    registry=REGISTRY,
)

credit_ledger_mutations_total = Counter(
    "studio_credit_ledger_mutations_total",
    "Credit ledger mutations by operation",
    ["operation"],
    registry=REGISTRY,
)

registrations_total = Counter(
    "studio_registrations_total",
    "Class registration transitions by outcome",
    ["outcome"],
    registry=REGISTRY,
)

outbox_events_total = Counter(
    "studio_outbox_events_total",
    "Total outbox events by terminal status",
    ["status", "event_type"],
    registry=REGISTRY,
)

outbox_attempt_total = Counter(
    "studio_outbox_attempt_total",
    "Number of outbox delivery attempts",
    ["event_type"],
    registry=REGISTRY,
)

outbox_dispatch_seconds = Histogram(
    "studio_outbox_dispatch_seconds",
    "Provider dispatch duration in seconds",
    ["event_type"],
    registry=REGISTRY,
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'ClassBookingService')
            operation: Operation/method name (e.g., 'book_class')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_conflict(resource_kind: str) -> None:
        conflicts_detected_total.labels(resource_kind=resource_kind).inc()

    @staticmethod
    def record_ledger_mutation(operation: str, amount: int = 1) -> None:
        """Count deduct/refund/refund_unapplied/issue/expire movements."""
        credit_ledger_mutations_total.labels(operation=operation).inc(max(amount, 0))

    @staticmethod
    def record_registration(outcome: str) -> None:
        registrations_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_notification_attempt(event_type: str) -> None:
        """Increment attempt counter for outbox delivery."""
        outbox_attempt_total.labels(event_type=event_type).inc()

    @staticmethod
    def record_notification_outcome(event_type: str, status: str) -> None:
        """Record terminal outcome for outbox delivery."""
        outbox_events_total.labels(status=status, event_type=event_type).inc()

    @staticmethod
    def observe_notification_dispatch(event_type: str, duration: float) -> None:
        """Observe provider dispatch duration."""
        outbox_dispatch_seconds.labels(event_type=event_type).observe(max(duration, 0.0))

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)


# Singleton instance
prometheus_metrics = PrometheusMetrics()
