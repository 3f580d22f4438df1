"""
Prometheus metrics for the booking engine.

Service timings come from the ``@BaseService.measure_operation`` decorator;
the domain counters below track the consistency events operators alert on
(overbooking rejections, compensations, blocked downgrades).
"""

from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

http_request_duration_seconds = Histogram(
    "roombook_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

service_operation_duration_seconds = Histogram(
    "roombook_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "roombook_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "roombook_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

booking_conflicts_total = Counter(
    "roombook_booking_conflicts_total",
    "Booking attempts rejected as overbooking",
    registry=REGISTRY,
)

compensations_total = Counter(
    "roombook_compensations_total",
    "Compensating transactions run after a gateway failure",
    ["outcome"],  # success | failed
    registry=REGISTRY,
)

webhook_events_total = Counter(
    "roombook_webhook_events_total",
    "Gateway webhook deliveries by event and outcome",
    ["event", "outcome"],
    registry=REGISTRY,
)

protected_downgrades_total = Counter(
    "roombook_protected_downgrades_total",
    "Transitions refused because the booking is in a terminal state",
    registry=REGISTRY,
)

expired_bookings_cancelled_total = Counter(
    "roombook_expired_bookings_cancelled_total",
    "PENDING bookings cancelled by expiry cleanup",
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin facade so callers never touch metric objects directly."""

    @staticmethod
    def record_http_request(method: str, endpoint: str, duration: float, status_code: int) -> None:
        http_request_duration_seconds.labels(
            method=method, endpoint=endpoint, status_code=str(status_code)
        ).observe(duration)

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
            service: Service name (e.g., 'BookingService')
            operation: Operation name (e.g., 'create_booking_with_credit')
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
    def inc_booking_conflict() -> None:
        booking_conflicts_total.inc()

    @staticmethod
    def inc_compensation(outcome: str) -> None:
        compensations_total.labels(outcome=outcome).inc()

    @staticmethod
    def inc_webhook_event(event: str, outcome: str) -> None:
        webhook_events_total.labels(event=event, outcome=outcome).inc()

    @staticmethod
    def inc_protected_downgrade() -> None:
        protected_downgrades_total.inc()

    @staticmethod
    def inc_expired_bookings(count: int) -> None:
        if count > 0:
            expired_bookings_cancelled_total.inc(count)

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        return generate_latest(REGISTRY)

    @staticmethod
    def get_content_type() -> str:
        return CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics()
