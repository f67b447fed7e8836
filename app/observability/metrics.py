"""
Metrics Collection with Prometheus.

Exposes session, query and HTTP metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    TOKEN_CLASS = "token_class"
    VIEW = "view"
    ERROR_TYPE = "error_type"


class IdentityMetrics:
    """
    Centralized metrics for the identity API.

    Covers:
    - HTTP requests (rate, duration, in-flight)
    - Session events (register, login, logout, refresh, password change)
    - Token issuance per class
    - Aggregation query latency per view
    - Orphaned media left behind by failed cleanup
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "identity_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "identity_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "identity_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "identity_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Session Metrics
        # ====================================================================
        self.session_events_total = Counter(
            "identity_session_events_total",
            "Session lifecycle events by outcome",
            [MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        self.tokens_issued_total = Counter(
            "identity_tokens_issued_total",
            "Tokens minted per class",
            [MetricLabels.TOKEN_CLASS],
        )

        # ====================================================================
        # Query Metrics
        # ====================================================================
        self.query_duration_seconds = Histogram(
            "identity_query_duration_seconds",
            "Aggregation query duration in seconds",
            [MetricLabels.VIEW],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
        )

        # ====================================================================
        # Media Metrics
        # ====================================================================
        self.asset_cleanup_failures_total = Counter(
            "identity_asset_cleanup_failures_total",
            "Replaced media assets that could not be deleted from storage",
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "identity_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_session_event(self, operation: str, outcome: str) -> None:
        """Record a session lifecycle event ("success" or an error class name)."""
        self.session_events_total.labels(operation=operation, outcome=outcome).inc()

    def record_token_issued(self, token_class: str) -> None:
        """Record one minted token."""
        self.tokens_issued_total.labels(token_class=token_class).inc()

    def record_query(self, view: str, duration: float) -> None:
        """Record aggregation query latency."""
        self.query_duration_seconds.labels(view=view).observe(duration)

    def record_asset_cleanup_failure(self) -> None:
        """Record an orphaned media asset."""
        self.asset_cleanup_failures_total.inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = IdentityMetrics()


class track_session_event:
    """
    Context manager recording the outcome of a session operation.

    Usage:
        with track_session_event("login"):
            ...  # success, or the raised exception's class name, is recorded
    """

    def __init__(self, operation: str) -> None:
        self.operation = operation

    def __enter__(self) -> "track_session_event":
        """Start tracking."""
        return self

    def __exit__(self, exc_type: type | None, exc_val: object, exc_tb: object) -> None:
        """Record outcome; never suppresses the exception."""
        outcome = "success" if exc_type is None else exc_type.__name__
        metrics.record_session_event(self.operation, outcome)
