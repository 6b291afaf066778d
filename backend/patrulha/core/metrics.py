"""Prometheus metrics collection for observability."""

from prometheus_client import (
    Counter,
    Histogram,
    generate_latest,
    REGISTRY,
)

# HTTP Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Import Metrics
import_runs_total = Counter(
    "import_runs_total",
    "Total number of property import runs",
    ["action", "outcome"],
)

import_rows_total = Counter(
    "import_rows_total",
    "Total number of imported rows by terminal status",
    ["status"],
)

import_row_errors_total = Counter(
    "import_row_errors_total",
    "Total number of row-level import errors",
    ["error_type"],
)

# Database Metrics
db_connection_attempts_total = Counter(
    "db_connection_attempts_total",
    "Total number of database connection attempts",
    ["status"],
)

db_query_duration_seconds = Histogram(
    "db_query_duration_seconds",
    "Database query duration in seconds",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

# Error Metrics
errors_total = Counter(
    "errors_total",
    "Total number of errors",
    ["error_code", "error_category"],
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_http_request(method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        http_requests_total.labels(method=method, endpoint=endpoint, status_code=status_code).inc()
        http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)

    @staticmethod
    def record_import_run(action: str, outcome: str):
        """Record an analyze/import/diagnose run."""
        import_runs_total.labels(action=action, outcome=outcome).inc()

    @staticmethod
    def record_import_row(status: str):
        """Record a row reaching a terminal status (success, failed, skipped)."""
        import_rows_total.labels(status=status).inc()

    @staticmethod
    def record_row_error(error_type: str):
        """Record a row-level error classification."""
        import_row_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def record_db_connection_attempt(status: str):
        """Record database connection attempt."""
        db_connection_attempts_total.labels(status=status).inc()

    @staticmethod
    def record_db_query(duration: float):
        """Record database query duration."""
        db_query_duration_seconds.observe(duration)

    @staticmethod
    def record_error(error_code: str, error_category: str):
        """Record error occurrence."""
        errors_total.labels(error_code=error_code, error_category=error_category).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Get Prometheus metrics in text format."""
        return generate_latest(REGISTRY)


# Global instance
metrics = MetricsCollector()
