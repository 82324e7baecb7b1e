"""
Metrics instrumentation wrapper around prometheus_client.
"""
from prometheus_client import Counter, Gauge, Histogram


class MetricsRegistry:
    """
    Central metrics registry.

    Provides typed access to all application metrics.
    """

    def __init__(self):
        """Initialize metrics registry."""
        self._setup_metrics()

    def _create_counter(self, name, description, labels=None):
        """Create a counter metric."""
        return Counter(name, description, labels or [])

    def _create_histogram(self, name, description, labels=None, buckets=None):
        """Create a histogram metric."""
        if buckets:
            return Histogram(name, description, labels or [], buckets=buckets)
        return Histogram(name, description, labels or [])

    def _create_gauge(self, name, description, labels=None):
        """Create a gauge metric."""
        return Gauge(name, description, labels or [])

    def _setup_metrics(self):
        """Setup all application metrics."""

        # ===================================================================
        # HTTP Metrics
        # ===================================================================
        self.http_requests_total = self._create_counter(
            'http_requests_total',
            'Total HTTP requests',
            ['path', 'method', 'status']
        )

        self.exceptions_total = self._create_counter(
            'exceptions_total',
            'Total exceptions',
            ['exception_type', 'location']
        )

        # ===================================================================
        # Migration Job Metrics
        # ===================================================================
        self.migration_jobs_created_total = self._create_counter(
            'migration_jobs_created_total',
            'Migration jobs created',
            ['type', 'input_format']
        )

        self.migration_job_transitions_total = self._create_counter(
            'migration_job_transitions_total',
            'Migration job status transitions',
            ['from_status', 'to_status', 'result']  # result: success|rejected
        )

        self.migration_jobs_running = self._create_gauge(
            'migration_jobs_running',
            'Migration jobs currently executing in this process'
        )

        self.migration_job_duration_seconds = self._create_histogram(
            'migration_job_duration_seconds',
            'Wall time from RUNNING to a terminal state',
            ['type', 'status'],
            buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0, 1800.0]
        )

        self.migration_rows_total = self._create_counter(
            'migration_rows_total',
            'Imported rows by outcome',
            ['type', 'outcome']  # outcome: imported|failed|skipped
        )

        self.migration_row_duration_seconds = self._create_histogram(
            'migration_row_duration_seconds',
            'Duration of a single row import (validate + write + ledger)',
            ['type'],
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 1.0, 5.0, 10.0]
        )

        self.migration_row_errors_total = self._create_counter(
            'migration_row_errors_total',
            'Row errors by kind',
            ['type', 'kind']  # kind: parse|validation|repository|fatal
        )

        self.migration_fatal_escalations_total = self._create_counter(
            'migration_fatal_escalations_total',
            'Jobs aborted after consecutive transient repository failures',
            ['type']
        )

        self.migration_rollbacks_total = self._create_counter(
            'migration_rollbacks_total',
            'Rollback attempts',
            ['type', 'result']  # result: success|failure|rejected
        )

        self.migration_rollback_entries_total = self._create_counter(
            'migration_rollback_entries_total',
            'Ledger entries compensated during rollback',
            ['entity_type', 'result']  # result: deleted|missing|failed
        )


# Global metrics instance
metrics = MetricsRegistry()
