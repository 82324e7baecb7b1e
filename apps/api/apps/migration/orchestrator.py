"""
Job orchestrator: drives a job through parse -> import -> finalize.

Row handling:
- Each row runs in its own transaction. The entity insert and its ledger
  entry commit together, or the row leaves nothing behind.
- Row errors are written as they happen; counters are flushed every
  MIGRATION_PROGRESS_FLUSH_EVERY rows and at the terminal transition.
- A row slower than MIGRATION_ROW_TIMEOUT_SECONDS is rolled back and
  counted as a transient repository failure (PostgreSQL also enforces
  the limit through statement_timeout).
- MIGRATION_FATAL_ERROR_STREAK consecutive transient failures abort the
  job; unread rows are drained without writes and counted as skipped.
- A FatalStreamError (source unreadable) fails the job immediately.

Finishing COMPLETED does not mean every row imported: failed rows are
reported through stats and errors.
"""
import time

from django.conf import settings
from django.db import connection, transaction

from apps.core.observability import metrics, get_sanitized_logger
from apps.core.observability.events import (
    log_consistency_checkpoint,
    log_fatal_escalation,
    log_job_finished,
)
from apps.core.observability.tracing import add_span_attribute, trace_span

from .blobstore import BlobStore
from .exceptions import FatalStreamError, InvalidTransition
from .importers import get_importer
from .ledger import ChangeLedger
from .models import ErrorKindChoices, JobStatusChoices, MigrationJobError
from .parsers import iter_rows
from .registry import JobRegistry
from .repositories import RepositorySet
from .types import JobStats, RowError, RowResult

logger = get_sanitized_logger(__name__)


class RowTimeout(Exception):
    """Raised inside a row transaction to discard a row that ran over its time limit."""

    def __init__(self, result):
        self.result = result
        super().__init__('row exceeded its time limit')


class MigrationOrchestrator:
    """
    Runs migration jobs of one clinic.

    Usage:
        orchestrator = MigrationOrchestrator(clinic)
        orchestrator.accept_upload(job.id, request.FILES['file'])
        orchestrator.run(job.id)   # in a worker
    """

    def __init__(self, clinic, registry=None, repositories=None, blobstore=None):
        self.clinic = clinic
        self.registry = registry or JobRegistry(clinic)
        self.repositories = repositories or RepositorySet.for_clinic(clinic)
        self.blobstore = blobstore or BlobStore()
        self.row_timeout = float(getattr(settings, 'MIGRATION_ROW_TIMEOUT_SECONDS', 10))
        self.fatal_streak = int(getattr(settings, 'MIGRATION_FATAL_ERROR_STREAK', 3))
        self.flush_every = max(1, int(getattr(settings, 'MIGRATION_PROGRESS_FLUSH_EVERY', 50)))

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def accept_upload(self, job_id, uploaded_file):
        """
        Store the uploaded source and attach it to a PENDING job.

        The stored blob is removed again if the job refuses it.
        """
        job = self.registry.get(job_id)
        if job.status != JobStatusChoices.PENDING or job.source_blob_key:
            raise InvalidTransition(
                job.id, job.status, JobStatusChoices.RUNNING,
                message=f'Job {job.id} already received its file (status {job.status})',
            )

        key, sha256, size = self.blobstore.save(job, uploaded_file)
        try:
            return self.registry.attach_source(job.id, key, sha256, size)
        except InvalidTransition:
            self.blobstore.delete(key)
            raise

    def run(self, job_id):
        """Worker entry point: import the job's uploaded source."""
        job = self.registry.get(job_id)
        if not job.source_blob_key:
            raise InvalidTransition(
                job.id, job.status, JobStatusChoices.RUNNING,
                message=f'Job {job.id} has no uploaded file',
            )
        with self.blobstore.open(job.source_blob_key) as stream:
            return self.start(job.id, stream)

    def start(self, job_id, stream):
        """
        Import stream into job_id.

        Raises:
            InvalidTransition: job is not PENDING (already started or finished)

        Returns:
            the job in its terminal state (COMPLETED or FAILED)
        """
        job = self.registry.transition(job_id, JobStatusChoices.PENDING, JobStatusChoices.RUNNING)
        started = time.monotonic()

        metrics.migration_jobs_running.inc()
        try:
            with trace_span('migration_job_run', kind='consumer', attributes={
                'job_id': job.id,
                'clinic_id': str(job.clinic_id),
                'job_type': job.type,
                'input_format': job.input_format,
            }):
                job = self._process(job, stream)
                add_span_attribute('rows_total', job.stats_total)
                add_span_attribute('rows_failed', job.stats_failed)
        finally:
            metrics.migration_jobs_running.dec()

        duration = time.monotonic() - started
        metrics.migration_job_duration_seconds.labels(type=job.type, status=job.status).observe(duration)
        log_job_finished(job, duration_ms=int(duration * 1000))
        return job

    # ------------------------------------------------------------------
    # Import loop
    # ------------------------------------------------------------------

    def _process(self, job, stream):
        stats = JobStats()
        ledger = ChangeLedger(job)
        fatal = None
        next_index = 0

        try:
            importer = get_importer(job, self.repositories)
            rows = iter_rows(stream, job.input_format, job.params)
            streak = 0

            for item in rows:
                next_index = item.row_index + 1

                if isinstance(item, RowError):
                    result = RowResult.failed(item)
                else:
                    result = self._import_one(job, importer, ledger, item)

                self._account(job, stats, result)

                if result.error is not None and result.error.transient:
                    streak += 1
                    if streak >= self.fatal_streak:
                        fatal = RowError(
                            row_index=next_index,
                            message=(
                                f'Aborted after {streak} consecutive repository failures; '
                                f'last: {result.error.message}'
                            ),
                            kind=ErrorKindChoices.FATAL,
                        )
                        metrics.migration_fatal_escalations_total.labels(type=job.type).inc()
                        log_fatal_escalation(job, result.row_index, streak, result.error.message)
                        self._drain(job, rows, stats)
                        break
                else:
                    streak = 0

                if stats.total % self.flush_every == 0:
                    self.registry.record_progress(job.id, stats)

        except FatalStreamError as e:
            fatal = RowError(row_index=next_index, message=str(e), kind=ErrorKindChoices.FATAL)
            logger.warning(
                'Migration source unreadable',
                extra={'event': 'migration_stream_fatal', 'job_id': job.id, 'row_index': next_index, 'reason': str(e)}
            )
        except Exception as e:
            # Anything else, including the task soft time limit: never leave the job RUNNING
            logger.error(
                'Migration job crashed',
                exc_info=True,
                extra={'event': 'migration_job_crashed', 'job_id': job.id, 'row_index': next_index}
            )
            metrics.exceptions_total.labels(
                exception_type=e.__class__.__name__, location='migration_orchestrator'
            ).inc()
            fatal = RowError(
                row_index=next_index,
                message=f'Internal error: {e.__class__.__name__}',
                kind=ErrorKindChoices.FATAL,
            )

        return self._finalize(job, stats, fatal, ledger)

    def _import_one(self, job, importer, ledger, raw_row):
        """Import one row inside its own transaction."""
        started = time.monotonic()
        try:
            with transaction.atomic():
                self._apply_statement_timeout()
                result = importer.import_row(raw_row)
                if result.ref is not None:
                    ledger.append(raw_row.row_index, result.ref)
                if result.ref is not None and time.monotonic() - started > self.row_timeout:
                    raise RowTimeout(result)
        except RowTimeout:
            result = RowResult.failed(RowError(
                row_index=raw_row.row_index,
                message=f'Row took longer than {self.row_timeout:g}s and was rolled back',
                kind=ErrorKindChoices.REPOSITORY,
                transient=True,
            ))
        finally:
            metrics.migration_row_duration_seconds.labels(type=job.type).observe(time.monotonic() - started)
        return result

    def _apply_statement_timeout(self):
        if connection.vendor == 'postgresql':
            with connection.cursor() as cursor:
                cursor.execute('SET LOCAL statement_timeout = %s', [int(self.row_timeout * 1000)])

    def _account(self, job, stats, result):
        outcome = result.outcome
        stats.record(outcome)
        metrics.migration_rows_total.labels(type=job.type, outcome=outcome).inc()
        if result.error is not None:
            self._record_error(job, result.error)

    def _record_error(self, job, error):
        MigrationJobError.objects.create(
            job=job,
            row_index=error.row_index,
            kind=error.kind,
            message=error.message,
        )
        metrics.migration_row_errors_total.labels(type=job.type, kind=error.kind).inc()

    def _drain(self, job, rows, stats):
        """Count the rows left in the source as skipped, without importing them."""
        try:
            for _ in rows:
                stats.record('skipped')
                metrics.migration_rows_total.labels(type=job.type, outcome='skipped').inc()
        except FatalStreamError as e:
            # What was counted before the break stands
            logger.warning(
                'Migration source unreadable while draining',
                extra={'event': 'migration_drain_stopped', 'job_id': job.id, 'skipped': stats.skipped, 'reason': str(e)}
            )

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------

    def _finalize(self, job, stats, fatal, ledger):
        if fatal is not None:
            self._record_error(job, fatal)
            target = JobStatusChoices.FAILED
        else:
            target = JobStatusChoices.COMPLETED

        def apply_stats(locked_job):
            locked_job.stats_total = stats.total
            locked_job.stats_imported = stats.imported
            locked_job.stats_skipped = stats.skipped
            locked_job.stats_failed = stats.failed

        job = self.registry.transition(job.id, JobStatusChoices.RUNNING, target, mutator=apply_stats)

        ledger_size = ledger.size()
        log_consistency_checkpoint(
            'migration_job_row_accounting',
            entity_ids={'job_id': str(job.id), 'clinic_id': str(job.clinic_id)},
            checks_passed={
                'rows_balanced': stats.balanced,
                'ledger_matches_imported': ledger_size == stats.imported,
            },
            total=stats.total,
            imported=stats.imported,
            skipped=stats.skipped,
            failed=stats.failed,
            ledger_size=ledger_size,
        )
        return job
