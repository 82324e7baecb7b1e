"""
Job registry: the only writer of MigrationJob rows.

Every status change runs under SELECT ... FOR UPDATE on the job row and
re-checks the current status inside the lock, so two workers (or a worker
and an API request) can never both move the same job. The row lock is the
single-writer lock for a job; no process-wide lock exists.
"""
from contextlib import contextmanager

from django.db import transaction
from django.utils import timezone

from apps.core.observability import metrics, get_sanitized_logger
from apps.core.observability.events import log_job_created, log_job_transition

from .exceptions import InvalidTransition, JobNotFound
from .models import JobStatusChoices, MigrationJob

logger = get_sanitized_logger(__name__)

# Timestamp written when a job enters each status
STATUS_TIMESTAMPS = {
    JobStatusChoices.RUNNING: 'started_at',
    JobStatusChoices.COMPLETED: 'completed_at',
    JobStatusChoices.FAILED: 'completed_at',
    JobStatusChoices.ROLLED_BACK: 'rolled_back_at',
}


def _as_tuple(statuses):
    if isinstance(statuses, str):
        return (statuses,)
    return tuple(statuses)


class JobRegistry:
    """
    Persistent store of migration jobs for one clinic.

    A registry never sees jobs of other clinics: lookups of a foreign
    job id raise JobNotFound.
    """

    def __init__(self, clinic):
        self.clinic = clinic

    def _queryset(self):
        return MigrationJob.objects.filter(clinic=self.clinic)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, job_id):
        try:
            return self._queryset().get(id=job_id)
        except (MigrationJob.DoesNotExist, ValueError, TypeError):
            raise JobNotFound(f'Job {job_id} not found')

    def list(self):
        return self._queryset().order_by('-created_at', '-id')

    def _lock(self, job_id):
        job = self._queryset().select_for_update().filter(id=job_id).first()
        if job is None:
            raise JobNotFound(f'Job {job_id} not found')
        return job

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, type, input_format, source_name=None, params=None, created_by=None):
        """Create a PENDING job."""
        job = MigrationJob(
            clinic=self.clinic,
            created_by=created_by,
            type=type,
            input_format=input_format,
            source_name=source_name or None,
            params=params or {},
            status=JobStatusChoices.PENDING,
        )
        job.full_clean()
        job.save()

        metrics.migration_jobs_created_total.labels(type=type, input_format=input_format).inc()
        log_job_created(job, source_name=source_name)
        return job

    def _reject(self, job, requested_status):
        metrics.migration_job_transitions_total.labels(
            from_status=job.status, to_status=requested_status, result='rejected'
        ).inc()
        log_job_transition(job, job.status, requested_status, result='rejected')
        return InvalidTransition(job.id, job.status, requested_status)

    def _check(self, job, from_statuses, to_status):
        if job.status not in _as_tuple(from_statuses) or not job.can_transition_to(to_status):
            raise self._reject(job, to_status)

    def apply_transition(self, job, to_status, mutator=None):
        """
        Move an already locked job to to_status.

        Only call inside transition() or hold(), with the row lock held.
        """
        from_status = job.status
        if not job.can_transition_to(to_status):
            raise self._reject(job, to_status)

        if mutator is not None:
            mutator(job)

        job.status = to_status
        stamp = STATUS_TIMESTAMPS.get(to_status)
        if stamp and getattr(job, stamp) is None:
            setattr(job, stamp, timezone.now())

        job.full_clean(exclude=['clinic', 'created_by'])
        job.save()

        metrics.migration_job_transitions_total.labels(
            from_status=from_status, to_status=to_status, result='success'
        ).inc()
        log_job_transition(job, from_status, to_status)
        return job

    def transition(self, job_id, from_status, to_status, mutator=None):
        """
        Atomically verify the job is in from_status, apply mutator, commit to_status.

        Args:
            job_id: MigrationJob id
            from_status: expected current status (or a collection of them)
            to_status: target status
            mutator: optional callable(job) applied before saving

        Raises:
            JobNotFound: no such job in this clinic
            InvalidTransition: current status does not match, or the move is not allowed
        """
        with transaction.atomic():
            job = self._lock(job_id)
            self._check(job, from_status, to_status)
            return self.apply_transition(job, to_status, mutator)

    @contextmanager
    def hold(self, job_id, allowed_statuses, requested_status):
        """
        Hold the job's row lock for a multi-step operation.

        Yields the locked job if its status is in allowed_statuses,
        otherwise raises InvalidTransition before yielding.
        """
        with transaction.atomic():
            job = self._lock(job_id)
            if job.status not in _as_tuple(allowed_statuses):
                raise self._reject(job, requested_status)
            yield job

    def attach_source(self, job_id, blob_key, sha256, size_bytes):
        """
        Attach an uploaded file to a PENDING job.

        A job accepts exactly one upload; a second one is rejected.
        """
        with transaction.atomic():
            job = self._lock(job_id)
            if job.status != JobStatusChoices.PENDING or job.source_blob_key:
                metrics.migration_job_transitions_total.labels(
                    from_status=job.status, to_status=JobStatusChoices.RUNNING, result='rejected'
                ).inc()
                raise InvalidTransition(
                    job.id, job.status, JobStatusChoices.RUNNING,
                    message=f'Job {job.id} already received its file (status {job.status})',
                )
            job.source_blob_key = blob_key
            job.source_sha256 = sha256
            job.source_size_bytes = size_bytes
            job.save(update_fields=['source_blob_key', 'source_sha256', 'source_size_bytes', 'updated_at'])

        logger.info(
            'Migration source attached',
            extra={
                'event': 'migration_source_attached',
                'job_id': job.id,
                'size_bytes': size_bytes,
                'sha256': sha256,
            }
        )
        return job

    def record_progress(self, job_id, stats):
        """
        Persist counters of a RUNNING job.

        Returns False if the job is no longer running (nothing written).
        """
        updated = self._queryset().filter(
            id=job_id, status=JobStatusChoices.RUNNING
        ).update(
            stats_total=stats.total,
            stats_imported=stats.imported,
            stats_skipped=stats.skipped,
            stats_failed=stats.failed,
            updated_at=timezone.now(),
        )
        return updated == 1

    def record_rollback_failure(self, job, message):
        """Store the reason of a failed rollback on a locked job."""
        job.rollback_error = message
        job.save(update_fields=['rollback_error', 'updated_at'])
        return job
