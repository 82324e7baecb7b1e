"""
Rollback engine: compensates a finished job by deleting what it created.

Entries are reverted newest first, each in its own savepoint, while the
job's row lock is held. An entity that is already gone counts as
reverted. The first delete that fails stops the walk: entries reverted
so far stay reverted, the job keeps its terminal status with
rollback_error set, and a retry resumes with the remaining entries.
"""
from apps.core.observability import metrics, get_sanitized_logger
from apps.core.observability.events import log_rollback_outcome
from apps.core.observability.tracing import trace_span

from .exceptions import RepositoryRowError, RollbackCompensationError
from .ledger import ChangeLedger
from .models import JobStatusChoices
from .registry import JobRegistry
from .repositories import RepositorySet

logger = get_sanitized_logger(__name__)

ROLLBACK_FROM = (JobStatusChoices.COMPLETED, JobStatusChoices.FAILED)


class RollbackEngine:

    def __init__(self, clinic, registry=None, repositories=None):
        self.clinic = clinic
        self.registry = registry or JobRegistry(clinic)
        self.repositories = repositories or RepositorySet.for_clinic(clinic)

    def rollback(self, job_id):
        """
        Roll back a COMPLETED or FAILED job.

        Returns:
            the job, now ROLLED_BACK

        Raises:
            JobNotFound: no such job in this clinic
            InvalidTransition: job is PENDING, RUNNING or already ROLLED_BACK
            RollbackCompensationError: an entity could not be deleted
        """
        failure = None
        compensated = 0

        with trace_span('migration_job_rollback', attributes={
            'job_id': job_id,
            'clinic_id': str(self.clinic.id),
        }):
            with self.registry.hold(job_id, ROLLBACK_FROM, JobStatusChoices.ROLLED_BACK) as job:
                ledger = ChangeLedger(job)

                for entry in ledger.pending_compensation():
                    try:
                        repository = self.repositories.for_entity_type(entry.entity_type)
                        deleted = repository.delete(entry.entity_id)
                    except RepositoryRowError as e:
                        failure = RollbackCompensationError(
                            job.id,
                            entry,
                            f'Could not delete {entry.entity_type} {entry.entity_id} '
                            f'(row {entry.row_index}): {e}',
                        )
                        metrics.migration_rollback_entries_total.labels(
                            entity_type=entry.entity_type, result='failed'
                        ).inc()
                        break

                    ledger.mark_reverted(entry)
                    compensated += 1
                    metrics.migration_rollback_entries_total.labels(
                        entity_type=entry.entity_type,
                        result='deleted' if deleted else 'missing',
                    ).inc()
                    if not deleted:
                        logger.warning(
                            'Ledger entity already gone, marking reverted',
                            extra={
                                'event': 'migration_rollback_entity_missing',
                                'job_id': job.id,
                                'entity_type': entry.entity_type,
                                'entity_id': entry.entity_id,
                            }
                        )

                if failure is not None:
                    # Commit the partial progress and the reason, status unchanged
                    self.registry.record_rollback_failure(job, str(failure))
                else:
                    def clear_error(locked_job):
                        locked_job.rollback_error = None

                    job = self.registry.apply_transition(
                        job, JobStatusChoices.ROLLED_BACK, mutator=clear_error
                    )

        if failure is not None:
            metrics.migration_rollbacks_total.labels(type=job.type, result='failure').inc()
            log_rollback_outcome(
                job,
                compensated,
                result='failure',
                failed_entity_type=failure.entry.entity_type,
                failed_entity_id=failure.entry.entity_id,
                reason=failure.reason,
            )
            raise failure

        metrics.migration_rollbacks_total.labels(type=job.type, result='success').inc()
        log_rollback_outcome(job, compensated)
        return job
