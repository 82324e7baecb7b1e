"""
Celery tasks for migration jobs.

Tasks are routed to the 'migration' queue (see CELERY_TASK_ROUTES). With
MIGRATION_EXECUTE_INLINE the enqueue helpers run them in-process instead.
Both tasks carry their own time limits: a job that reaches the soft limit
is failed by the orchestrator instead of being killed while RUNNING.
"""
from celery import shared_task
from django.conf import settings

from apps.core.observability import get_sanitized_logger
from apps.core.observability.correlation import job_context

from .exceptions import InvalidTransition

logger = get_sanitized_logger(__name__)


def _get_clinic(clinic_id):
    from apps.core.models import Clinic
    return Clinic.objects.get(id=clinic_id)


@shared_task(
    bind=True,
    name='apps.migration.tasks.run_migration_job',
    soft_time_limit=settings.MIGRATION_TASK_SOFT_TIME_LIMIT,
    time_limit=settings.MIGRATION_TASK_TIME_LIMIT,
)
def run_migration_job(self, job_id, clinic_id):
    """
    Import the uploaded source of a job.

    Args:
        job_id: MigrationJob ID
        clinic_id: Clinic the job belongs to
    """
    from .orchestrator import MigrationOrchestrator

    with job_context(job_id, clinic_id=clinic_id, task_id=self.request.id):
        orchestrator = MigrationOrchestrator(_get_clinic(clinic_id))
        try:
            job = orchestrator.run(job_id)
        except InvalidTransition as e:
            # Redelivered message for a job another worker already started
            logger.warning(
                'Migration job not started',
                extra={
                    'event': 'migration_job_not_started',
                    'job_id': job_id,
                    'current_status': e.current_status,
                    'reason': str(e),
                }
            )
            return {'job_id': job_id, 'status': e.current_status}
        return {'job_id': job.id, 'status': job.status}


@shared_task(
    bind=True,
    name='apps.migration.tasks.rollback_migration_job',
    soft_time_limit=settings.MIGRATION_TASK_SOFT_TIME_LIMIT,
    time_limit=settings.MIGRATION_TASK_TIME_LIMIT,
)
def rollback_migration_job(self, job_id, clinic_id):
    """
    Compensate everything a finished job created.

    RollbackCompensationError propagates: the task fails and the job
    keeps its status with rollback_error set.
    """
    from .rollback import RollbackEngine

    with job_context(job_id, clinic_id=clinic_id, task_id=self.request.id):
        job = RollbackEngine(_get_clinic(clinic_id)).rollback(job_id)
        return {'job_id': job.id, 'status': job.status}


def _enqueue(task, job):
    args = [job.id, str(job.clinic_id)]
    if getattr(settings, 'MIGRATION_EXECUTE_INLINE', False):
        return task.apply(args=args, throw=True)
    return task.delay(*args)


def enqueue_import(job):
    """Queue the import of an uploaded job (or run it now when inline)."""
    return _enqueue(run_migration_job, job)


def enqueue_rollback(job):
    """Queue a rollback (or run it now when inline; errors propagate)."""
    return _enqueue(rollback_migration_job, job)
