"""
Domain events logging helpers.

Provides structured event logging for business operations.
"""
from typing import Dict, Optional
from .logging import get_sanitized_logger, sanitize_dict

logger = get_sanitized_logger(__name__)


def log_domain_event(
    event_name: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_ids: Optional[Dict[str, str]] = None,
    result: str = 'success',
    **extra_fields
):
    """
    Log a domain event with structured data.

    Args:
        event_name: Name of the event (e.g., 'migration_job_transition')
        entity_type: Type of entity (e.g., 'MigrationJob')
        entity_id: ID of primary entity
        entity_ids: Dictionary of related entity IDs
        result: Result of operation (success, failure, etc.)
        **extra_fields: Additional fields to log (will be sanitized)

    Example:
        log_domain_event(
            'migration_job_finished',
            entity_type='MigrationJob',
            entity_id=str(job.id),
            entity_ids={'job_id': str(job.id), 'clinic_id': str(job.clinic_id)},
            result='success',
            imported=120,
            failed=3
        )
    """
    event_data = {
        'event': event_name,
        'result': result,
    }

    if entity_type:
        event_data['entity_type'] = entity_type

    if entity_id:
        event_data['entity_id'] = entity_id

    if entity_ids:
        event_data.update(entity_ids)

    event_data.update(sanitize_dict(extra_fields))

    # Log at appropriate level based on result
    if result in ['failure', 'error']:
        logger.error(f'Domain event: {event_name}', extra=event_data)
    elif result in ['warning', 'blocked', 'rejected']:
        logger.warning(f'Domain event: {event_name}', extra=event_data)
    else:
        logger.info(f'Domain event: {event_name}', extra=event_data)


def log_consistency_checkpoint(
    checkpoint_name: str,
    entity_ids: Dict[str, str],
    checks_passed: Dict[str, bool],
    **extra_fields
):
    """
    Log a consistency checkpoint event.

    Used to verify data integrity at critical points.

    Args:
        checkpoint_name: Name of checkpoint (e.g., 'migration_job_row_accounting')
        entity_ids: Dictionary of entity IDs involved
        checks_passed: Dictionary of check results {check_name: passed}
        **extra_fields: Additional context

    Example:
        log_consistency_checkpoint(
            'migration_job_row_accounting',
            entity_ids={'job_id': str(job.id)},
            checks_passed={
                'rows_balanced': True,
                'ledger_matches_imported': True,
            },
            total=10,
            imported=9
        )
    """
    all_passed = all(checks_passed.values())

    event_data = {
        'event': 'consistency_checkpoint',
        'checkpoint': checkpoint_name,
        'status': 'passed' if all_passed else 'failed',
        'checks': checks_passed,
    }
    event_data.update(entity_ids)
    event_data.update(sanitize_dict(extra_fields))

    if all_passed:
        logger.info(f'Checkpoint passed: {checkpoint_name}', extra=event_data)
    else:
        logger.error(f'Checkpoint FAILED: {checkpoint_name}', extra=event_data)


def _job_ids(job):
    return {'job_id': str(job.id), 'clinic_id': str(job.clinic_id)}


def log_job_created(job, **extra):
    """Log migration job creation."""
    log_domain_event(
        'migration_job_created',
        entity_type='MigrationJob',
        entity_id=str(job.id),
        entity_ids=_job_ids(job),
        job_type=job.type,
        input_format=job.input_format,
        **extra
    )


def log_job_transition(job, from_status, to_status, result='success', **extra):
    """Log migration job status transition event."""
    log_domain_event(
        'migration_job_transition',
        entity_type='MigrationJob',
        entity_id=str(job.id),
        entity_ids=_job_ids(job),
        result=result,
        from_status=from_status,
        to_status=to_status,
        **extra
    )


def log_job_finished(job, duration_ms=None):
    """Log the terminal outcome of a migration run with its stats."""
    extra = {
        'job_type': job.type,
        'status': job.status,
        'total': job.stats_total,
        'imported': job.stats_imported,
        'skipped': job.stats_skipped,
        'failed': job.stats_failed,
    }
    if duration_ms is not None:
        extra['duration_ms'] = duration_ms

    log_domain_event(
        'migration_job_finished',
        entity_type='MigrationJob',
        entity_id=str(job.id),
        entity_ids=_job_ids(job),
        result='success' if job.status == 'completed' else 'failure',
        **extra
    )


def log_fatal_escalation(job, row_index, streak, reason):
    """Log a job aborted after consecutive transient repository failures."""
    log_domain_event(
        'migration_job_fatal_escalation',
        entity_type='MigrationJob',
        entity_id=str(job.id),
        entity_ids=_job_ids(job),
        result='error',
        row_index=row_index,
        streak=streak,
        reason=reason,
    )


def log_rollback_outcome(job, compensated, result='success', **extra):
    """Log the outcome of a rollback attempt."""
    log_domain_event(
        'migration_job_rollback',
        entity_type='MigrationJob',
        entity_id=str(job.id),
        entity_ids=_job_ids(job),
        result=result,
        job_type=job.type,
        compensated=compensated,
        **extra
    )
