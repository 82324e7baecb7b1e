"""
Migration engine exceptions.

Row-level problems never surface as exceptions outside the import loop;
they become RowError records. The exceptions below are the ones callers
see: rejected transitions, fatal stream errors and failed rollbacks.
"""


class MigrationError(Exception):
    """Base class for migration engine errors."""


class JobNotFound(MigrationError):
    """Job does not exist in this clinic."""


class InvalidTransition(MigrationError):
    """Requested status change is not allowed from the job's current state."""

    def __init__(self, job_id, current_status, requested_status, message=None):
        self.job_id = job_id
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            message or f'Job {job_id} cannot move from {current_status} to {requested_status}'
        )


class FatalStreamError(MigrationError):
    """The source cannot be read any further (bad encoding, truncated, not JSON)."""


class RowValidationError(MigrationError):
    """A row's values violate the importer's rules."""


class RepositoryRowError(MigrationError):
    """The repository rejected a single row (constraint, missing reference)."""


class RepositoryUnavailable(RepositoryRowError):
    """
    Transient repository failure (database outage, statement timeout).

    Counts towards the consecutive-failure streak that aborts a job.
    """


class RollbackCompensationError(MigrationError):
    """A compensating delete failed; the job keeps its terminal state."""

    def __init__(self, job_id, entry, reason):
        self.job_id = job_id
        self.entry = entry
        self.reason = reason
        super().__init__(reason)
