"""
Migration models: migration_job, migration_job_error, migration_ledger_entry.

A job moves through:
    pending -> running -> completed | failed
    completed | failed -> rolled_back

Job rows are written only by JobRegistry (status, timestamps, stats).
Errors and ledger entries are append-only; ledger entries are never
deleted, rollback stamps reverted_at instead.
"""
from django.conf import settings
from django.db import models
from django.db.models import F, Q


# ============================================================================
# Enums
# ============================================================================

class JobTypeChoices(models.TextChoices):
    """Data domain imported by a job"""
    PATIENTS = 'patients', 'Patients'
    APPOINTMENTS = 'appointments', 'Appointments'
    CLINICAL = 'clinical', 'Clinical Records'
    FINANCIAL = 'financial', 'Financial'


class InputFormatChoices(models.TextChoices):
    """Uploaded file format"""
    CSV = 'csv', 'CSV'
    JSON = 'json', 'JSON'


class JobStatusChoices(models.TextChoices):
    """
    Job status with allowed transitions:
    - pending -> running
    - running -> completed | failed
    - completed -> rolled_back
    - failed -> rolled_back
    - rolled_back is terminal
    """
    PENDING = 'pending', 'Pending'
    RUNNING = 'running', 'Running'
    COMPLETED = 'completed', 'Completed'
    FAILED = 'failed', 'Failed'
    ROLLED_BACK = 'rolled_back', 'Rolled Back'


class ErrorKindChoices(models.TextChoices):
    """Where a row error came from"""
    PARSE = 'parse', 'Parse'
    VALIDATION = 'validation', 'Validation'
    REPOSITORY = 'repository', 'Repository'
    FATAL = 'fatal', 'Fatal'


class EntityTypeChoices(models.TextChoices):
    """Entities the engine creates (and may delete on rollback)"""
    PATIENT = 'patient', 'Patient'
    APPOINTMENT = 'appointment', 'Appointment'
    ENCOUNTER = 'encounter', 'Encounter'
    RECEIVABLE = 'receivable', 'Receivable'


# ============================================================================
# Models
# ============================================================================

class MigrationJob(models.Model):
    """
    One bulk import of a single file into one clinic.

    stats_* counters only grow while running. Once a job leaves
    pending/running, total == imported + skipped + failed (db-enforced).
    """
    id = models.BigAutoField(primary_key=True)
    clinic = models.ForeignKey(
        'core.Clinic',
        on_delete=models.PROTECT,
        related_name='migration_jobs'
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='migration_jobs'
    )
    type = models.CharField(max_length=20, choices=JobTypeChoices.choices)
    input_format = models.CharField(max_length=10, choices=InputFormatChoices.choices)
    source_name = models.CharField(max_length=255, blank=True, null=True)
    params = models.JSONField(
        default=dict,
        blank=True,
        help_text="Parser options: delimiter, encoding"
    )
    status = models.CharField(
        max_length=20,
        choices=JobStatusChoices.choices,
        default=JobStatusChoices.PENDING
    )

    # Row accounting
    stats_total = models.PositiveIntegerField(default=0)
    stats_imported = models.PositiveIntegerField(default=0)
    stats_skipped = models.PositiveIntegerField(default=0)
    stats_failed = models.PositiveIntegerField(default=0)

    # Uploaded source
    source_blob_key = models.CharField(max_length=512, blank=True, null=True)
    source_sha256 = models.CharField(max_length=64, blank=True, null=True)
    source_size_bytes = models.BigIntegerField(blank=True, null=True)

    rollback_error = models.TextField(blank=True, null=True)

    # Lifecycle timestamps, each written once
    created_at = models.DateTimeField(auto_now_add=True)
    started_at = models.DateTimeField(blank=True, null=True)
    completed_at = models.DateTimeField(blank=True, null=True)
    rolled_back_at = models.DateTimeField(blank=True, null=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'migration_job'
        verbose_name = 'Migration Job'
        verbose_name_plural = 'Migration Jobs'
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['clinic', '-created_at'], name='idx_migration_job_clinic'),
            models.Index(fields=['status'], name='idx_migration_job_status'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(status__in=['pending', 'running'])
                    | Q(stats_total=F('stats_imported') + F('stats_skipped') + F('stats_failed'))
                ),
                name='migration_job_rows_balanced'
            ),
        ]

    def __str__(self):
        return f"Job #{self.id} {self.type}/{self.input_format} ({self.status})"

    @classmethod
    def get_valid_transitions(cls):
        """
        Get valid status transitions.

        Returns dict: {current_status: [allowed_next_statuses]}
        """
        return {
            JobStatusChoices.PENDING: [JobStatusChoices.RUNNING],
            JobStatusChoices.RUNNING: [JobStatusChoices.COMPLETED, JobStatusChoices.FAILED],
            JobStatusChoices.COMPLETED: [JobStatusChoices.ROLLED_BACK],
            JobStatusChoices.FAILED: [JobStatusChoices.ROLLED_BACK],
            JobStatusChoices.ROLLED_BACK: [],  # Terminal
        }

    def can_transition_to(self, new_status):
        """Check if transition to new_status is valid."""
        return new_status in self.get_valid_transitions().get(self.status, [])

    @property
    def is_rollback_eligible(self):
        return self.can_transition_to(JobStatusChoices.ROLLED_BACK)

    @property
    def stats(self):
        from .types import JobStats
        return JobStats(
            total=self.stats_total,
            imported=self.stats_imported,
            skipped=self.stats_skipped,
            failed=self.stats_failed,
        )


class MigrationJobError(models.Model):
    """A failed row (or the fatal error that stopped a job)."""
    id = models.BigAutoField(primary_key=True)
    job = models.ForeignKey(
        'MigrationJob',
        on_delete=models.CASCADE,
        related_name='errors'
    )
    row_index = models.PositiveIntegerField(help_text="Zero-based position in the source file")
    kind = models.CharField(max_length=20, choices=ErrorKindChoices.choices)
    message = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'migration_job_error'
        verbose_name = 'Migration Job Error'
        verbose_name_plural = 'Migration Job Errors'
        ordering = ['row_index', 'id']
        indexes = [
            models.Index(fields=['job', 'row_index'], name='idx_migration_error_row'),
        ]

    def __str__(self):
        return f"Job #{self.job_id} row {self.row_index}: {self.kind}"


class MigrationLedgerEntry(models.Model):
    """
    Entity created by a job, in creation order.

    The entity row and its ledger entry commit in the same transaction.
    """
    id = models.BigAutoField(primary_key=True)
    job = models.ForeignKey(
        'MigrationJob',
        on_delete=models.PROTECT,
        related_name='ledger_entries'
    )
    sequence = models.PositiveIntegerField()
    row_index = models.PositiveIntegerField()
    entity_type = models.CharField(max_length=20, choices=EntityTypeChoices.choices)
    entity_id = models.CharField(max_length=64)
    created_at = models.DateTimeField(auto_now_add=True)
    reverted_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        db_table = 'migration_ledger_entry'
        verbose_name = 'Migration Ledger Entry'
        verbose_name_plural = 'Migration Ledger Entries'
        ordering = ['job', 'sequence']
        constraints = [
            models.UniqueConstraint(fields=['job', 'sequence'], name='uniq_migration_ledger_sequence'),
        ]
        indexes = [
            models.Index(fields=['entity_type', 'entity_id'], name='idx_migration_ledger_entity'),
        ]

    def __str__(self):
        return f"Job #{self.job_id} #{self.sequence} {self.entity_type}:{self.entity_id}"
