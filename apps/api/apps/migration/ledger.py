"""
Change ledger: append-only record of entities a job created.

append() must run inside the same transaction as the entity insert so a
row either has both or neither. Rollback walks pending_compensation()
(newest first) and stamps each entry with mark_reverted().
"""
from django.db.models import Max
from django.utils import timezone

from .models import MigrationLedgerEntry


class ChangeLedger:
    """Ledger of one job."""

    def __init__(self, job):
        self.job = job
        self._next_sequence = None

    def _allocate_sequence(self):
        if self._next_sequence is None:
            current = (
                MigrationLedgerEntry.objects
                .filter(job=self.job)
                .aggregate(last=Max('sequence'))['last']
            )
            self._next_sequence = 0 if current is None else current + 1
        sequence = self._next_sequence
        self._next_sequence += 1
        return sequence

    def append(self, row_index, ref):
        """Record that row_index created ref (an EntityRef)."""
        sequence = self._allocate_sequence()
        try:
            return MigrationLedgerEntry.objects.create(
                job=self.job,
                sequence=sequence,
                row_index=row_index,
                entity_type=ref.entity_type,
                entity_id=str(ref.entity_id),
            )
        except Exception:
            # The row's transaction is rolled back; reuse the number
            self._next_sequence = sequence
            raise

    def entries(self):
        return MigrationLedgerEntry.objects.filter(job=self.job).order_by('sequence')

    def pending_compensation(self):
        """Entries not yet reverted, newest first."""
        return (
            MigrationLedgerEntry.objects
            .filter(job=self.job, reverted_at__isnull=True)
            .order_by('-sequence')
        )

    def mark_reverted(self, entry):
        entry.reverted_at = timezone.now()
        entry.save(update_fields=['reverted_at'])
        return entry

    def size(self):
        return MigrationLedgerEntry.objects.filter(job=self.job).count()
