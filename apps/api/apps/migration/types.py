"""
Value records passed between parser, importers, orchestrator and ledger.
"""
from dataclasses import dataclass, field, asdict
from typing import Dict, Optional

from .models import ErrorKindChoices


@dataclass(frozen=True)
class RawRow:
    """One source record: lower-cased column name -> trimmed string value."""
    row_index: int
    values: Dict[str, str] = field(default_factory=dict)

    def get(self, name, default=''):
        return self.values.get(name, default)


@dataclass(frozen=True)
class EntityRef:
    """Pointer to an entity created by an importer."""
    entity_type: str
    entity_id: str


@dataclass(frozen=True)
class RowError:
    """
    Why a row did not import.

    transient marks repository failures that may succeed on retry
    (timeouts, lost connections); they feed fatal escalation.
    """
    row_index: int
    message: str
    kind: str = ErrorKindChoices.VALIDATION
    transient: bool = False


@dataclass(frozen=True)
class RowResult:
    """Outcome of importing one row: exactly one of ref, error or duplicate_of."""
    row_index: int
    ref: Optional[EntityRef] = None
    error: Optional[RowError] = None
    duplicate_of: Optional[str] = None

    @classmethod
    def imported(cls, row_index, ref):
        return cls(row_index=row_index, ref=ref)

    @classmethod
    def failed(cls, error):
        return cls(row_index=error.row_index, error=error)

    @classmethod
    def duplicate(cls, row_index, existing_id):
        return cls(row_index=row_index, duplicate_of=str(existing_id))

    @property
    def outcome(self):
        if self.ref is not None:
            return 'imported'
        if self.error is not None:
            return 'failed'
        return 'skipped'


@dataclass
class JobStats:
    """Row counters of a job. Balanced once the job is terminal."""
    total: int = 0
    imported: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def balanced(self):
        return self.total == self.imported + self.skipped + self.failed

    def record(self, outcome):
        self.total += 1
        setattr(self, outcome, getattr(self, outcome) + 1)

    def as_dict(self):
        return asdict(self)
