"""
Importer base: row -> validated fields -> repository create.

An importer never raises for a bad row. import_row() always returns a
RowResult; the orchestrator decides what to do with it.
"""
import re
from datetime import datetime, time
from decimal import Decimal, InvalidOperation

from django.core.exceptions import ValidationError
from django.core.validators import validate_email
from django.db import InterfaceError, OperationalError
from django.utils import timezone
from django.utils.dateparse import parse_datetime as django_parse_datetime

from ..catalogs import fold
from ..exceptions import RepositoryRowError, RepositoryUnavailable, RowValidationError
from ..models import ErrorKindChoices
from ..types import EntityRef, RowError, RowResult

DATE_FORMATS = ('%Y-%m-%d', '%d/%m/%Y', '%d-%m-%Y')
DATETIME_FORMATS = (
    '%Y-%m-%d %H:%M',
    '%Y-%m-%d %H:%M:%S',
    '%d/%m/%Y %H:%M',
    '%d/%m/%Y %H:%M:%S',
)
AMOUNT_RE = re.compile(r'^-?\d+(\.\d+)?$')
EXPONENT_RE = re.compile(r'\d\s*[eE]\s*[+\-]?\d')


# ============================================================================
# Value parsers (raise ValueError with a readable message)
# ============================================================================

def parse_date(value):
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"'{value}' is not a date (use YYYY-MM-DD or DD/MM/YYYY)")


def parse_datetime(value, tzinfo, allow_date=False):
    """
    Parse ISO 8601 or DD/MM/YYYY HH:MM. Naive values are read in tzinfo.
    With allow_date, a bare date means midnight local time.
    """
    parsed = None
    try:
        parsed = django_parse_datetime(value)
    except ValueError:
        parsed = None
    if parsed is None:
        for fmt in DATETIME_FORMATS:
            try:
                parsed = datetime.strptime(value, fmt)
                break
            except ValueError:
                continue
    if parsed is None and allow_date:
        parsed = datetime.combine(parse_date(value), time.min)
    if parsed is None:
        raise ValueError(f"'{value}' is not a date and time (use YYYY-MM-DD HH:MM or DD/MM/YYYY HH:MM)")
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, tzinfo)
    return parsed


def parse_amount(value):
    """
    Parse a money amount: '1234.56', '1234,56', '1.234,56', '1,234.56', 'R$ 10,00'.
    """
    if EXPONENT_RE.search(value):
        raise ValueError(f"'{value}' is not an amount (write it without an exponent)")
    text = re.sub(r'[^\d,.\-]', '', value)
    if ',' in text and '.' in text:
        if text.rfind(',') > text.rfind('.'):
            text = text.replace('.', '').replace(',', '.')
        else:
            text = text.replace(',', '')
    elif ',' in text:
        head, _, tail = text.rpartition(',')
        if len(tail) in (1, 2) and text.count(',') == 1:
            text = f'{head}.{tail}'
        else:
            text = text.replace(',', '')
    if not AMOUNT_RE.match(text):
        raise ValueError(f"'{value}' is not an amount")
    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"'{value}' is not an amount")
    return amount.quantize(Decimal('0.01'))


def parse_int(value):
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"'{value}' is not a whole number")


def parse_email(value):
    try:
        validate_email(value)
    except ValidationError:
        raise ValueError(f"'{value}' is not a valid email address")
    return value.lower()


def digits_only(value):
    return re.sub(r'\D', '', value)


def choice_parser(mapping, label):
    """Build a parser that maps folded text through mapping."""
    def parse(value):
        key = fold(value).replace('-', ' ').replace('_', ' ')
        try:
            return mapping[key]
        except KeyError:
            raise ValueError(f"'{value}' is not a valid {label}")
    return parse


# ============================================================================
# Row reader
# ============================================================================

class RowReader:
    """
    Collects field values and their problems for one row.

    Every accessor records an error instead of raising, so a row
    reports all of its invalid fields at once. Call check() last.
    """

    def __init__(self, values):
        self.values = values
        self.errors = []

    def raw(self, name):
        return self.values.get(name, '')

    def has(self, name):
        return bool(self.raw(name))

    def text(self, name, required=False, max_length=None):
        value = self.raw(name)
        if not value:
            if required:
                self.errors.append(f'{name} is required')
            return None
        if max_length and len(value) > max_length:
            self.errors.append(f'{name} is longer than {max_length} characters')
            return None
        return value

    def value(self, name, parser, required=False):
        value = self.raw(name)
        if not value:
            if required:
                self.errors.append(f'{name} is required')
            return None
        try:
            return parser(value)
        except ValueError as e:
            self.errors.append(f'{name}: {e}')
            return None

    def error(self, message):
        self.errors.append(message)

    def check(self):
        if self.errors:
            raise RowValidationError('; '.join(self.errors))


# ============================================================================
# Importer
# ============================================================================

class BaseImporter:
    """
    Strategy for one job type.

    Subclasses define:
    - entity_type: ledger entity type of created records
    - aliases: {source column name: canonical column name}
    - template_columns: canonical columns offered in the CSV template
    - repository(): the EntityRepository rows are written to
    - build(reader): validated model fields for one row
    """
    job_type = None
    entity_type = None
    aliases = {}
    template_columns = ()

    # Columns shared by every importer
    common_aliases = {
        'id_externo': 'external_id',
        'codigo': 'external_id',
        'id_origem': 'external_id',
    }

    def __init__(self, job, repositories):
        self.job = job
        self.clinic = job.clinic
        self.repositories = repositories
        self.tzinfo = self.clinic.tzinfo

    def repository(self):
        raise NotImplementedError

    def build(self, reader):
        raise NotImplementedError

    def local_today(self):
        return timezone.now().astimezone(self.tzinfo).date()

    def canonicalize(self, values):
        """Rename alias columns; an explicit canonical column wins over an alias."""
        aliases = {**self.common_aliases, **self.aliases}
        canonical = {name: value for name, value in values.items() if name not in aliases}
        for name, value in values.items():
            target = aliases.get(name)
            if target and value and not canonical.get(target):
                canonical[target] = value
        return canonical

    def resolve_patient(self, reader, required=True):
        """Find the row's patient by patient_external_id, patient_cpf or patient_id."""
        external_id = reader.raw('patient_external_id')
        cpf = digits_only(reader.raw('patient_cpf'))
        patient_id = reader.raw('patient_id')

        if not (external_id or cpf or patient_id):
            if required:
                reader.error('patient reference is required (patient_external_id, patient_cpf or patient_id)')
            return None

        patient = self.repositories.patients.resolve(
            external_id=external_id, cpf=cpf, patient_id=patient_id
        )
        if patient is None:
            reference = external_id or cpf or patient_id
            reader.error(f"patient '{reference}' not found in this clinic")
        return patient

    def resolve_appointment(self, reader, patient=None):
        external_id = reader.raw('appointment_external_id')
        if not external_id:
            return None
        appointment = self.repositories.appointments.find_by_external_id(external_id)
        if appointment is None:
            reader.error(f"appointment '{external_id}' not found in this clinic")
        elif patient is not None and appointment.patient_id != patient.id:
            reader.error(f"appointment '{external_id}' belongs to another patient")
            return None
        return appointment

    def import_row(self, raw_row):
        """
        Import one row.

        Returns RowResult: imported (with EntityRef), failed (with RowError)
        or duplicate (external_id already present in this clinic).
        """
        values = self.canonicalize(raw_row.values)
        row_index = raw_row.row_index
        try:
            external_id = values.get('external_id') or None
            if external_id:
                existing = self.repository().find_by_external_id(external_id)
                if existing is not None:
                    return RowResult.duplicate(row_index, existing.pk)

            reader = RowReader(values)
            fields = self.build(reader)
            reader.check()
            if external_id:
                fields['external_id'] = external_id

            entity_id = self.repository().create(**fields)
        except RowValidationError as e:
            return RowResult.failed(RowError(row_index, str(e), ErrorKindChoices.VALIDATION))
        except RepositoryUnavailable as e:
            return RowResult.failed(RowError(row_index, str(e), ErrorKindChoices.REPOSITORY, transient=True))
        except RepositoryRowError as e:
            return RowResult.failed(RowError(row_index, str(e), ErrorKindChoices.REPOSITORY))
        except (OperationalError, InterfaceError) as e:
            return RowResult.failed(
                RowError(row_index, f'Database unavailable: {e}', ErrorKindChoices.REPOSITORY, transient=True)
            )

        return RowResult.imported(row_index, EntityRef(self.entity_type, entity_id))
