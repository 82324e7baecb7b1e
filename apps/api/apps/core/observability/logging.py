"""
Structured logging with PHI/PII protection.

Provides filters, formatters, and helpers for safe logging. Imported
rows carry patient identity and clinical text, so their column names
are redacted wherever they show up in log extras.
"""
import json
import logging
import re
from datetime import datetime, timezone
from .correlation import get_clinic_id, get_request_id, get_trace_id, get_user_id, get_user_roles


# Fields that should NEVER be logged (PHI/PII)
SENSITIVE_FIELDS = {
    'password',
    'token',
    'secret',
    'api_key',
    'subjective',
    'objective',
    'assessment',
    'plan',
    'prescriptions',
    'diagnoses',
    'allergies',
    'active_problems',
    'notes',
    'first_name',
    'last_name',
    'email',
    'phone',
    'address',
    'date_of_birth',
    'birth_date',
    'cpf',
    'emergency_contact_name',
    'emergency_contact_phone',
    'raw_row',
    # Portuguese column names found in legacy exports
    'nome',
    'sobrenome',
    'data_nascimento',
    'telefone',
    'endereco',
    'alergias',
    'observacoes',
}


REDACTED = '[REDACTED]'

# CPF numbers, formatted (111.444.777-35) or bare (11144477735)
CPF_PATTERN = re.compile(r'(?<!\d)\d{3}\.?\d{3}\.?\d{3}-?\d{2}(?!\d)')

# LogRecord attributes that are not user extras
RECORD_ATTRS = frozenset(
    vars(logging.LogRecord('', 0, '', 0, '', None, None))
) | {'message', 'asctime', 'taskName'}


def mask_cpf(text):
    """Replace anything shaped like a CPF with a mask."""
    return CPF_PATTERN.sub('***.***.***-**', text)


def is_sensitive(key):
    return str(key).lower() in SENSITIVE_FIELDS


def sanitize_value(value):
    """
    Redact sensitive keys at any depth and mask CPFs in strings.

    Dicts, lists and tuples are copied; other values pass through.
    """
    if isinstance(value, dict):
        return {
            k: REDACTED if is_sensitive(k) else sanitize_value(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_value(v) for v in value]
    if isinstance(value, str):
        return mask_cpf(value)
    return value


def sanitize_dict(data):
    """
    Sanitized copy of a dictionary (non-dicts are returned unchanged).

    Usage:
        log_data.update(sanitize_dict(extra_fields))
    """
    if not isinstance(data, dict):
        return data
    return sanitize_value(data)


class CorrelationFilter(logging.Filter):
    """Injects request/job correlation fields into every record."""

    def filter(self, record):
        record.request_id = get_request_id() or '-'
        record.trace_id = get_trace_id() or '-'
        record.user_id = get_user_id() or '-'
        record.user_roles = ','.join(get_user_roles()) or '-'
        record.clinic_id = get_clinic_id() or '-'
        return True


class SanitizedJSONFormatter(logging.Formatter):
    """
    One JSON object per line.

    Correlation fields come first, then the record's extras with
    sensitive keys redacted. The message itself is CPF-masked because
    row errors may quote legacy values.
    """

    CORRELATION_FIELDS = ('request_id', 'trace_id', 'user_id', 'user_roles', 'clinic_id')

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': mask_cpf(record.getMessage()),
        }
        for field in self.CORRELATION_FIELDS:
            log_data[field] = getattr(record, field, '-')

        for key, value in record.__dict__.items():
            if key in log_data or key.startswith('_') or key in RECORD_ATTRS:
                continue
            log_data[key] = REDACTED if is_sensitive(key) else sanitize_value(value)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def get_sanitized_logger(name):
    """
    Logger with the correlation filter attached.

    Usage:
        logger = get_sanitized_logger(__name__)
        logger.info('Job started', extra={'event': 'migration_job_started', 'job_id': job.id})
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, CorrelationFilter) for f in logger.filters):
        logger.addFilter(CorrelationFilter())
    return logger
