"""
Patient importer.

Required: first_name, last_name, date_of_birth.
Accepts the Portuguese column names used by legacy clinic exports.
"""
import re

from apps.clinical.models import BloodTypeChoices, SexChoices

from ..models import EntityTypeChoices, JobTypeChoices
from .base import BaseImporter, choice_parser, digits_only, parse_date, parse_email

SEX_VALUES = {
    'male': SexChoices.MALE,
    'm': SexChoices.MALE,
    'masculino': SexChoices.MALE,
    'homem': SexChoices.MALE,
    'female': SexChoices.FEMALE,
    'f': SexChoices.FEMALE,
    'feminino': SexChoices.FEMALE,
    'mulher': SexChoices.FEMALE,
    'other': SexChoices.OTHER,
    'outro': SexChoices.OTHER,
    'unknown': SexChoices.UNKNOWN,
    'nao informado': SexChoices.UNKNOWN,
}

BLOOD_TYPE_RE = re.compile(r'^(AB|A|B|O)\s*([+-]|POS|NEG)$')


def parse_cpf(value):
    """Validate a CPF (11 digits, two check digits) and return digits only."""
    digits = digits_only(value)
    if len(digits) != 11 or digits == digits[0] * 11:
        raise ValueError(f"'{value}' is not a valid CPF")
    for length in (9, 10):
        total = sum(int(d) * weight for d, weight in zip(digits[:length], range(length + 1, 1, -1)))
        check = (total * 10) % 11
        if check == 10:
            check = 0
        if check != int(digits[length]):
            raise ValueError(f"'{value}' is not a valid CPF")
    return digits


def parse_phone(value):
    digits = digits_only(value)
    if len(digits) < 8 or len(digits) > 15:
        raise ValueError(f"'{value}' is not a phone number")
    return f'+{digits}' if value.strip().startswith('+') else digits


def parse_blood_type(value):
    match = BLOOD_TYPE_RE.match(value.strip().upper())
    if not match:
        raise ValueError(f"'{value}' is not a blood type (A+, O-, AB+ ...)")
    group, rh = match.groups()
    sign = '+' if rh in ('+', 'POS') else '-'
    return BloodTypeChoices(f'{group}{sign}')


class PatientImporter(BaseImporter):
    job_type = JobTypeChoices.PATIENTS
    entity_type = EntityTypeChoices.PATIENT

    aliases = {
        'nome': 'first_name',
        'primeiro_nome': 'first_name',
        'sobrenome': 'last_name',
        'data_nascimento': 'date_of_birth',
        'nascimento': 'date_of_birth',
        'birth_date': 'date_of_birth',
        'genero': 'gender',
        'sexo': 'gender',
        'sex': 'gender',
        'telefone': 'phone',
        'celular': 'phone',
        'endereco': 'address',
        'contato_emergencia_nome': 'emergency_contact_name',
        'contato_emergencia_telefone': 'emergency_contact_phone',
        'contato_emergencia_parentesco': 'emergency_contact_relationship',
        'alergias': 'allergies',
        'problemas_ativos': 'active_problems',
        'tipo_sanguineo': 'blood_type',
        'observacoes': 'notes',
    }

    template_columns = (
        'external_id',
        'first_name',
        'last_name',
        'date_of_birth',
        'gender',
        'cpf',
        'email',
        'phone',
        'address',
        'emergency_contact_name',
        'emergency_contact_phone',
        'emergency_contact_relationship',
        'allergies',
        'active_problems',
        'blood_type',
        'notes',
    )

    def repository(self):
        return self.repositories.patients

    def build(self, reader):
        date_of_birth = reader.value('date_of_birth', parse_date, required=True)
        if date_of_birth and date_of_birth > self.local_today():
            reader.error('date_of_birth cannot be in the future')

        cpf = reader.value('cpf', parse_cpf)
        if cpf and self.repositories.patients.find_by_cpf(cpf) is not None:
            reader.error(f'a patient with CPF ending {cpf[-4:]} already exists in this clinic')

        return {
            'first_name': reader.text('first_name', required=True, max_length=100),
            'last_name': reader.text('last_name', required=True, max_length=100),
            'date_of_birth': date_of_birth,
            'sex': reader.value('gender', choice_parser(SEX_VALUES, 'gender')),
            'cpf': cpf,
            'email': reader.value('email', parse_email),
            'phone': reader.value('phone', parse_phone),
            'address': reader.text('address'),
            'emergency_contact_name': reader.text('emergency_contact_name', max_length=255),
            'emergency_contact_phone': reader.value('emergency_contact_phone', parse_phone),
            'emergency_contact_relationship': reader.text('emergency_contact_relationship', max_length=100),
            'allergies': reader.text('allergies'),
            'active_problems': reader.text('active_problems'),
            'blood_type': reader.value('blood_type', parse_blood_type),
            'notes': reader.text('notes'),
        }
