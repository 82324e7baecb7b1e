"""
Clinical record importer (SOAP encounters).

Required: a patient reference, record_date and at least one of
subjective / objective / assessment / plan.
"""
import re

from ..models import EntityTypeChoices, JobTypeChoices
from .base import BaseImporter, parse_datetime

ICD10_RE = re.compile(r'^([A-Z][0-9]{2})\.?([0-9A-Z]{1,4})?$')
SOAP_COLUMNS = ('subjective', 'objective', 'assessment', 'plan')


def parse_diagnoses(value):
    """Split ';' or ',' separated ICD-10 codes into dotted upper-case form."""
    codes = []
    for part in re.split(r'[;,]', value):
        code = part.strip().upper()
        if not code:
            continue
        match = ICD10_RE.match(code)
        if not match:
            raise ValueError(f"'{part.strip()}' is not an ICD-10 code")
        category, detail = match.groups()
        normalized = f'{category}.{detail}' if detail else category
        if normalized not in codes:
            codes.append(normalized)
    return codes


class ClinicalRecordImporter(BaseImporter):
    job_type = JobTypeChoices.CLINICAL
    entity_type = EntityTypeChoices.ENCOUNTER

    aliases = {
        'paciente_id_externo': 'patient_external_id',
        'paciente_cpf': 'patient_cpf',
        'cpf': 'patient_cpf',
        'paciente_id': 'patient_id',
        'consulta_id_externo': 'appointment_external_id',
        'data_atendimento': 'record_date',
        'data': 'record_date',
        'occurred_at': 'record_date',
        'subjetivo': 'subjective',
        'queixa': 'subjective',
        'objetivo': 'objective',
        'exame_fisico': 'objective',
        'avaliacao': 'assessment',
        'plano': 'plan',
        'diagnosticos': 'diagnoses',
        'cid': 'diagnoses',
        'prescricoes': 'prescriptions',
        'medico': 'doctor_name',
        'profissional': 'doctor_name',
        'observacoes': 'notes',
    }

    template_columns = (
        'external_id',
        'patient_external_id',
        'patient_cpf',
        'appointment_external_id',
        'record_date',
        'subjective',
        'objective',
        'assessment',
        'plan',
        'diagnoses',
        'prescriptions',
        'doctor_name',
        'notes',
    )

    def repository(self):
        return self.repositories.encounters

    def build(self, reader):
        patient = self.resolve_patient(reader)
        appointment = self.resolve_appointment(reader, patient=patient)
        occurred_at = reader.value(
            'record_date',
            lambda value: parse_datetime(value, self.tzinfo, allow_date=True),
            required=True,
        )
        if not any(reader.has(name) for name in SOAP_COLUMNS):
            reader.error('at least one of subjective, objective, assessment or plan is required')

        fields = {
            'patient': patient,
            'appointment': appointment,
            'occurred_at': occurred_at,
            'diagnosis_codes': reader.value('diagnoses', parse_diagnoses) or [],
            'prescriptions': reader.text('prescriptions'),
            'practitioner_name': reader.text('doctor_name', max_length=255),
            'notes': reader.text('notes'),
        }
        for name in SOAP_COLUMNS:
            fields[name] = reader.text(name)
        return fields
