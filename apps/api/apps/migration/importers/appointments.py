"""
Appointment importer.

Required: a patient reference and scheduled_datetime. Naive timestamps
are read in the clinic's timezone.
"""
from datetime import timedelta

from apps.clinical.models import AppointmentStatusChoices, AppointmentTypeChoices

from ..models import EntityTypeChoices, JobTypeChoices
from .base import BaseImporter, choice_parser, parse_datetime, parse_int

DEFAULT_DURATION_MINUTES = 30
MAX_DURATION_MINUTES = 600

APPOINTMENT_TYPES = {
    'consultation': AppointmentTypeChoices.CONSULTATION,
    'consulta': AppointmentTypeChoices.CONSULTATION,
    'follow up': AppointmentTypeChoices.FOLLOW_UP,
    'retorno': AppointmentTypeChoices.FOLLOW_UP,
    'procedure': AppointmentTypeChoices.PROCEDURE,
    'procedimento': AppointmentTypeChoices.PROCEDURE,
    'exam': AppointmentTypeChoices.EXAM,
    'exame': AppointmentTypeChoices.EXAM,
    'emergency': AppointmentTypeChoices.EMERGENCY,
    'emergencia': AppointmentTypeChoices.EMERGENCY,
    'urgencia': AppointmentTypeChoices.EMERGENCY,
    'telemedicine': AppointmentTypeChoices.TELEMEDICINE,
    'telemedicina': AppointmentTypeChoices.TELEMEDICINE,
    'teleconsulta': AppointmentTypeChoices.TELEMEDICINE,
}

APPOINTMENT_STATUSES = {
    'scheduled': AppointmentStatusChoices.SCHEDULED,
    'agendado': AppointmentStatusChoices.SCHEDULED,
    'confirmed': AppointmentStatusChoices.CONFIRMED,
    'confirmado': AppointmentStatusChoices.CONFIRMED,
    'completed': AppointmentStatusChoices.COMPLETED,
    'realizado': AppointmentStatusChoices.COMPLETED,
    'concluido': AppointmentStatusChoices.COMPLETED,
    'atendido': AppointmentStatusChoices.COMPLETED,
    'cancelled': AppointmentStatusChoices.CANCELLED,
    'canceled': AppointmentStatusChoices.CANCELLED,
    'cancelado': AppointmentStatusChoices.CANCELLED,
    'no show': AppointmentStatusChoices.NO_SHOW,
    'faltou': AppointmentStatusChoices.NO_SHOW,
    'nao compareceu': AppointmentStatusChoices.NO_SHOW,
}


def parse_duration(value):
    minutes = parse_int(value)
    if not 1 <= minutes <= MAX_DURATION_MINUTES:
        raise ValueError(f'must be between 1 and {MAX_DURATION_MINUTES} minutes')
    return minutes


class AppointmentImporter(BaseImporter):
    job_type = JobTypeChoices.APPOINTMENTS
    entity_type = EntityTypeChoices.APPOINTMENT

    aliases = {
        'paciente_id_externo': 'patient_external_id',
        'paciente_cpf': 'patient_cpf',
        'cpf': 'patient_cpf',
        'paciente_id': 'patient_id',
        'data_hora': 'scheduled_datetime',
        'data_consulta': 'scheduled_datetime',
        'scheduled_at': 'scheduled_datetime',
        'duracao': 'duration_minutes',
        'duracao_minutos': 'duration_minutes',
        'tipo': 'appointment_type',
        'tipo_consulta': 'appointment_type',
        'type': 'appointment_type',
        'situacao': 'status',
        'medico': 'doctor_name',
        'profissional': 'doctor_name',
        'motivo': 'reason',
        'observacoes': 'notes',
    }

    template_columns = (
        'external_id',
        'patient_external_id',
        'patient_cpf',
        'scheduled_datetime',
        'duration_minutes',
        'appointment_type',
        'status',
        'doctor_name',
        'reason',
        'notes',
    )

    def repository(self):
        return self.repositories.appointments

    def build(self, reader):
        patient = self.resolve_patient(reader)
        start = reader.value(
            'scheduled_datetime',
            lambda value: parse_datetime(value, self.tzinfo),
            required=True,
        )
        duration = reader.value('duration_minutes', parse_duration) or DEFAULT_DURATION_MINUTES

        return {
            'patient': patient,
            'scheduled_start': start,
            'scheduled_end': start + timedelta(minutes=duration) if start else None,
            'appointment_type': (
                reader.value('appointment_type', choice_parser(APPOINTMENT_TYPES, 'appointment type'))
                or AppointmentTypeChoices.CONSULTATION
            ),
            'status': (
                reader.value('status', choice_parser(APPOINTMENT_STATUSES, 'appointment status'))
                or AppointmentStatusChoices.SCHEDULED
            ),
            'practitioner_name': reader.text('doctor_name', max_length=255),
            'reason': reader.text('reason'),
            'notes': reader.text('notes'),
        }
