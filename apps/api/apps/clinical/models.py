"""
Clinical models: patient, appointment, encounter (clinical record).

Every row belongs to one clinic. external_id keeps the identifier a record
had in the system it was migrated from; it is unique per clinic so a file
can be re-imported without duplicating records.
"""
import uuid
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q


# ============================================================================
# Enums
# ============================================================================

class SexChoices(models.TextChoices):
    """Patient sex/gender"""
    FEMALE = 'female', 'Female'
    MALE = 'male', 'Male'
    OTHER = 'other', 'Other'
    UNKNOWN = 'unknown', 'Unknown'


class BloodTypeChoices(models.TextChoices):
    """ABO/Rh blood groups"""
    A_POS = 'A+', 'A+'
    A_NEG = 'A-', 'A-'
    B_POS = 'B+', 'B+'
    B_NEG = 'B-', 'B-'
    AB_POS = 'AB+', 'AB+'
    AB_NEG = 'AB-', 'AB-'
    O_POS = 'O+', 'O+'
    O_NEG = 'O-', 'O-'


class AppointmentTypeChoices(models.TextChoices):
    """Appointment types"""
    CONSULTATION = 'consultation', 'Consultation'
    FOLLOW_UP = 'follow_up', 'Follow-up'
    PROCEDURE = 'procedure', 'Procedure'
    EXAM = 'exam', 'Exam'
    EMERGENCY = 'emergency', 'Emergency'
    TELEMEDICINE = 'telemedicine', 'Telemedicine'


class AppointmentStatusChoices(models.TextChoices):
    """
    Appointment status.
    Imported appointments keep the status they had in the source system.
    """
    SCHEDULED = 'scheduled', 'Scheduled'
    CONFIRMED = 'confirmed', 'Confirmed'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'
    NO_SHOW = 'no_show', 'No Show'


# ============================================================================
# Models
# ============================================================================

class Patient(models.Model):
    """
    Patient records with demographics, contact info and clinical summary.

    - cpf: Brazilian taxpayer id, digits only, unique per clinic when present
    - external_id: identifier in the source system, unique per clinic when present
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    clinic = models.ForeignKey(
        'core.Clinic',
        on_delete=models.PROTECT,
        related_name='patients'
    )
    external_id = models.CharField(max_length=100, blank=True, null=True)

    # Name fields
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)

    # Demographics
    date_of_birth = models.DateField()
    sex = models.CharField(
        max_length=20,
        choices=SexChoices.choices,
        blank=True,
        null=True
    )
    cpf = models.CharField(max_length=11, blank=True, null=True)

    # Contact
    email = models.EmailField(blank=True, null=True)
    phone = models.CharField(max_length=50, blank=True, null=True)
    address = models.TextField(blank=True, null=True)

    # Emergency contact
    emergency_contact_name = models.CharField(max_length=255, blank=True, null=True)
    emergency_contact_phone = models.CharField(max_length=50, blank=True, null=True)
    emergency_contact_relationship = models.CharField(max_length=100, blank=True, null=True)

    # Clinical summary
    allergies = models.TextField(blank=True, null=True)
    active_problems = models.TextField(blank=True, null=True)
    blood_type = models.CharField(
        max_length=3,
        choices=BloodTypeChoices.choices,
        blank=True,
        null=True
    )
    notes = models.TextField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'patient'
        verbose_name = 'Patient'
        verbose_name_plural = 'Patients'
        indexes = [
            models.Index(fields=['clinic', 'last_name', 'first_name'], name='idx_patient_name'),
            models.Index(fields=['clinic', 'email'], name='idx_patient_email'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['clinic', 'external_id'],
                condition=Q(external_id__isnull=False),
                name='uniq_patient_clinic_external_id',
            ),
            models.UniqueConstraint(
                fields=['clinic', 'cpf'],
                condition=Q(cpf__isnull=False),
                name='uniq_patient_clinic_cpf',
            ),
        ]

    def __str__(self):
        return f"{self.first_name} {self.last_name}"


class Appointment(models.Model):
    """Scheduled visits. scheduled_end must be after scheduled_start."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    clinic = models.ForeignKey(
        'core.Clinic',
        on_delete=models.PROTECT,
        related_name='appointments'
    )
    external_id = models.CharField(max_length=100, blank=True, null=True)
    patient = models.ForeignKey(
        'Patient',
        on_delete=models.PROTECT,
        related_name='appointments'
    )
    scheduled_start = models.DateTimeField()
    scheduled_end = models.DateTimeField()
    appointment_type = models.CharField(
        max_length=20,
        choices=AppointmentTypeChoices.choices,
        default=AppointmentTypeChoices.CONSULTATION
    )
    status = models.CharField(
        max_length=20,
        choices=AppointmentStatusChoices.choices,
        default=AppointmentStatusChoices.SCHEDULED
    )
    practitioner_name = models.CharField(max_length=255, blank=True, null=True)
    reason = models.TextField(blank=True, null=True)
    notes = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'appointment'
        verbose_name = 'Appointment'
        verbose_name_plural = 'Appointments'
        ordering = ['scheduled_start']
        indexes = [
            models.Index(fields=['clinic', 'scheduled_start'], name='idx_appointment_start'),
            models.Index(fields=['patient'], name='idx_appointment_patient'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['clinic', 'external_id'],
                condition=Q(external_id__isnull=False),
                name='uniq_appointment_clinic_external_id',
            ),
        ]

    def __str__(self):
        return f"{self.patient} @ {self.scheduled_start:%Y-%m-%d %H:%M}"

    def clean(self):
        super().clean()
        if self.scheduled_start and self.scheduled_end and self.scheduled_end <= self.scheduled_start:
            raise ValidationError({'scheduled_end': 'Appointment must end after it starts'})
        if self.patient_id and self.clinic_id and self.patient.clinic_id != self.clinic_id:
            raise ValidationError({'patient': 'Patient belongs to another clinic'})


class Encounter(models.Model):
    """
    Clinical record of a visit in SOAP form.

    At least one of subjective/objective/assessment/plan is required.
    diagnosis_codes holds ICD-10 codes as a JSON array.
    """
    SOAP_FIELDS = ('subjective', 'objective', 'assessment', 'plan')

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    clinic = models.ForeignKey(
        'core.Clinic',
        on_delete=models.PROTECT,
        related_name='encounters'
    )
    external_id = models.CharField(max_length=100, blank=True, null=True)
    patient = models.ForeignKey(
        'Patient',
        on_delete=models.PROTECT,
        related_name='encounters'
    )
    appointment = models.ForeignKey(
        'Appointment',
        on_delete=models.PROTECT,
        blank=True,
        null=True,
        related_name='encounters'
    )
    occurred_at = models.DateTimeField()
    subjective = models.TextField(blank=True, null=True)
    objective = models.TextField(blank=True, null=True)
    assessment = models.TextField(blank=True, null=True)
    plan = models.TextField(blank=True, null=True)
    diagnosis_codes = models.JSONField(default=list, blank=True)
    prescriptions = models.TextField(blank=True, null=True)
    practitioner_name = models.CharField(max_length=255, blank=True, null=True)
    notes = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'encounter'
        verbose_name = 'Encounter'
        verbose_name_plural = 'Encounters'
        ordering = ['-occurred_at']
        indexes = [
            models.Index(fields=['patient', 'occurred_at'], name='idx_encounter_patient_date'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['clinic', 'external_id'],
                condition=Q(external_id__isnull=False),
                name='uniq_encounter_clinic_external_id',
            ),
        ]

    def __str__(self):
        return f"Encounter {self.patient} {self.occurred_at:%Y-%m-%d}"

    def clean(self):
        super().clean()
        if not any(getattr(self, name) for name in self.SOAP_FIELDS):
            raise ValidationError('At least one SOAP field is required')
        if self.patient_id and self.clinic_id and self.patient.clinic_id != self.clinic_id:
            raise ValidationError({'patient': 'Patient belongs to another clinic'})
        if self.appointment_id and self.appointment.patient_id != self.patient_id:
            raise ValidationError({'appointment': 'Appointment belongs to another patient'})
