"""
Global test fixtures for pytest.

Provides reusable fixtures for API and engine testing:
- Clinics and members by role
- Authenticated API clients scoped to a clinic
- Engine components and a helper that runs an import from text
"""
import io
from datetime import date, datetime, timedelta

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from apps.clinical.models import Appointment, Patient
from apps.core.models import Clinic, ClinicMembership, MembershipRoleChoices
from apps.migration.orchestrator import MigrationOrchestrator
from apps.migration.registry import JobRegistry
from apps.migration.rollback import RollbackEngine

User = get_user_model()

# Valid CPFs (correct check digits)
CPF_A = '11144477735'
CPF_B = '52998224725'


# ============================================================================
# Clinics
# ============================================================================

@pytest.fixture
def clinic(db):
    return Clinic.objects.create(
        name='Clinica Centro',
        timezone='America/Sao_Paulo',
        default_currency='BRL',
    )


@pytest.fixture
def other_clinic(db):
    return Clinic.objects.create(
        name='Clinica Norte',
        timezone='America/Sao_Paulo',
        default_currency='BRL',
    )


# ============================================================================
# Users
# ============================================================================

def make_member(username, clinic, role):
    user = User.objects.create_user(
        username=username,
        email=f'{username}@test.com',
        password='testpass123',
    )
    ClinicMembership.objects.create(user=user, clinic=clinic, role=role)
    return user


@pytest.fixture
def admin_user(clinic):
    """Clinic admin (can run migrations)."""
    return make_member('clinic_admin', clinic, MembershipRoleChoices.ADMIN)


@pytest.fixture
def staff_user(clinic):
    """Clinic staff (NO access to migrations)."""
    return make_member('clinic_staff', clinic, MembershipRoleChoices.STAFF)


@pytest.fixture
def other_admin_user(other_clinic):
    """Admin of another clinic."""
    return make_member('other_admin', other_clinic, MembershipRoleChoices.ADMIN)


# ============================================================================
# API Clients
# ============================================================================

def make_client(user, clinic=None):
    client = APIClient()
    client.force_authenticate(user=user)
    if clinic is not None:
        client.credentials(HTTP_X_CLINIC_ID=str(clinic.id))
    return client


@pytest.fixture
def api_client():
    """Unauthenticated DRF API client."""
    return APIClient()


@pytest.fixture
def admin_client(admin_user, clinic):
    return make_client(admin_user, clinic)


@pytest.fixture
def staff_client(staff_user, clinic):
    return make_client(staff_user, clinic)


@pytest.fixture
def other_admin_client(other_admin_user, other_clinic):
    return make_client(other_admin_user, other_clinic)


# ============================================================================
# Domain records
# ============================================================================

@pytest.fixture
def patient(clinic):
    return Patient.objects.create(
        clinic=clinic,
        external_id='P-001',
        first_name='Ana',
        last_name='Souza',
        date_of_birth=date(1985, 3, 14),
        cpf=CPF_A,
    )


@pytest.fixture
def appointment(clinic, patient):
    start = timezone.make_aware(datetime(2024, 5, 10, 9, 0), clinic.tzinfo)
    return Appointment.objects.create(
        clinic=clinic,
        external_id='A-001',
        patient=patient,
        scheduled_start=start,
        scheduled_end=start + timedelta(minutes=30),
    )


# ============================================================================
# Engine
# ============================================================================

@pytest.fixture
def registry(clinic):
    return JobRegistry(clinic)


@pytest.fixture
def orchestrator(clinic):
    return MigrationOrchestrator(clinic)


@pytest.fixture
def rollback_engine(clinic):
    return RollbackEngine(clinic)


@pytest.fixture
def run_import(registry, orchestrator):
    """
    Run an import from text and return the finished job.

    Usage:
        job = run_import('patients', 'first_name,last_name,date_of_birth\\n...')
    """
    def run(job_type, content, input_format='csv', params=None, encoding='utf-8'):
        job = registry.create(type=job_type, input_format=input_format, params=params)
        data = content if isinstance(content, bytes) else content.encode(encoding)
        return orchestrator.start(job.id, io.BytesIO(data))
    return run


@pytest.fixture
def csv_upload():
    """Build an uploaded file for multipart requests."""
    from django.core.files.uploadedfile import SimpleUploadedFile

    def build(content, name='export.csv', content_type='text/csv'):
        data = content if isinstance(content, bytes) else content.encode('utf-8')
        return SimpleUploadedFile(name, data, content_type=content_type)
    return build
