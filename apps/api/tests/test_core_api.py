"""
Tests for core endpoints: clinic discovery and JWT authentication.
"""
import pytest
from django.conf import settings
from django.db import connection

from apps.core.models import ClinicMembership, MembershipRoleChoices


@pytest.mark.django_db
class TestMyClinics:

    def test_lists_active_memberships(self, admin_client, admin_user, clinic, other_clinic):
        ClinicMembership.objects.create(user=admin_user, clinic=other_clinic, role=MembershipRoleChoices.STAFF)

        response = admin_client.get('/api/clinics/mine')

        assert response.status_code == 200
        assert [(m['clinic_name'], m['role']) for m in response.data] == [
            ('Clinica Centro', 'admin'),
            ('Clinica Norte', 'staff'),
        ]
        assert response.data[0]['clinic_id'] == str(clinic.id)
        assert response.data[0]['timezone'] == 'America/Sao_Paulo'

    def test_inactive_clinic_is_hidden(self, admin_client, clinic):
        clinic.is_active = False
        clinic.save()

        response = admin_client.get('/api/clinics/mine')

        assert response.data == []

    def test_requires_authentication(self, api_client):
        assert api_client.get('/api/clinics/mine').status_code == 401


@pytest.mark.django_db
class TestTokenAuth:

    def test_token_grants_access_to_jobs(self, api_client, admin_user, clinic):
        response = api_client.post(
            '/api/auth/token/',
            {'username': 'clinic_admin', 'password': 'testpass123'},
            format='json',
        )
        assert response.status_code == 200

        api_client.credentials(
            HTTP_AUTHORIZATION=f"Bearer {response.data['access']}",
            HTTP_X_CLINIC_ID=str(clinic.id),
        )

        assert api_client.get('/api/migration/jobs').status_code == 200


@pytest.mark.django_db
def test_suite_runs_on_sqlite():
    assert connection.vendor == 'sqlite'
    assert settings.DATABASES['default']['ENGINE'] == 'django.db.backends.sqlite3'
    assert settings.MIGRATION_EXECUTE_INLINE is True
