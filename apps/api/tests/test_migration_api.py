"""
Tests for the migration job API.

Workers run inline in tests, so an upload returns the finished job.
"""
import pytest
from django.test import override_settings
from rest_framework.test import APIClient

from apps.clinical.models import Appointment, Patient
from apps.migration.models import MigrationJob

JOBS_URL = '/api/migration/jobs'

PATIENTS_CSV = (
    'external_id,first_name,last_name,date_of_birth\n'
    'P-100,Ana,Souza,1985-03-14\n'
    'P-101,Bruno,Lima,1979-11-02\n'
    'P-102,Carla,Mendes,2001-06-30\n'
)


def job_url(job_id, action=None):
    url = f'{JOBS_URL}/{job_id}'
    return f'{url}/{action}' if action else url


def create_job(client, job_type='patients', input_format='csv', **extra):
    response = client.post(JOBS_URL, {'type': job_type, 'input_format': input_format, **extra}, format='json')
    assert response.status_code == 201, response.data
    return response.data


def upload(client, job_id, file):
    return client.post(job_url(job_id, 'upload'), {'file': file}, format='multipart')


@pytest.mark.django_db
class TestJobCreation:

    def test_create_returns_pending_job(self, admin_client):
        response = admin_client.post(JOBS_URL, {
            'type': 'patients',
            'input_format': 'csv',
            'source_name': 'legacy_export.csv',
            'params': {'delimiter': ';'},
        }, format='json')

        assert response.status_code == 201
        assert response.data['status'] == 'pending'
        assert response.data['stats'] == {'total': 0, 'imported': 0, 'skipped': 0, 'failed': 0}
        assert response.data['errors'] == []
        assert response.data['source_name'] == 'legacy_export.csv'
        assert response.data['params'] == {'delimiter': ';'}

    def test_unknown_type_is_rejected(self, admin_client):
        response = admin_client.post(JOBS_URL, {'type': 'inventory', 'input_format': 'csv'}, format='json')

        assert response.status_code == 400
        assert 'type' in response.data

    def test_unknown_params_are_rejected(self, admin_client):
        response = admin_client.post(JOBS_URL, {
            'type': 'patients', 'input_format': 'csv', 'params': {'sheet': 'A'},
        }, format='json')

        assert response.status_code == 400

    def test_delimiter_only_for_csv(self, admin_client):
        response = admin_client.post(JOBS_URL, {
            'type': 'patients', 'input_format': 'json', 'params': {'delimiter': ';'},
        }, format='json')

        assert response.status_code == 400

    def test_unknown_encoding_is_rejected(self, admin_client):
        response = admin_client.post(JOBS_URL, {
            'type': 'patients', 'input_format': 'csv', 'params': {'encoding': 'klingon-8'},
        }, format='json')

        assert response.status_code == 400

    def test_list_is_plain_array_newest_first(self, admin_client):
        first = create_job(admin_client)
        second = create_job(admin_client, job_type='financial', input_format='json')

        response = admin_client.get(JOBS_URL)

        assert response.status_code == 200
        assert isinstance(response.data, list)
        assert [job['id'] for job in response.data] == [second['id'], first['id']]


@pytest.mark.django_db
class TestUploadAndRun:

    def test_upload_runs_import(self, admin_client, csv_upload):
        job = create_job(admin_client, source_name='legacy.csv')

        response = upload(admin_client, job['id'], csv_upload(PATIENTS_CSV))

        assert response.status_code == 202
        assert response.data['status'] == 'completed'
        assert response.data['stats'] == {'total': 3, 'imported': 3, 'skipped': 0, 'failed': 0}
        assert response.data['ledger_size'] == 3
        assert len(response.data['source_sha256']) == 64
        assert Patient.objects.count() == 3

    def test_row_errors_are_in_job_body(self, admin_client, csv_upload):
        job = create_job(admin_client)
        content = (
            'first_name,last_name,date_of_birth\n'
            'Ana,Souza,1985-03-14\n'
            'Bruno,,1979-11-02\n'
        )
        response = upload(admin_client, job['id'], csv_upload(content))

        assert response.data['status'] == 'completed'
        assert response.data['error_count'] == 1
        assert response.data['errors'][0]['row_index'] == 1
        assert response.data['errors'][0]['kind'] == 'validation'

    @override_settings(MIGRATION_ERROR_PREVIEW_LIMIT=2)
    def test_error_preview_is_truncated_but_errors_endpoint_lists_all(self, admin_client, csv_upload):
        job = create_job(admin_client)
        content = 'first_name,last_name,date_of_birth\n' + 'Ana,,1985-03-14\n' * 5

        upload(admin_client, job['id'], csv_upload(content))
        detail = admin_client.get(job_url(job['id']))
        errors = admin_client.get(job_url(job['id'], 'errors'))

        assert len(detail.data['errors']) == 2
        assert detail.data['error_count'] == 5
        assert errors.status_code == 200
        assert errors.data['count'] == 5
        assert [e['row_index'] for e in errors.data['results']] == [0, 1, 2, 3, 4]

    def test_ledger_endpoint(self, admin_client, csv_upload):
        job = create_job(admin_client)
        upload(admin_client, job['id'], csv_upload(PATIENTS_CSV))

        response = admin_client.get(job_url(job['id'], 'ledger'))

        assert response.status_code == 200
        assert [entry['sequence'] for entry in response.data['results']] == [0, 1, 2]
        assert all(entry['entity_type'] == 'patient' for entry in response.data['results'])

    def test_invalid_json_upload_fails_job(self, admin_client, csv_upload):
        job = create_job(admin_client, input_format='json')

        response = upload(admin_client, job['id'], csv_upload('{"patients": [', name='p.json'))

        assert response.status_code == 202
        assert response.data['status'] == 'failed'
        assert response.data['stats']['total'] == 0
        assert response.data['errors'][0]['kind'] == 'fatal'

    def test_second_upload_conflicts(self, admin_client, csv_upload):
        job = create_job(admin_client)
        upload(admin_client, job['id'], csv_upload(PATIENTS_CSV))

        response = upload(admin_client, job['id'], csv_upload(PATIENTS_CSV))

        assert response.status_code == 409
        assert response.data['error_type'] == 'invalid_transition'
        assert response.data['status'] == 'completed'
        assert Patient.objects.count() == 3

    def test_upload_without_file(self, admin_client):
        job = create_job(admin_client)

        response = admin_client.post(job_url(job['id'], 'upload'), {}, format='multipart')

        assert response.status_code == 400
        assert MigrationJob.objects.get(id=job['id']).status == 'pending'

    @override_settings(MIGRATION_MAX_UPLOAD_MB=0)
    def test_oversized_upload_is_rejected(self, admin_client, csv_upload):
        job = create_job(admin_client)

        response = upload(admin_client, job['id'], csv_upload(PATIENTS_CSV))

        assert response.status_code == 400
        assert 'file' in response.data


@pytest.mark.django_db
class TestRollbackEndpoint:

    def test_rollback_completed_job(self, admin_client, csv_upload):
        job = create_job(admin_client)
        upload(admin_client, job['id'], csv_upload(PATIENTS_CSV))

        response = admin_client.post(job_url(job['id'], 'rollback'))

        assert response.status_code == 202
        assert response.data['status'] == 'rolled_back'
        assert response.data['rolled_back_at'] is not None
        assert Patient.objects.count() == 0

    def test_rollback_twice_conflicts(self, admin_client, csv_upload):
        job = create_job(admin_client)
        upload(admin_client, job['id'], csv_upload(PATIENTS_CSV))
        admin_client.post(job_url(job['id'], 'rollback'))

        response = admin_client.post(job_url(job['id'], 'rollback'))

        assert response.status_code == 409
        assert response.data['error_type'] == 'invalid_transition'
        assert response.data['status'] == 'rolled_back'

    def test_rollback_pending_job_conflicts(self, admin_client):
        job = create_job(admin_client)

        response = admin_client.post(job_url(job['id'], 'rollback'))

        assert response.status_code == 409
        assert MigrationJob.objects.get(id=job['id']).status == 'pending'

    def test_compensation_failure_returns_job(self, admin_client, csv_upload):
        job = create_job(admin_client)
        upload(admin_client, job['id'], csv_upload(PATIENTS_CSV))
        appointments = create_job(admin_client, job_type='appointments')
        upload(admin_client, appointments['id'], csv_upload(
            'patient_external_id,scheduled_datetime\nP-101,2024-05-10 09:00\n'
        ))

        response = admin_client.post(job_url(job['id'], 'rollback'))

        assert response.status_code == 409
        assert response.data['error_type'] == 'rollback_compensation_failed'
        assert response.data['job']['status'] == 'completed'
        assert 'still referenced' in response.data['job']['rollback_error']
        assert Appointment.objects.count() == 1


@pytest.mark.django_db
class TestTemplate:

    def test_template_returns_csv_header(self, admin_client):
        response = admin_client.get(f'{JOBS_URL}/template', {'type': 'financial'})

        assert response.status_code == 200
        assert response['Content-Type'].startswith('text/csv')
        header = response.content.decode('utf-8').strip().split(',')
        assert header[0] == 'external_id'
        assert {'amount', 'method', 'due_date'} <= set(header)

    def test_template_requires_known_type(self, admin_client):
        response = admin_client.get(f'{JOBS_URL}/template', {'type': 'stock'})

        assert response.status_code == 400


@pytest.mark.django_db
class TestAccessControl:

    def test_unauthenticated_is_rejected(self, api_client):
        response = api_client.get(JOBS_URL)

        assert response.status_code == 401

    def test_staff_member_is_forbidden(self, staff_client):
        response = staff_client.post(JOBS_URL, {'type': 'patients', 'input_format': 'csv'}, format='json')

        assert response.status_code == 403

    def test_admin_of_other_clinic_cannot_see_job(self, admin_client, other_admin_client):
        job = create_job(admin_client)

        assert other_admin_client.get(job_url(job['id'])).status_code == 404
        assert other_admin_client.post(job_url(job['id'], 'rollback')).status_code == 404
        assert other_admin_client.get(JOBS_URL).data == []

    def test_member_cannot_address_foreign_clinic(self, admin_user, other_clinic):
        client = APIClient()
        client.force_authenticate(user=admin_user)
        client.credentials(HTTP_X_CLINIC_ID=str(other_clinic.id))

        assert client.get(JOBS_URL).status_code == 403

    def test_single_membership_needs_no_header(self, admin_user):
        client = APIClient()
        client.force_authenticate(user=admin_user)

        assert client.get(JOBS_URL).status_code == 200

    def test_malformed_clinic_header(self, admin_user):
        client = APIClient()
        client.force_authenticate(user=admin_user)
        client.credentials(HTTP_X_CLINIC_ID='not-a-uuid')

        assert client.get(JOBS_URL).status_code == 400
