"""
Tests for the migration orchestrator (parse -> import -> finalize).
"""
import hashlib
import json
from decimal import Decimal
from unittest.mock import patch

import pytest
from celery.exceptions import SoftTimeLimitExceeded
from django.conf import settings
from django.core.files.uploadedfile import SimpleUploadedFile

from apps.clinical.models import Appointment, Encounter, Patient
from apps.finance.models import Receivable
from apps.migration.exceptions import InvalidTransition, RepositoryUnavailable
from apps.migration.importers.patients import PatientImporter
from apps.migration.models import MigrationJobError, MigrationLedgerEntry
from apps.migration.repositories import PatientRepository
from apps.migration.tasks import rollback_migration_job, run_migration_job
from apps.migration.types import JobStats

PATIENTS_CSV = (
    'external_id,first_name,last_name,date_of_birth,cpf\n'
    'P-100,Ana,Souza,1985-03-14,111.444.777-35\n'
    'P-101,Bruno,Lima,1979-11-02,529.982.247-25\n'
    'P-102,Carla,Mendes,2001-06-30,\n'
)


def patient_rows(count):
    lines = ['first_name,last_name,date_of_birth']
    lines += [f'Patient{i},Test,1990-01-{i + 1:02d}' for i in range(count)]
    return '\n'.join(lines) + '\n'


def errors_of(job):
    return list(job.errors.order_by('row_index', 'id').values_list('row_index', 'kind'))


@pytest.fixture
def flaky_create():
    """
    Make PatientRepository.create raise RepositoryUnavailable on the given calls (1-based).
    """
    original = PatientRepository.create

    def install(failing_calls):
        calls = {'count': 0}

        def create(self, **fields):
            calls['count'] += 1
            if calls['count'] in failing_calls:
                raise RepositoryUnavailable('Database unavailable: connection refused')
            return original(self, **fields)

        return patch.object(PatientRepository, 'create', create)
    return install


@pytest.mark.django_db
class TestImportScenarios:

    def test_valid_csv_completes(self, clinic, run_import):
        job = run_import('patients', PATIENTS_CSV)

        assert job.status == 'completed'
        assert job.stats == JobStats(total=3, imported=3, skipped=0, failed=0)
        assert job.errors.count() == 0
        assert job.started_at is not None
        assert job.completed_at is not None

        entries = list(job.ledger_entries.order_by('sequence'))
        assert [(e.sequence, e.row_index, e.entity_type) for e in entries] == [
            (0, 0, 'patient'), (1, 1, 'patient'), (2, 2, 'patient'),
        ]
        assert set(Patient.objects.filter(clinic=clinic).values_list('external_id', flat=True)) == {
            'P-100', 'P-101', 'P-102',
        }

    def test_invalid_row_is_reported_and_job_continues(self, run_import):
        content = (
            'first_name,last_name,date_of_birth\n'
            'Ana,Souza,1985-03-14\n'
            'Bruno,Lima,1979-11-02\n'
            'Carla,,2001-06-30\n'
            'Davi,Rocha,1995-12-01\n'
            'Eva,Castro,1988-08-08\n'
        )

        job = run_import('patients', content)

        assert job.status == 'completed'
        assert job.stats == JobStats(total=5, imported=4, skipped=0, failed=1)
        error = job.errors.get()
        assert error.row_index == 2
        assert error.kind == 'validation'
        assert 'last_name is required' in error.message
        assert Patient.objects.count() == 4

    def test_invalid_json_fails_job(self, run_import):
        job = run_import('patients', '[{"first_name": "Ana",', input_format='json')

        assert job.status == 'failed'
        assert job.stats.total == 0
        assert errors_of(job) == [(0, 'fatal')]

    def test_json_payload_imports(self, run_import):
        payload = {'pacientes': [
            {'nome': 'Ana', 'sobrenome': 'Souza', 'data_nascimento': '14/03/1985'},
            {'nome': 'Bruno', 'sobrenome': 'Lima', 'data_nascimento': '02/11/1979', 'extra': {'a': 1}},
        ]}

        job = run_import('patients', json.dumps(payload), input_format='json')

        assert job.status == 'completed'
        assert job.stats == JobStats(total=2, imported=1, failed=1)
        assert errors_of(job) == [(1, 'parse')]

    def test_json_amounts_in_exponent_form_keep_their_value(self, run_import):
        content = '[{"amount": 1e2, "method": "pix"}, {"amount": 1.5e3, "method": "pix"}]'

        job = run_import('financial', content, input_format='json')

        assert job.status == 'completed'
        assert job.stats == JobStats(total=2, imported=2)
        amounts = Receivable.objects.order_by('amount').values_list('amount', flat=True)
        assert list(amounts) == [Decimal('100.00'), Decimal('1500.00')]

    def test_parse_error_row_counts_as_failed(self, run_import):
        content = 'first_name,last_name,date_of_birth\nAna,Souza,1985-03-14\nBruno,Lima\n'

        job = run_import('patients', content)

        assert job.stats == JobStats(total=2, imported=1, failed=1)
        assert errors_of(job) == [(1, 'parse')]

    def test_existing_external_id_is_skipped(self, run_import):
        first = run_import('patients', PATIENTS_CSV)
        second = run_import('patients', PATIENTS_CSV)

        assert first.stats.imported == 3
        assert second.status == 'completed'
        assert second.stats == JobStats(total=3, skipped=3)
        assert second.ledger_entries.count() == 0
        assert Patient.objects.count() == 3

    def test_repeated_external_id_in_one_file_imports_once(self, run_import):
        content = (
            'external_id,first_name,last_name,date_of_birth\n'
            'X-1,Ana,Souza,1985-03-14\n'
            'X-1,Ana,Souza,1985-03-14\n'
        )

        job = run_import('patients', content)

        assert job.stats == JobStats(total=2, imported=1, skipped=1)

    def test_semicolon_latin1_export(self, run_import):
        content = 'nome;sobrenome;data_nascimento;observacoes\nJoão;Araújo;01/02/1970;alérgico a dipirona\n'

        job = run_import(
            'patients', content, params={'delimiter': ';', 'encoding': 'latin-1'}, encoding='latin-1'
        )

        assert job.stats.imported == 1
        assert Patient.objects.get().last_name == 'Araújo'

    def test_errors_follow_read_order(self, run_import):
        content = patient_rows(2) + 'Bad,Row,not-a-date\nOnly,Two\n' + ',,\n'

        job = run_import('patients', content)

        indexes = [row_index for row_index, _ in errors_of(job)]
        assert indexes == sorted(indexes)
        assert indexes == [2, 3, 4]


@pytest.mark.django_db
class TestFatalErrors:

    def test_unreadable_stream_keeps_rows_read_so_far(self, run_import):
        # Row 2 straddles the decoder's first buffer; the bad bytes follow it
        content = (
            b'first_name,last_name,date_of_birth,notes\n'
            b'Ana,Souza,1985-03-14,ok\n'
            b'Bruno,Lima,1979-11-02,ok\n'
            b'Carla,Mendes,2001-06-30,' + b'x' * 9000 + b'\n'
            b'D\xff\xfevi,Rocha,1995-12-01,ok\n'
        )

        job = run_import('patients', content)

        assert job.status == 'failed'
        assert job.stats == JobStats(total=2, imported=2)
        assert errors_of(job) == [(2, 'fatal')]
        assert job.ledger_entries.count() == 2

    def test_consecutive_repository_failures_escalate(self, orchestrator, run_import, flaky_create):
        orchestrator.fatal_streak = 3

        with flaky_create({1, 2, 3, 4, 5}):
            job = run_import('patients', patient_rows(5))

        assert job.status == 'failed'
        # Three failed rows, then the rest of the file is drained unread
        assert job.stats == JobStats(total=5, imported=0, skipped=2, failed=3)
        assert errors_of(job) == [
            (0, 'repository'), (1, 'repository'), (2, 'repository'), (3, 'fatal'),
        ]
        fatal = job.errors.get(kind='fatal')
        assert '3 consecutive repository failures' in fatal.message

    def test_success_resets_failure_streak(self, run_import, flaky_create):
        with flaky_create({1, 2, 4, 5}):
            job = run_import('patients', patient_rows(5))

        assert job.status == 'completed'
        assert job.stats == JobStats(total=5, imported=1, failed=4)
        assert Patient.objects.count() == 1

    def test_validation_failures_do_not_escalate(self, run_import):
        content = 'first_name,last_name,date_of_birth\n' + 'Ana,,1985-03-14\n' * 6

        job = run_import('patients', content)

        assert job.status == 'completed'
        assert job.stats == JobStats(total=6, failed=6)

    def test_slow_row_is_rolled_back(self, orchestrator, registry, run_import):
        orchestrator.row_timeout = -1

        job = run_import('patients', patient_rows(2))

        assert job.status == 'completed'
        assert job.stats == JobStats(total=2, failed=2)
        assert Patient.objects.count() == 0
        assert job.ledger_entries.count() == 0
        assert 'rolled back' in job.errors.first().message

    def test_unexpected_exception_fails_job(self, run_import):
        with patch.object(PatientImporter, 'import_row', side_effect=RuntimeError('boom')):
            job = run_import('patients', patient_rows(3))

        assert job.status == 'failed'
        assert job.stats.total == 0
        error = job.errors.get()
        assert error.kind == 'fatal'
        assert error.message == 'Internal error: RuntimeError'

    def test_task_soft_time_limit_fails_job(self, run_import):
        original = PatientImporter.import_row

        def import_row(importer, raw_row):
            if raw_row.row_index == 2:
                raise SoftTimeLimitExceeded()
            return original(importer, raw_row)

        with patch.object(PatientImporter, 'import_row', import_row):
            job = run_import('patients', patient_rows(5))

        assert job.status == 'failed'
        assert job.stats == JobStats(total=2, imported=2)
        assert Patient.objects.count() == 2
        assert job.ledger_entries.count() == 2
        assert errors_of(job) == [(3, 'fatal')]
        assert job.errors.get().message == 'Internal error: SoftTimeLimitExceeded'

    def test_migration_tasks_stop_softly_before_hard_kill(self):
        for task in (run_migration_job, rollback_migration_job):
            assert task.soft_time_limit == settings.MIGRATION_TASK_SOFT_TIME_LIMIT
            assert task.time_limit == settings.MIGRATION_TASK_TIME_LIMIT
            assert task.time_limit > task.soft_time_limit > settings.CELERY_TASK_TIME_LIMIT


@pytest.mark.django_db
class TestOrchestratorLifecycle:

    def test_start_requires_pending_job(self, orchestrator, run_import):
        job = run_import('patients', patient_rows(1))

        with pytest.raises(InvalidTransition):
            orchestrator.start(job.id, None)

    def test_progress_is_flushed_periodically(self, orchestrator, run_import):
        orchestrator.flush_every = 2

        with patch.object(
            orchestrator.registry, 'record_progress', wraps=orchestrator.registry.record_progress
        ) as spy:
            job = run_import('patients', patient_rows(5))

        assert spy.call_count == 2
        assert job.stats.total == 5

    def test_run_without_upload_is_rejected(self, registry, orchestrator):
        job = registry.create(type='patients', input_format='csv')

        with pytest.raises(InvalidTransition):
            orchestrator.run(job.id)

        job.refresh_from_db()
        assert job.status == 'pending'

    def test_upload_then_run_from_blob_store(self, registry, orchestrator):
        data = PATIENTS_CSV.encode('utf-8')
        job = registry.create(type='patients', input_format='csv', source_name='legacy.csv')

        job = orchestrator.accept_upload(job.id, SimpleUploadedFile('legacy.csv', data))
        assert job.source_sha256 == hashlib.sha256(data).hexdigest()
        assert job.source_size_bytes == len(data)
        assert job.source_blob_key.startswith(f'migration/{job.clinic_id}/{job.id}/')

        job = orchestrator.run(job.id)
        assert job.status == 'completed'
        assert job.stats.imported == 3

    def test_second_upload_is_rejected(self, registry, orchestrator):
        job = registry.create(type='patients', input_format='csv')
        orchestrator.accept_upload(job.id, SimpleUploadedFile('a.csv', b'first_name\nAna\n'))

        with pytest.raises(InvalidTransition):
            orchestrator.accept_upload(job.id, SimpleUploadedFile('b.csv', b'first_name\nBia\n'))

    def test_rejected_upload_deletes_stored_blob(self, registry, orchestrator):
        job = registry.create(type='patients', input_format='csv')
        storage = orchestrator.blobstore.storage
        rejection = InvalidTransition(job.id, 'running', 'running')

        with patch.object(orchestrator.blobstore, 'delete', wraps=orchestrator.blobstore.delete) as delete_spy, \
                patch.object(orchestrator.registry, 'attach_source', side_effect=rejection):
            with pytest.raises(InvalidTransition):
                orchestrator.accept_upload(job.id, SimpleUploadedFile('a.csv', b'first_name\nAna\n'))

        key = delete_spy.call_args.args[0]
        assert key.startswith(f'migration/{job.clinic_id}/{job.id}/')
        assert not storage.exists(key)


@pytest.mark.django_db
def test_full_clinic_migration(clinic, run_import):
    """Patients, then appointments, records and receivables referencing them."""
    patients = run_import('patients', PATIENTS_CSV)
    appointments = run_import('appointments', (
        'external_id,patient_external_id,scheduled_datetime,duration_minutes,type\n'
        'A-100,P-100,2024-05-10 09:00,30,consulta\n'
        'A-101,P-101,10/05/2024 10:00,60,procedimento\n'
    ))
    records = run_import('clinical', (
        'patient_external_id,appointment_external_id,record_date,subjective,assessment,diagnoses\n'
        'P-100,A-100,2024-05-10 09:30,Cefaleia,Enxaqueca,G43.9\n'
    ))
    receivables = run_import('financial', (
        'external_id,patient_external_id,appointment_external_id,amount,method,status\n'
        'R-1,P-100,A-100,"250,00",pix,pago\n'
        'R-2,P-101,A-101,"1.200,00",convênio,\n'
    ))

    for job in (patients, appointments, records, receivables):
        assert job.status == 'completed', errors_of(job)
        assert job.stats.failed == 0

    assert Appointment.objects.filter(clinic=clinic).count() == 2
    assert Encounter.objects.get().diagnosis_codes == ['G43.9']
    assert Receivable.objects.get(external_id='R-1').status == 'paid'
    assert Receivable.objects.get(external_id='R-2').payment_method == 'insurance'
    assert MigrationLedgerEntry.objects.count() == 3 + 2 + 1 + 2
    assert MigrationJobError.objects.count() == 0
