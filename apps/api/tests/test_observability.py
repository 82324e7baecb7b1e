"""
Tests for observability layer.

Validates that metrics, logs, and events are emitted correctly
without logging PHI/PII.
"""
import json
import logging
from unittest.mock import MagicMock, Mock, patch

import pytest
from django.http import HttpResponse
from django.test import RequestFactory
from prometheus_client import REGISTRY

from apps.core.observability.correlation import (
    RequestCorrelationMiddleware,
    clear_request_context,
    get_clinic_id,
    get_request_id,
    job_context,
)
from apps.core.observability.events import log_domain_event, log_job_transition
from apps.core.observability.logging import (
    CorrelationFilter,
    SanitizedJSONFormatter,
    sanitize_dict,
)
from apps.core.observability.metrics import metrics
from apps.core.observability.tracing import trace_span
from apps.migration.exceptions import InvalidTransition


def sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.fixture(autouse=True)
def clean_context():
    clear_request_context()
    yield
    clear_request_context()


class TestRequestCorrelation:
    """Test request correlation middleware."""

    def middleware(self):
        return RequestCorrelationMiddleware(lambda r: HttpResponse())

    def test_generates_request_id_if_missing(self):
        request = RequestFactory().get('/api/migration/jobs')
        request.user = Mock(is_authenticated=False)

        self.middleware().process_request(request)

        assert request.request_id
        assert get_request_id() == request.request_id

    def test_propagates_request_and_clinic_headers(self):
        request = RequestFactory().get(
            '/api/migration/jobs',
            HTTP_X_REQUEST_ID='req-123',
            HTTP_X_CLINIC_ID='clinic-1',
        )
        request.user = Mock(is_authenticated=False)

        self.middleware().process_request(request)

        assert request.request_id == 'req-123'
        assert get_clinic_id() == 'clinic-1'

    def test_adds_request_id_to_response_and_counts_request(self):
        middleware = self.middleware()
        request = RequestFactory().post('/api/migration/jobs')
        request.user = Mock(is_authenticated=False)
        middleware.process_request(request)
        before = sample('http_requests_total', path='unmatched', method='POST', status='201')

        response = middleware.process_response(request, HttpResponse(status=201))

        assert response['X-Request-ID'] == request.request_id
        assert sample('http_requests_total', path='unmatched', method='POST', status='201') == before + 1


class TestJobContext:
    """Worker runs carry a job-scoped correlation context."""

    def test_binds_and_restores_context(self):
        request = RequestFactory().get('/api/migration/jobs', HTTP_X_REQUEST_ID='outer')
        request.user = Mock(is_authenticated=False)
        RequestCorrelationMiddleware(lambda r: HttpResponse()).process_request(request)

        with job_context(42, clinic_id='c-1'):
            assert get_request_id() == 'job-42'
            assert get_clinic_id() == 'c-1'

        assert get_request_id() == 'outer'
        assert get_clinic_id() is None

    def test_restores_after_exception(self):
        with pytest.raises(RuntimeError):
            with job_context(7):
                raise RuntimeError('boom')

        assert get_request_id() is None

    def test_log_records_carry_job_context(self):
        record = logging.LogRecord('apps.migration', logging.INFO, __file__, 1, 'Row imported', None, None)

        with job_context(9, clinic_id='c-9'):
            CorrelationFilter().filter(record)

        assert record.request_id == 'job-9'
        assert record.clinic_id == 'c-9'


class TestSanitization:
    """Test PHI/PII sanitization."""

    def test_sanitize_dict_redacts_sensitive_fields(self):
        data = {
            'job_id': '123',
            'first_name': 'Ana',
            'cpf': '11144477735',
            'email': 'ana@example.com',
            'subjective': 'Dor de garganta',
            'status': 'completed',
        }

        sanitized = sanitize_dict(data)

        assert sanitized['job_id'] == '123'
        assert sanitized['status'] == 'completed'
        assert sanitized['first_name'] == '[REDACTED]'
        assert sanitized['cpf'] == '[REDACTED]'
        assert sanitized['email'] == '[REDACTED]'
        assert sanitized['subjective'] == '[REDACTED]'

    def test_legacy_portuguese_columns_are_redacted(self):
        sanitized = sanitize_dict({'row': {'nome': 'Maria', 'data_nascimento': '02/07/1990', 'valor': '10'}})

        assert sanitized['row']['nome'] == '[REDACTED]'
        assert sanitized['row']['data_nascimento'] == '[REDACTED]'
        assert sanitized['row']['valor'] == '10'

    def test_formatter_redacts_extra_fields(self):
        record = logging.LogRecord('apps.migration', logging.WARNING, __file__, 1, 'Row failed', None, None)
        record.event = 'migration_row_failed'
        record.cpf = '11144477735'
        record.raw_row = {'nome': 'Maria'}
        CorrelationFilter().filter(record)

        output = json.loads(SanitizedJSONFormatter().format(record))

        assert output['event'] == 'migration_row_failed'
        assert output['cpf'] == '[REDACTED]'
        assert output['raw_row'] == '[REDACTED]'
        assert '11144477735' not in json.dumps(output)

    def test_formatter_masks_cpf_in_message(self):
        record = logging.LogRecord(
            'apps.migration', logging.WARNING, __file__, 1,
            'Row %s: CPF %s already registered', (3, '111.444.777-35'), None,
        )
        record.reason = 'duplicate of 52998224725'

        output = json.loads(SanitizedJSONFormatter().format(record))

        assert output['message'] == 'Row 3: CPF ***.***.***-** already registered'
        assert output['reason'] == 'duplicate of ***.***.***-**'
        assert output['request_id'] == '-'


class TestMetricsEmission:
    """Test that metrics are emitted correctly."""

    def test_metrics_registry_has_migration_metrics(self):
        for name in (
            'migration_jobs_created_total',
            'migration_job_transitions_total',
            'migration_jobs_running',
            'migration_job_duration_seconds',
            'migration_rows_total',
            'migration_row_duration_seconds',
            'migration_row_errors_total',
            'migration_fatal_escalations_total',
            'migration_rollbacks_total',
            'migration_rollback_entries_total',
        ):
            assert hasattr(metrics, name)

    @pytest.mark.django_db
    def test_import_counts_rows_by_outcome(self, run_import):
        labels = {'type': 'patients'}
        imported = sample('migration_rows_total', outcome='imported', **labels)
        failed = sample('migration_rows_total', outcome='failed', **labels)
        validation = sample('migration_row_errors_total', kind='validation', **labels)

        run_import('patients', 'first_name,last_name,date_of_birth\nAna,Souza,1985-03-14\nBruno,,1979-11-02\n')

        assert sample('migration_rows_total', outcome='imported', **labels) == imported + 1
        assert sample('migration_rows_total', outcome='failed', **labels) == failed + 1
        assert sample('migration_row_errors_total', kind='validation', **labels) == validation + 1

    @pytest.mark.django_db
    def test_rejected_transition_is_counted(self, registry):
        job = registry.create(type='patients', input_format='csv')
        labels = {'from_status': 'pending', 'to_status': 'completed', 'result': 'rejected'}
        before = sample('migration_job_transitions_total', **labels)

        with pytest.raises(InvalidTransition):
            registry.transition(job.id, 'running', 'completed')

        assert sample('migration_job_transitions_total', **labels) == before + 1


class TestDomainEvents:
    """Test domain event logging."""

    @patch('apps.core.observability.events.logger')
    def test_log_domain_event_structure(self, mock_logger):
        log_domain_event(
            'test_event',
            entity_type='MigrationJob',
            entity_id='17',
            result='success',
            custom_field='value',
            cpf='11144477735',
        )

        mock_logger.info.assert_called_once()
        extra = mock_logger.info.call_args[1]['extra']
        assert extra['event'] == 'test_event'
        assert extra['entity_type'] == 'MigrationJob'
        assert extra['entity_id'] == '17'
        assert extra['result'] == 'success'
        assert extra['custom_field'] == 'value'
        assert extra['cpf'] == '[REDACTED]'

    @patch('apps.core.observability.events.logger')
    def test_rejected_transition_logs_warning(self, mock_logger):
        job = Mock(id=17, clinic_id='c-1')

        log_job_transition(job, 'pending', 'completed', result='rejected')

        mock_logger.warning.assert_called_once()
        extra = mock_logger.warning.call_args[1]['extra']
        assert extra['event'] == 'migration_job_transition'
        assert extra['job_id'] == '17'
        assert extra['clinic_id'] == 'c-1'
        assert extra['from_status'] == 'pending'
        assert extra['to_status'] == 'completed'

    @patch('apps.core.observability.events.logger')
    def test_failure_logs_error(self, mock_logger):
        log_domain_event('migration_job_rollback', result='failure')

        mock_logger.error.assert_called_once()


@pytest.mark.django_db
class TestHealthChecks:
    """Test health check endpoints."""

    def test_healthz_returns_200(self, client):
        response = client.get('/healthz')

        assert response.status_code == 200
        data = response.json()
        assert data['status'] == 'ok'
        assert 'version' in data

    def test_readyz_checks_database_and_storage(self, client):
        response = client.get('/readyz')

        assert response.status_code == 200
        data = response.json()
        assert data['status'] == 'ready'
        assert data['checks'] == {'database': True, 'storage': True}

    @patch('apps.core.observability.health.connection')
    def test_readyz_fails_on_db_error(self, mock_connection, client):
        mock_connection.cursor.side_effect = Exception('DB connection failed')

        response = client.get('/readyz')

        assert response.status_code == 503
        data = response.json()
        assert data['status'] == 'not_ready'
        assert data['checks']['database'] is False

    @patch('apps.core.observability.health.default_storage')
    def test_readyz_fails_on_storage_error(self, mock_storage, client):
        mock_storage.exists = MagicMock(side_effect=OSError('bucket unreachable'))

        response = client.get('/readyz')

        assert response.status_code == 503
        assert response.json()['checks']['storage'] is False


class TestTracingIntegration:
    """Test tracing span creation."""

    def test_trace_span_yields_span(self):
        with trace_span('migration_job_run', kind='consumer', attributes={'job_id': 1}) as span:
            assert span is not None

    def test_trace_span_reraises(self):
        with pytest.raises(ValueError):
            with trace_span('migration_job_run'):
                raise ValueError('bad row')
