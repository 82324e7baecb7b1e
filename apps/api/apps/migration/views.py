"""Migration job views."""
import csv
import io

from django.http import HttpResponse
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle

from apps.core.observability import get_sanitized_logger
from apps.core.permissions import IsClinicAdmin
from apps.core.tenancy import resolve_clinic

from .exceptions import InvalidTransition, JobNotFound, RollbackCompensationError
from .importers import get_importer_class
from .orchestrator import MigrationOrchestrator
from .registry import JobRegistry
from .serializers import (
    MigrationJobCreateSerializer,
    MigrationJobErrorSerializer,
    MigrationJobSerializer,
    MigrationLedgerEntrySerializer,
    MigrationUploadSerializer,
    TemplateQuerySerializer,
)
from .tasks import enqueue_import, enqueue_rollback

logger = get_sanitized_logger(__name__)


def invalid_transition_response(error):
    return Response(
        {
            'error': str(error),
            'error_type': 'invalid_transition',
            'status': error.current_status,
        },
        status=status.HTTP_409_CONFLICT
    )


class MigrationJobViewSet(viewsets.GenericViewSet):
    """
    Bulk data migration jobs of the active clinic.

    Endpoints:
    - GET  /api/migration/jobs                  - List jobs (newest first)
    - POST /api/migration/jobs                  - Create a PENDING job
    - GET  /api/migration/jobs/{id}             - Job with stats and error preview
    - POST /api/migration/jobs/{id}/upload      - Upload the source file and start the import
    - POST /api/migration/jobs/{id}/rollback    - Delete everything the job created
    - GET  /api/migration/jobs/{id}/errors      - All row errors (paginated)
    - GET  /api/migration/jobs/{id}/ledger      - Created entities (paginated)
    - GET  /api/migration/jobs/template?type=   - CSV header template

    Access: clinic admins (superusers for any clinic).
    """
    serializer_class = MigrationJobSerializer
    permission_classes = [IsAuthenticated, IsClinicAdmin]
    parser_classes = [JSONParser, MultiPartParser, FormParser]
    throttle_scope = 'migration_uploads'

    def get_registry(self):
        return JobRegistry(resolve_clinic(self.request))

    def get_queryset(self):
        return self.get_registry().list()

    def get_job(self, pk):
        try:
            return self.get_registry().get(pk)
        except JobNotFound as e:
            raise NotFound(str(e))

    def job_response(self, job, status_code=status.HTTP_200_OK):
        return Response(MigrationJobSerializer(job).data, status=status_code)

    def list(self, request):
        """Plain array of the clinic's jobs, newest first."""
        jobs = self.get_queryset().prefetch_related('errors')
        return Response(MigrationJobSerializer(jobs, many=True).data)

    def create(self, request):
        serializer = MigrationJobCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        job = self.get_registry().create(
            type=data['type'],
            input_format=data['input_format'],
            source_name=data.get('source_name'),
            params=data.get('params'),
            created_by=request.user,
        )
        return self.job_response(job, status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        return self.job_response(self.get_job(pk))

    @action(detail=True, methods=['post'], url_path='upload',
            parser_classes=[MultiPartParser, FormParser],
            throttle_classes=[ScopedRateThrottle])
    def upload(self, request, pk=None):
        """
        Upload the job's source file and enqueue the import.

        POST /api/migration/jobs/{id}/upload  (multipart, field 'file')

        Returns:
        - 202: Job accepted (RUNNING or already finished when run inline)
        - 400: Missing or oversized file
        - 404: Job not found
        - 409: Job already received a file
        """
        job = self.get_job(pk)
        serializer = MigrationUploadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        orchestrator = MigrationOrchestrator(job.clinic)
        try:
            job = orchestrator.accept_upload(job.id, serializer.validated_data['file'])
        except InvalidTransition as e:
            logger.warning(
                'Upload rejected',
                extra={'event': 'migration_upload_rejected', 'job_id': job.id, 'status': e.current_status}
            )
            return invalid_transition_response(e)

        enqueue_import(job)
        job.refresh_from_db()
        return self.job_response(job, status.HTTP_202_ACCEPTED)

    @action(detail=True, methods=['post'], url_path='rollback')
    def rollback(self, request, pk=None):
        """
        Roll back a COMPLETED or FAILED job.

        POST /api/migration/jobs/{id}/rollback

        Returns:
        - 202: Rollback accepted (ROLLED_BACK when run inline)
        - 404: Job not found
        - 409: Job is not rollback-eligible, or a compensating delete failed
        """
        job = self.get_job(pk)
        if not job.is_rollback_eligible:
            return invalid_transition_response(
                InvalidTransition(job.id, job.status, 'rolled_back')
            )

        try:
            enqueue_rollback(job)
        except InvalidTransition as e:
            return invalid_transition_response(e)
        except RollbackCompensationError as e:
            job.refresh_from_db()
            return Response(
                {
                    'error': str(e),
                    'error_type': 'rollback_compensation_failed',
                    'job': MigrationJobSerializer(job).data,
                },
                status=status.HTTP_409_CONFLICT
            )

        job.refresh_from_db()
        return self.job_response(job, status.HTTP_202_ACCEPTED)

    @action(detail=True, methods=['get'], url_path='errors')
    def errors(self, request, pk=None):
        job = self.get_job(pk)
        page = self.paginate_queryset(job.errors.order_by('row_index', 'id'))
        return self.get_paginated_response(MigrationJobErrorSerializer(page, many=True).data)

    @action(detail=True, methods=['get'], url_path='ledger')
    def ledger(self, request, pk=None):
        job = self.get_job(pk)
        page = self.paginate_queryset(job.ledger_entries.order_by('sequence'))
        return self.get_paginated_response(MigrationLedgerEntrySerializer(page, many=True).data)

    @action(detail=False, methods=['get'], url_path='template')
    def template(self, request):
        """CSV header line with the canonical columns of a job type."""
        query = TemplateQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        job_type = query.validated_data['type']

        buffer = io.StringIO()
        csv.writer(buffer, lineterminator='\n').writerow(get_importer_class(job_type).template_columns)

        response = HttpResponse(buffer.getvalue(), content_type='text/csv; charset=utf-8')
        response['Content-Disposition'] = f'attachment; filename="{job_type}_template.csv"'
        return response
