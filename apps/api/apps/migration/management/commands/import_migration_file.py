"""
Management command to run a migration job from a local file, synchronously.

Usage:
    python manage.py import_migration_file <clinic_id> patients export.csv
    python manage.py import_migration_file <clinic_id> financial data.json --format json
    python manage.py import_migration_file <clinic_id> --rollback 42
"""
import os

from django.core.files import File
from django.core.management.base import BaseCommand, CommandError

from apps.core.models import Clinic
from apps.core.observability.correlation import job_context

from ...exceptions import InvalidTransition, JobNotFound, RollbackCompensationError
from ...models import InputFormatChoices, JobTypeChoices
from ...orchestrator import MigrationOrchestrator
from ...rollback import RollbackEngine


class Command(BaseCommand):
    help = 'Import a CSV/JSON file into a clinic (or roll back a job) without going through the API'

    def add_arguments(self, parser):
        parser.add_argument('clinic_id')
        parser.add_argument('type', nargs='?', choices=JobTypeChoices.values)
        parser.add_argument('path', nargs='?')
        parser.add_argument('--format', dest='input_format', choices=InputFormatChoices.values)
        parser.add_argument('--delimiter')
        parser.add_argument('--encoding')
        parser.add_argument('--rollback', type=int, metavar='JOB_ID')

    def handle(self, *args, **options):
        clinic = Clinic.objects.filter(id=options['clinic_id']).first()
        if clinic is None:
            raise CommandError(f"Clinic {options['clinic_id']} not found")

        if options['rollback'] is not None:
            return self.rollback(clinic, options['rollback'])

        if not options['type'] or not options['path']:
            raise CommandError('type and path are required unless --rollback is given')
        return self.run_import(clinic, options)

    def run_import(self, clinic, options):
        path = options['path']
        if not os.path.isfile(path):
            raise CommandError(f'{path} is not a file')

        input_format = options['input_format']
        if input_format is None:
            input_format = InputFormatChoices.JSON if path.lower().endswith('.json') else InputFormatChoices.CSV

        params = {
            key: options[key]
            for key in ('delimiter', 'encoding')
            if options[key]
        }

        orchestrator = MigrationOrchestrator(clinic)
        job = orchestrator.registry.create(
            type=options['type'],
            input_format=input_format,
            source_name=os.path.basename(path),
            params=params,
        )

        with job_context(job.id, clinic_id=clinic.id):
            with open(path, 'rb') as handle:
                orchestrator.accept_upload(job.id, File(handle, name=os.path.basename(path)))
            job = orchestrator.run(job.id)

        style = self.style.SUCCESS if job.status == 'completed' else self.style.ERROR
        self.stdout.write(style(
            f'Job #{job.id} {job.status}: total={job.stats_total} imported={job.stats_imported} '
            f'skipped={job.stats_skipped} failed={job.stats_failed}'
        ))
        for error in job.errors.order_by('row_index', 'id')[:20]:
            self.stdout.write(f'  row {error.row_index} [{error.kind}] {error.message}')

    def rollback(self, clinic, job_id):
        with job_context(job_id, clinic_id=clinic.id):
            try:
                job = RollbackEngine(clinic).rollback(job_id)
            except (JobNotFound, InvalidTransition, RollbackCompensationError) as e:
                raise CommandError(str(e))
        self.stdout.write(self.style.SUCCESS(f'Job #{job.id} {job.status}'))
