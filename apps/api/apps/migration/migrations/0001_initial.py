# Initial migration for migration app - jobs, row errors, change ledger

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('core', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='MigrationJob',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('type', models.CharField(choices=[('patients', 'Patients'), ('appointments', 'Appointments'), ('clinical', 'Clinical Records'), ('financial', 'Financial')], max_length=20)),
                ('input_format', models.CharField(choices=[('csv', 'CSV'), ('json', 'JSON')], max_length=10)),
                ('source_name', models.CharField(blank=True, max_length=255, null=True)),
                ('params', models.JSONField(blank=True, default=dict, help_text='Parser options: delimiter, encoding')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('running', 'Running'), ('completed', 'Completed'), ('failed', 'Failed'), ('rolled_back', 'Rolled Back')], default='pending', max_length=20)),
                ('stats_total', models.PositiveIntegerField(default=0)),
                ('stats_imported', models.PositiveIntegerField(default=0)),
                ('stats_skipped', models.PositiveIntegerField(default=0)),
                ('stats_failed', models.PositiveIntegerField(default=0)),
                ('source_blob_key', models.CharField(blank=True, max_length=512, null=True)),
                ('source_sha256', models.CharField(blank=True, max_length=64, null=True)),
                ('source_size_bytes', models.BigIntegerField(blank=True, null=True)),
                ('rollback_error', models.TextField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('started_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('rolled_back_at', models.DateTimeField(blank=True, null=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('clinic', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='migration_jobs', to='core.clinic')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='migration_jobs', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Migration Job',
                'verbose_name_plural': 'Migration Jobs',
                'db_table': 'migration_job',
                'ordering': ['-created_at', '-id'],
                'indexes': [
                    models.Index(fields=['clinic', '-created_at'], name='idx_migration_job_clinic'),
                    models.Index(fields=['status'], name='idx_migration_job_status'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('status__in', ['pending', 'running']), ('stats_total', models.F('stats_imported') + models.F('stats_skipped') + models.F('stats_failed')), _connector='OR'), name='migration_job_rows_balanced'),
                ],
            },
        ),
        migrations.CreateModel(
            name='MigrationJobError',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('row_index', models.PositiveIntegerField(help_text='Zero-based position in the source file')),
                ('kind', models.CharField(choices=[('parse', 'Parse'), ('validation', 'Validation'), ('repository', 'Repository'), ('fatal', 'Fatal')], max_length=20)),
                ('message', models.TextField()),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('job', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='errors', to='migration.migrationjob')),
            ],
            options={
                'verbose_name': 'Migration Job Error',
                'verbose_name_plural': 'Migration Job Errors',
                'db_table': 'migration_job_error',
                'ordering': ['row_index', 'id'],
                'indexes': [
                    models.Index(fields=['job', 'row_index'], name='idx_migration_error_row'),
                ],
            },
        ),
        migrations.CreateModel(
            name='MigrationLedgerEntry',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('sequence', models.PositiveIntegerField()),
                ('row_index', models.PositiveIntegerField()),
                ('entity_type', models.CharField(choices=[('patient', 'Patient'), ('appointment', 'Appointment'), ('encounter', 'Encounter'), ('receivable', 'Receivable')], max_length=20)),
                ('entity_id', models.CharField(max_length=64)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('reverted_at', models.DateTimeField(blank=True, null=True)),
                ('job', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='ledger_entries', to='migration.migrationjob')),
            ],
            options={
                'verbose_name': 'Migration Ledger Entry',
                'verbose_name_plural': 'Migration Ledger Entries',
                'db_table': 'migration_ledger_entry',
                'ordering': ['job', 'sequence'],
                'indexes': [
                    models.Index(fields=['entity_type', 'entity_id'], name='idx_migration_ledger_entity'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('job', 'sequence'), name='uniq_migration_ledger_sequence'),
                ],
            },
        ),
    ]
