"""Migration app configuration."""
from django.apps import AppConfig


class MigrationConfig(AppConfig):
    """Configuration for the data migration engine."""
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.migration'
    verbose_name = 'Data Migration'
