from django.contrib import admin
from .models import MigrationJob, MigrationJobError, MigrationLedgerEntry


class MigrationJobErrorInline(admin.TabularInline):
    model = MigrationJobError
    extra = 0
    can_delete = False
    fields = ['row_index', 'kind', 'message', 'created_at']
    readonly_fields = fields
    max_num = 0


@admin.register(MigrationJob)
class MigrationJobAdmin(admin.ModelAdmin):
    """
    Read-only view of migration jobs.

    Status changes go through the API so transitions stay guarded.
    """
    list_display = [
        'id', 'clinic', 'type', 'input_format', 'status',
        'stats_total', 'stats_imported', 'stats_skipped', 'stats_failed', 'created_at'
    ]
    list_filter = ['status', 'type', 'input_format']
    search_fields = ['source_name', 'clinic__name']
    readonly_fields = [
        'clinic', 'created_by', 'type', 'input_format', 'source_name', 'params', 'status',
        'stats_total', 'stats_imported', 'stats_skipped', 'stats_failed',
        'source_blob_key', 'source_sha256', 'source_size_bytes', 'rollback_error',
        'created_at', 'started_at', 'completed_at', 'rolled_back_at', 'updated_at',
    ]
    inlines = [MigrationJobErrorInline]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(MigrationLedgerEntry)
class MigrationLedgerEntryAdmin(admin.ModelAdmin):
    list_display = ['job', 'sequence', 'row_index', 'entity_type', 'entity_id', 'reverted_at']
    list_filter = ['entity_type']
    search_fields = ['entity_id']
    readonly_fields = ['job', 'sequence', 'row_index', 'entity_type', 'entity_id', 'created_at', 'reverted_at']

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
