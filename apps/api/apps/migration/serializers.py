"""Migration job serializers."""
import codecs

from django.conf import settings
from rest_framework import serializers

from .models import (
    InputFormatChoices,
    JobTypeChoices,
    MigrationJob,
    MigrationJobError,
    MigrationLedgerEntry,
)
from .parsers import ALLOWED_DELIMITERS

ALLOWED_PARAMS = ('delimiter', 'encoding')


class MigrationJobErrorSerializer(serializers.ModelSerializer):
    class Meta:
        model = MigrationJobError
        fields = ['row_index', 'kind', 'message', 'created_at']
        read_only_fields = fields


class MigrationLedgerEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = MigrationLedgerEntry
        fields = ['sequence', 'row_index', 'entity_type', 'entity_id', 'created_at', 'reverted_at']
        read_only_fields = fields


class MigrationJobSerializer(serializers.ModelSerializer):
    """
    Job as returned by every endpoint.

    errors is a preview (first MIGRATION_ERROR_PREVIEW_LIMIT rows by
    row_index); GET /jobs/{id}/errors lists them all.
    """
    stats = serializers.SerializerMethodField()
    errors = serializers.SerializerMethodField()
    error_count = serializers.SerializerMethodField()
    ledger_size = serializers.SerializerMethodField()

    class Meta:
        model = MigrationJob
        fields = [
            'id', 'type', 'status', 'input_format', 'source_name', 'params',
            'stats', 'errors', 'error_count', 'ledger_size',
            'source_sha256', 'rollback_error',
            'created_at', 'started_at', 'completed_at', 'rolled_back_at',
        ]
        read_only_fields = fields

    def get_stats(self, obj):
        return obj.stats.as_dict()

    def get_errors(self, obj):
        limit = getattr(settings, 'MIGRATION_ERROR_PREVIEW_LIMIT', 20)
        preview = obj.errors.order_by('row_index', 'id')[:limit]
        return MigrationJobErrorSerializer(preview, many=True).data

    def get_error_count(self, obj):
        return obj.errors.count()

    def get_ledger_size(self, obj):
        return obj.ledger_entries.count()


class MigrationJobCreateSerializer(serializers.Serializer):
    """
    Create request body.

    params accepts only parser options:
    - delimiter: one of , ; TAB |  (CSV only)
    - encoding: a codec name known to Python (default utf-8)
    """
    type = serializers.ChoiceField(choices=JobTypeChoices.choices)
    input_format = serializers.ChoiceField(choices=InputFormatChoices.choices)
    source_name = serializers.CharField(max_length=255, required=False, allow_blank=True, allow_null=True)
    params = serializers.DictField(required=False, default=dict)

    def validate_params(self, value):
        unknown = sorted(set(value) - set(ALLOWED_PARAMS))
        if unknown:
            raise serializers.ValidationError(f"Unknown params: {', '.join(unknown)}")

        delimiter = value.get('delimiter')
        if delimiter is not None and delimiter not in ALLOWED_DELIMITERS:
            raise serializers.ValidationError({'delimiter': 'Use one of: , ; | or a tab'})

        encoding = value.get('encoding')
        if encoding is not None:
            try:
                codecs.lookup(encoding)
            except (LookupError, TypeError):
                raise serializers.ValidationError({'encoding': f"Unknown encoding '{encoding}'"})
        return value

    def validate(self, attrs):
        params = attrs.get('params') or {}
        if 'delimiter' in params and attrs['input_format'] != InputFormatChoices.CSV:
            raise serializers.ValidationError({'params': 'delimiter only applies to CSV input'})
        return attrs


class MigrationUploadSerializer(serializers.Serializer):
    file = serializers.FileField()

    def validate_file(self, value):
        max_mb = getattr(settings, 'MIGRATION_MAX_UPLOAD_MB', 50)
        if value.size > max_mb * 1024 * 1024:
            raise serializers.ValidationError(f'File is larger than {max_mb} MB')
        return value


class TemplateQuerySerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=JobTypeChoices.choices)
