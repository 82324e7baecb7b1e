"""Core serializers."""
from rest_framework import serializers

from .models import ClinicMembership


class ClinicMembershipSerializer(serializers.ModelSerializer):
    """A clinic the user can act on, with the role they hold there."""
    clinic_id = serializers.UUIDField(source='clinic.id', read_only=True)
    clinic_name = serializers.CharField(source='clinic.name', read_only=True)
    timezone = serializers.CharField(source='clinic.timezone', read_only=True)
    default_currency = serializers.CharField(source='clinic.default_currency', read_only=True)

    class Meta:
        model = ClinicMembership
        fields = ['clinic_id', 'clinic_name', 'role', 'timezone', 'default_currency']
        read_only_fields = fields
