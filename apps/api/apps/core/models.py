"""
Core models: clinic (tenant), clinic_membership
"""
import uuid
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models


class MembershipRoleChoices(models.TextChoices):
    """Role of a user inside one clinic"""
    ADMIN = 'admin', 'Admin'
    STAFF = 'staff', 'Staff'


class Clinic(models.Model):
    """
    Tenant. Every clinical, financial and migration record belongs to
    exactly one clinic.

    - timezone: IANA name used to read naive timestamps in imported files
    - default_currency: ISO 4217 code applied when a row omits one
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    timezone = models.CharField(max_length=64, default='America/Sao_Paulo')
    default_currency = models.CharField(max_length=3, default='BRL')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'clinic'
        verbose_name = 'Clinic'
        verbose_name_plural = 'Clinics'
        indexes = [
            models.Index(fields=['is_active'], name='idx_clinic_active'),
        ]

    def __str__(self):
        return self.name

    def clean(self):
        super().clean()
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError({'timezone': f'Unknown timezone: {self.timezone}'})

    @property
    def tzinfo(self):
        return ZoneInfo(self.timezone)


class ClinicMembership(models.Model):
    """User access to a clinic. Admins may run and roll back migrations."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='clinic_memberships'
    )
    clinic = models.ForeignKey(
        'Clinic',
        on_delete=models.CASCADE,
        related_name='memberships'
    )
    role = models.CharField(
        max_length=20,
        choices=MembershipRoleChoices.choices,
        default=MembershipRoleChoices.STAFF
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'clinic_membership'
        verbose_name = 'Clinic Membership'
        verbose_name_plural = 'Clinic Memberships'
        constraints = [
            models.UniqueConstraint(fields=['user', 'clinic'], name='uniq_clinic_membership_user'),
        ]

    def __str__(self):
        return f"{self.user} @ {self.clinic} ({self.role})"
