"""
Tenant resolution for API requests.

The active clinic comes from the X-Clinic-ID header. When the header is
absent and the user belongs to exactly one clinic, that clinic is used.
Superusers may address any active clinic.
"""
import uuid

from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from .models import Clinic, ClinicMembership

CLINIC_HEADER = 'HTTP_X_CLINIC_ID'


def get_membership(user, clinic):
    """Return the active membership of user in clinic, or None."""
    return ClinicMembership.objects.filter(
        user=user, clinic=clinic, is_active=True
    ).first()


def resolve_clinic(request):
    """
    Resolve the clinic the request acts on.

    Raises:
        ValidationError: malformed header, or no header with several memberships
        NotFound: unknown or inactive clinic
        PermissionDenied: user is not a member of the clinic
    """
    cached = getattr(request, '_clinic', None)
    if cached is not None:
        return cached

    user = request.user
    raw = request.META.get(CLINIC_HEADER)

    if raw:
        try:
            clinic_id = uuid.UUID(raw)
        except ValueError:
            raise ValidationError({'clinic': 'X-Clinic-ID must be a UUID'})
        clinic = Clinic.objects.filter(id=clinic_id, is_active=True).first()
        if clinic is None:
            raise NotFound('Clinic not found')
        if not user.is_superuser and get_membership(user, clinic) is None:
            raise PermissionDenied('You are not a member of this clinic')
    else:
        memberships = list(
            ClinicMembership.objects.filter(
                user=user, is_active=True, clinic__is_active=True
            ).select_related('clinic')[:2]
        )
        if len(memberships) != 1:
            raise ValidationError({'clinic': 'X-Clinic-ID header is required'})
        clinic = memberships[0].clinic

    request._clinic = clinic
    return clinic
