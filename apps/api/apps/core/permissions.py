"""
Clinic-scoped permissions for API endpoints.
"""
from rest_framework import permissions

from .models import MembershipRoleChoices
from .tenancy import get_membership, resolve_clinic


class IsClinicAdmin(permissions.BasePermission):
    """
    Only clinic admins can run bulk operations on clinic data.

    - Superuser: any clinic
    - Admin membership: own clinic
    - Staff membership: NO ACCESS
    """
    message = 'Clinic admin role required.'

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        clinic = resolve_clinic(request)
        if request.user.is_superuser:
            return True

        membership = get_membership(request.user, clinic)
        return membership is not None and membership.role == MembershipRoleChoices.ADMIN
