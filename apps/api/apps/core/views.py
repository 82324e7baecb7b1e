"""
Core views.
"""
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import ClinicMembership
from .serializers import ClinicMembershipSerializer


class MyClinicsView(APIView):
    """
    Clinics the authenticated user belongs to.

    GET /api/clinics/mine

    Clients send one of the returned clinic_id values as X-Clinic-ID.
    Inactive clinics and memberships are not listed.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        memberships = (
            ClinicMembership.objects
            .filter(user=request.user, is_active=True, clinic__is_active=True)
            .select_related('clinic')
            .order_by('clinic__name')
        )
        return Response(ClinicMembershipSerializer(memberships, many=True).data)
