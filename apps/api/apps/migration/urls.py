"""
Migration API URLs.
"""
from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import MigrationJobViewSet

router = DefaultRouter(trailing_slash=False)
router.register(r'jobs', MigrationJobViewSet, basename='migration-job')

urlpatterns = [
    path('', include(router.urls)),
]
