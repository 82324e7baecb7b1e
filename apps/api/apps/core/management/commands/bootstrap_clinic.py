"""
Management command to ensure a clinic and its admin user exist (for Docker startup).
"""
import os

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction

from apps.core.models import Clinic, ClinicMembership, MembershipRoleChoices


class Command(BaseCommand):
    help = 'Create a clinic and an admin member if they do not exist'

    def add_arguments(self, parser):
        parser.add_argument('--clinic-name', default=os.environ.get('CLINIC_NAME', 'Demo Clinic'))
        parser.add_argument('--timezone', default=os.environ.get('CLINIC_TIMEZONE', 'America/Sao_Paulo'))
        parser.add_argument('--currency', default=os.environ.get('CLINIC_CURRENCY', 'BRL'))

    @transaction.atomic
    def handle(self, *args, **options):
        User = get_user_model()

        username = os.environ.get('CLINIC_ADMIN_USERNAME', 'admin')
        email = os.environ.get('CLINIC_ADMIN_EMAIL', 'admin@example.com')
        password = os.environ.get('CLINIC_ADMIN_PASSWORD', 'admin123dev')

        user = User.objects.filter(username=username).first()
        if user is None:
            user = User.objects.create_user(username=username, email=email, password=password)
            self.stdout.write(self.style.SUCCESS(f'User "{username}" created'))
        else:
            self.stdout.write(self.style.WARNING(f'User "{username}" already exists'))

        clinic, created = Clinic.objects.get_or_create(
            name=options['clinic_name'],
            defaults={
                'timezone': options['timezone'],
                'default_currency': options['currency'],
            }
        )
        if created:
            clinic.full_clean()
            self.stdout.write(self.style.SUCCESS(f'Clinic "{clinic.name}" created ({clinic.id})'))

        ClinicMembership.objects.update_or_create(
            user=user,
            clinic=clinic,
            defaults={'role': MembershipRoleChoices.ADMIN, 'is_active': True}
        )
        self.stdout.write(self.style.SUCCESS(f'"{username}" is admin of "{clinic.name}"'))
