"""
Clinical admin configuration.
"""
from django.contrib import admin
from .models import Patient, Appointment, Encounter


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ['last_name', 'first_name', 'clinic', 'date_of_birth', 'external_id', 'created_at']
    list_filter = ['clinic', 'sex', 'blood_type']
    search_fields = ['first_name', 'last_name', 'email', 'cpf', 'external_id']
    readonly_fields = ['id', 'created_at', 'updated_at']


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = ['patient', 'clinic', 'scheduled_start', 'appointment_type', 'status', 'external_id']
    list_filter = ['clinic', 'status', 'appointment_type']
    search_fields = ['patient__first_name', 'patient__last_name', 'external_id']
    raw_id_fields = ['patient']
    readonly_fields = ['id', 'created_at', 'updated_at']


@admin.register(Encounter)
class EncounterAdmin(admin.ModelAdmin):
    list_display = ['patient', 'clinic', 'occurred_at', 'practitioner_name', 'external_id']
    list_filter = ['clinic']
    search_fields = ['patient__first_name', 'patient__last_name', 'external_id']
    raw_id_fields = ['patient', 'appointment']
    readonly_fields = ['id', 'created_at', 'updated_at']
