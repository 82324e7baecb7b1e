from django.contrib import admin
from .models import Receivable


@admin.register(Receivable)
class ReceivableAdmin(admin.ModelAdmin):
    list_display = ['id', 'clinic', 'patient', 'amount', 'paid_amount', 'currency', 'payment_method', 'status', 'due_date']
    list_filter = ['clinic', 'status', 'payment_method']
    search_fields = ['external_id', 'description', 'patient__last_name']
    raw_id_fields = ['patient', 'appointment']
    readonly_fields = ['id', 'created_at', 'updated_at']
