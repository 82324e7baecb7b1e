"""
Finance models: receivable (amount owed by a patient, with payment progress).
"""
import uuid
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q


class PaymentMethodChoices(models.TextChoices):
    """Accepted payment methods"""
    CASH = 'cash', 'Cash'
    CREDIT_CARD = 'credit_card', 'Credit Card'
    DEBIT_CARD = 'debit_card', 'Debit Card'
    BANK_TRANSFER = 'bank_transfer', 'Bank Transfer'
    PIX = 'pix', 'PIX'
    CHECK = 'check', 'Check'
    INSURANCE = 'insurance', 'Insurance'
    OTHER = 'other', 'Other'


class ReceivableStatusChoices(models.TextChoices):
    """
    Receivable status:
    - pending: nothing paid yet
    - partial: 0 < paid_amount < amount
    - paid: paid_amount == amount
    - overdue: unpaid past due_date
    - cancelled: written off
    """
    PENDING = 'pending', 'Pending'
    PARTIAL = 'partial', 'Partially Paid'
    PAID = 'paid', 'Paid'
    OVERDUE = 'overdue', 'Overdue'
    CANCELLED = 'cancelled', 'Cancelled'


class Receivable(models.Model):
    """
    Financial record of a charge and its payment progress.

    Business rules:
    - amount > 0
    - 0 <= paid_amount <= amount
    - status 'paid' requires paid_amount == amount
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    clinic = models.ForeignKey(
        'core.Clinic',
        on_delete=models.PROTECT,
        related_name='receivables'
    )
    external_id = models.CharField(max_length=100, blank=True, null=True)
    patient = models.ForeignKey(
        'clinical.Patient',
        on_delete=models.PROTECT,
        blank=True,
        null=True,
        related_name='receivables'
    )
    appointment = models.ForeignKey(
        'clinical.Appointment',
        on_delete=models.PROTECT,
        blank=True,
        null=True,
        related_name='receivables'
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    currency = models.CharField(max_length=3)
    payment_method = models.CharField(max_length=20, choices=PaymentMethodChoices.choices)
    status = models.CharField(
        max_length=20,
        choices=ReceivableStatusChoices.choices,
        default=ReceivableStatusChoices.PENDING
    )
    due_date = models.DateField(blank=True, null=True)
    paid_at = models.DateField(blank=True, null=True)
    description = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'receivable'
        verbose_name = 'Receivable'
        verbose_name_plural = 'Receivables'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['clinic', 'status'], name='idx_receivable_status'),
            models.Index(fields=['clinic', 'due_date'], name='idx_receivable_due_date'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['clinic', 'external_id'],
                condition=Q(external_id__isnull=False),
                name='uniq_receivable_clinic_external_id',
            ),
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name='receivable_amount_positive'
            ),
            models.CheckConstraint(
                condition=Q(paid_amount__gte=0) & Q(paid_amount__lte=F('amount')),
                name='receivable_paid_within_amount'
            ),
        ]

    def __str__(self):
        return f"{self.amount} {self.currency} ({self.get_status_display()})"

    def clean(self):
        super().clean()
        if self.amount is not None and self.paid_amount is not None:
            if self.paid_amount > self.amount:
                raise ValidationError({'paid_amount': 'Paid amount cannot exceed amount'})
            if self.status == ReceivableStatusChoices.PAID and self.paid_amount != self.amount:
                raise ValidationError({'status': 'A paid receivable must have paid_amount equal to amount'})
        if self.patient_id and self.clinic_id and self.patient.clinic_id != self.clinic_id:
            raise ValidationError({'patient': 'Patient belongs to another clinic'})
