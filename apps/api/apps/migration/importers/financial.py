"""
Financial importer (receivables).

Required: amount and payment method. Status is derived from the paid
amount and due date when the source does not carry one.
"""
import re
from decimal import Decimal

from apps.finance.models import ReceivableStatusChoices

from ..catalogs import PaymentMethodCatalog
from ..models import EntityTypeChoices, JobTypeChoices
from .base import BaseImporter, choice_parser, parse_amount, parse_date

RECEIVABLE_STATUSES = {
    'pending': ReceivableStatusChoices.PENDING,
    'pendente': ReceivableStatusChoices.PENDING,
    'em aberto': ReceivableStatusChoices.PENDING,
    'aberto': ReceivableStatusChoices.PENDING,
    'partial': ReceivableStatusChoices.PARTIAL,
    'parcial': ReceivableStatusChoices.PARTIAL,
    'paid': ReceivableStatusChoices.PAID,
    'pago': ReceivableStatusChoices.PAID,
    'quitado': ReceivableStatusChoices.PAID,
    'overdue': ReceivableStatusChoices.OVERDUE,
    'atrasado': ReceivableStatusChoices.OVERDUE,
    'vencido': ReceivableStatusChoices.OVERDUE,
    'cancelled': ReceivableStatusChoices.CANCELLED,
    'canceled': ReceivableStatusChoices.CANCELLED,
    'cancelado': ReceivableStatusChoices.CANCELLED,
}

CURRENCY_RE = re.compile(r'^[A-Z]{3}$')


def parse_positive_amount(value):
    amount = parse_amount(value)
    if amount <= 0:
        raise ValueError('must be greater than zero')
    return amount


def parse_non_negative_amount(value):
    amount = parse_amount(value)
    if amount < 0:
        raise ValueError('cannot be negative')
    return amount


def parse_currency(value):
    code = value.strip().upper()
    if code in ('R$', 'REAL', 'REAIS'):
        return 'BRL'
    if not CURRENCY_RE.match(code):
        raise ValueError(f"'{value}' is not an ISO 4217 currency code")
    return code


class FinancialImporter(BaseImporter):
    job_type = JobTypeChoices.FINANCIAL
    entity_type = EntityTypeChoices.RECEIVABLE

    aliases = {
        'valor': 'amount',
        'valor_total': 'amount',
        'valor_pago': 'paid_amount',
        'forma_pagamento': 'method',
        'metodo_pagamento': 'method',
        'payment_method': 'method',
        'situacao': 'status',
        'vencimento': 'due_date',
        'data_vencimento': 'due_date',
        'data_pagamento': 'payment_date',
        'paid_at': 'payment_date',
        'moeda': 'currency',
        'descricao': 'description',
        'paciente_id_externo': 'patient_external_id',
        'paciente_cpf': 'patient_cpf',
        'cpf': 'patient_cpf',
        'paciente_id': 'patient_id',
        'consulta_id_externo': 'appointment_external_id',
    }

    template_columns = (
        'external_id',
        'patient_external_id',
        'patient_cpf',
        'appointment_external_id',
        'amount',
        'paid_amount',
        'method',
        'status',
        'due_date',
        'payment_date',
        'currency',
        'description',
    )

    def __init__(self, job, repositories, payment_methods=None):
        super().__init__(job, repositories)
        self.payment_methods = payment_methods or PaymentMethodCatalog()

    def repository(self):
        return self.repositories.receivables

    def parse_method(self, value):
        code = self.payment_methods.resolve(value)
        if code is None:
            raise ValueError(f"'{value}' is not a known payment method")
        return code

    def derive_status(self, amount, paid_amount, due_date):
        if paid_amount >= amount:
            return ReceivableStatusChoices.PAID
        if paid_amount > 0:
            return ReceivableStatusChoices.PARTIAL
        if due_date and due_date < self.local_today():
            return ReceivableStatusChoices.OVERDUE
        return ReceivableStatusChoices.PENDING

    def build(self, reader):
        patient = self.resolve_patient(reader, required=False)
        appointment = self.resolve_appointment(reader, patient=patient)

        amount = reader.value('amount', parse_positive_amount, required=True)
        paid_amount = reader.value('paid_amount', parse_non_negative_amount)
        status = reader.value('status', choice_parser(RECEIVABLE_STATUSES, 'receivable status'))
        due_date = reader.value('due_date', parse_date)

        if amount is not None:
            if paid_amount is None:
                paid_amount = amount if status == ReceivableStatusChoices.PAID else Decimal('0.00')
            if paid_amount > amount:
                reader.error('paid_amount cannot exceed amount')
            elif status is None:
                status = self.derive_status(amount, paid_amount, due_date)
            elif status == ReceivableStatusChoices.PAID and paid_amount != amount:
                reader.error('status is paid but paid_amount differs from amount')

        if patient is None and appointment is not None:
            patient = appointment.patient

        return {
            'patient': patient,
            'appointment': appointment,
            'amount': amount,
            'paid_amount': paid_amount if paid_amount is not None else Decimal('0.00'),
            'currency': reader.value('currency', parse_currency) or self.clinic.default_currency,
            'payment_method': reader.value('method', self.parse_method, required=True),
            'status': status or ReceivableStatusChoices.PENDING,
            'due_date': due_date,
            'paid_at': reader.value('payment_date', parse_date),
            'description': reader.text('description'),
        }
