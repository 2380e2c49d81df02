"""Placement payment ledger: overdue reminders and payment recording."""

from .ledger import PaymentLedger, parse_payment_kind
from .models import OverduePayment, ReminderRunResult

__all__ = ["PaymentLedger", "OverduePayment", "ReminderRunResult", "parse_payment_kind"]
