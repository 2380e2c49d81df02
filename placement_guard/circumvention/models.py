"""Result types for circumvention flags and invoices."""

from dataclasses import dataclass

from placement_guard.domain.models import CircumventionFlag
from placement_guard.notifications.models import DeliveryResult


@dataclass
class InvoiceResult:
    """Outcome of ``send_invoice``; the flag is only stamped when delivery succeeded."""

    flag: CircumventionFlag
    delivery: DeliveryResult
