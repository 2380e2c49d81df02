"""Circumvention flags and placement-fee invoicing."""

from .fees import estimate_fee
from .models import InvoiceResult
from .service import CircumventionService

__all__ = ["CircumventionService", "InvoiceResult", "estimate_fee"]
