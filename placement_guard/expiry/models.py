"""Result types for the daily expiry pass."""

from dataclasses import dataclass
from typing import Optional

from placement_guard.notifications.models import DeliveryResult


@dataclass
class ExpiryWarningResult:
    """Advance warning outcome; ``delivery`` is None when nothing was expiring."""

    expiring: int = 0
    delivery: Optional[DeliveryResult] = None


@dataclass
class ExpiryRunResult:
    warning: ExpiryWarningResult
    expired: int = 0
    had_errors: bool = False
