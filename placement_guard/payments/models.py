"""Result types for overdue-payment reminders."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List

from placement_guard.domain.models import PaymentKind, Placement


@dataclass
class OverduePayment:
    """One half of a placement invoice that is past due."""

    placement: Placement
    kind: PaymentKind
    due_date: datetime

    @property
    def amount(self) -> Decimal:
        if self.kind == PaymentKind.UPFRONT:
            return self.placement.upfront_amount
        return self.placement.remaining_amount


@dataclass
class ReminderRunResult:
    """Counts from one reminder pass.

    Attributes:
        overdue: Overdue payments found
        sent: Reminders delivered
        suppressed: Overdue payments reminded too recently to remind again
        failed: Reminders whose delivery or bookkeeping failed
    """

    overdue: int = 0
    sent: int = 0
    suppressed: int = 0
    failed: int = 0
    reminded_ids: List[str] = field(default_factory=list)

    @property
    def had_errors(self) -> bool:
        return self.failed > 0
