"""Placement payment ledger: overdue detection and reminders.

A placement is invoiced in two halves. The upfront half is overdue once the
start date has passed unpaid; the remaining half is due ``remaining_due_days``
after the upfront payment. Each overdue placement gets at most one reminder
per run, and none while its last reminder is younger than
``reminder_interval_days``.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union

from placement_guard.config.models import AppConfig
from placement_guard.domain.models import AuditSubject, PaymentKind, Placement
from placement_guard.errors import InvalidInputError, InvalidTransitionError, NotFoundError
from placement_guard.logging import bind_log_context, get_logger, log_context
from placement_guard.persistence.database import get_session
from placement_guard.persistence.repositories import (
    AuditRepository,
    EmployerRepository,
    PlacementRepository,
)
from placement_guard.utils.timestamps import add_days, utc_now

from .models import OverduePayment, ReminderRunResult

logger = get_logger(__name__, component="payments")


def parse_payment_kind(value: Union[str, PaymentKind]) -> PaymentKind:
    try:
        return PaymentKind(value.lower() if isinstance(value, str) else value)
    except ValueError:
        raise InvalidInputError(f"Invalid payment kind '{value}'. Must be upfront or remaining") from None


class PaymentLedger:
    """Finds overdue placement payments and sends reminders.

    Args:
        gateway: NotificationGateway for reminder emails
        config: Application configuration (``payments`` section)
        clock: Current-time source
    """

    def __init__(self, gateway, config: AppConfig, clock: Optional[Callable[[], datetime]] = None):
        self.gateway = gateway
        self.config = config
        self.clock = clock or utc_now

    def overdue(self, now: Optional[datetime] = None) -> List[OverduePayment]:
        """Every overdue half-payment, upfront first."""
        now = now or self.clock()
        due_days = self.config.payments.remaining_due_days
        with get_session() as session:
            repo = PlacementRepository(session)
            upfront = repo.list_upfront_overdue(now)
            remaining = repo.list_remaining_overdue(add_days(now, -due_days))

        items = [OverduePayment(p, PaymentKind.UPFRONT, p.start_date) for p in upfront]
        items.extend(
            OverduePayment(p, PaymentKind.REMAINING, add_days(p.upfront_paid_at, due_days)) for p in remaining
        )
        return items

    def recently_reminded(self, placement: Placement, now: datetime) -> bool:
        if placement.last_reminder_sent_at is None:
            return False
        interval = self.config.payments.reminder_interval_days
        return placement.last_reminder_sent_at > add_days(now, -interval)

    def send_reminders(self, now: Optional[datetime] = None) -> ReminderRunResult:
        now = now or self.clock()
        overdue = self.overdue(now)
        result = ReminderRunResult(overdue=len(overdue))

        to_remind = []
        for item in overdue:
            if self.recently_reminded(item.placement, now):
                result.suppressed += 1
                logger.debug(
                    f"Reminder for placement {item.placement.id} suppressed; last sent "
                    f"{item.placement.last_reminder_sent_at.isoformat()}",
                    extra={"event": "payments.reminder.suppressed"},
                )
            else:
                to_remind.append(item)

        if to_remind:
            workers = min(self.config.payments.batch_size, len(to_remind))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="payment-reminder") as pool:
                outcomes = list(pool.map(bind_log_context(lambda i: self._remind_guarded(i, now)), to_remind))
            for item, sent in zip(to_remind, outcomes):
                if sent:
                    result.sent += 1
                    result.reminded_ids.append(item.placement.id)
                else:
                    result.failed += 1

        logger.info(
            f"Sent {result.sent} payment reminder(s) for {result.overdue} overdue payment(s)",
            extra={
                "event": "payments.reminders.completed",
                "overdue": result.overdue,
                "sent": result.sent,
                "suppressed": result.suppressed,
                "failed": result.failed,
            },
        )
        return result

    def _remind_guarded(self, item: OverduePayment, now: datetime) -> bool:
        with log_context(placement_id=item.placement.id, payment_kind=item.kind.value):
            try:
                return self._remind(item, now)
            except Exception as e:
                logger.error(
                    f"Payment reminder failed: {e}",
                    exc_info=True,
                    extra={"event": "payments.reminder.error"},
                )
                return False

    def _remind(self, item: OverduePayment, now: datetime) -> bool:
        with get_session() as session:
            employer = EmployerRepository(session).get(item.placement.employer_id)
        if employer is None:
            logger.warning(
                "Employer missing; sending the reminder to the admins",
                extra={"event": "payments.reminder.no_employer"},
            )

        delivery = self.gateway.send_payment_reminder(item.placement, employer, item.kind, item.due_date, now)
        if not delivery.success:
            logger.error(
                f"Payment reminder not delivered: {delivery.error}",
                extra={"event": "payments.reminder.failed"},
            )
            return False

        with get_session() as session:
            PlacementRepository(session).mark_reminded(item.placement.id, now)
        logger.info(
            f"Reminded {item.kind.value} payment of ${item.amount:,.2f}",
            extra={"event": "payments.reminder.sent"},
        )
        return True

    def record_payment(
        self,
        placement_id: str,
        kind: Union[str, PaymentKind],
        actor: str,
        paid_at: Optional[datetime] = None,
    ) -> Placement:
        """Record one half as paid: PENDING -> UPFRONT_PAID -> FULLY_PAID.

        Raises:
            InvalidInputError: Unknown payment kind
            NotFoundError: Unknown placement
            InvalidTransitionError: Payment not expected in the current status
        """
        kind = parse_payment_kind(kind)
        paid_at = paid_at or self.clock()
        with get_session() as session:
            repo = PlacementRepository(session)
            placement = repo.get(placement_id)
            if placement is None:
                raise NotFoundError(f"Placement {placement_id} not found")

            if kind == PaymentKind.UPFRONT:
                applied = repo.record_upfront_paid(placement_id, paid_at)
            else:
                applied = repo.record_remaining_paid(placement_id, paid_at)
            if not applied:
                raise InvalidTransitionError(
                    f"Cannot record {kind.value} payment in status {placement.payment_status.value}"
                )
            AuditRepository(session).append(
                AuditSubject.PLACEMENT.value, placement_id, actor, f"{kind.value.capitalize()} payment received", paid_at
            )
            return repo.get(placement_id)

    def overdue_summary(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Counts and totals of overdue payments per kind."""
        items = self.overdue(now)
        summary: Dict[str, Any] = {}
        for kind in PaymentKind:
            of_kind = [i for i in items if i.kind == kind]
            summary[kind.value] = {
                "count": len(of_kind),
                "amount": sum((i.amount for i in of_kind), Decimal("0")),
            }
        summary["total_count"] = len(items)
        return summary
