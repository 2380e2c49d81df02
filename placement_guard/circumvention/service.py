"""Circumvention flags: opening, editing, resolving and invoicing.

A flag moves OPEN -> INVESTIGATING -> one of CONFIRMED, FALSE_POSITIVE or
WROTE_OFF. Resolution happens exactly once; every edit is a conditional
UPDATE on ``resolved_at IS NULL``. Automatic flags are opened inside the
caller's unit of work so the check-in update and the flag commit together;
the admin alert is sent afterwards with ``notify_flag``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union
from uuid import uuid4

from sqlalchemy.orm import Session

from placement_guard.domain.models import (
    AuditSubject,
    CheckIn,
    CircumventionFlag,
    DetectionMethod,
    FlagStatus,
    Introduction,
)
from placement_guard.errors import (
    FlagAlreadyResolvedError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
)
from placement_guard.introductions.service import load_parties
from placement_guard.logging import get_logger, log_context
from placement_guard.notifications.models import DeliveryResult
from placement_guard.persistence.database import get_session
from placement_guard.persistence.repositories import (
    AuditRepository,
    CheckInRepository,
    FlagRepository,
    IntroductionRepository,
)
from placement_guard.utils.timestamps import utc_now

from .fees import Number, estimate_fee, to_decimal
from .models import InvoiceResult

logger = get_logger(__name__, component="circumvention")

WORKING_STATUSES = (FlagStatus.OPEN, FlagStatus.INVESTIGATING)


def _parse_status(value: Union[str, FlagStatus]) -> FlagStatus:
    try:
        return FlagStatus(value.upper() if isinstance(value, str) else value)
    except ValueError:
        raise InvalidInputError(f"Invalid flag status '{value}'") from None


class CircumventionService:
    """Owns CircumventionFlag rows.

    Args:
        gateway: NotificationGateway for admin alerts and invoices
        clock: Current-time source
    """

    def __init__(self, gateway, clock: Optional[Callable[[], datetime]] = None):
        self.gateway = gateway
        self.clock = clock or utc_now

    def open_automatic_flag(
        self,
        session: Session,
        introduction: Introduction,
        check_in: CheckIn,
        method: DetectionMethod,
        evidence: Dict[str, Any],
        now: datetime,
    ) -> Optional[str]:
        """Open a flag for a HIGH-risk check-in inside ``session``.

        Returns:
            The new flag id, or None when the check-in already has an unresolved flag
        """
        flag = CircumventionFlag(
            id=str(uuid4()),
            introduction_id=introduction.id,
            check_in_id=check_in.id,
            detection_method=method,
            evidence=evidence,
            detected_at=now,
            created_at=now,
            updated_at=now,
        )
        if not FlagRepository(session).add_if_no_open_flag(flag):
            logger.info(
                "Check-in already has an unresolved flag; not opening another",
                extra={"event": "circumvention.flag.duplicate", "check_in_id": check_in.id},
            )
            return None

        AuditRepository(session).append(
            AuditSubject.FLAG.value, flag.id, "system", f"Flag opened by {method.value}", now
        )
        logger.warning(
            f"Possible circumvention detected ({method.value}) for introduction {introduction.id}",
            extra={
                "event": "circumvention.flag.opened",
                "flag_id": flag.id,
                "detection_method": method.value,
            },
        )
        return flag.id

    def notify_flag(self, flag_id: str) -> DeliveryResult:
        """Send the admin alert for a flag. Delivery failures are logged, not raised."""
        with get_session() as session:
            flag = self._require(FlagRepository(session), flag_id)
            introduction = IntroductionRepository(session).get(flag.introduction_id)
            check_in = CheckInRepository(session).get(flag.check_in_id) if flag.check_in_id else None
            parties = load_parties(session, introduction)

        delivery = self.gateway.send_circumvention_alert(
            flag, introduction, parties.candidate, parties.employer, check_in
        )
        if not delivery.success:
            logger.error(
                f"Circumvention alert for flag {flag_id} not delivered: {delivery.error}",
                extra={"event": "circumvention.alert.failed", "flag_id": flag_id},
            )
        return delivery

    def create_manual_flag(
        self,
        introduction_id: str,
        actor: str,
        evidence: Optional[Dict[str, Any]] = None,
        estimated_salary: Optional[Number] = None,
        fee_percentage: Optional[Number] = None,
        check_in_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CircumventionFlag:
        """Open a flag by hand; the fee estimate is fixed now from the given inputs.

        Raises:
            NotFoundError: Unknown introduction or check-in
            InvalidInputError: Invalid salary or percentage
        """
        now = now or self.clock()
        try:
            salary = to_decimal(estimated_salary, "estimated_salary")
            percentage = to_decimal(fee_percentage, "fee_percentage")
            fee = estimate_fee(salary, percentage)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e

        with get_session() as session:
            if IntroductionRepository(session).get(introduction_id) is None:
                raise NotFoundError(f"Introduction {introduction_id} not found")
            if check_in_id is not None and CheckInRepository(session).get(check_in_id) is None:
                raise NotFoundError(f"Check-in {check_in_id} not found")

            flag = FlagRepository(session).add(
                CircumventionFlag(
                    id=str(uuid4()),
                    introduction_id=introduction_id,
                    check_in_id=check_in_id,
                    detection_method=DetectionMethod.MANUAL,
                    evidence=evidence or {},
                    detected_at=now,
                    estimated_salary=salary,
                    fee_percentage=percentage,
                    estimated_fee_owed=fee,
                    created_at=now,
                    updated_at=now,
                )
            )
            AuditRepository(session).append(AuditSubject.FLAG.value, flag.id, actor, "Manual flag created", now)

        logger.info(
            f"Manual flag created by {actor} for introduction {introduction_id}",
            extra={"event": "circumvention.flag.manual", "flag_id": flag.id},
        )
        return flag

    def update_flag(
        self,
        flag_id: str,
        actor: str,
        status: Optional[Union[str, FlagStatus]] = None,
        estimated_salary: Optional[Number] = None,
        fee_percentage: Optional[Number] = None,
        evidence: Optional[Dict[str, Any]] = None,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CircumventionFlag:
        """Edit an unresolved flag. Changing salary or percentage recomputes the fee.

        ``status`` may only move between the working states; use ``resolve_flag``
        to close a flag.

        Raises:
            NotFoundError, InvalidInputError, FlagAlreadyResolvedError
        """
        now = now or self.clock()
        fields: Dict[str, Any] = {}
        if status is not None:
            status = _parse_status(status)
            if status not in WORKING_STATUSES:
                raise InvalidInputError(f"Use resolve_flag to move a flag to {status.value}")
            fields["status"] = status
        if evidence is not None:
            fields["evidence"] = evidence

        with get_session() as session:
            repo = FlagRepository(session)
            flag = self._require(repo, flag_id)
            if flag.resolved_at is not None:
                raise FlagAlreadyResolvedError(f"Flag {flag_id} is already resolved ({flag.status.value})")

            if estimated_salary is not None or fee_percentage is not None:
                try:
                    salary = to_decimal(estimated_salary, "estimated_salary")
                    percentage = to_decimal(fee_percentage, "fee_percentage")
                    salary = flag.estimated_salary if salary is None else salary
                    percentage = flag.fee_percentage if percentage is None else percentage
                    fields["estimated_fee_owed"] = estimate_fee(salary, percentage)
                except ValueError as e:
                    raise InvalidInputError(str(e)) from e
                fields["estimated_salary"] = salary
                fields["fee_percentage"] = percentage

            if fields and not repo.update_unresolved(flag_id, now, **fields):
                raise FlagAlreadyResolvedError(f"Flag {flag_id} was resolved concurrently")

            audit = AuditRepository(session)
            if fields:
                audit.append(
                    AuditSubject.FLAG.value, flag_id, actor, f"Updated {', '.join(sorted(fields))}", now
                )
            if note:
                audit.append(AuditSubject.FLAG.value, flag_id, actor, note, now)
            return repo.get(flag_id)

    def resolve_flag(
        self,
        flag_id: str,
        status: Union[str, FlagStatus],
        actor: str,
        resolution: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CircumventionFlag:
        """Close a flag as CONFIRMED, FALSE_POSITIVE or WROTE_OFF, exactly once.

        Raises:
            InvalidInputError: ``status`` is not a terminal status
            NotFoundError: Unknown flag
            FlagAlreadyResolvedError: The flag was resolved before
        """
        now = now or self.clock()
        status = _parse_status(status)
        if not status.is_resolved:
            raise InvalidInputError(
                f"Cannot resolve a flag as {status.value}; use CONFIRMED, FALSE_POSITIVE or WROTE_OFF"
            )

        with log_context(flag_id=flag_id):
            with get_session() as session:
                repo = FlagRepository(session)
                self._require(repo, flag_id)
                if not repo.resolve(flag_id, status, resolution, notes, now):
                    raise FlagAlreadyResolvedError(f"Flag {flag_id} is already resolved")
                AuditRepository(session).append(
                    AuditSubject.FLAG.value,
                    flag_id,
                    actor,
                    f"Resolved as {status.value}" + (f": {resolution}" if resolution else ""),
                    now,
                )
                flag = repo.get(flag_id)

            logger.info(
                f"Flag resolved as {status.value} by {actor}",
                extra={"event": "circumvention.flag.resolved", "status": status.value},
            )
        return flag

    def send_invoice(
        self,
        flag_id: str,
        actor: str,
        amount: Optional[Number] = None,
        custom_message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> InvoiceResult:
        """Email the placement-fee invoice for a CONFIRMED flag.

        ``amount`` defaults to the estimated fee. The flag records the invoice
        only after the email was delivered.

        Raises:
            NotFoundError: Unknown flag
            InvalidTransitionError: Flag not CONFIRMED, or already paid
            InvalidInputError: No amount given and no estimate on the flag
        """
        now = now or self.clock()
        with log_context(flag_id=flag_id):
            with get_session() as session:
                flag = self._require(FlagRepository(session), flag_id)
                if flag.status != FlagStatus.CONFIRMED:
                    raise InvalidTransitionError(
                        f"Invoices can only be sent for CONFIRMED flags (status {flag.status.value})"
                    )
                if flag.invoice_paid_at is not None:
                    raise InvalidTransitionError("Invoice for this flag is already paid")
                introduction = IntroductionRepository(session).get(flag.introduction_id)
                parties = load_parties(session, introduction)

            try:
                invoice_amount = to_decimal(amount, "amount")
            except ValueError as e:
                raise InvalidInputError(str(e)) from e
            if invoice_amount is None:
                invoice_amount = flag.estimated_fee_owed
            if invoice_amount is None or invoice_amount <= 0:
                raise InvalidInputError("An invoice amount is required when the flag has no fee estimate")

            delivery = self.gateway.send_circumvention_invoice(
                flag, introduction, parties.candidate, parties.employer, invoice_amount, now, custom_message
            )
            if not delivery.success:
                logger.error(
                    f"Invoice email for flag {flag_id} not delivered: {delivery.error}",
                    extra={"event": "circumvention.invoice.failed"},
                )
                return InvoiceResult(flag=flag, delivery=delivery)

            with get_session() as session:
                repo = FlagRepository(session)
                if not repo.record_invoice_sent(flag_id, invoice_amount, now):
                    raise InvalidTransitionError("Flag changed while the invoice was being sent")
                AuditRepository(session).append(
                    AuditSubject.FLAG.value, flag_id, actor, f"Invoice sent for ${invoice_amount:,.2f}", now
                )
                flag = repo.get(flag_id)

            logger.info(
                f"Invoice sent for ${invoice_amount:,.2f}",
                extra={"event": "circumvention.invoice.sent", "amount": str(invoice_amount)},
            )
        return InvoiceResult(flag=flag, delivery=delivery)

    def mark_invoice_paid(
        self, flag_id: str, actor: str, paid_at: Optional[datetime] = None, now: Optional[datetime] = None
    ) -> CircumventionFlag:
        now = now or self.clock()
        with get_session() as session:
            repo = FlagRepository(session)
            self._require(repo, flag_id)
            if not repo.mark_invoice_paid(flag_id, paid_at or now, now):
                raise InvalidTransitionError("Flag has no outstanding invoice")
            AuditRepository(session).append(AuditSubject.FLAG.value, flag_id, actor, "Invoice paid", now)
            return repo.get(flag_id)

    def delete_flag(self, flag_id: str, actor: str) -> None:
        """Delete a flag resolved as FALSE_POSITIVE; other flags are kept for the record."""
        with get_session() as session:
            repo = FlagRepository(session)
            flag = self._require(repo, flag_id)
            if not repo.delete_false_positive(flag_id):
                raise InvalidTransitionError(
                    f"Only FALSE_POSITIVE flags can be deleted (status {flag.status.value})"
                )
        logger.info(
            f"Flag {flag_id} deleted by {actor}",
            extra={"event": "circumvention.flag.deleted", "flag_id": flag_id},
        )

    def get_flag(self, flag_id: str) -> CircumventionFlag:
        with get_session() as session:
            return self._require(FlagRepository(session), flag_id)

    def list_flags(
        self,
        status: Optional[Union[str, FlagStatus]] = None,
        introduction_id: Optional[str] = None,
    ) -> List[CircumventionFlag]:
        status = _parse_status(status) if status is not None else None
        with get_session() as session:
            return FlagRepository(session).list(status=status, introduction_id=introduction_id)

    def flag_stats(self) -> Dict[str, Any]:
        """Flag counts per status plus invoicing totals."""
        flags = self.list_flags()
        stats: Dict[str, Any] = {status.value: 0 for status in FlagStatus}
        for flag in flags:
            stats[flag.status.value] += 1
        stats["total"] = len(flags)
        stats["invoiced"] = sum(1 for f in flags if f.invoice_sent_at is not None)
        stats["paid"] = sum(1 for f in flags if f.invoice_paid_at is not None)
        stats["outstanding_amount"] = sum(
            (f.invoice_amount for f in flags if f.invoice_amount is not None and f.invoice_paid_at is None),
            Decimal("0"),
        )
        stats["collected_amount"] = sum(
            (f.invoice_amount for f in flags if f.invoice_amount is not None and f.invoice_paid_at is not None),
            Decimal("0"),
        )
        return stats

    @staticmethod
    def _require(repo: FlagRepository, flag_id: str) -> CircumventionFlag:
        flag = repo.get(flag_id)
        if flag is None:
            raise NotFoundError(f"Circumvention flag {flag_id} not found")
        return flag
