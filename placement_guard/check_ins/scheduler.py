"""Check-in scheduler: materialize milestone rows, then dispatch the due ones.

Both passes are idempotent and safe to run any number of times a day:

- materialize inserts each (introduction, number) pair at most once, relying
  on the unique constraint, and never backfills milestones already in the past
- dispatch sends first and marks ``sent_at`` only after a confirmed send, with
  a conditional UPDATE. A crash between the two steps re-sends on the next
  pass; a failed send leaves the row for the next pass. Delivery is
  at-least-once, exactly-once intended.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from placement_guard.config.models import AppConfig
from placement_guard.domain.models import (
    AuditSubject,
    CheckIn,
    Introduction,
    IntroductionStatus,
)
from placement_guard.errors import InvalidTransitionError, NotFoundError
from placement_guard.introductions.service import load_parties
from placement_guard.logging import bind_log_context, get_logger, log_context
from placement_guard.persistence.database import get_session
from placement_guard.persistence.repositories import (
    AuditRepository,
    CheckInRepository,
    IntroductionRepository,
)
from placement_guard.security.tokens import TokenIssuer
from placement_guard.utils.timestamps import add_days, end_of_day, start_of_day, utc_now

from .models import (
    CheckInDelivery,
    CheckInRunResult,
    DispatchOutcome,
    DispatchResult,
    MaterializeResult,
)

logger = get_logger(__name__, component="check_ins")


class CheckInScheduler:
    """Creates and sends the scheduled check-ins (numbers 1-5 by default).

    Args:
        gateway: NotificationGateway for the check-in emails
        token_issuer: Issues the 14-day check-in tokens
        config: Application configuration (schedule, concurrency, token lifetimes)
        clock: Current-time source
    """

    def __init__(
        self,
        gateway,
        token_issuer: TokenIssuer,
        config: AppConfig,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.gateway = gateway
        self.token_issuer = token_issuer
        self.config = config
        self.clock = clock or utc_now

    @property
    def final_number(self) -> int:
        return self.config.protection.final_check_in_number

    def milestones_for(self, introduction: Introduction, now: datetime) -> List[CheckIn]:
        """Check-in rows for every milestone scheduled today or later."""
        if introduction.introduced_at is None:
            return []
        today = start_of_day(now)
        rows = []
        for milestone in self.config.check_ins.schedule:
            scheduled_for = add_days(introduction.introduced_at, milestone.days_after)
            if scheduled_for < today:
                continue
            rows.append(
                CheckIn(
                    id=str(uuid4()),
                    introduction_id=introduction.id,
                    check_in_number=milestone.number,
                    scheduled_for=scheduled_for,
                    created_at=now,
                )
            )
        return rows

    def materialize_for(self, session: Session, introduction: Introduction, now: datetime) -> int:
        """Insert the missing milestone rows of one introduction inside ``session``.

        Returns:
            Number of rows created
        """
        repo = CheckInRepository(session)
        existing = set(repo.existing_numbers(introduction.id))
        created = 0
        for check_in in self.milestones_for(introduction, now):
            if check_in.check_in_number in existing:
                continue
            if repo.create_if_absent(check_in):
                created += 1
        if created:
            logger.info(
                f"Scheduled {created} check-in(s) for introduction {introduction.id}",
                extra={"event": "check_ins.materialized", "created": created},
            )
        return created

    def materialize(self, now: Optional[datetime] = None) -> MaterializeResult:
        """Create missing check-ins for every INTRODUCED introduction."""
        now = now or self.clock()
        result = MaterializeResult()

        with get_session() as session:
            introductions = IntroductionRepository(session).list_by_status(IntroductionStatus.INTRODUCED)
        result.introductions_scanned = len(introductions)

        for introduction in introductions:
            with log_context(introduction_id=introduction.id):
                try:
                    with get_session() as session:
                        result.created += self.materialize_for(session, introduction, now)
                except Exception as e:
                    result.errors += 1
                    logger.error(
                        f"Failed to materialize check-ins: {e}",
                        exc_info=True,
                        extra={"event": "check_ins.materialize.error"},
                    )

        logger.info(
            f"Materialized {result.created} check-in(s) across {result.introductions_scanned} introduction(s)",
            extra={
                "event": "check_ins.materialize.completed",
                "created": result.created,
                "introductions_scanned": result.introductions_scanned,
                "errors": result.errors,
            },
        )
        return result

    def dispatch(self, now: Optional[datetime] = None) -> DispatchResult:
        """Send every unsent scheduled check-in due by the end of today.

        The final check-in is excluded; it is only sent on an admin's request.
        """
        now = now or self.clock()
        run_started_at = utc_now()

        with get_session() as session:
            due = CheckInRepository(session).list_due(end_of_day(now), exclude_numbers=[self.final_number])

        outcomes = {}
        if due:
            workers = min(self.config.check_ins.dispatch_concurrency, len(due))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="check-in") as pool:
                results = pool.map(bind_log_context(lambda c: self._dispatch_guarded(c.id, now)), due)
                outcomes = {check_in.id: outcome for check_in, outcome in zip(due, results)}

        result = DispatchResult(
            run_started_at=run_started_at,
            run_finished_at=utc_now(),
            due=len(due),
            outcomes=outcomes,
        )
        logger.info(
            f"Dispatched {result.sent} of {result.due} due check-in(s)",
            extra={
                "event": "check_ins.dispatch.completed",
                "due": result.due,
                "sent": result.sent,
                "skipped": result.skipped,
                "failed": result.failed,
                "duration_ms": int(result.total_duration_seconds * 1000),
            },
        )
        return result

    def _dispatch_guarded(self, check_in_id: str, now: datetime) -> DispatchOutcome:
        with log_context(check_in_id=check_in_id):
            try:
                return self._dispatch_one(check_in_id, now)
            except Exception as e:
                logger.error(
                    f"Check-in dispatch failed: {e}",
                    exc_info=True,
                    extra={"event": "check_ins.dispatch.error", "error_type": type(e).__name__},
                )
                return DispatchOutcome.FAILED

    def _dispatch_one(self, check_in_id: str, now: datetime) -> DispatchOutcome:
        with get_session() as session:
            check_in = CheckInRepository(session).get(check_in_id)
            if check_in is None or check_in.sent_at is not None:
                return DispatchOutcome.ALREADY_SENT

            introduction = IntroductionRepository(session).get(check_in.introduction_id)
            if introduction is None or introduction.status != IntroductionStatus.INTRODUCED:
                logger.info(
                    "Skipping check-in: introduction is no longer INTRODUCED",
                    extra={
                        "event": "check_ins.dispatch.skipped",
                        "introduction_status": introduction.status.value if introduction else None,
                    },
                )
                return DispatchOutcome.SKIPPED
            parties = load_parties(session, introduction)

        issued = self.token_issuer.issue(self.config.protection.check_in_token_days, now)
        delivery = self.gateway.send_check_in(
            parties.candidate, parties.employer, introduction, check_in, issued.token, now
        )
        if not delivery.success:
            logger.warning(
                f"Check-in {check_in.check_in_number} not sent, will retry next pass: {delivery.error}",
                extra={"event": "check_ins.dispatch.failed", "check_in_number": check_in.check_in_number},
            )
            return DispatchOutcome.FAILED

        with get_session() as session:
            marked = CheckInRepository(session).mark_sent(check_in_id, issued.token, issued.expires_at, now)
        if not marked:
            logger.warning(
                "Check-in was marked sent concurrently; duplicate email delivered",
                extra={"event": "check_ins.dispatch.duplicate"},
            )
            return DispatchOutcome.ALREADY_SENT

        logger.info(
            f"Sent check-in {check_in.check_in_number}",
            extra={"event": "check_ins.dispatch.sent", "check_in_number": check_in.check_in_number},
        )
        return DispatchOutcome.SENT

    def run(self, now: Optional[datetime] = None) -> CheckInRunResult:
        now = now or self.clock()
        return CheckInRunResult(materialize=self.materialize(now), dispatch=self.dispatch(now))

    def resend(self, check_in_id: str, actor: str, now: Optional[datetime] = None) -> CheckInDelivery:
        """Send an already sent, unanswered check-in again with a new token.

        The old link stops working once the new token is stored.

        Raises:
            NotFoundError: Unknown check-in
            InvalidTransitionError: Never sent, or already answered
        """
        now = now or self.clock()
        with log_context(check_in_id=check_in_id):
            with get_session() as session:
                check_in = CheckInRepository(session).get(check_in_id)
                if check_in is None:
                    raise NotFoundError(f"Check-in {check_in_id} not found")
                if check_in.sent_at is None:
                    raise InvalidTransitionError("Check-in has not been sent yet")
                if check_in.responded_at is not None:
                    raise InvalidTransitionError("Check-in has already been answered")
                introduction = IntroductionRepository(session).get(check_in.introduction_id)
                parties = load_parties(session, introduction)

            issued = self.token_issuer.issue(self.config.protection.check_in_token_days, now)
            if check_in.check_in_number == self.final_number:
                delivery = self.gateway.send_final_check_in(
                    parties.candidate, parties.employer, introduction, issued.token
                )
            else:
                delivery = self.gateway.send_check_in(
                    parties.candidate, parties.employer, introduction, check_in, issued.token, now
                )

            if delivery.success:
                with get_session() as session:
                    if not CheckInRepository(session).replace_token(check_in_id, issued.token, issued.expires_at):
                        raise InvalidTransitionError("Check-in was answered while the email was being resent")
                    AuditRepository(session).append(
                        AuditSubject.CHECK_IN.value, check_in_id, actor, "Check-in email resent", now
                    )
                    check_in = CheckInRepository(session).get(check_in_id)
            else:
                logger.error(
                    f"Resend of check-in {check_in.check_in_number} failed: {delivery.error}",
                    extra={"event": "check_ins.resend.failed"},
                )
        return CheckInDelivery(check_in=check_in, delivery=delivery)
