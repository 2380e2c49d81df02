"""Protection expiry: advance warning, auto-expire and the final check-in.

The daily pass runs two independent queries. Introductions whose protection
ends six to seven days from now are listed in one aggregated admin email;
introductions whose protection already ended move to EXPIRED in one bulk
UPDATE with no notification. Both are idempotent.

The final check-in is sent only on an admin's request, once per introduction,
with the reserved check-in number.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Union
from uuid import uuid4

from placement_guard.check_ins.models import CheckInDelivery, CheckInResponseResult
from placement_guard.check_ins.responses import resolve_check_in_token
from placement_guard.config.models import AppConfig
from placement_guard.domain.models import (
    AuditSubject,
    CheckIn,
    DetectionMethod,
    IntroductionStatus,
    ResponseType,
    RiskLevel,
)
from placement_guard.errors import (
    AlreadyRespondedError,
    FinalCheckInAlreadySentError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
)
from placement_guard.introductions.service import load_parties
from placement_guard.logging import get_logger, log_context
from placement_guard.notifications import payloads
from placement_guard.persistence.database import get_session
from placement_guard.persistence.repositories import (
    AuditRepository,
    CheckInRepository,
    IntroductionRepository,
)
from placement_guard.security.tokens import TokenIssuer
from placement_guard.utils.timestamps import add_days, utc_now

from .models import ExpiryRunResult, ExpiryWarningResult

logger = get_logger(__name__, component="expiry")

FINAL_ANSWERS = {"yes": True, "true": True, "no": False, "false": False}

FINAL_CHECK_IN_ELIGIBLE = (IntroductionStatus.INTRODUCED, IntroductionStatus.EXPIRED)


def parse_final_answer(value: Union[bool, str]) -> bool:
    if isinstance(value, bool):
        return value
    answer = FINAL_ANSWERS.get(str(value).strip().lower())
    if answer is None:
        raise InvalidInputError(f"Final check-in answer must be yes or no, got '{value}'")
    return answer


def latest_sent(check_ins: List[CheckIn]) -> Optional[CheckIn]:
    sent = [c for c in check_ins if c.sent_at is not None]
    return max(sent, key=lambda c: c.sent_at) if sent else None


class ExpiryWorkflow:
    """Daily expiry pass plus the manually triggered final check-in.

    Args:
        gateway: NotificationGateway
        token_issuer: Issues the final check-in token
        config: Application configuration
        circumvention: CircumventionService for flags raised by final answers
        clock: Current-time source
    """

    def __init__(
        self,
        gateway,
        token_issuer: TokenIssuer,
        config: AppConfig,
        circumvention,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.gateway = gateway
        self.token_issuer = token_issuer
        self.config = config
        self.circumvention = circumvention
        self.clock = clock or utc_now

    @property
    def final_number(self) -> int:
        return self.config.protection.final_check_in_number

    def send_expiry_warnings(self, now: Optional[datetime] = None) -> ExpiryWarningResult:
        """One admin email listing every introduction expiring in the warning window.

        Each introduction is listed in at most one delivered warning; rows are
        stamped only after the email goes out, so a failed send is retried on
        the next run.
        """
        now = now or self.clock()
        protection = self.config.protection
        window_start = add_days(now, protection.warning_window_start_days)
        window_end = add_days(now, protection.warning_window_end_days)

        with get_session() as session:
            expiring = IntroductionRepository(session).list_expiring_between(window_start, window_end)
            rows = []
            for introduction in expiring:
                try:
                    parties = load_parties(session, introduction)
                    candidate, employer = parties.candidate, parties.employer
                except NotFoundError as e:
                    logger.warning(
                        f"Listing introduction {introduction.id} without directory details: {e}",
                        extra={"event": "expiry.warning.missing_party"},
                    )
                    candidate = employer = None
                last = latest_sent(CheckInRepository(session).list_for_introduction(introduction.id))
                rows.append(payloads.expiry_row(introduction, candidate, employer, last))

        if not rows:
            logger.info("No introductions expiring in the warning window", extra={"event": "expiry.warning.none"})
            return ExpiryWarningResult()

        delivery = self.gateway.send_expiry_warning(rows, protection.warning_window_end_days)
        if delivery.success:
            with get_session() as session:
                IntroductionRepository(session).mark_expiry_warned([i.id for i in expiring], now)
            logger.info(
                f"Expiry warning sent for {len(rows)} introduction(s)",
                extra={"event": "expiry.warning.sent", "count": len(rows)},
            )
        else:
            logger.error(
                f"Expiry warning for {len(rows)} introduction(s) not delivered: {delivery.error}",
                extra={"event": "expiry.warning.failed", "count": len(rows)},
            )
        return ExpiryWarningResult(expiring=len(rows), delivery=delivery)

    def auto_expire(self, now: Optional[datetime] = None) -> int:
        """Move every INTRODUCED row whose protection has ended to EXPIRED."""
        now = now or self.clock()
        with get_session() as session:
            expired = IntroductionRepository(session).expire_lapsed(now)
        logger.info(
            f"Expired {expired} introduction(s)",
            extra={"event": "expiry.auto_expire.completed", "expired": expired},
        )
        return expired

    def run(self, now: Optional[datetime] = None) -> ExpiryRunResult:
        """Warning then auto-expire; a failure of one does not skip the other."""
        now = now or self.clock()
        had_errors = False

        try:
            warning = self.send_expiry_warnings(now)
            had_errors = warning.delivery is not None and not warning.delivery.success
        except Exception as e:
            logger.error(f"Expiry warning failed: {e}", exc_info=True, extra={"event": "expiry.warning.error"})
            warning = ExpiryWarningResult()
            had_errors = True

        try:
            expired = self.auto_expire(now)
        except Exception as e:
            logger.error(f"Auto-expire failed: {e}", exc_info=True, extra={"event": "expiry.auto_expire.error"})
            expired = 0
            had_errors = True

        return ExpiryRunResult(warning=warning, expired=expired, had_errors=had_errors)

    def expiring_counts(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Dashboard buckets of protection windows ending soon or recently ended."""
        now = now or self.clock()
        with get_session() as session:
            repo = IntroductionRepository(session)
            counts = {
                f"in_{days}_days": repo.count_protection_ending(
                    IntroductionStatus.INTRODUCED, now, add_days(now, days)
                )
                for days in (7, 30, 90)
            }
            counts["recently_expired"] = repo.count_protection_ending(
                IntroductionStatus.EXPIRED, add_days(now, -30), now
            )
        return counts

    def send_final_check_in(
        self, introduction_id: str, actor: str, now: Optional[datetime] = None
    ) -> CheckInDelivery:
        """Ask the candidate a last yes/no question about working for the employer.

        A failed delivery leaves the row unsent so the admin can trigger it again.

        Raises:
            NotFoundError: Unknown introduction
            InvalidTransitionError: Introduction never reached INTRODUCED
            FinalCheckInAlreadySentError: Already sent for this introduction
        """
        now = now or self.clock()
        with log_context(introduction_id=introduction_id):
            with get_session() as session:
                introduction = IntroductionRepository(session).get(introduction_id)
                if introduction is None:
                    raise NotFoundError(f"Introduction {introduction_id} not found")
                if introduction.status not in FINAL_CHECK_IN_ELIGIBLE:
                    raise InvalidTransitionError(
                        f"Final check-in requires an introduced candidate (status {introduction.status.value})"
                    )

                repo = CheckInRepository(session)
                check_in = repo.get_by_number(introduction_id, self.final_number)
                if check_in is not None and check_in.sent_at is not None:
                    raise FinalCheckInAlreadySentError("Final check-in was already sent for this introduction")
                if check_in is None:
                    repo.create_if_absent(
                        CheckIn(
                            id=str(uuid4()),
                            introduction_id=introduction_id,
                            check_in_number=self.final_number,
                            scheduled_for=now,
                            created_at=now,
                        )
                    )
                    check_in = repo.get_by_number(introduction_id, self.final_number)
                parties = load_parties(session, introduction)

            issued = self.token_issuer.issue(self.config.protection.check_in_token_days, now)
            delivery = self.gateway.send_final_check_in(
                parties.candidate, parties.employer, introduction, issued.token
            )
            if not delivery.success:
                logger.error(
                    f"Final check-in not delivered: {delivery.error}",
                    extra={"event": "expiry.final_check_in.failed"},
                )
                return CheckInDelivery(check_in=check_in, delivery=delivery)

            with get_session() as session:
                repo = CheckInRepository(session)
                if not repo.mark_sent(check_in.id, issued.token, issued.expires_at, now):
                    raise FinalCheckInAlreadySentError("Final check-in was sent concurrently")
                AuditRepository(session).append(
                    AuditSubject.INTRODUCTION.value, introduction_id, actor, "Final check-in sent", now
                )
                check_in = repo.get(check_in.id)

            logger.info("Final check-in sent", extra={"event": "expiry.final_check_in.sent"})
        return CheckInDelivery(check_in=check_in, delivery=delivery)

    def record_final_answer(
        self, token: str, worked_there: Union[bool, str], now: Optional[datetime] = None
    ) -> CheckInResponseResult:
        """Record the yes/no answer; "yes" is HIGH risk and opens a flag.

        Raises:
            InvalidInputError, NotFoundError, AlreadyRespondedError, TokenExpiredError
        """
        now = now or self.clock()
        worked_there = parse_final_answer(worked_there)
        if worked_there:
            risk_level = RiskLevel.HIGH
            risk_reason = "Candidate confirmed working at the introduced company"
        else:
            risk_level = RiskLevel.CLEAR
            risk_reason = "Candidate confirmed not working at the introduced company"
        answer = "yes" if worked_there else "no"

        with get_session() as session:
            repo = CheckInRepository(session)
            check_in = resolve_check_in_token(repo, self.token_issuer, token, now)
            if check_in.check_in_number != self.final_number:
                raise InvalidInputError("Only the final check-in takes a yes or no answer")

            with log_context(check_in_id=check_in.id, introduction_id=check_in.introduction_id):
                if not repo.record_response(
                    now,
                    ResponseType.FINAL_ANSWER.value,
                    answer,
                    {"workedThere": worked_there},
                    risk_level,
                    risk_reason,
                    worked_there,
                    token=token,
                ):
                    raise AlreadyRespondedError("You have already responded to this check-in")
                check_in = repo.get(check_in.id)

                flag_id = None
                if worked_there:
                    introduction = IntroductionRepository(session).get(check_in.introduction_id)
                    flag_id = self.circumvention.open_automatic_flag(
                        session,
                        introduction,
                        check_in,
                        DetectionMethod.FINAL_CHECK_IN,
                        {"checkInNumber": check_in.check_in_number, "workedThere": True},
                        now,
                    )

        logger.info(
            f"Final check-in answered '{answer}'",
            extra={"event": "expiry.final_check_in.answered", "worked_there": worked_there},
        )
        alert = self.circumvention.notify_flag(flag_id) if flag_id else None
        return CheckInResponseResult(check_in=check_in, flag_id=flag_id, alert=alert)
