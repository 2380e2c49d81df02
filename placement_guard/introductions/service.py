"""Introduction lifecycle manager.

State machine::

    PROFILE_VIEWED -> INTRO_REQUESTED -> INTRODUCED -> EXPIRED
                                      \\-> CANDIDATE_DECLINED

Every transition is a single conditional UPDATE in the repository; this
service decides which business error a lost race maps to. Emails are sent only
after the unit of work has committed.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Union
from uuid import uuid4

from sqlalchemy.orm import Session

from placement_guard.config.models import AppConfig
from placement_guard.domain.models import (
    AuditEntry,
    AuditSubject,
    CandidateResponse,
    Introduction,
    IntroductionStatus,
)
from placement_guard.errors import (
    AlreadyRespondedError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
    RequestPendingError,
    ServiceAgreementRequiredError,
    TokenExpiredError,
)
from placement_guard.logging import get_logger, log_context
from placement_guard.notifications.models import DeliveryResult
from placement_guard.persistence.database import get_session
from placement_guard.persistence.repositories import (
    AuditRepository,
    CandidateRepository,
    EmployerRepository,
    IntroductionRepository,
)
from placement_guard.security.tokens import TokenIssuer
from placement_guard.utils.timestamps import add_months, utc_now

from .models import CandidateResponseResult, IntroductionPreview, IntroductionRequestResult, Parties

logger = get_logger(__name__, component="introductions")

SYSTEM_ACTOR = "system"
CANDIDATE_ACTOR = "candidate"

RESPONSE_STATUS = {
    CandidateResponse.ACCEPTED: IntroductionStatus.INTRODUCED,
    CandidateResponse.DECLINED: IntroductionStatus.CANDIDATE_DECLINED,
    CandidateResponse.QUESTIONS: IntroductionStatus.INTRO_REQUESTED,
}


def load_parties(session: Session, introduction: Introduction) -> Parties:
    """Load the employer and candidate of an introduction.

    Raises:
        NotFoundError: If either directory row is missing
    """
    employer = EmployerRepository(session).get(introduction.employer_id)
    if employer is None:
        raise NotFoundError(f"Employer {introduction.employer_id} not found")
    candidate = CandidateRepository(session).get(introduction.candidate_id)
    if candidate is None:
        raise NotFoundError(f"Candidate {introduction.candidate_id} not found")
    return Parties(employer=employer, candidate=candidate)


def parse_candidate_response(value: Union[str, CandidateResponse]) -> CandidateResponse:
    try:
        response = CandidateResponse(value.upper() if isinstance(value, str) else value)
    except ValueError:
        raise InvalidInputError(
            f"Invalid response '{value}'. Must be ACCEPTED, DECLINED or QUESTIONS"
        ) from None
    if response == CandidateResponse.PENDING:
        raise InvalidInputError("PENDING is not a valid candidate response")
    return response


class IntroductionService:
    """Owns the Introduction entity and its state machine.

    Args:
        gateway: NotificationGateway used for request and outcome emails
        token_issuer: Issues the 7-day response tokens
        config: Application configuration
        check_in_scheduler: Materializes check-ins the moment a candidate accepts
        clock: Current-time source (tests inject a fixed clock)
    """

    def __init__(
        self,
        gateway,
        token_issuer: TokenIssuer,
        config: AppConfig,
        check_in_scheduler=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.gateway = gateway
        self.token_issuer = token_issuer
        self.config = config
        self.check_in_scheduler = check_in_scheduler
        self.clock = clock or utc_now

    def get(self, introduction_id: str) -> Introduction:
        with get_session() as session:
            return self._require(IntroductionRepository(session), introduction_id)

    def record_profile_view(
        self, employer_id: str, candidate_id: str, now: Optional[datetime] = None
    ) -> Introduction:
        """Create the introduction on first view, otherwise count the view.

        The protection window is fixed here, on the first view, and never moved.
        Concurrent views may lose increments; the counter is a metric only.
        """
        return self._touch(employer_id, candidate_id, "profile_views", now or self.clock())

    def record_resume_download(
        self, employer_id: str, candidate_id: str, now: Optional[datetime] = None
    ) -> Introduction:
        return self._touch(employer_id, candidate_id, "resume_downloads", now or self.clock())

    def _touch(self, employer_id: str, candidate_id: str, counter: str, now: datetime) -> Introduction:
        with get_session() as session:
            repo = IntroductionRepository(session)
            created = repo.create_if_absent(
                self._new_introduction(
                    employer_id,
                    candidate_id,
                    now,
                    profile_views=1 if counter == "profile_views" else 0,
                    resume_downloads=1 if counter == "resume_downloads" else 0,
                )
            )
            if created:
                logger.info(
                    f"Protection started for employer {employer_id} / candidate {candidate_id}",
                    extra={"event": "introduction.created", "trigger": counter},
                )
            elif not repo.increment_counter(employer_id, candidate_id, counter, now):
                # insert rejected by the foreign keys and nothing to increment
                raise NotFoundError(f"Unknown employer {employer_id} or candidate {candidate_id}")
            return repo.get_by_pair(employer_id, candidate_id)

    def _new_introduction(
        self,
        employer_id: str,
        candidate_id: str,
        now: datetime,
        profile_views: int = 1,
        resume_downloads: int = 0,
    ) -> Introduction:
        return Introduction(
            id=str(uuid4()),
            employer_id=employer_id,
            candidate_id=candidate_id,
            status=IntroductionStatus.PROFILE_VIEWED,
            profile_viewed_at=now,
            protection_starts_at=now,
            protection_ends_at=add_months(now, self.config.protection.period_months),
            profile_views=profile_views,
            resume_downloads=resume_downloads,
            created_at=now,
            updated_at=now,
        )

    def request_introduction(
        self,
        employer_id: str,
        candidate_id: str,
        job_id: Optional[str] = None,
        job_title: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> IntroductionRequestResult:
        """Ask the candidate whether they want to be introduced.

        Raises:
            NotFoundError: Unknown employer or candidate
            ServiceAgreementRequiredError: Employer has not signed the agreement
            RequestPendingError: A request is already awaiting the candidate
            InvalidTransitionError: The introduction is past the request stage
        """
        now = now or self.clock()
        expiry_days = self.config.protection.introduction_token_days

        with log_context(employer_id=employer_id, candidate_id=candidate_id):
            with get_session() as session:
                employer = EmployerRepository(session).get(employer_id)
                if employer is None:
                    raise NotFoundError(f"Employer {employer_id} not found")
                if not employer.has_service_agreement:
                    raise ServiceAgreementRequiredError(
                        f"Employer {employer_id} must sign the service agreement before requesting introductions"
                    )
                candidate = CandidateRepository(session).get(candidate_id)
                if candidate is None:
                    raise NotFoundError(f"Candidate {candidate_id} not found")

                repo = IntroductionRepository(session)
                repo.create_if_absent(self._new_introduction(employer_id, candidate_id, now))
                introduction = repo.get_by_pair(employer_id, candidate_id)

                issued = self.token_issuer.issue(expiry_days, now)
                if not repo.mark_requested(
                    introduction.id, issued.token, issued.expires_at, now, job_id, job_title
                ):
                    current = repo.get(introduction.id)
                    if current.is_request_pending:
                        raise RequestPendingError(
                            "An introduction request is already pending for this candidate"
                        )
                    raise InvalidTransitionError(
                        f"Cannot request an introduction in status {current.status.value}"
                    )

                AuditRepository(session).append(
                    AuditSubject.INTRODUCTION.value,
                    introduction.id,
                    employer_id,
                    "Introduction requested",
                    now,
                )
                introduction = repo.get(introduction.id)

            delivery = self.gateway.send_introduction_request(
                candidate, employer, introduction, issued.token, expiry_days
            )
            self._log_delivery(introduction, delivery, "request")
            return IntroductionRequestResult(introduction=introduction, delivery=delivery)

    def get_by_token(self, token: str, now: Optional[datetime] = None) -> IntroductionPreview:
        """Look up a live token for the response page.

        Raises:
            NotFoundError, AlreadyRespondedError, TokenExpiredError
        """
        now = now or self.clock()
        with get_session() as session:
            repo = IntroductionRepository(session)
            introduction = self._live_introduction(repo, token, now)
            parties = load_parties(session, introduction)
        return IntroductionPreview(
            introduction=introduction,
            company_name=parties.employer.company_name,
            job_title=introduction.job_title,
            candidate_first_name=parties.candidate.first_name,
        )

    def _live_introduction(self, repo: IntroductionRepository, token: str, now: datetime) -> Introduction:
        if not token:
            raise InvalidInputError("Response token is required")
        introduction = repo.get_by_token(token)
        if introduction is None:
            if repo.get_by_consumed_token(token) is not None:
                raise AlreadyRespondedError("You have already responded to this introduction request")
            raise NotFoundError("Invalid or unknown response token")
        if self.token_issuer.is_expired(introduction.response_token_expiry, now):
            raise TokenExpiredError("This introduction request has expired")
        return introduction

    def record_candidate_response(
        self,
        token: str,
        response: Union[str, CandidateResponse],
        message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CandidateResponseResult:
        """Record the candidate's answer and consume the token.

        ACCEPTED introduces the pair and schedules check-ins, DECLINED is
        terminal, QUESTIONS keeps the request open and alerts an admin.

        Raises:
            InvalidInputError: Unknown response, or QUESTIONS without a message
            NotFoundError: Unknown token
            AlreadyRespondedError: Token already consumed
            TokenExpiredError: Token past its expiry
        """
        now = now or self.clock()
        response = parse_candidate_response(response)
        message = message.strip() if message else None

        with get_session() as session:
            repo = IntroductionRepository(session)
            introduction = self._live_introduction(repo, token, now)

            if response == CandidateResponse.QUESTIONS and not message:
                raise InvalidInputError("A message is required when responding with QUESTIONS")

            with log_context(introduction_id=introduction.id):
                if not repo.consume_token(token, response, message, RESPONSE_STATUS[response], now):
                    raise AlreadyRespondedError("You have already responded to this introduction request")

                introduction = repo.get(introduction.id)
                scheduled = self._schedule_check_ins(session, introduction, now)
                AuditRepository(session).append(
                    AuditSubject.INTRODUCTION.value,
                    introduction.id,
                    CANDIDATE_ACTOR,
                    f"Candidate responded {response.value}" + (f": {message}" if message else ""),
                    now,
                )
                parties = load_parties(session, introduction)

        with log_context(introduction_id=introduction.id):
            logger.info(
                f"Candidate responded {response.value}",
                extra={"event": "introduction.responded", "response": response.value},
            )
            delivery = self._notify_response(introduction, parties, response, message)
        return CandidateResponseResult(
            introduction=introduction, check_ins_scheduled=scheduled, delivery=delivery
        )

    def record_manual_response(
        self,
        introduction_id: str,
        response: Union[str, CandidateResponse],
        actor: str,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CandidateResponseResult:
        """Record an answer the candidate gave off-platform (phone, email).

        Only ACCEPTED and DECLINED are accepted here.

        Raises:
            InvalidInputError, NotFoundError, InvalidTransitionError
        """
        now = now or self.clock()
        response = parse_candidate_response(response)
        if response == CandidateResponse.QUESTIONS:
            raise InvalidInputError("Manual responses must be ACCEPTED or DECLINED")

        with log_context(introduction_id=introduction_id):
            with get_session() as session:
                repo = IntroductionRepository(session)
                current = self._require(repo, introduction_id)
                if not repo.record_response_by_id(
                    introduction_id, response, note, RESPONSE_STATUS[response], now
                ):
                    raise InvalidTransitionError(
                        f"No open introduction request (status {current.status.value}, "
                        f"response {current.candidate_response.value})"
                    )
                introduction = repo.get(introduction_id)
                scheduled = self._schedule_check_ins(session, introduction, now)
                AuditRepository(session).append(
                    AuditSubject.INTRODUCTION.value,
                    introduction_id,
                    actor,
                    f"Manual {response.value}" + (f": {note}" if note else ""),
                    now,
                )
                parties = load_parties(session, introduction)

            logger.info(
                f"Manual response {response.value} recorded by {actor}",
                extra={"event": "introduction.manual_response", "response": response.value},
            )
            delivery = self._notify_response(introduction, parties, response, note)
        return CandidateResponseResult(
            introduction=introduction, check_ins_scheduled=scheduled, delivery=delivery
        )

    def resend_request_email(
        self, introduction_id: str, actor: str, now: Optional[datetime] = None
    ) -> IntroductionRequestResult:
        """Send a pending request again with a fresh token; the old link stops working.

        Raises:
            NotFoundError: Unknown introduction
            InvalidTransitionError: No request is pending
        """
        now = now or self.clock()
        expiry_days = self.config.protection.introduction_token_days

        with log_context(introduction_id=introduction_id):
            with get_session() as session:
                repo = IntroductionRepository(session)
                introduction = self._require(repo, introduction_id)
                issued = self.token_issuer.issue(expiry_days, now)
                if not repo.replace_pending_token(introduction_id, issued.token, issued.expires_at, now):
                    raise InvalidTransitionError(
                        f"No pending request to resend (status {introduction.status.value})"
                    )
                AuditRepository(session).append(
                    AuditSubject.INTRODUCTION.value, introduction_id, actor, "Request email resent", now
                )
                introduction = repo.get(introduction_id)
                parties = load_parties(session, introduction)

            delivery = self.gateway.send_introduction_request(
                parties.candidate, parties.employer, introduction, issued.token, expiry_days
            )
            self._log_delivery(introduction, delivery, "request_resend")
        return IntroductionRequestResult(introduction=introduction, delivery=delivery)

    def add_note(
        self, introduction_id: str, actor: str, text: str, now: Optional[datetime] = None
    ) -> AuditEntry:
        if not text or not text.strip():
            raise InvalidInputError("Note text is required")
        with get_session() as session:
            self._require(IntroductionRepository(session), introduction_id)
            return AuditRepository(session).append(
                AuditSubject.INTRODUCTION.value,
                introduction_id,
                actor,
                text.strip(),
                now or self.clock(),
            )

    def history(self, introduction_id: str) -> List[AuditEntry]:
        with get_session() as session:
            return AuditRepository(session).list_for(AuditSubject.INTRODUCTION.value, introduction_id)

    def stats(self) -> Dict[str, int]:
        """Introduction counts per status, every status present."""
        with get_session() as session:
            counts = IntroductionRepository(session).count_by_status()
        stats = {status.value: counts.get(status.value, 0) for status in IntroductionStatus}
        stats["total"] = sum(stats.values())
        return stats

    def _schedule_check_ins(self, session: Session, introduction: Introduction, now: datetime) -> int:
        if introduction.status != IntroductionStatus.INTRODUCED or self.check_in_scheduler is None:
            return 0
        return self.check_in_scheduler.materialize_for(session, introduction, now)

    def _notify_response(
        self,
        introduction: Introduction,
        parties: Parties,
        response: CandidateResponse,
        message: Optional[str],
    ) -> DeliveryResult:
        if response == CandidateResponse.ACCEPTED:
            delivery = self.gateway.send_introduction_accepted(
                parties.employer, parties.candidate, introduction
            )
        elif response == CandidateResponse.DECLINED:
            delivery = self.gateway.send_introduction_declined(parties.employer, introduction)
        else:
            delivery = self.gateway.send_introduction_questions(
                parties.candidate, parties.employer, introduction, message or ""
            )
        self._log_delivery(introduction, delivery, response.value.lower())
        return delivery

    def _log_delivery(self, introduction: Introduction, delivery: DeliveryResult, kind: str) -> None:
        if delivery.success:
            return
        logger.error(
            f"Failed to send {kind} email for introduction {introduction.id}: {delivery.error}",
            extra={"event": "introduction.email_failed", "kind": kind},
        )

    @staticmethod
    def _require(repo: IntroductionRepository, introduction_id: str) -> Introduction:
        introduction = repo.get(introduction_id)
        if introduction is None:
            raise NotFoundError(f"Introduction {introduction_id} not found")
        return introduction
