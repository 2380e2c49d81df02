"""Check-in responses: web-link answers, free-text replies and admin review.

A response is written with one conditional UPDATE (live token, or unanswered
row for email replies), so a check-in is answered at most once. A HIGH risk
level opens a circumvention flag in the same unit of work; the admin alert
goes out after commit.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from placement_guard.classification.classifier import ClassificationRequest, ResponseClassifier
from placement_guard.config.models import AppConfig
from placement_guard.domain.models import (
    AuditSubject,
    CheckIn,
    CheckInStatus,
    DetectionMethod,
    ResponseType,
    RiskLevel,
)
from placement_guard.errors import (
    AlreadyRespondedError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
    TokenExpiredError,
)
from placement_guard.introductions.service import load_parties
from placement_guard.logging import get_logger, log_context
from placement_guard.persistence.database import get_session
from placement_guard.persistence.repositories import (
    AuditRepository,
    CheckInRepository,
    IntroductionRepository,
)
from placement_guard.security.tokens import TokenIssuer
from placement_guard.utils.timestamps import utc_now

from .models import CheckInPreview, CheckInResponseResult, ReplyBatchResult

logger = get_logger(__name__, component="check_ins")

# Answers picked on the response page carry no ambiguity to classify.
BUTTON_RISK: Dict[CheckInStatus, Tuple[RiskLevel, str]] = {
    CheckInStatus.HIRED_THERE: (RiskLevel.HIGH, "Candidate reports employment at the introduced company"),
    CheckInStatus.OFFER: (RiskLevel.MEDIUM, "Candidate reports an offer"),
    CheckInStatus.INTERVIEWING: (RiskLevel.MEDIUM, "Candidate still interviewing with the company"),
    CheckInStatus.STILL_LOOKING: (RiskLevel.LOW, "Candidate still searching"),
    CheckInStatus.HIRED_ELSEWHERE: (RiskLevel.CLEAR, "Candidate hired at a different company"),
    CheckInStatus.REJECTED: (RiskLevel.CLEAR, "Candidate was not selected"),
    CheckInStatus.WITHDREW: (RiskLevel.CLEAR, "Candidate withdrew"),
    CheckInStatus.NO_RESPONSE: (RiskLevel.CLEAR, "Candidate never heard back"),
}


def resolve_check_in_token(
    repo: CheckInRepository, token_issuer: TokenIssuer, token: str, now: datetime
) -> CheckIn:
    """Return the check-in holding a live ``token``.

    Raises:
        InvalidInputError: Empty token
        AlreadyRespondedError: The token was consumed by an earlier response
        NotFoundError: Unknown token
        TokenExpiredError: Token past its expiry
    """
    if not token:
        raise InvalidInputError("Response token is required")
    check_in = repo.get_by_token(token)
    if check_in is None:
        if repo.get_by_consumed_token(token) is not None:
            raise AlreadyRespondedError("You have already responded to this check-in")
        raise NotFoundError("Invalid or unknown check-in token")
    if token_issuer.is_expired(check_in.response_token_expiry, now):
        raise TokenExpiredError("This check-in link has expired")
    return check_in


def parse_check_in_status(value: Union[str, CheckInStatus]) -> CheckInStatus:
    try:
        status = CheckInStatus(value.lower() if isinstance(value, str) else value)
    except ValueError:
        raise InvalidInputError(f"Invalid check-in status '{value}'") from None
    if status not in BUTTON_RISK:
        raise InvalidInputError(f"'{status.value}' cannot be chosen as a check-in answer")
    return status


class CheckInResponseService:
    """Records and reviews check-in responses.

    Args:
        classifier: ResponseClassifier for free-text replies
        token_issuer: Judges token expiry
        config: Application configuration
        circumvention: CircumventionService that opens and announces flags
        clock: Current-time source
    """

    def __init__(
        self,
        classifier: ResponseClassifier,
        token_issuer: TokenIssuer,
        config: AppConfig,
        circumvention,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.classifier = classifier
        self.token_issuer = token_issuer
        self.config = config
        self.circumvention = circumvention
        self.clock = clock or utc_now

    @property
    def final_number(self) -> int:
        return self.config.protection.final_check_in_number

    def get_by_token(self, token: str, now: Optional[datetime] = None) -> CheckInPreview:
        now = now or self.clock()
        with get_session() as session:
            check_in = resolve_check_in_token(CheckInRepository(session), self.token_issuer, token, now)
            introduction = IntroductionRepository(session).get(check_in.introduction_id)
            parties = load_parties(session, introduction)
        return CheckInPreview(
            check_in=check_in,
            company_name=parties.employer.company_name,
            candidate_first_name=parties.candidate.first_name,
            is_final=check_in.check_in_number == self.final_number,
        )

    def record_button_response(
        self,
        token: str,
        status: Union[str, CheckInStatus],
        message: Optional[str] = None,
        start_date: Optional[str] = None,
        role_title: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CheckInResponseResult:
        """Record an answer chosen on the check-in page.

        Risk comes from the fixed BUTTON_RISK map. HIRED_THERE opens a
        circumvention flag.

        Raises:
            InvalidInputError, NotFoundError, AlreadyRespondedError, TokenExpiredError
        """
        now = now or self.clock()
        status = parse_check_in_status(status)
        risk_level, risk_reason = BUTTON_RISK[status]
        message = message.strip() if message else None

        parsed: Dict[str, Any] = {"status": status.value}
        if start_date:
            parsed["startDate"] = start_date
        if role_title:
            parsed["roleTitle"] = role_title
        if message:
            parsed["message"] = message

        with get_session() as session:
            repo = CheckInRepository(session)
            check_in = resolve_check_in_token(repo, self.token_issuer, token, now)
            if check_in.check_in_number == self.final_number:
                raise InvalidInputError("The final check-in takes a yes or no answer")

            with log_context(check_in_id=check_in.id, introduction_id=check_in.introduction_id):
                if not repo.record_response(
                    now,
                    ResponseType.CLICKED_BUTTON.value,
                    message or status.value,
                    parsed,
                    risk_level,
                    risk_reason,
                    risk_level.needs_review,
                    token=token,
                ):
                    raise AlreadyRespondedError("You have already responded to this check-in")
                check_in = repo.get(check_in.id)
                flag_id = self._flag_if_high(
                    session, check_in, DetectionMethod.CHECK_IN_RESPONSE, parsed, now
                )

        return self._finish(check_in, flag_id)

    def record_reply(
        self, check_in_id: str, reply_text: str, now: Optional[datetime] = None
    ) -> CheckInResponseResult:
        """Classify a free-text email reply and store the verdict on the check-in.

        The classification runs outside any transaction; a service outage still
        records the reply, with the safe default verdict.

        Raises:
            InvalidInputError: Empty reply
            NotFoundError: Unknown check-in
            InvalidTransitionError: Check-in was never sent
            AlreadyRespondedError: Check-in already answered
        """
        if not reply_text or not reply_text.strip():
            raise InvalidInputError("Reply text is required")
        check_in, company_name = self._reply_target(check_in_id)
        verdict = self.classifier.classify(reply_text, company_name)
        return self._store_reply(check_in, reply_text, verdict, now or self.clock())

    def record_replies(
        self, replies: Sequence[Tuple[str, str]], now: Optional[datetime] = None
    ) -> ReplyBatchResult:
        """Classify and store a batch of ``(check_in_id, reply_text)`` pairs.

        Classification runs in the classifier's bounded pool; each reply is then
        stored independently and a failing row does not stop the others.
        """
        now = now or self.clock()
        result = ReplyBatchResult()
        requests: List[ClassificationRequest] = []
        targets: Dict[str, Tuple[CheckIn, str]] = {}

        for check_in_id, reply_text in replies:
            try:
                if not reply_text or not reply_text.strip():
                    raise InvalidInputError("Reply text is required")
                check_in, company_name = self._reply_target(check_in_id)
            except (InvalidInputError, NotFoundError, InvalidTransitionError, AlreadyRespondedError) as e:
                result.errors[check_in_id] = e.message
                continue
            targets[check_in_id] = (check_in, reply_text)
            requests.append(ClassificationRequest(check_in_id, reply_text, company_name))

        verdicts = self.classifier.classify_many(requests)
        for check_in_id, (check_in, reply_text) in targets.items():
            try:
                result.recorded.append(self._store_reply(check_in, reply_text, verdicts[check_in_id], now))
            except AlreadyRespondedError as e:
                result.errors[check_in_id] = e.message
        return result

    def _reply_target(self, check_in_id: str) -> Tuple[CheckIn, str]:
        with get_session() as session:
            check_in = CheckInRepository(session).get(check_in_id)
            if check_in is None:
                raise NotFoundError(f"Check-in {check_in_id} not found")
            if check_in.sent_at is None:
                raise InvalidTransitionError("Check-in has not been sent yet")
            if check_in.responded_at is not None:
                raise AlreadyRespondedError("Check-in has already been answered")
            introduction = IntroductionRepository(session).get(check_in.introduction_id)
            parties = load_parties(session, introduction)
        return check_in, parties.employer.company_name

    def _store_reply(self, check_in: CheckIn, reply_text: str, verdict, now: datetime) -> CheckInResponseResult:
        with log_context(check_in_id=check_in.id, introduction_id=check_in.introduction_id):
            with get_session() as session:
                repo = CheckInRepository(session)
                if not repo.record_response(
                    now,
                    ResponseType.FREE_TEXT.value,
                    reply_text,
                    verdict.to_stored(),
                    verdict.risk_level,
                    verdict.risk_reason,
                    verdict.risk_level.needs_review,
                    check_in_id=check_in.id,
                ):
                    raise AlreadyRespondedError("Check-in has already been answered")
                check_in = repo.get(check_in.id)
                evidence = {
                    "status": verdict.status.value,
                    "companyMentioned": verdict.company_mentioned,
                    "confidence": verdict.confidence.value,
                    "summary": verdict.summary,
                }
                flag_id = self._flag_if_high(
                    session,
                    check_in,
                    DetectionMethod.EMAIL_REPLY_PARSING,
                    {k: v for k, v in evidence.items() if v is not None},
                    now,
                )

            result = self._finish(check_in, flag_id)
        result.verdict = verdict
        return result

    def _flag_if_high(self, session, check_in: CheckIn, method: DetectionMethod, evidence, now) -> Optional[str]:
        if check_in.risk_level != RiskLevel.HIGH:
            return None
        introduction = IntroductionRepository(session).get(check_in.introduction_id)
        return self.circumvention.open_automatic_flag(
            session,
            introduction,
            check_in,
            method,
            {"checkInNumber": check_in.check_in_number, **evidence},
            now,
        )

    def _finish(self, check_in: CheckIn, flag_id: Optional[str]) -> CheckInResponseResult:
        logger.info(
            f"Check-in {check_in.check_in_number} answered ({check_in.risk_level.value})",
            extra={
                "event": "check_ins.response.recorded",
                "response_type": check_in.response_type.value,
                "risk_level": check_in.risk_level.value,
                "flagged": check_in.flagged_for_review,
            },
        )
        alert = self.circumvention.notify_flag(flag_id) if flag_id else None
        return CheckInResponseResult(check_in=check_in, flag_id=flag_id, alert=alert)

    def review(
        self,
        check_in_id: str,
        reviewer: str,
        notes: Optional[str] = None,
        flagged_for_review: Optional[bool] = None,
        risk_level: Optional[Union[str, RiskLevel]] = None,
        now: Optional[datetime] = None,
    ) -> CheckIn:
        """Record an admin review; notes also go to the check-in's audit trail."""
        now = now or self.clock()
        if isinstance(risk_level, str):
            try:
                risk_level = RiskLevel(risk_level.upper())
            except ValueError:
                raise InvalidInputError(f"Invalid risk level '{risk_level}'") from None

        with get_session() as session:
            repo = CheckInRepository(session)
            if not repo.review(check_in_id, reviewer, now, notes, flagged_for_review, risk_level):
                raise NotFoundError(f"Check-in {check_in_id} not found")
            text = "Reviewed" + (f": {notes}" if notes else "")
            if risk_level is not None:
                text += f" (risk set to {risk_level.value})"
            AuditRepository(session).append(AuditSubject.CHECK_IN.value, check_in_id, reviewer, text, now)
            return repo.get(check_in_id)

    def list_check_ins(
        self,
        introduction_id: Optional[str] = None,
        risk_level: Optional[RiskLevel] = None,
        flagged_only: bool = False,
        responded: Optional[bool] = None,
        limit: Optional[int] = None,
    ) -> List[CheckIn]:
        with get_session() as session:
            return CheckInRepository(session).list(
                introduction_id=introduction_id,
                risk_level=risk_level,
                flagged_only=flagged_only,
                responded=responded,
                limit=limit,
            )

    def stats(self) -> Dict[str, Any]:
        """Dashboard counters, including the response rate of sent check-ins."""
        with get_session() as session:
            counts: Dict[str, Any] = CheckInRepository(session).counts()
        sent = counts["sent"]
        counts["response_rate"] = round(counts["responded"] / sent * 100, 1) if sent else 0.0
        return counts
