"""Data access layer (repositories) for persistence operations.

Repositories encapsulate database operations and return domain models rather
than ORM models. Every state transition that must not race is a single
conditional UPDATE whose rowcount tells the caller whether it won; the services
turn a lost race into the matching business error.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from placement_guard.domain.models import (
    AuditEntry,
    Candidate,
    CandidateResponse,
    CheckIn,
    CircumventionFlag,
    Employer,
    FlagStatus,
    Introduction,
    IntroductionStatus,
    PaymentStatus,
    Placement,
    RiskLevel,
)

from .exceptions import DataIntegrityError, PersistenceError
from .schema import (
    AuditEntryModel,
    CandidateModel,
    CheckInModel,
    CircumventionFlagModel,
    ConsumedIntroductionTokenModel,
    EmployerModel,
    IntroductionModel,
    PlacementModel,
    _dump_json,
    _format_datetime,
    _format_decimal,
)

logger = logging.getLogger(__name__)


class EmployerRepository:
    """Repository for the employer directory rows."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, employer_id: str) -> Optional[Employer]:
        try:
            model = self.session.get(EmployerModel, employer_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving employer {employer_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve employer: {e}") from e

    def upsert(self, employer: Employer) -> Employer:
        """Insert a new employer or overwrite the stored directory fields.

        Raises:
            DataIntegrityError: If a constraint is violated
            PersistenceError: If database error occurs
        """
        try:
            existing = self.session.get(EmployerModel, employer.id)
            if existing:
                existing.company_name = employer.company_name
                existing.contact_name = employer.contact_name
                existing.contact_email = employer.contact_email
                existing.service_agreement_signed_at = _format_datetime(
                    employer.service_agreement_signed_at
                )
                self.session.flush()
                return existing.to_domain()

            model = EmployerModel.from_domain(employer)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            logger.error(f"Integrity error upserting employer {employer.id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to upsert employer: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error upserting employer {employer.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to upsert employer: {e}") from e


class CandidateRepository:
    """Repository for the candidate directory rows."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, candidate_id: str) -> Optional[Candidate]:
        try:
            model = self.session.get(CandidateModel, candidate_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving candidate {candidate_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve candidate: {e}") from e

    def upsert(self, candidate: Candidate) -> Candidate:
        try:
            existing = self.session.get(CandidateModel, candidate.id)
            if existing:
                existing.name = candidate.name
                existing.email = candidate.email
                self.session.flush()
                return existing.to_domain()

            model = CandidateModel.from_domain(candidate)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            logger.error(f"Integrity error upserting candidate {candidate.id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to upsert candidate: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error upserting candidate {candidate.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to upsert candidate: {e}") from e


class IntroductionRepository:
    """Repository for introductions and their response tokens."""

    def __init__(self, session: Session):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session for database operations
        """
        self.session = session

    def get(self, introduction_id: str) -> Optional[Introduction]:
        try:
            model = self.session.get(IntroductionModel, introduction_id, populate_existing=True)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving introduction {introduction_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve introduction: {e}") from e

    def get_by_pair(self, employer_id: str, candidate_id: str) -> Optional[Introduction]:
        """Retrieve the introduction for an (employer, candidate) pair.

        Returns:
            Introduction domain model if found, None otherwise

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            stmt = (
                select(IntroductionModel)
                .where(
                    IntroductionModel.employer_id == employer_id,
                    IntroductionModel.candidate_id == candidate_id,
                )
                .execution_options(populate_existing=True)
            )
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(
                f"Error retrieving introduction for {employer_id}/{candidate_id}: {e}",
                exc_info=True,
            )
            raise PersistenceError(f"Failed to retrieve introduction: {e}") from e

    def get_by_token(self, token: str) -> Optional[Introduction]:
        return self._get_one(IntroductionModel.response_token == token)

    def get_by_consumed_token(self, token: str) -> Optional[Introduction]:
        """Find the introduction that ``token`` was issued for, once it has been used."""
        consumed = select(ConsumedIntroductionTokenModel.introduction_id).where(
            ConsumedIntroductionTokenModel.token == token
        )
        return self._get_one(IntroductionModel.id.in_(consumed))

    def _get_one(self, condition) -> Optional[Introduction]:
        try:
            stmt = (
                select(IntroductionModel)
                .where(condition)
                .execution_options(populate_existing=True)
            )
            model = self.session.execute(stmt).scalars().first()
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving introduction: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve introduction: {e}") from e

    def create_if_absent(self, introduction: Introduction) -> bool:
        """Insert a new introduction unless the pair already exists.

        The insert runs in a savepoint so a concurrent insert of the same pair
        only rolls back this statement.

        Returns:
            True if the row was created, False if the pair already existed

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            with self.session.begin_nested():
                self.session.add(IntroductionModel.from_domain(introduction))
            return True
        except IntegrityError:
            logger.debug(
                f"Introduction for {introduction.employer_id}/{introduction.candidate_id} already exists"
            )
            return False
        except SQLAlchemyError as e:
            logger.error(f"Error creating introduction: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create introduction: {e}") from e

    def increment_counter(
        self, employer_id: str, candidate_id: str, counter: str, now: datetime
    ) -> int:
        """Add one to ``profile_views`` or ``resume_downloads`` in SQL.

        Returns:
            Number of rows updated (0 if the pair does not exist)
        """
        column = getattr(IntroductionModel, counter)
        try:
            stmt = (
                update(IntroductionModel)
                .where(
                    IntroductionModel.employer_id == employer_id,
                    IntroductionModel.candidate_id == candidate_id,
                )
                .values({counter: column + 1, "updated_at": _format_datetime(now)})
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error incrementing {counter}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to increment {counter}: {e}") from e

    def mark_requested(
        self,
        introduction_id: str,
        token: str,
        token_expiry: datetime,
        now: datetime,
        job_id: Optional[str] = None,
        job_title: Optional[str] = None,
    ) -> bool:
        """Move an introduction to INTRO_REQUESTED with a fresh token.

        Allowed from PROFILE_VIEWED, or from INTRO_REQUESTED once the candidate
        has answered with QUESTIONS. A pending request or any later status makes
        the update match nothing.

        Returns:
            True if the transition was applied
        """
        values: Dict[str, Any] = {
            "status": IntroductionStatus.INTRO_REQUESTED.value,
            "candidate_response": CandidateResponse.PENDING.value,
            "candidate_message": None,
            "intro_requested_at": _format_datetime(now),
            "response_token": token,
            "response_token_expiry": _format_datetime(token_expiry),
            "updated_at": _format_datetime(now),
        }
        if job_id is not None:
            values["job_id"] = job_id
        if job_title is not None:
            values["job_title"] = job_title

        try:
            stmt = (
                update(IntroductionModel)
                .where(
                    IntroductionModel.id == introduction_id,
                    or_(
                        IntroductionModel.status == IntroductionStatus.PROFILE_VIEWED.value,
                        and_(
                            IntroductionModel.status == IntroductionStatus.INTRO_REQUESTED.value,
                            IntroductionModel.candidate_response
                            == CandidateResponse.QUESTIONS.value,
                        ),
                    ),
                )
                .values(values)
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error marking introduction {introduction_id} requested: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark introduction requested: {e}") from e

    def replace_pending_token(
        self, introduction_id: str, token: str, token_expiry: datetime, now: datetime
    ) -> bool:
        """Swap the token of a still-pending request for a new one."""
        try:
            stmt = (
                update(IntroductionModel)
                .where(
                    IntroductionModel.id == introduction_id,
                    IntroductionModel.status == IntroductionStatus.INTRO_REQUESTED.value,
                    IntroductionModel.candidate_response == CandidateResponse.PENDING.value,
                )
                .values(
                    response_token=token,
                    response_token_expiry=_format_datetime(token_expiry),
                    updated_at=_format_datetime(now),
                )
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error replacing token for {introduction_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to replace introduction token: {e}") from e

    def consume_token(
        self,
        token: str,
        response: CandidateResponse,
        message: Optional[str],
        new_status: IntroductionStatus,
        now: datetime,
    ) -> bool:
        """Record a candidate response and clear the token in one statement.

        The used token is kept in ``introduction_consumed_tokens`` in the same
        transaction.

        Returns:
            True if this call consumed the token, False if it was already gone
        """
        introduction = self.get_by_token(token)
        if introduction is None:
            return False
        condition = and_(
            IntroductionModel.id == introduction.id,
            IntroductionModel.response_token == token,
        )
        if not self._apply_response(condition, response, message, new_status, now):
            return False
        self._keep_consumed_token(token, introduction.id, now)
        return True

    def record_response_by_id(
        self,
        introduction_id: str,
        response: CandidateResponse,
        message: Optional[str],
        new_status: IntroductionStatus,
        now: datetime,
    ) -> bool:
        """Record a response received off-platform for a request still open.

        A live response link is retired too, so the candidate is told they
        already responded if they use it later.
        """
        current = self.get(introduction_id)
        condition = and_(
            IntroductionModel.id == introduction_id,
            IntroductionModel.status == IntroductionStatus.INTRO_REQUESTED.value,
            IntroductionModel.candidate_response.in_(
                [CandidateResponse.PENDING.value, CandidateResponse.QUESTIONS.value]
            ),
        )
        if not self._apply_response(condition, response, message, new_status, now):
            return False
        if current is not None and current.response_token:
            self._keep_consumed_token(current.response_token, introduction_id, now)
        return True

    def _keep_consumed_token(self, token: str, introduction_id: str, now: datetime) -> None:
        try:
            self.session.add(
                ConsumedIntroductionTokenModel(
                    token=token,
                    introduction_id=introduction_id,
                    consumed_at=_format_datetime(now),
                )
            )
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error recording consumed token for {introduction_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record consumed token: {e}") from e

    def _apply_response(
        self,
        condition,
        response: CandidateResponse,
        message: Optional[str],
        new_status: IntroductionStatus,
        now: datetime,
    ) -> bool:
        values: Dict[str, Any] = {
            "candidate_response": response.value,
            "candidate_message": message,
            "candidate_responded_at": _format_datetime(now),
            "status": new_status.value,
            "response_token": None,
            "response_token_expiry": None,
            "updated_at": _format_datetime(now),
        }
        if new_status == IntroductionStatus.INTRODUCED:
            values["introduced_at"] = _format_datetime(now)

        try:
            stmt = update(IntroductionModel).where(condition).values(values)
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error recording candidate response: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record candidate response: {e}") from e

    def list_by_status(self, status: IntroductionStatus) -> List[Introduction]:
        try:
            stmt = (
                select(IntroductionModel)
                .where(IntroductionModel.status == status.value)
                .order_by(IntroductionModel.introduced_at.asc())
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing introductions with status {status.value}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list introductions: {e}") from e

    def list_expiring_between(self, start: datetime, end: datetime) -> List[Introduction]:
        """INTRODUCED rows whose protection ends inside ``[start, end]`` and not yet warned about."""
        try:
            stmt = (
                select(IntroductionModel)
                .where(
                    IntroductionModel.status == IntroductionStatus.INTRODUCED.value,
                    IntroductionModel.protection_ends_at >= _format_datetime(start),
                    IntroductionModel.protection_ends_at <= _format_datetime(end),
                    IntroductionModel.expiry_warning_sent_at.is_(None),
                )
                .order_by(IntroductionModel.protection_ends_at.asc())
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing expiring introductions: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list expiring introductions: {e}") from e

    def mark_expiry_warned(self, introduction_ids: List[str], now: datetime) -> int:
        """Stamp ``expiry_warning_sent_at`` on rows not stamped yet.

        Returns:
            Count of rows stamped by this call
        """
        if not introduction_ids:
            return 0
        try:
            stmt = (
                update(IntroductionModel)
                .where(
                    IntroductionModel.id.in_(introduction_ids),
                    IntroductionModel.expiry_warning_sent_at.is_(None),
                )
                .values(
                    expiry_warning_sent_at=_format_datetime(now),
                    updated_at=_format_datetime(now),
                )
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error marking expiry warnings: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark expiry warnings: {e}") from e

    def expire_lapsed(self, now: datetime) -> int:
        """Bulk-move INTRODUCED rows with a lapsed protection window to EXPIRED.

        Returns:
            Count of rows expired by this call
        """
        try:
            stmt = (
                update(IntroductionModel)
                .where(
                    IntroductionModel.status == IntroductionStatus.INTRODUCED.value,
                    IntroductionModel.protection_ends_at < _format_datetime(now),
                )
                .values(
                    status=IntroductionStatus.EXPIRED.value,
                    updated_at=_format_datetime(now),
                )
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error expiring introductions: {e}", exc_info=True)
            raise PersistenceError(f"Failed to expire introductions: {e}") from e

    def count_by_status(self) -> Dict[str, int]:
        try:
            stmt = select(IntroductionModel.status, func.count()).group_by(IntroductionModel.status)
            return {status: count for status, count in self.session.execute(stmt).all()}
        except SQLAlchemyError as e:
            logger.error(f"Error counting introductions: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count introductions: {e}") from e

    def count_protection_ending(
        self, status: IntroductionStatus, start: datetime, end: datetime
    ) -> int:
        """Count rows with ``status`` whose protection ends in ``[start, end)``."""
        try:
            stmt = select(func.count()).where(
                IntroductionModel.status == status.value,
                IntroductionModel.protection_ends_at >= _format_datetime(start),
                IntroductionModel.protection_ends_at < _format_datetime(end),
            )
            return self.session.execute(stmt).scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Error counting expiring introductions: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count expiring introductions: {e}") from e


class CheckInRepository:
    """Repository for check-ins, their tokens and review fields."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, check_in_id: str) -> Optional[CheckIn]:
        try:
            model = self.session.get(CheckInModel, check_in_id, populate_existing=True)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving check-in {check_in_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve check-in: {e}") from e

    def get_by_token(self, token: str) -> Optional[CheckIn]:
        return self._first(CheckInModel.response_token == token)

    def get_by_consumed_token(self, token: str) -> Optional[CheckIn]:
        return self._first(CheckInModel.consumed_response_token == token)

    def get_by_number(self, introduction_id: str, check_in_number: int) -> Optional[CheckIn]:
        return self._first(
            and_(
                CheckInModel.introduction_id == introduction_id,
                CheckInModel.check_in_number == check_in_number,
            )
        )

    def _first(self, condition) -> Optional[CheckIn]:
        try:
            stmt = select(CheckInModel).where(condition).execution_options(populate_existing=True)
            model = self.session.execute(stmt).scalars().first()
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving check-in: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve check-in: {e}") from e

    def list_for_introduction(self, introduction_id: str) -> List[CheckIn]:
        """All check-ins of one introduction ordered by number."""
        try:
            stmt = (
                select(CheckInModel)
                .where(CheckInModel.introduction_id == introduction_id)
                .order_by(CheckInModel.check_in_number.asc())
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing check-ins for {introduction_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list check-ins: {e}") from e

    def existing_numbers(self, introduction_id: str) -> List[int]:
        try:
            stmt = select(CheckInModel.check_in_number).where(
                CheckInModel.introduction_id == introduction_id
            )
            return list(self.session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error reading check-in numbers for {introduction_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to read check-in numbers: {e}") from e

    def create_if_absent(self, check_in: CheckIn) -> bool:
        """Insert a check-in, ignoring a duplicate (introduction, number) pair.

        Returns:
            True if created, False if the pair already existed
        """
        try:
            with self.session.begin_nested():
                self.session.add(CheckInModel.from_domain(check_in))
            return True
        except IntegrityError:
            logger.debug(
                f"Check-in {check_in.check_in_number} for {check_in.introduction_id} already exists"
            )
            return False
        except SQLAlchemyError as e:
            logger.error(f"Error creating check-in: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create check-in: {e}") from e

    def list_due(self, until: datetime, exclude_numbers: Iterable[int] = ()) -> List[CheckIn]:
        """Unsent check-ins scheduled at or before ``until``."""
        try:
            stmt = (
                select(CheckInModel)
                .where(
                    CheckInModel.sent_at.is_(None),
                    CheckInModel.scheduled_for <= _format_datetime(until),
                )
                .order_by(CheckInModel.scheduled_for.asc())
            )
            excluded = list(exclude_numbers)
            if excluded:
                stmt = stmt.where(CheckInModel.check_in_number.not_in(excluded))
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing due check-ins: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list due check-ins: {e}") from e

    def mark_sent(
        self, check_in_id: str, token: str, token_expiry: datetime, now: datetime
    ) -> bool:
        """Stamp ``sent_at`` and store the token, only if not already sent.

        Returns:
            True if this call marked the row
        """
        try:
            stmt = (
                update(CheckInModel)
                .where(CheckInModel.id == check_in_id, CheckInModel.sent_at.is_(None))
                .values(
                    sent_at=_format_datetime(now),
                    response_token=token,
                    response_token_expiry=_format_datetime(token_expiry),
                )
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error marking check-in {check_in_id} sent: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark check-in sent: {e}") from e

    def replace_token(self, check_in_id: str, token: str, token_expiry: datetime) -> bool:
        """Give an already sent, unanswered check-in a new token."""
        try:
            stmt = (
                update(CheckInModel)
                .where(
                    CheckInModel.id == check_in_id,
                    CheckInModel.sent_at.is_not(None),
                    CheckInModel.responded_at.is_(None),
                )
                .values(
                    response_token=token,
                    response_token_expiry=_format_datetime(token_expiry),
                )
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error replacing token for check-in {check_in_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to replace check-in token: {e}") from e

    def record_response(
        self,
        now: datetime,
        response_type: str,
        response_raw: Optional[str],
        response_parsed: Optional[Dict[str, Any]],
        risk_level: Optional[RiskLevel],
        risk_reason: Optional[str],
        flagged_for_review: bool,
        token: Optional[str] = None,
        check_in_id: Optional[str] = None,
    ) -> bool:
        """Write a response onto a check-in.

        With ``token`` the write is conditional on the token still being live
        and clears it. With ``check_in_id`` the write targets the row directly
        while it is still unanswered (email replies carry no token).

        Returns:
            True if a row was updated
        """
        if token is None and check_in_id is None:
            raise ValueError("token or check_in_id is required")

        values: Dict[str, Any] = {
            "responded_at": _format_datetime(now),
            "response_type": response_type,
            "response_raw": response_raw,
            "response_parsed": _dump_json(response_parsed),
            "risk_level": risk_level.value if risk_level else None,
            "risk_reason": risk_reason,
            "flagged_for_review": flagged_for_review,
            "response_token": None,
            "response_token_expiry": None,
        }
        if token is not None:
            condition = CheckInModel.response_token == token
            values["consumed_response_token"] = token
        else:
            condition = and_(CheckInModel.id == check_in_id, CheckInModel.responded_at.is_(None))
            # the live link stops working but still reports "already responded"
            values["consumed_response_token"] = func.coalesce(
                CheckInModel.response_token, CheckInModel.consumed_response_token
            )

        try:
            result = self.session.execute(update(CheckInModel).where(condition).values(values))
            self.session.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error recording check-in response: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record check-in response: {e}") from e

    def review(
        self,
        check_in_id: str,
        reviewer: str,
        now: datetime,
        notes: Optional[str] = None,
        flagged_for_review: Optional[bool] = None,
        risk_level: Optional[RiskLevel] = None,
    ) -> bool:
        values: Dict[str, Any] = {
            "reviewed_at": _format_datetime(now),
            "reviewed_by": reviewer,
        }
        if notes is not None:
            values["review_notes"] = notes
        if flagged_for_review is not None:
            values["flagged_for_review"] = flagged_for_review
        if risk_level is not None:
            values["risk_level"] = risk_level.value

        try:
            result = self.session.execute(
                update(CheckInModel).where(CheckInModel.id == check_in_id).values(values)
            )
            self.session.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error reviewing check-in {check_in_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to review check-in: {e}") from e

    def list(
        self,
        introduction_id: Optional[str] = None,
        risk_level: Optional[RiskLevel] = None,
        flagged_only: bool = False,
        responded: Optional[bool] = None,
        limit: Optional[int] = None,
    ) -> List[CheckIn]:
        """Filtered listing for the admin review queue, newest schedule first."""
        try:
            stmt = select(CheckInModel)
            if introduction_id is not None:
                stmt = stmt.where(CheckInModel.introduction_id == introduction_id)
            if risk_level is not None:
                stmt = stmt.where(CheckInModel.risk_level == risk_level.value)
            if flagged_only:
                stmt = stmt.where(CheckInModel.flagged_for_review.is_(True))
            if responded is True:
                stmt = stmt.where(CheckInModel.responded_at.is_not(None))
            elif responded is False:
                stmt = stmt.where(CheckInModel.responded_at.is_(None))
            stmt = stmt.order_by(CheckInModel.scheduled_for.desc())
            if limit is not None:
                stmt = stmt.limit(limit)
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing check-ins: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list check-ins: {e}") from e

    def counts(self) -> Dict[str, int]:
        """Aggregate counters for the check-in dashboard."""
        try:
            total = self.session.execute(select(func.count(CheckInModel.id))).scalar_one()
            sent = self.session.execute(
                select(func.count()).where(CheckInModel.sent_at.is_not(None))
            ).scalar_one()
            responded = self.session.execute(
                select(func.count()).where(CheckInModel.responded_at.is_not(None))
            ).scalar_one()
            flagged = self.session.execute(
                select(func.count()).where(
                    CheckInModel.flagged_for_review.is_(True),
                    CheckInModel.reviewed_at.is_(None),
                )
            ).scalar_one()
            by_risk = dict(
                self.session.execute(
                    select(CheckInModel.risk_level, func.count())
                    .where(CheckInModel.risk_level.is_not(None))
                    .group_by(CheckInModel.risk_level)
                ).all()
            )
        except SQLAlchemyError as e:
            logger.error(f"Error counting check-ins: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count check-ins: {e}") from e

        counts = {
            "total": total,
            "sent": sent,
            "responded": responded,
            "pending_review": flagged,
        }
        for level in RiskLevel:
            counts[f"risk_{level.value.lower()}"] = by_risk.get(level.value, 0)
        return counts


class FlagRepository:
    """Repository for circumvention flags."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, flag_id: str) -> Optional[CircumventionFlag]:
        try:
            model = self.session.get(CircumventionFlagModel, flag_id, populate_existing=True)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving flag {flag_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve flag: {e}") from e

    def add(self, flag: CircumventionFlag) -> CircumventionFlag:
        """Insert a flag unconditionally.

        Raises:
            DataIntegrityError: If the flag violates a constraint
        """
        try:
            model = CircumventionFlagModel.from_domain(flag)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except IntegrityError as e:
            logger.error(f"Integrity error adding flag {flag.id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to add flag: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error adding flag {flag.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to add flag: {e}") from e

    def add_if_no_open_flag(self, flag: CircumventionFlag) -> bool:
        """Insert a check-in flag unless that check-in already has an unresolved one.

        Returns:
            True if the flag was created
        """
        try:
            with self.session.begin_nested():
                self.session.add(CircumventionFlagModel.from_domain(flag))
            return True
        except IntegrityError:
            logger.debug(f"Check-in {flag.check_in_id} already has an unresolved flag")
            return False
        except SQLAlchemyError as e:
            logger.error(f"Error adding flag: {e}", exc_info=True)
            raise PersistenceError(f"Failed to add flag: {e}") from e

    def update_unresolved(self, flag_id: str, now: datetime, **fields: Any) -> bool:
        """Edit a flag only while ``resolved_at`` is still null.

        Keyword values are domain values (enums, decimals); they are converted
        to their stored form here.
        """
        values = {key: _to_column_value(value) for key, value in fields.items()}
        values["updated_at"] = _format_datetime(now)
        try:
            stmt = (
                update(CircumventionFlagModel)
                .where(
                    CircumventionFlagModel.id == flag_id,
                    CircumventionFlagModel.resolved_at.is_(None),
                )
                .values(values)
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error updating flag {flag_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update flag: {e}") from e

    def resolve(
        self,
        flag_id: str,
        status: FlagStatus,
        resolution: Optional[str],
        notes: Optional[str],
        now: datetime,
    ) -> bool:
        """Move an unresolved flag to a terminal status exactly once."""
        return self.update_unresolved(
            flag_id,
            now,
            status=status,
            resolved_at=now,
            resolution=resolution,
            resolution_notes=notes,
        )

    def record_invoice_sent(self, flag_id: str, amount: Decimal, now: datetime) -> bool:
        try:
            stmt = (
                update(CircumventionFlagModel)
                .where(
                    CircumventionFlagModel.id == flag_id,
                    CircumventionFlagModel.status == FlagStatus.CONFIRMED.value,
                    CircumventionFlagModel.invoice_paid_at.is_(None),
                )
                .values(
                    invoice_sent_at=_format_datetime(now),
                    invoice_amount=_format_decimal(amount),
                    updated_at=_format_datetime(now),
                )
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error recording invoice for flag {flag_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record invoice: {e}") from e

    def mark_invoice_paid(self, flag_id: str, paid_at: datetime, now: datetime) -> bool:
        try:
            stmt = (
                update(CircumventionFlagModel)
                .where(
                    CircumventionFlagModel.id == flag_id,
                    CircumventionFlagModel.status == FlagStatus.CONFIRMED.value,
                    CircumventionFlagModel.invoice_sent_at.is_not(None),
                    CircumventionFlagModel.invoice_paid_at.is_(None),
                )
                .values(
                    invoice_paid_at=_format_datetime(paid_at),
                    updated_at=_format_datetime(now),
                )
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error marking invoice paid for flag {flag_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark invoice paid: {e}") from e

    def delete_false_positive(self, flag_id: str) -> bool:
        try:
            stmt = delete(CircumventionFlagModel).where(
                CircumventionFlagModel.id == flag_id,
                CircumventionFlagModel.status == FlagStatus.FALSE_POSITIVE.value,
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error deleting flag {flag_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to delete flag: {e}") from e

    def list(
        self,
        status: Optional[FlagStatus] = None,
        introduction_id: Optional[str] = None,
    ) -> List[CircumventionFlag]:
        try:
            stmt = select(CircumventionFlagModel)
            if status is not None:
                stmt = stmt.where(CircumventionFlagModel.status == status.value)
            if introduction_id is not None:
                stmt = stmt.where(CircumventionFlagModel.introduction_id == introduction_id)
            stmt = stmt.order_by(CircumventionFlagModel.detected_at.desc())
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing flags: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list flags: {e}") from e


class PlacementRepository:
    """Repository for the payment fields of placements."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, placement_id: str) -> Optional[Placement]:
        try:
            model = self.session.get(PlacementModel, placement_id, populate_existing=True)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving placement {placement_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve placement: {e}") from e

    def add(self, placement: Placement) -> Placement:
        try:
            model = PlacementModel.from_domain(placement)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except IntegrityError as e:
            logger.error(f"Integrity error adding placement {placement.id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to add placement: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error adding placement {placement.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to add placement: {e}") from e

    def list_upfront_overdue(self, now: datetime) -> List[Placement]:
        """PENDING placements whose start date has passed with nothing paid."""
        return self._list(
            PlacementModel.payment_status == PaymentStatus.PENDING.value,
            PlacementModel.start_date < _format_datetime(now),
            PlacementModel.upfront_paid_at.is_(None),
        )

    def list_remaining_overdue(self, upfront_paid_before: datetime) -> List[Placement]:
        """Upfront-paid placements whose remaining amount is due or past due."""
        return self._list(
            PlacementModel.payment_status == PaymentStatus.UPFRONT_PAID.value,
            PlacementModel.upfront_paid_at.is_not(None),
            PlacementModel.upfront_paid_at <= _format_datetime(upfront_paid_before),
            PlacementModel.remaining_paid_at.is_(None),
        )

    def _list(self, *conditions) -> List[Placement]:
        try:
            stmt = select(PlacementModel).where(*conditions).order_by(PlacementModel.start_date.asc())
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing placements: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list placements: {e}") from e

    def mark_reminded(self, placement_id: str, now: datetime) -> bool:
        try:
            result = self.session.execute(
                update(PlacementModel)
                .where(PlacementModel.id == placement_id)
                .values(last_reminder_sent_at=_format_datetime(now))
            )
            self.session.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error marking placement {placement_id} reminded: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark placement reminded: {e}") from e

    def record_upfront_paid(self, placement_id: str, paid_at: datetime) -> bool:
        """PENDING (or FAILED) → UPFRONT_PAID."""
        return self._transition(
            placement_id,
            [PaymentStatus.PENDING, PaymentStatus.FAILED],
            upfront_paid_at=_format_datetime(paid_at),
            payment_status=PaymentStatus.UPFRONT_PAID.value,
        )

    def record_remaining_paid(self, placement_id: str, paid_at: datetime) -> bool:
        """UPFRONT_PAID → FULLY_PAID."""
        return self._transition(
            placement_id,
            [PaymentStatus.UPFRONT_PAID],
            remaining_paid_at=_format_datetime(paid_at),
            payment_status=PaymentStatus.FULLY_PAID.value,
        )

    def mark_failed(self, placement_id: str) -> bool:
        return self._transition(
            placement_id,
            [PaymentStatus.PENDING],
            payment_status=PaymentStatus.FAILED.value,
        )

    def _transition(self, placement_id: str, from_statuses: List[PaymentStatus], **values) -> bool:
        try:
            stmt = (
                update(PlacementModel)
                .where(
                    PlacementModel.id == placement_id,
                    PlacementModel.payment_status.in_([s.value for s in from_statuses]),
                )
                .values(values)
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error updating payment for placement {placement_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update placement payment: {e}") from e


class AuditRepository:
    """Append-only audit trail for introductions, check-ins and flags."""

    def __init__(self, session: Session):
        self.session = session

    def append(
        self, subject_type: str, subject_id: str, actor: str, text: str, occurred_at: datetime
    ) -> AuditEntry:
        """Append one entry and return it with its assigned id."""
        try:
            model = AuditEntryModel(
                subject_type=subject_type,
                subject_id=subject_id,
                occurred_at=_format_datetime(occurred_at),
                actor=actor,
                text=text,
            )
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error appending audit entry for {subject_type} {subject_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to append audit entry: {e}") from e

    def list_for(self, subject_type: str, subject_id: str) -> List[AuditEntry]:
        """Entries for one subject, oldest first."""
        try:
            stmt = (
                select(AuditEntryModel)
                .where(
                    AuditEntryModel.subject_type == subject_type,
                    AuditEntryModel.subject_id == subject_id,
                )
                .order_by(AuditEntryModel.id.asc())
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing audit entries for {subject_type} {subject_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list audit entries: {e}") from e


def _to_column_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return _format_datetime(value)
    if isinstance(value, Decimal):
        return _format_decimal(value)
    if isinstance(value, dict):
        return _dump_json(value)
    return getattr(value, "value", value)
