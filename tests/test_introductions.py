"""Tests for the introduction lifecycle manager.

Covers:
- Protection window fixed on first profile view (+12 calendar months)
- Profile view and resume download counters
- Introduction requests: agreement check, pending request, token email
- Candidate responses through the one-time token
- Manual responses, resend, notes and stats
"""

from datetime import datetime, timedelta, timezone

import pytest

from placement_guard.domain.models import CandidateResponse, IntroductionStatus
from placement_guard.errors import (
    AlreadyRespondedError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
    RequestPendingError,
    ServiceAgreementRequiredError,
    TokenExpiredError,
)
from placement_guard.persistence import CheckInRepository, get_session
from tests.conftest import CANDIDATE_ID, EMPLOYER_ID
from tests.helpers import sent_token, set_delivery


def request(services, now, employer_id=EMPLOYER_ID):
    return services.introductions.request_introduction(
        employer_id, CANDIDATE_ID, job_id="job-1", job_title="Backend Engineer", now=now
    )


class TestProtectionWindow:
    """The protection window starts at the first view and never moves."""

    def test_first_view_sets_twelve_month_window(self, services, now):
        intro = services.introductions.record_profile_view(EMPLOYER_ID, CANDIDATE_ID, now=now)

        assert intro.status == IntroductionStatus.PROFILE_VIEWED
        assert intro.protection_starts_at == now
        assert intro.protection_ends_at == datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
        assert intro.profile_views == 1
        assert intro.resume_downloads == 0

    def test_window_clamps_to_month_end(self, services):
        leap_day = datetime(2024, 2, 29, 9, 30, tzinfo=timezone.utc)
        intro = services.introductions.record_profile_view(EMPLOYER_ID, CANDIDATE_ID, now=leap_day)

        assert intro.protection_ends_at == datetime(2025, 2, 28, 9, 30, tzinfo=timezone.utc)

    def test_repeat_views_increment_counter_without_moving_window(self, services, now):
        first = services.introductions.record_profile_view(EMPLOYER_ID, CANDIDATE_ID, now=now)
        later = now + timedelta(days=40)
        services.introductions.record_profile_view(EMPLOYER_ID, CANDIDATE_ID, now=later)
        intro = services.introductions.record_resume_download(EMPLOYER_ID, CANDIDATE_ID, now=later)

        assert intro.id == first.id
        assert intro.profile_views == 2
        assert intro.resume_downloads == 1
        assert intro.protection_starts_at == first.protection_starts_at
        assert intro.protection_ends_at == first.protection_ends_at

    def test_resume_download_can_start_protection(self, services, now):
        intro = services.introductions.record_resume_download(EMPLOYER_ID, CANDIDATE_ID, now=now)

        assert intro.resume_downloads == 1
        assert intro.profile_views == 0
        assert intro.protection_starts_at == now

    def test_unknown_party_raises_not_found(self, services, now):
        with pytest.raises(NotFoundError):
            services.introductions.record_profile_view("emp-missing", CANDIDATE_ID, now=now)


class TestRequestIntroduction:
    def test_request_sends_email_with_token(self, services, gateway, now):
        result = request(services, now)

        assert result.delivery.success
        intro = result.introduction
        assert intro.status == IntroductionStatus.INTRO_REQUESTED
        assert intro.candidate_response == CandidateResponse.PENDING
        assert intro.job_title == "Backend Engineer"
        assert intro.response_token_expiry == now + timedelta(days=7)

        gateway.send_introduction_request.assert_called_once()
        token = sent_token(gateway)
        assert token == intro.response_token
        assert len(token) >= 40

    def test_request_without_service_agreement_rejected(self, services, gateway, now):
        with pytest.raises(ServiceAgreementRequiredError):
            request(services, now, employer_id="emp-globex")
        gateway.send_introduction_request.assert_not_called()

    def test_second_request_while_pending_rejected(self, services, now):
        request(services, now)

        with pytest.raises(RequestPendingError):
            request(services, now + timedelta(hours=1))

    def test_request_after_introduction_rejected(self, services, introduced, now):
        with pytest.raises(InvalidTransitionError):
            request(services, now + timedelta(days=1))

    def test_failed_email_keeps_request(self, services, gateway, now):
        set_delivery(gateway, success=False)

        result = request(services, now)

        assert not result.delivery.success
        assert services.introductions.get(result.introduction.id).status == IntroductionStatus.INTRO_REQUESTED

    def test_unknown_candidate_raises_not_found(self, services, now):
        with pytest.raises(NotFoundError):
            services.introductions.request_introduction(EMPLOYER_ID, "cand-missing", now=now)


class TestCandidateResponse:
    def test_preview_by_token(self, services, gateway, now):
        request(services, now)

        preview = services.introductions.get_by_token(sent_token(gateway), now=now)

        assert preview.company_name == "Acme Corp"
        assert preview.job_title == "Backend Engineer"
        assert preview.candidate_first_name == "Jane"

    def test_accept_introduces_and_schedules_check_ins(self, services, gateway, now):
        request(services, now)

        result = services.introductions.record_candidate_response(sent_token(gateway), "accepted", now=now)

        intro = result.introduction
        assert intro.status == IntroductionStatus.INTRODUCED
        assert intro.candidate_response == CandidateResponse.ACCEPTED
        assert intro.introduced_at == now
        assert intro.response_token is None
        assert result.check_ins_scheduled == 5
        gateway.send_introduction_accepted.assert_called_once()

        with get_session() as session:
            check_ins = CheckInRepository(session).list_for_introduction(intro.id)
        assert [c.check_in_number for c in check_ins] == [1, 2, 3, 4, 5]
        assert [(c.scheduled_for - now).days for c in check_ins] == [30, 60, 90, 180, 365]

    def test_decline_is_terminal_and_schedules_nothing(self, services, gateway, now):
        request(services, now)

        result = services.introductions.record_candidate_response(sent_token(gateway), "DECLINED", now=now)

        assert result.introduction.status == IntroductionStatus.CANDIDATE_DECLINED
        assert result.check_ins_scheduled == 0
        gateway.send_introduction_declined.assert_called_once()

    def test_questions_keep_request_open_and_alert_admin(self, services, gateway, now):
        request(services, now)

        result = services.introductions.record_candidate_response(
            sent_token(gateway), "QUESTIONS", message="Is the role remote?", now=now
        )

        assert result.introduction.status == IntroductionStatus.INTRO_REQUESTED
        assert result.introduction.candidate_response == CandidateResponse.QUESTIONS
        assert result.introduction.candidate_message == "Is the role remote?"
        gateway.send_introduction_questions.assert_called_once()

    def test_questions_require_message(self, services, gateway, now):
        request(services, now)

        with pytest.raises(InvalidInputError):
            services.introductions.record_candidate_response(sent_token(gateway), "QUESTIONS", now=now)

    def test_employer_may_request_again_after_questions(self, services, gateway, now):
        request(services, now)
        services.introductions.record_candidate_response(
            sent_token(gateway), "QUESTIONS", message="Salary range?", now=now
        )

        result = request(services, now + timedelta(days=1))

        assert result.introduction.candidate_response == CandidateResponse.PENDING
        assert result.introduction.candidate_message is None

    def test_double_response_rejected(self, services, gateway, now):
        request(services, now)
        token = sent_token(gateway)
        services.introductions.record_candidate_response(token, "ACCEPTED", now=now)

        with pytest.raises(AlreadyRespondedError):
            services.introductions.record_candidate_response(token, "DECLINED", now=now)

    def test_older_consumed_token_still_reports_already_responded(self, services, gateway, now):
        request(services, now)
        first_token = sent_token(gateway)
        services.introductions.record_candidate_response(
            first_token, "QUESTIONS", message="Is it remote?", now=now
        )
        request(services, now + timedelta(days=1))
        services.introductions.record_candidate_response(
            sent_token(gateway), "ACCEPTED", now=now + timedelta(days=1)
        )

        with pytest.raises(AlreadyRespondedError):
            services.introductions.record_candidate_response(first_token, "ACCEPTED", now=now + timedelta(days=2))

    def test_expired_token_rejected(self, services, gateway, now):
        request(services, now)

        with pytest.raises(TokenExpiredError):
            services.introductions.record_candidate_response(
                sent_token(gateway), "ACCEPTED", now=now + timedelta(days=8)
            )

    def test_unknown_token_rejected(self, services, now):
        with pytest.raises(NotFoundError):
            services.introductions.record_candidate_response("no-such-token", "ACCEPTED", now=now)

    @pytest.mark.parametrize("value", ["PENDING", "maybe", ""])
    def test_invalid_response_value_rejected(self, services, gateway, now, value):
        request(services, now)

        with pytest.raises(InvalidInputError):
            services.introductions.record_candidate_response(sent_token(gateway), value, now=now)


class TestAdminOperations:
    def test_manual_accept_schedules_check_ins(self, services, now):
        intro = request(services, now).introduction

        result = services.introductions.record_manual_response(
            intro.id, "ACCEPTED", actor="admin@test.com", note="Confirmed by phone", now=now
        )

        assert result.introduction.status == IntroductionStatus.INTRODUCED
        assert result.check_ins_scheduled == 5
        history = services.introductions.history(intro.id)
        assert history[-1].actor == "admin@test.com"
        assert "Confirmed by phone" in history[-1].text

    def test_manual_response_retires_live_link(self, services, gateway, now):
        intro = request(services, now).introduction
        token = sent_token(gateway)

        services.introductions.record_manual_response(intro.id, "DECLINED", actor="admin", now=now)

        with pytest.raises(AlreadyRespondedError):
            services.introductions.record_candidate_response(token, "ACCEPTED", now=now)

    def test_manual_questions_rejected(self, services, now):
        intro = request(services, now).introduction

        with pytest.raises(InvalidInputError):
            services.introductions.record_manual_response(intro.id, "QUESTIONS", actor="admin", now=now)

    def test_manual_response_without_open_request_rejected(self, services, introduced, now):
        with pytest.raises(InvalidTransitionError):
            services.introductions.record_manual_response(introduced.id, "DECLINED", actor="admin", now=now)

    def test_resend_replaces_token(self, services, gateway, now):
        intro = request(services, now).introduction
        old_token = sent_token(gateway)

        result = services.introductions.resend_request_email(intro.id, actor="admin", now=now + timedelta(days=3))

        new_token = sent_token(gateway)
        assert new_token != old_token
        assert result.introduction.response_token == new_token
        assert result.introduction.response_token_expiry == now + timedelta(days=10)
        with pytest.raises(NotFoundError):
            services.introductions.get_by_token(old_token, now=now)

    def test_resend_without_pending_request_rejected(self, services, introduced, now):
        with pytest.raises(InvalidTransitionError):
            services.introductions.resend_request_email(introduced.id, actor="admin", now=now)

    def test_notes_are_appended_to_history(self, services, introduced, now):
        services.introductions.add_note(introduced.id, "admin", "Spoke with the employer", now=now)

        texts = [entry.text for entry in services.introductions.history(introduced.id)]
        assert texts[0] == "Introduction requested"
        assert texts[-1] == "Spoke with the employer"

    def test_empty_note_rejected(self, services, introduced, now):
        with pytest.raises(InvalidInputError):
            services.introductions.add_note(introduced.id, "admin", "   ", now=now)

    def test_stats_cover_every_status(self, services, introduced):
        stats = services.introductions.stats()

        assert stats["INTRODUCED"] == 1
        assert stats["EXPIRED"] == 0
        assert stats["total"] == 1
        assert set(stats) == {s.value for s in IntroductionStatus} | {"total"}
