"""Unit tests for email context builders.

Covers the values templates rely on: response links, check-in prompts,
expiry table rows, invoice numbers and overdue day counts.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from placement_guard.domain.models import PaymentKind, ResponseType
from placement_guard.notifications import payloads
from placement_guard.utils.timestamps import add_days
from tests.helpers import (
    SAMPLE_NOW,
    answered_check_in,
    sample_candidate,
    sample_check_in,
    sample_employer,
    sample_flag,
    sample_introduction,
    sample_placement,
)

APP_URL = "https://guard.test"


class TestIntroductionContexts:
    def test_request_links(self):
        context = payloads.introduction_request_context(
            sample_candidate(), sample_employer(), sample_introduction(), "tok", 7, APP_URL
        )

        assert context["candidate_first_name"] == "Jane"
        assert context["accept_url"] == "https://guard.test/introductions/respond/tok?response=ACCEPTED"
        assert context["decline_url"].endswith("?response=DECLINED")
        assert context["questions_url"].endswith("?response=QUESTIONS")
        assert context["expiry_days"] == 7

    def test_missing_job_title_uses_default(self):
        context = payloads.introduction_request_context(
            sample_candidate(), sample_employer(), sample_introduction(job_title=None), "tok", 7, APP_URL
        )

        assert context["job_title"] == "the position"

    def test_accepted_falls_back_to_company_name(self):
        context = payloads.introduction_accepted_context(
            sample_employer(contact_name=None), sample_candidate(), sample_introduction(), APP_URL
        )

        assert context["employer_name"] == "Acme Corp"
        assert context["profile_url"] == "https://guard.test/employer/candidates/cand-jane"

    def test_questions_admin_link(self):
        context = payloads.introduction_questions_context(
            sample_candidate(), sample_employer(), sample_introduction(), "Remote?", APP_URL
        )

        assert context["questions"] == "Remote?"
        assert context["admin_url"] == "https://guard.test/admin/introductions/intro-1"


class TestCheckInContext:
    def build(self, number):
        return payloads.check_in_context(
            sample_candidate(),
            sample_employer(),
            sample_introduction(),
            sample_check_in(check_in_number=number),
            "tok",
            APP_URL,
            SAMPLE_NOW,
        )

    def test_first_milestone(self):
        context = self.build(1)

        assert context["greeting"].startswith("It's been about a month since we connected you with Acme Corp")
        assert context["question"] == "Have you had a chance to interview with them?"
        assert context["days_since_introduction"] == 30
        assert context["respond_url"] == "https://guard.test/check-in/respond/tok"

    def test_answer_links_cover_every_status(self):
        answers = self.build(2)["answers"]

        assert len(answers) == 8
        assert answers[0] == {
            "label": "Still interviewing",
            "url": "https://guard.test/check-in/respond/tok?response=interviewing",
        }
        assert {"label": "I was hired there", "url": "https://guard.test/check-in/respond/tok?response=hired_there"} in (
            answers
        )

    def test_unknown_number_reuses_last_prompt(self):
        assert self.build(9)["question"] == payloads.CHECK_IN_PROMPTS[5]["question"]

    def test_final_links(self):
        context = payloads.final_check_in_context(
            sample_candidate(), sample_employer(), sample_introduction(), "tok", APP_URL
        )

        assert context["yes_url"] == "https://guard.test/check-in/respond/tok?response=yes"
        assert context["no_url"] == "https://guard.test/check-in/respond/tok?response=no"


class TestLastCheckInSummary:
    def test_none_sent(self):
        assert payloads.summarize_last_check_in(None) == "No check-ins sent"
        assert payloads.summarize_last_check_in(sample_check_in()) == "No check-ins sent"

    def test_sent_without_reply(self):
        check_in = sample_check_in(sent_at=SAMPLE_NOW)

        assert payloads.summarize_last_check_in(check_in) == "No response"

    def test_reply_excerpt_truncated(self):
        check_in = answered_check_in("x" * 80)

        assert payloads.summarize_last_check_in(check_in) == f'Jan 20, 2025 - "{"x" * 50}"'

    def test_button_reply_uses_response_type(self):
        check_in = answered_check_in(None, response_type=ResponseType.CLICKED_BUTTON)

        assert payloads.summarize_last_check_in(check_in) == 'Jan 20, 2025 - "clicked_button"'

    def test_expiry_row(self):
        row = payloads.expiry_row(sample_introduction(), None, None, None)

        assert row == {
            "introduction_id": "intro-1",
            "candidate_name": "cand-jane",
            "company_name": "emp-acme",
            "job_title": "Staff Engineer",
            "introduced_on": "Dec 16, 2024",
            "expires_on": "Dec 10, 2025",
            "last_check_in": "No check-ins sent",
        }


class TestFlagContexts:
    def test_alert_evidence_sorted(self):
        context = payloads.circumvention_alert_context(
            sample_flag(), sample_introduction(), sample_candidate(), sample_employer(), answered_check_in(), APP_URL
        )

        assert context["evidence_lines"] == ["company_mentioned: Acme", "status: hired_there"]
        assert context["detection_method"] == "check_in_response"
        assert context["check_in_number"] == 1
        assert context["admin_url"].endswith(f"/admin/circumvention/{sample_flag().id}")

    def test_invoice_number(self):
        flag = sample_flag(id="0e7d6c5b-aaaa-bbbb-cccc-1234567890ef")

        assert payloads.invoice_number(flag, SAMPLE_NOW) == "INV-20250115-90EF"

    def test_invoice_due_in_thirty_days(self):
        context = payloads.circumvention_invoice_context(
            sample_flag(),
            sample_introduction(),
            sample_candidate(),
            sample_employer(),
            Decimal("24000.00"),
            SAMPLE_NOW,
            custom_message="Thanks for your prompt attention.",
        )

        assert context["invoice_date"] == "Jan 15, 2025"
        assert context["due_date"] == "Feb 14, 2025"
        assert context["contact_name"] == "Riley Manager"
        assert context["custom_message"] == "Thanks for your prompt attention."


class TestPaymentReminderContext:
    @pytest.mark.parametrize(
        "kind,amount",
        [(PaymentKind.UPFRONT, Decimal("5000")), (PaymentKind.REMAINING, Decimal("7000"))],
    )
    def test_amount_per_kind(self, kind, amount):
        placement = sample_placement(upfront_amount=Decimal("5000"), remaining_amount=Decimal("7000"))

        context = payloads.payment_reminder_context(
            placement, sample_employer(), kind, add_days(SAMPLE_NOW, -5), SAMPLE_NOW, APP_URL
        )

        assert context["amount"] == amount
        assert context["kind"] == kind.value
        assert context["days_overdue"] == 5

    def test_not_yet_due_is_zero_days_overdue(self):
        context = payloads.payment_reminder_context(
            sample_placement(),
            sample_employer(),
            PaymentKind.UPFRONT,
            datetime(2025, 2, 1, tzinfo=timezone.utc),
            SAMPLE_NOW,
            APP_URL,
        )

        assert context["days_overdue"] == 0

    def test_without_employer(self):
        context = payloads.payment_reminder_context(
            sample_placement(), None, PaymentKind.UPFRONT, SAMPLE_NOW, SAMPLE_NOW, APP_URL
        )

        assert context["contact_name"] == "there"
        assert context["payment_url"] == "https://guard.test/employer/payments/plc-1"
