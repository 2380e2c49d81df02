"""Tests for reply classification.

Covers:
- Company name normalization and matching
- The deterministic risk rule over status and attribution
- Verdict parsing from the service's camelCase JSON, with coercion
- Safe default on outages and unusable output
- The OpenAI client against a mocked SDK
"""

import json
import logging
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from openai import OpenAIError

from placement_guard.classification import (
    ClassificationRequest,
    ClassificationUnavailableError,
    ClassificationVerdict,
    OpenAIClassificationClient,
    ResponseClassifier,
    UnconfiguredClassificationClient,
    apply_risk_rule,
    build_classification_client,
    company_matches,
    normalize_company_name,
)
from placement_guard.config.environment import EnvironmentConfig
from placement_guard.config.models import ClassifierConfig
from placement_guard.domain.models import CheckInStatus, Confidence, EmploymentType, RiskLevel
from tests.helpers import HIRED_AT_INTRODUCED_COMPANY, STILL_LOOKING, FakeClassificationClient


class TestCompanyNames:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Acme Corp.", "acme"),
            ("ACME, Inc", "acme"),
            ("The Widget Company LLC", "widget"),
            ("Initech GmbH", "initech"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_company_name(raw) == expected

    def test_matches_variants(self):
        assert company_matches("acme", "Acme Corp") is True
        assert company_matches("Acme Robotics", "Acme Corp") is True
        assert company_matches("Globex", "Acme Corp") is False

    def test_unknown_when_missing(self):
        assert company_matches(None, "Acme Corp") is None
        assert company_matches("Inc.", "Acme Corp") is None

    def test_no_partial_word_match(self):
        assert company_matches("Acmetech", "Acme Corp") is False


def verdict(**fields):
    return ClassificationVerdict.model_validate(fields)


class TestRiskRule:
    def test_hired_at_introduced_company_is_high(self):
        result = apply_risk_rule(
            verdict(status="hired_there", companyMentioned="Acme", riskLevel="LOW"), "Acme Corp"
        )

        assert result.risk_level == RiskLevel.HIGH
        assert result.is_introduced_company is True

    def test_hired_elsewhere_matching_company_is_high(self):
        result = apply_risk_rule(
            verdict(status="hired_elsewhere", companyMentioned="Acme Corporation"), "Acme Corp"
        )

        assert result.risk_level == RiskLevel.HIGH

    def test_hired_elsewhere_other_company_is_clear(self):
        result = apply_risk_rule(verdict(status="hired_elsewhere", companyMentioned="Globex"), "Acme Corp")

        assert result.risk_level == RiskLevel.CLEAR
        assert result.is_introduced_company is False

    def test_hire_without_company_is_medium(self):
        result = apply_risk_rule(verdict(status="hired_elsewhere"), "Acme Corp")

        assert result.risk_level == RiskLevel.MEDIUM

    def test_model_and_local_disagree_is_unknown(self):
        result = apply_risk_rule(
            verdict(status="offer", companyMentioned="Globex", isIntroducedCompany=True), "Acme Corp"
        )

        assert result.is_introduced_company is None
        assert result.risk_level == RiskLevel.MEDIUM

    def test_hired_elsewhere_with_disputed_company_is_medium(self):
        # model says it is the introduced company, name check says otherwise
        result = apply_risk_rule(
            verdict(
                status="hired_elsewhere",
                companyMentioned="AcmeCo",
                isIntroducedCompany=True,
                riskLevel="HIGH",
            ),
            "Acme Corp",
        )

        assert result.is_introduced_company is None
        assert result.risk_level == RiskLevel.MEDIUM

    @pytest.mark.parametrize(
        "status,expected",
        [
            ("still_looking", RiskLevel.LOW),
            ("interviewing", RiskLevel.LOW),
            ("rejected", RiskLevel.CLEAR),
            ("withdrew", RiskLevel.CLEAR),
            ("no_response", RiskLevel.CLEAR),
            ("unclear", RiskLevel.MEDIUM),
        ],
    )
    def test_status_levels(self, status, expected):
        assert apply_risk_rule(verdict(status=status), "Acme Corp").risk_level == expected

    def test_model_reason_kept_when_levels_agree(self):
        result = apply_risk_rule(
            verdict(status="still_looking", riskLevel="LOW", riskReason="Still applying around"), "Acme Corp"
        )

        assert result.risk_reason == "Still applying around"


class TestVerdictParsing:
    def test_parses_camel_case(self):
        parsed = ClassificationVerdict.model_validate(HIRED_AT_INTRODUCED_COMPANY)

        assert parsed.status == CheckInStatus.HIRED_THERE
        assert parsed.company_mentioned == "Acme Corp"
        assert parsed.confidence == Confidence.HIGH

    def test_out_of_range_values_fall_back(self):
        parsed = verdict(
            status="promoted",
            confidence="certain",
            riskLevel="critical",
            employmentType="freelance",
            isIntroducedCompany="maybe",
        )

        assert parsed.status == CheckInStatus.UNCLEAR
        assert parsed.confidence == Confidence.LOW
        assert parsed.risk_level == RiskLevel.MEDIUM
        assert parsed.employment_type == EmploymentType.UNKNOWN
        assert parsed.is_introduced_company is None

    def test_case_insensitive_values(self):
        parsed = verdict(status="HIRED_THERE", confidence="High", riskLevel="high")

        assert parsed.status == CheckInStatus.HIRED_THERE
        assert parsed.confidence == Confidence.HIGH
        assert parsed.risk_level == RiskLevel.HIGH

    def test_blank_strings(self):
        parsed = verdict(summary="  ", companyMentioned="", suggestedAction=None)

        assert parsed.summary == "Response parsed"
        assert parsed.company_mentioned is None
        assert parsed.suggested_action == "Review response manually"

    def test_stored_shape_is_camel_case(self):
        stored = ClassificationVerdict.model_validate(STILL_LOOKING).to_stored()

        assert stored["status"] == "still_looking"
        assert "riskLevel" in stored
        assert "companyMentioned" in stored

    def test_safe_default(self):
        default = ClassificationVerdict.safe_default("Could not parse response: timeout")

        assert default.status == CheckInStatus.UNCLEAR
        assert default.risk_level == RiskLevel.MEDIUM
        assert default.confidence == Confidence.LOW
        assert default.suggested_action == "Manual review required - AI parsing failed"


class TestResponseClassifier:
    def test_classify_applies_risk_rule(self):
        client = FakeClassificationClient(
            response={**HIRED_AT_INTRODUCED_COMPANY, "riskLevel": "LOW", "isIntroducedCompany": None}
        )

        result = ResponseClassifier(client).classify("I started at Acme last month", "Acme Corp")

        assert result.risk_level == RiskLevel.HIGH
        assert client.calls == [("I started at Acme last month", "Acme Corp")]

    def test_empty_reply_skips_service(self):
        client = FakeClassificationClient(response=STILL_LOOKING)

        result = ResponseClassifier(client).classify("   ", "Acme Corp")

        assert result.risk_level == RiskLevel.MEDIUM
        assert client.calls == []

    def test_outage_gives_safe_default(self):
        client = FakeClassificationClient(error="Classification request failed: timeout")

        result = ResponseClassifier(client).classify("Got a job!", "Acme Corp")

        assert result.status == CheckInStatus.UNCLEAR
        assert result.risk_level == RiskLevel.MEDIUM
        assert "timeout" in result.risk_reason

    def test_unconfigured_client_gives_safe_default(self):
        client = UnconfiguredClassificationClient("Classification service not configured")

        result = ResponseClassifier(client).classify("Got a job!", "Acme Corp")

        assert result.risk_level == RiskLevel.MEDIUM
        assert result.confidence == Confidence.LOW

    def test_unexpected_error_gives_safe_default(self):
        client = Mock()
        client.classify.side_effect = KeyError("choices")

        result = ResponseClassifier(client).classify("Got a job!", "Acme Corp")

        assert result.risk_level == RiskLevel.MEDIUM
        assert result.status == CheckInStatus.UNCLEAR

    def test_classify_many_keeps_keys(self):
        client = FakeClassificationClient(response=STILL_LOOKING)
        requests = [ClassificationRequest(key=f"ci-{i}", reply_text=f"reply {i}", company_name="Acme") for i in range(4)]

        verdicts = ResponseClassifier(client, batch_concurrency=2).classify_many(requests)

        assert set(verdicts) == {"ci-0", "ci-1", "ci-2", "ci-3"}
        assert all(v.risk_level == RiskLevel.LOW for v in verdicts.values())

    def test_classify_many_empty(self):
        assert ResponseClassifier(FakeClassificationClient()).classify_many([]) == {}


def completion(content):
    message = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class TestOpenAIClient:
    @pytest.fixture
    def sdk(self):
        return Mock()

    def test_returns_parsed_json(self, sdk):
        sdk.chat.completions.create.return_value = completion(json.dumps(STILL_LOOKING))
        client = OpenAIClassificationClient("sk-test", ClassifierConfig(model="gpt-test"), client=sdk)

        assert client.classify("Still looking", "Acme Corp") == STILL_LOOKING

        kwargs = sdk.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "Acme Corp" in kwargs["messages"][0]["content"]
        assert "Still looking" in kwargs["messages"][1]["content"]

    @pytest.mark.parametrize("content", [None, "", "not json", "[1, 2]"])
    def test_unusable_output_raises_unavailable(self, sdk, content):
        sdk.chat.completions.create.return_value = completion(content)
        client = OpenAIClassificationClient("sk-test", client=sdk)

        with pytest.raises(ClassificationUnavailableError):
            client.classify("reply", "Acme Corp")

    def test_api_error_raises_unavailable(self, sdk):
        sdk.chat.completions.create.side_effect = OpenAIError("rate limited")
        client = OpenAIClassificationClient("sk-test", client=sdk)

        with pytest.raises(ClassificationUnavailableError, match="rate limited"):
            client.classify("reply", "Acme Corp")


class TestBuildClient:
    def make_env(self, **overrides):
        return EnvironmentConfig(smtp_host="smtp.test.com", smtp_port=587, admin_email="admin@test.com", **overrides)

    def test_unconfigured_without_api_key(self):
        client = build_classification_client(self.make_env(), ClassifierConfig())

        assert isinstance(client, UnconfiguredClassificationClient)
        assert not client.configured

    def test_unconfigured_warning_logged_once(self, caplog):
        with caplog.at_level(logging.WARNING, logger="placement_guard.classification"):
            build_classification_client(self.make_env(), ClassifierConfig())

        events = [getattr(r, "event", None) for r in caplog.records]
        assert events.count("classification.unconfigured") == 1

    def test_environment_model_overrides_config(self):
        client = build_classification_client(
            self.make_env(openai_api_key="sk-test", openai_model="gpt-override"), ClassifierConfig()
        )

        assert isinstance(client, OpenAIClassificationClient)
        assert client.config.model == "gpt-override"
