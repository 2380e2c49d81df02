"""Unit tests for response token issuing and links."""

from datetime import datetime, timedelta, timezone

import pytest

from placement_guard.security.tokens import (
    TokenIssuer,
    check_in_response_url,
    introduction_response_url,
)

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def issuer():
    return TokenIssuer(clock=lambda: NOW)


class TestTokenIssuer:
    def test_issue_uses_clock(self, issuer):
        issued = issuer.issue(7)

        assert issued.expires_at == NOW + timedelta(days=7)
        # 32 random bytes, base64url without padding
        assert len(issued.token) == 43

    def test_issue_with_explicit_now(self, issuer):
        issued = issuer.issue(14, now=datetime(2025, 3, 1))

        assert issued.expires_at == datetime(2025, 3, 15, tzinfo=timezone.utc)

    def test_tokens_are_unique_and_url_safe(self, issuer):
        tokens = {issuer.issue(7).token for _ in range(50)}

        assert len(tokens) == 50
        assert all("/" not in t and "+" not in t and "=" not in t for t in tokens)

    @pytest.mark.parametrize("days", [0, -3])
    def test_rejects_non_positive_expiry(self, issuer, days):
        with pytest.raises(ValueError, match="expiry_days"):
            issuer.issue(days)

    def test_expiry_boundary(self, issuer):
        expires_at = NOW + timedelta(days=7)

        assert issuer.is_expired(expires_at, now=expires_at) is False
        assert issuer.is_expired(expires_at, now=expires_at + timedelta(seconds=1)) is True

    def test_missing_expiry_counts_as_expired(self, issuer):
        assert issuer.is_expired(None) is True

    def test_is_expired_uses_clock(self, issuer):
        assert issuer.is_expired(NOW - timedelta(minutes=1)) is True
        assert issuer.is_expired(NOW + timedelta(minutes=1)) is False


class TestResponseUrls:
    def test_introduction_url(self):
        assert introduction_response_url("https://guard.test/", "abc") == (
            "https://guard.test/introductions/respond/abc"
        )

    def test_check_in_url(self):
        assert check_in_response_url("https://guard.test", "abc") == "https://guard.test/check-in/respond/abc"

    def test_check_in_url_with_answer(self):
        assert check_in_response_url("https://guard.test", "abc", "still_looking") == (
            "https://guard.test/check-in/respond/abc?response=still_looking"
        )
