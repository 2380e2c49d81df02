"""Opaque, single-use, time-limited response tokens.

A token is 32 random bytes, URL-safe base64 encoded, so it can be embedded in a
link without escaping. Tokens are credentials: the response endpoints are
unauthenticated and the token alone identifies the introduction or check-in.
Single use is enforced by storage (the token column is cleared on response);
this module only issues tokens and judges expiry.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from placement_guard.utils.timestamps import add_days, ensure_utc, utc_now

TOKEN_BYTES = 32


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime


class TokenIssuer:
    """Issues response tokens and checks their expiry.

    Args:
        clock: Callable returning the current UTC time (tests inject a fixed clock)
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or utc_now

    def issue(self, expiry_days: int, now: Optional[datetime] = None) -> IssuedToken:
        """Generate a fresh token valid for ``expiry_days`` days.

        Raises:
            ValueError: If expiry_days is not positive
        """
        if expiry_days <= 0:
            raise ValueError(f"expiry_days must be positive, got {expiry_days}")
        issued_at = ensure_utc(now) if now is not None else self.clock()
        return IssuedToken(
            token=secrets.token_urlsafe(TOKEN_BYTES),
            expires_at=add_days(issued_at, expiry_days),
        )

    def is_expired(self, expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
        """A token with no recorded expiry is treated as expired."""
        if expires_at is None:
            return True
        current = ensure_utc(now) if now is not None else self.clock()
        return current > ensure_utc(expires_at)


def introduction_response_url(app_url: str, token: str) -> str:
    return f"{app_url.rstrip('/')}/introductions/respond/{token}"


def check_in_response_url(app_url: str, token: str, answer: Optional[str] = None) -> str:
    """Link to the check-in response page, optionally pre-selecting an answer."""
    url = f"{app_url.rstrip('/')}/check-in/respond/{token}"
    if answer:
        url = f"{url}?response={answer}"
    return url
