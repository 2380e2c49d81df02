"""Response token issuing and validation."""

from .tokens import (
    IssuedToken,
    TokenIssuer,
    check_in_response_url,
    introduction_response_url,
)

__all__ = [
    "IssuedToken",
    "TokenIssuer",
    "check_in_response_url",
    "introduction_response_url",
]
