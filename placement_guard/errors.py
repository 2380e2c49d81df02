"""Business-level exceptions raised by the protection engine.

The taxonomy mirrors how callers need to branch:

- InvalidInputError: bad or missing input, rejected synchronously
- ConflictError: valid input that violates a business rule (already
  responded, request pending, flag already resolved, ...)
- NotFoundError: missing token, introduction, check-in, flag or placement
- TokenExpiredError: a response link used after its expiry
- UnauthorizedTriggerError: batch trigger with a wrong shared secret

Dependency failures (SMTP, classification service) never surface here; they
are absorbed into DeliveryResult and the classifier's safe default verdict.
"""

from typing import Optional


class PlacementGuardError(Exception):
    """Base exception for all engine errors.

    Every error carries a stable machine-readable ``code`` so an HTTP layer can
    map it to a response without string matching.
    """

    code = "ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class InvalidInputError(PlacementGuardError):
    """Raised when input is missing or malformed."""

    code = "INVALID_INPUT"


class NotFoundError(PlacementGuardError):
    """Raised when a referenced record or token does not exist."""

    code = "NOT_FOUND"


class TokenExpiredError(PlacementGuardError):
    """Raised when a response token is past its expiry."""

    code = "TOKEN_EXPIRED"


class ConflictError(PlacementGuardError):
    """Base for business-rule violations on otherwise valid input."""

    code = "CONFLICT"


class AlreadyRespondedError(ConflictError):
    """Raised when a response token has already been consumed."""

    code = "ALREADY_RESPONDED"


class RequestPendingError(ConflictError):
    """Raised when an introduction request is already awaiting the candidate."""

    code = "REQUEST_PENDING"


class ServiceAgreementRequiredError(ConflictError):
    """Raised when an employer without a signed agreement requests an introduction."""

    code = "SERVICE_AGREEMENT_REQUIRED"


class InvalidTransitionError(ConflictError):
    """Raised when an operation is not allowed from the current state."""

    code = "INVALID_TRANSITION"


class FinalCheckInAlreadySentError(ConflictError):
    """Raised when the final check-in was already sent for an introduction."""

    code = "FINAL_CHECK_IN_ALREADY_SENT"


class FlagAlreadyResolvedError(ConflictError):
    """Raised when a resolved circumvention flag is edited or resolved again."""

    code = "FLAG_ALREADY_RESOLVED"


class UnauthorizedTriggerError(PlacementGuardError):
    """Raised when a batch job is triggered without the shared secret."""

    code = "UNAUTHORIZED"
