"""Check-ins: scheduled status probes sent to introduced candidates.

- CheckInScheduler: materializes milestone rows and dispatches the due ones
- CheckInResponseService: records answers and replies, admin review
"""

from .models import (
    CheckInDelivery,
    CheckInPreview,
    CheckInResponseResult,
    CheckInRunResult,
    DispatchOutcome,
    DispatchResult,
    MaterializeResult,
    ReplyBatchResult,
)
from .responses import BUTTON_RISK, CheckInResponseService, resolve_check_in_token
from .scheduler import CheckInScheduler

__all__ = [
    "CheckInScheduler",
    "CheckInResponseService",
    "BUTTON_RISK",
    "resolve_check_in_token",
    "CheckInDelivery",
    "CheckInPreview",
    "CheckInResponseResult",
    "CheckInRunResult",
    "DispatchOutcome",
    "DispatchResult",
    "MaterializeResult",
    "ReplyBatchResult",
]
