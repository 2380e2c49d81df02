"""Result types for check-in materialization, dispatch and responses."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from placement_guard.classification.models import ClassificationVerdict
from placement_guard.domain.models import CheckIn
from placement_guard.notifications.models import DeliveryResult


class DispatchOutcome(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"
    ALREADY_SENT = "already_sent"


@dataclass
class MaterializeResult:
    """Counts from one materialization pass.

    Attributes:
        introductions_scanned: INTRODUCED rows considered
        created: Check-in rows inserted by this pass
        errors: Introductions whose materialization failed
    """

    introductions_scanned: int = 0
    created: int = 0
    errors: int = 0


@dataclass
class DispatchResult:
    """Counts from one dispatch pass plus the per-row outcomes."""

    run_started_at: datetime
    run_finished_at: datetime
    due: int = 0
    outcomes: Dict[str, DispatchOutcome] = field(default_factory=dict)
    total_duration_seconds: float = 0.0

    def __post_init__(self):
        if self.total_duration_seconds == 0.0:
            self.total_duration_seconds = (self.run_finished_at - self.run_started_at).total_seconds()

    def count(self, outcome: DispatchOutcome) -> int:
        return sum(1 for value in self.outcomes.values() if value == outcome)

    @property
    def sent(self) -> int:
        return self.count(DispatchOutcome.SENT)

    @property
    def skipped(self) -> int:
        return self.count(DispatchOutcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(DispatchOutcome.FAILED)

    @property
    def had_errors(self) -> bool:
        return self.failed > 0


@dataclass
class CheckInRunResult:
    """Materialize followed by dispatch, as run by the daily check-in job."""

    materialize: MaterializeResult
    dispatch: DispatchResult


@dataclass
class CheckInDelivery:
    """Outcome of an admin resend or a manually triggered final check-in."""

    check_in: CheckIn
    delivery: DeliveryResult


@dataclass
class CheckInPreview:
    """What the public check-in page shows before the candidate answers."""

    check_in: CheckIn
    company_name: str
    candidate_first_name: str
    is_final: bool = False


@dataclass
class CheckInResponseResult:
    """A recorded check-in response.

    Attributes:
        check_in: The updated row
        verdict: Classifier verdict, for free-text replies only
        flag_id: Circumvention flag opened by this response, if any
        alert: Admin alert delivery for that flag
    """

    check_in: CheckIn
    verdict: Optional[ClassificationVerdict] = None
    flag_id: Optional[str] = None
    alert: Optional[DeliveryResult] = None


@dataclass
class ReplyBatchResult:
    recorded: List[CheckInResponseResult] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
