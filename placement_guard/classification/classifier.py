"""Response classifier: free-text reply in, bounded verdict out.

``classify`` never raises and never returns CLEAR because something went
wrong: any failure of the service or of its output yields the safe default
verdict (unclear / MEDIUM / low confidence, manual review).
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError

from placement_guard.logging import bind_log_context, get_logger

from .client import ClassificationUnavailableError
from .models import ClassificationVerdict
from .risk import apply_risk_rule

logger = get_logger(__name__, component="classification")

DEFAULT_BATCH_CONCURRENCY = 5


@dataclass
class ClassificationRequest:
    """One reply of a batch, keyed by the caller's id (usually a check-in id)."""

    key: str
    reply_text: str
    company_name: str


class ResponseClassifier:
    """Reduces candidate replies to ClassificationVerdicts.

    Args:
        client: Object with ``classify(reply_text, company_name) -> dict``
        batch_concurrency: Parallel requests in ``classify_many``
    """

    def __init__(self, client, batch_concurrency: int = DEFAULT_BATCH_CONCURRENCY):
        self.client = client
        self.batch_concurrency = batch_concurrency

    def classify(self, reply_text: str, company_name: str) -> ClassificationVerdict:
        if not reply_text or not reply_text.strip():
            return ClassificationVerdict.safe_default(
                "Empty reply", suggested_action="Manual review required - reply was empty"
            )

        try:
            raw = self.client.classify(reply_text, company_name)
            verdict = ClassificationVerdict.model_validate(raw)
        except ClassificationUnavailableError as e:
            logger.warning(
                f"Classification unavailable, using safe default: {e}",
                extra={"event": "classification.unavailable"},
            )
            return ClassificationVerdict.safe_default(f"Could not parse response: {e}")
        except ValidationError as e:
            logger.warning(
                f"Classification output failed validation, using safe default: {e}",
                extra={"event": "classification.invalid_output"},
            )
            return ClassificationVerdict.safe_default(f"Failed to parse response: {e.error_count()} invalid field(s)")
        except Exception as e:
            logger.error(
                f"Unexpected classification failure, using safe default: {e}",
                exc_info=True,
                extra={"event": "classification.error"},
            )
            return ClassificationVerdict.safe_default(f"Failed to parse response: {e}")

        verdict = apply_risk_rule(verdict, company_name)
        logger.info(
            f"Classified reply as {verdict.status.value} ({verdict.risk_level.value}, "
            f"confidence {verdict.confidence.value})",
            extra={
                "event": "classification.completed",
                "status": verdict.status.value,
                "risk_level": verdict.risk_level.value,
            },
        )
        return verdict

    def classify_many(
        self, requests: Sequence[ClassificationRequest], concurrency: Optional[int] = None
    ) -> Dict[str, ClassificationVerdict]:
        """Classify a batch with a bounded pool; results keyed by request key."""
        if not requests:
            return {}

        workers = min(concurrency or self.batch_concurrency, len(requests))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="classify") as pool:
            verdicts: List[ClassificationVerdict] = list(
                pool.map(
                    bind_log_context(lambda r: self.classify(r.reply_text, r.company_name)),
                    requests,
                )
            )
        return {request.key: verdict for request, verdict in zip(requests, verdicts)}
