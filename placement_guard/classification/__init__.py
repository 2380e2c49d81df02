"""Classification of free-text check-in replies into a bounded risk verdict."""

from .classifier import ClassificationRequest, ResponseClassifier
from .client import (
    ClassificationUnavailableError,
    OpenAIClassificationClient,
    UnconfiguredClassificationClient,
    build_classification_client,
)
from .models import ClassificationVerdict
from .risk import apply_risk_rule, company_matches, normalize_company_name

__all__ = [
    "ClassificationRequest",
    "ClassificationUnavailableError",
    "ClassificationVerdict",
    "OpenAIClassificationClient",
    "ResponseClassifier",
    "UnconfiguredClassificationClient",
    "apply_risk_rule",
    "build_classification_client",
    "company_matches",
    "normalize_company_name",
]
