"""Protection expiry workflow and the final check-in."""

from .models import ExpiryRunResult, ExpiryWarningResult
from .workflow import ExpiryWorkflow, parse_final_answer

__all__ = ["ExpiryWorkflow", "ExpiryRunResult", "ExpiryWarningResult", "parse_final_answer"]
