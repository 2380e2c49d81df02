"""Introduction lifecycle: profile views, requests and candidate responses."""

from .models import CandidateResponseResult, IntroductionPreview, IntroductionRequestResult, Parties
from .service import IntroductionService, load_parties, parse_candidate_response

__all__ = [
    "IntroductionService",
    "IntroductionRequestResult",
    "CandidateResponseResult",
    "IntroductionPreview",
    "Parties",
    "load_parties",
    "parse_candidate_response",
]
