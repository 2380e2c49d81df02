"""Test helper utilities for Placement Guard tests."""

from .fakes import (
    HIRED_AT_INTRODUCED_COMPANY,
    STILL_LOOKING,
    FakeClassificationClient,
    delivered,
    make_gateway,
    sent_token,
    set_delivery,
    undelivered,
)
from .samples import (
    SAMPLE_NOW,
    answered_check_in,
    sample_candidate,
    sample_check_in,
    sample_employer,
    sample_flag,
    sample_introduction,
    sample_placement,
)

__all__ = [
    "FakeClassificationClient",
    "HIRED_AT_INTRODUCED_COMPANY",
    "STILL_LOOKING",
    "SAMPLE_NOW",
    "answered_check_in",
    "delivered",
    "make_gateway",
    "sample_candidate",
    "sample_check_in",
    "sample_employer",
    "sample_flag",
    "sample_introduction",
    "sample_placement",
    "sent_token",
    "set_delivery",
    "undelivered",
]
