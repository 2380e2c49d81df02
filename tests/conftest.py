"""Shared fixtures: a file-backed SQLite database, seeded parties and wired services."""

from datetime import datetime, timezone

import pytest

from placement_guard.config.environment import EnvironmentConfig
from placement_guard.config.models import AppConfig
from placement_guard.domain.models import Candidate, Employer
from placement_guard.main import build_services
from placement_guard.persistence import (
    CandidateRepository,
    EmployerRepository,
    close_database,
    get_session,
    init_database,
)
from tests.helpers import STILL_LOOKING, FakeClassificationClient, make_gateway, sent_token

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

EMPLOYER_ID = "emp-acme"
CANDIDATE_ID = "cand-jane"


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def test_database(tmp_path):
    db_file = tmp_path / "placement_guard_test.db"
    db_url = f"sqlite:///{db_file}"
    init_database(db_url)
    yield db_url
    close_database()


@pytest.fixture
def env_config():
    return EnvironmentConfig(
        smtp_host="smtp.test.com",
        smtp_port=587,
        admin_email="admin@test.com",
        app_url="https://guard.test",
        trigger_secret="s3cret",
    )


@pytest.fixture
def app_config():
    return AppConfig()


@pytest.fixture
def gateway():
    return make_gateway()


@pytest.fixture
def classification_client():
    return FakeClassificationClient(response=STILL_LOOKING)


@pytest.fixture
def parties(test_database):
    """Acme Corp (agreement signed), Globex (no agreement) and candidate Jane Doe."""
    with get_session() as session:
        employers = EmployerRepository(session)
        employers.upsert(
            Employer(
                id=EMPLOYER_ID,
                company_name="Acme Corp",
                contact_name="Riley Manager",
                contact_email="hiring@acme.example.com",
                service_agreement_signed_at=datetime(2024, 12, 1, tzinfo=timezone.utc),
            )
        )
        employers.upsert(
            Employer(id="emp-globex", company_name="Globex", contact_email="jobs@globex.example.com")
        )
        CandidateRepository(session).upsert(
            Candidate(id=CANDIDATE_ID, name="Jane Doe", email="jane@candidate.example.com")
        )
    return {"employer_id": EMPLOYER_ID, "candidate_id": CANDIDATE_ID}


@pytest.fixture
def services(parties, app_config, env_config, gateway, classification_client):
    return build_services(
        app_config, env_config, gateway=gateway, classification_client=classification_client
    )


@pytest.fixture
def introduced(services, gateway, now):
    """An introduction the candidate accepted at ``now``, with its check-ins scheduled."""
    services.introductions.request_introduction(
        EMPLOYER_ID, CANDIDATE_ID, job_id="job-1", job_title="Backend Engineer", now=now
    )
    token = sent_token(gateway)
    result = services.introductions.record_candidate_response(token, "ACCEPTED", now=now)
    return result.introduction
