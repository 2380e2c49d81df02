"""Persistence layer for the protection engine.

Public API:
    # Database initialization and session management
    - init_database(database_url: str) -> None
    - get_session() -> ContextManager[Session]
    - close_database() -> None
    - get_engine() -> Engine

    # Repository classes
    - EmployerRepository / CandidateRepository: directory rows
    - IntroductionRepository: introductions and their response tokens
    - CheckInRepository: check-ins, dispatch marking and review fields
    - FlagRepository: circumvention flags and invoicing
    - PlacementRepository: placement payment fields
    - AuditRepository: append-only notes and history

    # Exceptions
    - PersistenceError, DatabaseConnectionError, DataIntegrityError

Example usage:
    >>> from placement_guard.persistence import init_database, get_session, IntroductionRepository
    >>> init_database("sqlite:///./data/placement_guard.db")
    >>> with get_session() as session:
    ...     intro = IntroductionRepository(session).get_by_pair(employer_id, candidate_id)
"""

from .database import close_database, get_engine, get_session, init_database
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
)
from .repositories import (
    AuditRepository,
    CandidateRepository,
    CheckInRepository,
    EmployerRepository,
    FlagRepository,
    IntroductionRepository,
    PlacementRepository,
)

__all__ = [
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    "AuditRepository",
    "CandidateRepository",
    "CheckInRepository",
    "EmployerRepository",
    "FlagRepository",
    "IntroductionRepository",
    "PlacementRepository",
    "PersistenceError",
    "DatabaseConnectionError",
    "DataIntegrityError",
]
