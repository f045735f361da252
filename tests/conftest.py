"""
Pytest configuration and fixtures for raceday tests
"""

from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from raceday import models  # noqa: F401  (registers tables)
from raceday import services
from raceday.db import Base, get_session
from raceday.main import app
from raceday.schemas import ParticipantCreate, RaceCreate

RACE_DAY = date(2024, 6, 1)
START = datetime(2024, 6, 1, 8, 0, 0, tzinfo=timezone.utc)


def at(hh: int, mm: int, ss: int = 0) -> datetime:
    """Wall-clock time on race day, UTC."""
    return datetime(2024, 6, 1, hh, mm, ss, tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'store.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def api(session_factory):
    def _override():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_session] = _override
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def race(session):
    return services.create_race(session, RaceCreate(name="Harbour 10K", race_date=RACE_DAY))


@pytest.fixture
def started_race(session, race):
    return services.start_race(session, race.id, now=START)


@pytest.fixture
def register(session):
    """Create a participant and enter them into a race."""

    def _register(race, bib, *, first_name="Runner", last_name=None, gender=None, date_of_birth=None):
        p = services.create_participant(
            session,
            ParticipantCreate(
                first_name=first_name,
                last_name=last_name or (f"#{bib}" if bib is not None else None),
                gender=gender,
                date_of_birth=date_of_birth,
            ),
        )
        return services.add_participant_to_race(session, race.id, p.id, bib)

    return _register
