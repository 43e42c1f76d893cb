"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import datetime, timedelta
from typing import Any, Dict

from jobregistry.database import ASYNC_JOB_GROUP, JobRecord, get_session_factory, init_database
from jobregistry.logger import StructuredLogger, get_logger, reset_logger
from jobregistry.registry import JobRegistry
from jobregistry.states import JobState, TargetType


class FakeClock:
    """Controllable replacement for datetime.now."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def quiet_logger(tmp_path):
    """Route the global logger to tmp_path with console output disabled."""
    reset_logger()
    logger = get_logger(log_dir=tmp_path / "logs", enable_console=False)
    yield logger
    reset_logger()


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'jobs.db'}"


@pytest.fixture
def session_factory(db_url):
    engine = init_database(db_url)
    yield get_session_factory(engine)
    engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 1, 12, 0, 0))


@pytest.fixture
def registry(session_factory, clock, quiet_logger) -> JobRegistry:
    return JobRegistry(session_factory, logger=quiet_logger, clock=clock)


@pytest.fixture
def valid_job() -> Dict[str, Any]:
    """Valid job submission."""
    return {
        "job_class": "RefreshPoolsJob",
        "target_type": "OWNER",
        "target_id": "admin",
        "principal_name": "admin",
    }


@pytest.fixture
def make_job(session_factory, clock):
    """
    Insert a job row directly, bypassing the registry.

    Lets tests set up any state and timestamps, e.g. a RUNNING job last
    updated five minutes ago.
    """
    counter = [0]

    def _make(
        state: JobState = JobState.WAITING,
        job_id: str = None,
        job_class: str = "RefreshPoolsJob",
        job_group: str = ASYNC_JOB_GROUP,
        target_type: TargetType = TargetType.OWNER,
        target_id: str = "admin",
        principal_name: str = "admin",
        created: datetime = None,
        updated: datetime = None,
        start_time: datetime = None,
        finish_time: datetime = None,
    ) -> JobRecord:
        counter[0] += 1
        created = created or clock()
        job = JobRecord(
            id=job_id or f"job-{counter[0]:05d}",
            job_class=job_class,
            job_group=job_group,
            target_type=target_type,
            target_id=target_id,
            principal_name=principal_name,
            state=state,
            created=created,
            updated=updated or created,
            start_time=start_time,
            finish_time=finish_time,
        )
        session = session_factory()
        session.add(job)
        session.commit()
        session.close()
        return job

    return _make


@pytest.fixture
def fetch(session_factory):
    """Read a row straight from the database, or None."""
    def _fetch(job_id: str):
        session = session_factory()
        try:
            return session.get(JobRecord, job_id)
        finally:
            session.close()

    return _fetch
