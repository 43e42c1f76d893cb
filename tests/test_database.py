"""
Tests for database.py - job table and connection helpers.
"""

import pytest
from datetime import datetime, timedelta
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from jobregistry.database import JobRecord, create_db_engine, get_session, init_database
from jobregistry.states import JobState, TargetType


class TestDatabaseInit:
    """Test database initialization."""

    def test_init_creates_database_file(self, tmp_path):
        """Test that init_database creates the database file."""
        db_path = tmp_path / "test.db"
        assert not db_path.exists()

        init_database(db_path)

        assert db_path.exists()

    def test_init_accepts_url(self, tmp_path):
        """Test that init_database accepts a SQLAlchemy URL."""
        db_path = tmp_path / "url.db"

        init_database(f"sqlite:///{db_path}")

        assert db_path.exists()

    def test_init_creates_tables(self, tmp_path):
        """Test that init_database creates the jobs table."""
        db_path = tmp_path / "test.db"
        init_database(db_path)

        session = get_session(db_path)
        result = session.query(JobRecord).count()
        assert result == 0
        session.close()

    def test_init_creates_parent_directories(self, tmp_path):
        """Test that init_database creates parent directories if missing."""
        db_path = tmp_path / "nested" / "dir" / "test.db"
        assert not db_path.parent.exists()

        init_database(db_path)

        assert db_path.exists()

    def test_memory_database_needs_no_directory(self):
        """In-memory SQLite URLs are passed through untouched."""
        engine = create_db_engine("sqlite:///:memory:")
        assert engine.url.database == ":memory:"


class TestJobRecordCRUD:
    """Test persistence of the JobRecord model."""

    @pytest.fixture
    def db_session(self, tmp_path):
        """Create a temporary database and return a session."""
        db_path = tmp_path / "test.db"
        init_database(db_path)
        session = get_session(db_path)
        yield session
        session.close()

    @pytest.fixture
    def sample_job(self):
        now = datetime.now()
        return JobRecord(
            id="refresh_pools_1",
            job_class="RefreshPoolsJob",
            target_type=TargetType.OWNER,
            target_id="admin",
            principal_name="admin",
            state=JobState.WAITING,
            created=now,
            updated=now,
        )

    def test_create_job(self, db_session, sample_job):
        """Test storing a new job."""
        db_session.add(sample_job)
        db_session.commit()

        result = db_session.get(JobRecord, "refresh_pools_1")
        assert result is not None
        assert result.job_class == "RefreshPoolsJob"
        assert result.state == JobState.WAITING
        assert result.target_type == TargetType.OWNER

    def test_defaults_applied(self, db_session):
        """Group, state and timestamps default when omitted."""
        db_session.add(JobRecord(
            id="j1",
            job_class="HealEntireOrgJob",
            target_type=TargetType.OWNER,
            target_id="acme",
        ))
        db_session.commit()

        job = db_session.get(JobRecord, "j1")
        assert job.job_group == "async group"
        assert job.state == JobState.WAITING
        assert job.created is not None
        assert job.updated is not None
        assert job.finish_time is None

    def test_create_job_without_required_fields_fails(self, db_session):
        """Test that a job without class or target is rejected by the table."""
        db_session.add(JobRecord(id="broken"))

        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_duplicate_id_fails(self, db_session, sample_job):
        """Test that a duplicate id raises an error."""
        db_session.add(sample_job)
        db_session.commit()

        duplicate = JobRecord(
            id="refresh_pools_1",
            job_class="OtherJob",
            target_type=TargetType.CONSUMER,
            target_id="uuid-1",
        )
        db_session.add(duplicate)

        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_many_jobs_may_share_a_target(self, db_session):
        """(target_type, target_id) is not unique."""
        for i in range(3):
            db_session.add(JobRecord(
                id=f"j{i}",
                job_class="RefreshPoolsJob",
                target_type=TargetType.OWNER,
                target_id="admin",
            ))
        db_session.commit()

        rows = db_session.execute(
            select(JobRecord).where(JobRecord.target_id == "admin")
        ).scalars().all()
        assert len(rows) == 3

    def test_result_data_round_trips_json(self, db_session, sample_job):
        """result_data should store and return a JSON document."""
        sample_job.result_data = {"pools": 3, "errors": []}
        db_session.add(sample_job)
        db_session.commit()
        db_session.expire_all()

        job = db_session.get(JobRecord, "refresh_pools_1")
        assert job.result_data == {"pools": 3, "errors": []}


class TestJobRecordHelpers:
    """Test model helpers."""

    def test_to_dict_serializes_enums_and_timestamps(self):
        """to_dict should emit enum names and ISO timestamps."""
        created = datetime(2024, 1, 2, 3, 4, 5)
        job = JobRecord(
            id="j1",
            job_class="RefreshPoolsJob",
            job_group="async group",
            target_type=TargetType.CONSUMER,
            target_id="uuid-1",
            state=JobState.FINISHED,
            created=created,
            updated=created + timedelta(seconds=5),
            finish_time=created + timedelta(seconds=5),
            result="ok",
        )

        data = job.to_dict()

        assert data["target_type"] == "CONSUMER"
        assert data["state"] == "FINISHED"
        assert data["created"] == "2024-01-02T03:04:05"
        assert data["finish_time"] == "2024-01-02T03:04:10"
        assert data["start_time"] is None
        assert data["result"] == "ok"

    def test_is_terminal(self):
        """is_terminal should follow the job state."""
        assert JobRecord(state=JobState.CANCELED).is_terminal
        assert not JobRecord(state=JobState.RUNNING).is_terminal
