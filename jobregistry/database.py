"""
Database schema and connection management.

Uses SQLAlchemy for job record storage; SQLite by default, any SQLAlchemy
URL otherwise.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Union

from sqlalchemy import JSON, Column, DateTime, Enum, Index, String, Text, create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from .states import JobState, TargetType, is_terminal

Base = declarative_base()

ASYNC_JOB_GROUP = "async group"
CRON_JOB_GROUP = "cron group"


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, the form stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class JobRecord(Base):
    """One unit of background work."""

    __tablename__ = "jobs"

    id = Column(String(255), primary_key=True)
    job_class = Column(String(255), nullable=False)
    job_group = Column(String(255), nullable=False, default=ASYNC_JOB_GROUP)
    target_type = Column(Enum(TargetType, native_enum=False, length=32), nullable=False)
    target_id = Column(String(255), nullable=False)
    principal_name = Column(String(255), nullable=True)
    state = Column(
        Enum(JobState, native_enum=False, length=32),
        nullable=False,
        default=JobState.WAITING,
    )
    created = Column(DateTime, nullable=False, default=utc_now)
    updated = Column(DateTime, nullable=False, default=utc_now)
    start_time = Column(DateTime, nullable=True)
    finish_time = Column(DateTime, nullable=True)
    result = Column(Text, nullable=True)
    result_data = Column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_jobs_target", "target_type", "target_id"),
        Index("ix_jobs_state", "state"),
        Index("ix_jobs_principal_name", "principal_name"),
        Index("ix_jobs_class_target", "job_class", "target_id"),
    )

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.state)

    def to_dict(self) -> Dict[str, Any]:
        def _ts(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "job_class": self.job_class,
            "job_group": self.job_group,
            "target_type": self.target_type.value if self.target_type else None,
            "target_id": self.target_id,
            "principal_name": self.principal_name,
            "state": self.state.value if self.state else None,
            "created": _ts(self.created),
            "updated": _ts(self.updated),
            "start_time": _ts(self.start_time),
            "finish_time": _ts(self.finish_time),
            "result": self.result,
            "result_data": self.result_data,
        }

    def __repr__(self) -> str:
        return f"<JobRecord {self.id} {self.job_class} {self.state}>"


def sqlite_url(db_path: Path) -> str:
    return f"sqlite:///{db_path}"


def create_db_engine(database_url: Union[str, Path]) -> Engine:
    """
    Create an engine, making sure a SQLite file's parent directory exists.

    Args:
        database_url: SQLAlchemy URL, or a filesystem path to a SQLite file

    Returns:
        SQLAlchemy engine
    """
    if isinstance(database_url, Path):
        database_url = sqlite_url(database_url)

    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(url)


def init_database(database_url: Union[str, Path]) -> Engine:
    """
    Initialize database and create tables.

    Args:
        database_url: SQLAlchemy URL, or a filesystem path to a SQLite file

    Returns:
        The engine the tables were created on
    """
    engine = create_db_engine(database_url)
    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Engine) -> sessionmaker:
    # Records returned by the registry stay readable after their session closes.
    return sessionmaker(bind=engine, expire_on_commit=False)


def get_session(database_url: Union[str, Path]):
    """
    Get database session.

    Args:
        database_url: SQLAlchemy URL, or a filesystem path to a SQLite file

    Returns:
        SQLAlchemy session
    """
    return get_session_factory(create_db_engine(database_url))()
