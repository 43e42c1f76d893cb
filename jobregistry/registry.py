"""
Job Registry.

Responsibilities:
- Create job records and look them up by id and secondary keys.
- Apply state transitions as single conditional UPDATEs.
- Reclaim orphaned jobs and delete expired terminal jobs in bounded batches.

Non-Responsibilities:
- No scheduling and no background threads.
- No execution of job payloads.

Invariant:
Every write to ``state`` refreshes ``updated`` in the same statement, and
no statement can move a job out of a terminal state.
"""

import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Collection, Dict, Iterator, List, Mapping, Optional, Union

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .bulk import UPDATE_BATCH_SIZE, execute_bulk_same_source_update
from .config import DEFAULT_STALE_AFTER_MS, Settings
from .database import (
    ASYNC_JOB_GROUP,
    JobRecord,
    get_session_factory,
    init_database,
    utc_now,
)
from .errors import NotFoundError, StoreError, TransientStoreError, ValidationError
from .logger import StructuredLogger, get_logger
from .retry import is_transient_error
from .schema import validate_job
from .states import ACTIVE_STATES, JobState, TargetType, sources_of, target_type_of

_CREATE_FIELDS = (
    "id",
    "job_class",
    "job_group",
    "target_type",
    "target_id",
    "principal_name",
)


class JobRegistry:
    """
    Query-and-mutate bookkeeper for job records.

    Safe to share between threads: each call opens its own session, and all
    race safety comes from the database's handling of conditional statements.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        logger: Optional[StructuredLogger] = None,
        reclaim_group: str = ASYNC_JOB_GROUP,
        stale_after_ms: int = DEFAULT_STALE_AFTER_MS,
        batch_size: int = UPDATE_BATCH_SIZE,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            session_factory: sessionmaker bound to the job database
            logger: Logger (default: global logger)
            reclaim_group: Job group swept by cancel_orphaned_jobs
            stale_after_ms: Default staleness threshold for orphan reclamation
            batch_size: Batch size for bulk reclamation and cleanup
            clock: Returns the current time; timestamps written by the
                registry all come from here (default: naive UTC)
        """
        self._session_factory = session_factory
        self.logger = logger or get_logger()
        self.reclaim_group = reclaim_group
        self.stale_after_ms = stale_after_ms
        self.batch_size = batch_size
        self.clock = clock

    @classmethod
    def from_settings(
        cls, settings: Settings, logger: Optional[StructuredLogger] = None, **kwargs
    ) -> "JobRegistry":
        """Create tables if needed and build a registry from settings."""
        engine = init_database(settings.database_url)
        return cls(
            get_session_factory(engine),
            logger=logger,
            reclaim_group=settings.reclaim_group,
            stale_after_ms=settings.stale_after_ms,
            batch_size=settings.batch_size,
            **kwargs,
        )

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            self.logger.record_error(type(e).__name__)
            self.logger.error("Job store failure", error=str(e), type=type(e).__name__)
            error_cls = TransientStoreError if is_transient_error(e) else StoreError
            raise error_cls(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # Creation and lookup

    def create(self, record: Union[JobRecord, Mapping[str, Any]]) -> JobRecord:
        """
        Insert a new job in state WAITING.

        Args:
            record: Mapping of fields, or a transient JobRecord. Any state or
                timestamps supplied are ignored.

        Returns:
            The stored record

        Raises:
            ValidationError: If job_class, target_type or target_id is missing
                or invalid
        """
        if isinstance(record, JobRecord):
            data = {f: getattr(record, f) for f in _CREATE_FIELDS}
        else:
            data = dict(record)

        errors = validate_job(data)
        if errors:
            self.logger.warning("Rejected invalid job", errors=errors)
            raise ValidationError(errors)

        now = self.clock()
        job = JobRecord(
            id=data.get("id") or uuid.uuid4().hex,
            job_class=data["job_class"],
            job_group=data.get("job_group") or ASYNC_JOB_GROUP,
            target_type=target_type_of(data["target_type"]),
            target_id=data["target_id"],
            principal_name=data.get("principal_name"),
            state=JobState.WAITING,
            created=now,
            updated=now,
        )

        with self._session() as session:
            session.add(job)

        self.logger.record_created()
        self.logger.info(
            "Job created",
            job_id=job.id,
            job_class=job.job_class,
            target_type=job.target_type.value,
            target_id=job.target_id,
        )
        return job

    def find(self, job_id: str) -> Optional[JobRecord]:
        """Fresh read of a single job. Returns None if it does not exist."""
        with self._session() as session:
            return session.get(JobRecord, job_id)

    def get(self, job_id: str) -> JobRecord:
        job = self.find(job_id)
        if job is None:
            raise NotFoundError(job_id)
        return job

    def _list(self, stmt) -> List[JobRecord]:
        with self._session() as session:
            return list(session.execute(stmt).scalars())

    def find_by_target(self, target_type: Union[TargetType, str], target_id: str) -> List[JobRecord]:
        target_type = target_type_of(target_type)
        self.logger.debug("Finding jobs by target", target_type=target_type.value, target_id=target_id)
        return self._list(
            select(JobRecord).where(
                JobRecord.target_type == target_type,
                JobRecord.target_id == target_id,
            )
        )

    def find_by_owner_key(self, owner_key: str) -> List[JobRecord]:
        return self.find_by_target(TargetType.OWNER, owner_key)

    def find_by_consumer_uuid(self, consumer_uuid: str) -> List[JobRecord]:
        return self.find_by_target(TargetType.CONSUMER, consumer_uuid)

    def find_by_principal_name(self, principal_name: str) -> List[JobRecord]:
        return self._list(select(JobRecord).where(JobRecord.principal_name == principal_name))

    def find_canceled_jobs(self, active_ids: Collection[str]) -> List[JobRecord]:
        """
        Canceled jobs among the ids a scheduler still tracks as active.

        The scheduler uses this to tear down local execution of jobs that
        were canceled out-of-band.
        """
        ids = list(active_ids)
        if not ids:
            # an empty IN list is rejected or always false depending on backend
            return []
        return self._list(
            select(JobRecord).where(
                JobRecord.state == JobState.CANCELED,
                JobRecord.id.in_(ids),
            )
        )

    def find_waiting_jobs(self) -> List[JobRecord]:
        return self._list(select(JobRecord).where(JobRecord.state == JobState.WAITING))

    def find_num_running_by_target_and_class(self, target_id: str, job_class: str) -> int:
        with self._session() as session:
            return session.execute(
                select(func.count(JobRecord.id)).where(
                    JobRecord.state == JobState.RUNNING,
                    JobRecord.target_id == target_id,
                    JobRecord.job_class == job_class,
                )
            ).scalar_one()

    def get_latest_by_class_and_target(self, target_id: str, job_class: str) -> Optional[JobRecord]:
        """
        Most recently created non-terminal job of a class for a target.

        Jobs sharing the latest creation time are ordered by id, highest
        first, so the answer does not depend on the backend's row order.
        """
        active = (
            JobRecord.state.in_(list(ACTIVE_STATES)),
            JobRecord.target_id == target_id,
            JobRecord.job_class == job_class,
        )
        max_created = select(func.max(JobRecord.created)).where(*active).scalar_subquery()

        with self._session() as session:
            return session.execute(
                select(JobRecord)
                .where(JobRecord.created == max_created, *active)
                .order_by(JobRecord.id.desc())
                .limit(1)
            ).scalars().first()

    # Transitions

    def _transition(self, job_id: str, dst: JobState, **values: Any) -> JobRecord:
        now = self.clock()
        values["state"] = dst
        values["updated"] = now
        if dst == JobState.RUNNING:
            values["start_time"] = now
        else:
            values["finish_time"] = now

        stmt = (
            update(JobRecord)
            .where(JobRecord.id == job_id, JobRecord.state.in_(sources_of(dst)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self._session() as session:
            count = session.execute(stmt).rowcount
            job = session.get(JobRecord, job_id, populate_existing=True) if count else None

        if not count:
            self.logger.info("Transition not applied", job_id=job_id, state=dst.value)
            raise NotFoundError(job_id)

        self.logger.record_transition(dst.value)
        self.logger.info("Job transitioned", job_id=job_id, state=dst.value)
        return job

    def cancel(self, job_id: str) -> JobRecord:
        """
        Cancel a job that is WAITING or RUNNING.

        One conditional UPDATE, so a concurrent cancel or completion can win
        at most once; the loser sees zero rows and gets NotFoundError.

        Raises:
            NotFoundError: If the id is unknown or the job is already terminal
        """
        return self._transition(job_id, JobState.CANCELED)

    def start(self, job_id: str) -> JobRecord:
        return self._transition(job_id, JobState.RUNNING)

    def finish(self, job_id: str, result: Optional[str] = None, result_data: Any = None) -> JobRecord:
        return self._transition(job_id, JobState.FINISHED, result=result, result_data=result_data)

    def fail(self, job_id: str, result: Optional[str] = None, result_data: Any = None) -> JobRecord:
        return self._transition(job_id, JobState.FAILED, result=result, result_data=result_data)

    # Reclamation and retention

    def cancel_orphaned_jobs(
        self,
        active_ids: Collection[str],
        stale_after_ms: Optional[int] = None,
        job_group: Optional[str] = None,
        on_batch: Optional[Callable[[int, int, int], None]] = None,
    ) -> int:
        """
        Cancel jobs no scheduler is tracking any more.

        A job is orphaned when it belongs to the reclaimable group, is not
        terminal, has not been updated for stale_after_ms, and its id is not
        in active_ids.

        Args:
            active_ids: Ids the calling scheduler currently believes are live
            stale_after_ms: Staleness threshold (default: registry setting, 2 minutes)
            job_group: Group to sweep (default: registry's reclaim group)
            on_batch: Optional callback(round_number, fetched, affected)

        Returns:
            Number of jobs canceled
        """
        if stale_after_ms is None:
            stale_after_ms = self.stale_after_ms
        group = job_group or self.reclaim_group
        now = self.clock()
        before = now - timedelta(milliseconds=stale_after_ms)

        guard = [
            JobRecord.job_group == group,
            JobRecord.state.in_(list(ACTIVE_STATES)),
            JobRecord.updated <= before,
        ]
        ids = list(active_ids)
        # Must trim the membership test if the list is empty
        if ids:
            guard.append(JobRecord.id.not_in(ids))

        def cancel_batch(batch: List[str]):
            return (
                update(JobRecord)
                .where(JobRecord.id.in_(batch), *guard)
                .values(state=JobState.CANCELED, updated=now, finish_time=now)
            )

        with self._session() as session:
            count = execute_bulk_same_source_update(
                session,
                select(JobRecord.id).where(*guard),
                cancel_batch,
                batch_size=self.batch_size,
                on_batch=on_batch,
                logger=self.logger,
            )

        if count:
            self.logger.record_reclaimed(count)
            self.logger.record_transition(JobState.CANCELED.value, count)
        self.logger.info(
            "Orphaned jobs canceled",
            count=count,
            job_group=group,
            stale_after_ms=stale_after_ms,
            active=len(ids),
        )
        return count

    def _delete_batched(self, guard: list) -> int:
        def delete_batch(batch: List[str]):
            return delete(JobRecord).where(JobRecord.id.in_(batch), *guard)

        with self._session() as session:
            count = execute_bulk_same_source_update(
                session,
                select(JobRecord.id).where(*guard),
                delete_batch,
                batch_size=self.batch_size,
                logger=self.logger,
            )
        self.logger.record_deleted(count)
        return count

    def cleanup_failed_jobs(self, deadline: datetime) -> int:
        """Delete FAILED jobs that started at or before deadline. Returns the count."""
        count = self._delete_batched([
            JobRecord.state == JobState.FAILED,
            JobRecord.start_time <= deadline,
        ])
        self.logger.info("Failed jobs removed", count=count, deadline=deadline)
        return count

    def cleanup_old_jobs(self, deadline: datetime) -> int:
        """Delete FINISHED and CANCELED jobs that finished at or before deadline. Returns the count."""
        count = self._delete_batched([
            JobRecord.state.in_((JobState.FINISHED, JobState.CANCELED)),
            JobRecord.finish_time <= deadline,
        ])
        self.logger.info("Old jobs removed", count=count, deadline=deadline)
        return count

    def counts_by_state(self) -> Dict[str, int]:
        """Number of jobs in each state (states with no jobs report 0)."""
        with self._session() as session:
            rows = session.execute(
                select(JobRecord.state, func.count(JobRecord.id)).group_by(JobRecord.state)
            ).all()
        counts = {s.value: 0 for s in JobState}
        for state, count in rows:
            counts[state.value] = count
        return counts
