"""
Batched bulk updates against the table being queried.

Some backends (MySQL/MariaDB) refuse to update a table from a statement
that also selects from it, and an unbounded UPDATE can hold locks on an
arbitrary number of rows. Instead, candidate ids are fetched in bounded
batches and each batch is updated by exact id list, until a round affects
nothing.
"""

from typing import Callable, List, Optional

from sqlalchemy import Select
from sqlalchemy.orm import Session

from .logger import StructuredLogger, get_logger

UPDATE_BATCH_SIZE = 1024


def execute_bulk_same_source_update(
    session: Session,
    query: Select,
    build_update: Callable[[List[str]], object],
    batch_size: int = UPDATE_BATCH_SIZE,
    on_batch: Optional[Callable[[int, int, int], None]] = None,
    logger: Optional[StructuredLogger] = None,
) -> int:
    """
    Repeatedly select a batch of ids and apply an update restricted to them.

    Args:
        session: Session whose transaction all rounds run in
        query: SELECT returning candidate ids as its first column
        build_update: Builds the UPDATE/DELETE statement for a list of ids.
            The statement should repeat the candidate filter so rows that
            changed since the SELECT are left alone.
        batch_size: Maximum ids fetched per round
        on_batch: Optional callback(round_number, fetched, affected)
        logger: Logger (default: global logger)

    Returns:
        Total number of rows affected across all rounds
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    logger = logger or get_logger()
    bounded = query.limit(batch_size)
    total = 0
    rounds = 0

    while True:
        rounds += 1
        ids = list(session.execute(bounded).scalars())
        logger.debug("Received rows from batch query", round=rounds, rows=len(ids))

        count = 0
        if ids:
            result = session.execute(
                build_update(ids),
                execution_options={"synchronize_session": False},
            )
            count = result.rowcount or 0
            logger.debug("Batch updated", round=rounds, rows=count)
            total += count

        if on_batch:
            on_batch(rounds, len(ids), count)

        if count == 0:
            break

    logger.debug("Bulk update complete", rounds=rounds, total=total)
    return total
