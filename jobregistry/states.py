"""
Job lifecycle states and the transitions allowed between them.

WAITING -> RUNNING -> FINISHED | FAILED
WAITING | RUNNING -> CANCELED

FINISHED, FAILED and CANCELED are terminal.
"""

import enum
from typing import Dict, FrozenSet, Tuple, Union


class JobState(str, enum.Enum):
    WAITING = "WAITING"
    RUNNING = "RUNNING"
    FINISHED = "FINISHED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"


class TargetType(str, enum.Enum):
    """Namespace a job's target_id belongs to."""

    OWNER = "OWNER"
    CONSUMER = "CONSUMER"
    PRODUCT = "PRODUCT"


TERMINAL_STATES: FrozenSet[JobState] = frozenset(
    {JobState.FINISHED, JobState.FAILED, JobState.CANCELED}
)
ACTIVE_STATES: FrozenSet[JobState] = frozenset(
    {JobState.WAITING, JobState.RUNNING}
)

TRANSITIONS: Dict[JobState, FrozenSet[JobState]] = {
    JobState.WAITING: frozenset({JobState.RUNNING, JobState.CANCELED}),
    JobState.RUNNING: frozenset(
        {JobState.FINISHED, JobState.FAILED, JobState.CANCELED}
    ),
    JobState.FINISHED: frozenset(),
    JobState.FAILED: frozenset(),
    JobState.CANCELED: frozenset(),
}


def _coerce(state: Union[JobState, str]) -> JobState:
    return state if isinstance(state, JobState) else JobState(str(state).upper())


def target_type_of(value: Union[TargetType, str]) -> TargetType:
    """Accepts a TargetType or its name in any case; raises ValueError otherwise."""
    if isinstance(value, TargetType):
        return value
    return TargetType(str(value).upper())


def is_terminal(state: Union[JobState, str]) -> bool:
    return _coerce(state) in TERMINAL_STATES


def can_transition(src: Union[JobState, str], dst: Union[JobState, str]) -> bool:
    """
    Check whether a job may move from one state to another.

    Args:
        src: Current state
        dst: Requested state

    Returns:
        True if the state machine allows src -> dst in a single step
    """
    return _coerce(dst) in TRANSITIONS[_coerce(src)]


def sources_of(dst: Union[JobState, str]) -> Tuple[JobState, ...]:
    """
    States from which dst is reachable in one step.

    Used to build the state guard of conditional updates, so that an
    UPDATE can only ever apply a legal transition.
    """
    target = _coerce(dst)
    return tuple(s for s in JobState if target in TRANSITIONS[s])
