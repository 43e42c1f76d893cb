__version__ = "0.1.0"

from .database import JobRecord, init_database, get_session
from .errors import NotFoundError, RegistryError, StoreError, TransientStoreError, ValidationError
from .registry import JobRegistry
from .states import JobState, TargetType

__all__ = [
    "JobRecord",
    "JobRegistry",
    "JobState",
    "TargetType",
    "RegistryError",
    "ValidationError",
    "NotFoundError",
    "StoreError",
    "TransientStoreError",
    "init_database",
    "get_session",
]
