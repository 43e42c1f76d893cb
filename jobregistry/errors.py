"""
Exceptions raised by the job registry.

REST-style callers can map ``http_status`` straight onto a response code.
"""

from typing import List, Optional


class RegistryError(Exception):
    """Base class for all registry errors."""

    http_status = 500


class ValidationError(RegistryError):
    """A job record is missing required fields or carries invalid values."""

    http_status = 400

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid job record")


class NotFoundError(RegistryError):
    """
    No job matched the request.

    For conditional transitions this covers both an unknown id and a job
    that is no longer in a state the transition applies to.
    """

    http_status = 404

    def __init__(self, job_id: Optional[str], message: str = "job not found"):
        self.job_id = job_id
        super().__init__(f"{message}: {job_id}" if job_id else message)


class StoreError(RegistryError):
    """The underlying database failed. The original exception is chained."""


class TransientStoreError(StoreError):
    """A store failure that is likely to succeed if retried (lock, timeout)."""
