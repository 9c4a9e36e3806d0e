"""Errors raised by webhook registration, storage and the admin API.

The delivery path never raises these to its callers; an undeliverable
event is reported as a failed result instead.
"""

from __future__ import annotations


class LeadhooksError(Exception):
    """Root of the Leadhooks error hierarchy.

    ``code`` is the stable machine-readable identifier sent to API clients.
    """

    code: str = "leadhooks_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def details(self) -> dict[str, object]:
        """Extra fields included in the error body."""
        return {}

    def to_dict(self) -> dict[str, object]:
        return {"error": {"code": self.code, **self.details(), "message": self.message}}


class ValidationError(LeadhooksError):
    """A registration or update was rejected.

    Covers malformed or unsafe URLs, unknown event names and secrets that
    are too long.
    """

    code = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def details(self) -> dict[str, object]:
        return {"field": self.field}


class NotFoundError(LeadhooksError):
    code = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def details(self) -> dict[str, object]:
        return {"resource_type": self.resource_type, "resource_id": self.resource_id}


class StorageError(LeadhooksError):
    """The database failed or refused an operation."""

    code = "storage_error"
