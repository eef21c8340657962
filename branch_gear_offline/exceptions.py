"""
Custom exceptions for the offline store.

Local store, queue, remote service and repositories raise these
exceptions so callers can tell recoverable sync situations apart
from user-facing validation failures.
"""


class OfflineStoreError(Exception):
    """Base exception for all offline store errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class LocalStoreError(OfflineStoreError):
    """Raised when the on-device storage engine fails."""

    def __init__(self, operation: str, table: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if table:
            details["table"] = table
        if cause:
            details["cause"] = str(cause)
        message = f"Local store error during {operation}"
        if table:
            message += f": {table}"
        super().__init__(message, details)
        self.operation = operation
        self.table = table
        self.cause = cause


class RecordNotFoundError(OfflineStoreError):
    """Raised when a record is not present in the local store."""

    def __init__(self, table: str, record_id: str):
        super().__init__(
            f"Record not found: {table}/{record_id}",
            {"table": table, "record_id": record_id},
        )
        self.table = table
        self.record_id = record_id


class ValidationError(OfflineStoreError):
    """Raised when data validation fails."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class ReferentialIntegrityError(OfflineStoreError):
    """Raised when a delete would orphan dependent local records.

    Checked entirely against the local store, before any queue or
    network activity takes place.
    """

    def __init__(self, table: str, record_id: str, dependents: list[str]):
        details = {"table": table, "record_id": record_id, "dependents": dependents}
        super().__init__(
            f"Cannot delete {table}/{record_id}: referenced by {', '.join(dependents)}",
            details,
        )
        self.table = table
        self.record_id = record_id
        self.dependents = dependents


class StorageConnectionError(OfflineStoreError):
    """Raised when a storage endpoint cannot be reached or opened.

    Note: Named StorageConnectionError to avoid shadowing the builtin ConnectionError.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        details = {"endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Connection failed to {endpoint}", details)
        self.endpoint = endpoint
        self.cause = cause


class RemoteServiceError(OfflineStoreError):
    """Raised when a call against the remote data service fails."""

    def __init__(
        self,
        table: str,
        operation: str,
        status_code: int | None = None,
        reason: str | None = None,
    ):
        details: dict = {"table": table, "operation": operation}
        if status_code is not None:
            details["status_code"] = status_code
        if reason:
            details["reason"] = reason
        message = f"Remote {operation} on {table} failed"
        if status_code is not None:
            message += f" ({status_code})"
        if reason:
            message += f": {reason}"
        super().__init__(message, details)
        self.table = table
        self.operation = operation
        self.status_code = status_code
        self.reason = reason


class AuthenticationError(RemoteServiceError):
    """Raised when the remote service rejects our credentials."""

    def __init__(self, table: str, operation: str, reason: str | None = None):
        super().__init__(table, operation, 401, reason or "not authenticated")


class PermissionDeniedError(RemoteServiceError):
    """Raised when the remote service denies access to a row or table."""

    def __init__(self, table: str, operation: str, reason: str | None = None):
        super().__init__(table, operation, 403, reason or "permission denied")


class DeleteNotAppliedError(RemoteServiceError):
    """Raised when a remote delete reported success but the row survived."""

    def __init__(self, table: str, record_id: str):
        super().__init__(table, "delete", None, f"row {record_id} still exists after delete")
        self.record_id = record_id


class AuthenticationRequiredError(OfflineStoreError):
    """Raised when an operation needs a signed-in user and none is cached."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class SyncError(OfflineStoreError):
    """Raised when synchronization fails as a whole."""

    def __init__(self, message: str, table: str | None = None, cause: Exception | None = None):
        details: dict = {}
        if table:
            details["table"] = table
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.table = table
        self.cause = cause
