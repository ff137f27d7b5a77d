"""
Custom exception classes for the Project Online to Smartsheet migration tool.
"""

from __future__ import annotations


class MigrationError(Exception):
    """Base exception for migration errors."""


class ConfigurationError(MigrationError):
    """Raised when required settings are missing or invalid."""


class AuthError(MigrationError):
    """Base class for authentication failures."""


class AuthDeclinedError(AuthError):
    """Raised when the user declines the device authorization request."""


class AuthTimeoutError(AuthError):
    """Raised when the device code expires before the user approves it."""


class AuthExpiredError(AuthError):
    """Raised when the access token is no longer valid and cannot be silently renewed."""


class TransientError(MigrationError):
    """A failure that is expected to go away when the call is repeated."""


class HttpStatusError(MigrationError):
    """Raised for a non-successful HTTP response from either API."""

    def __init__(self, status: int, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(f"HTTP {status}: {message}")
        self.status: int = status
        self.retry_after: float | None = retry_after


class RetriesExhaustedError(MigrationError):
    """Raised when an operation kept failing transiently until the retry policy gave up."""

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(f"Giving up after {attempts} attempts: {last_error}")
        self.last_error: BaseException = last_error
        self.attempts: int = attempts


class DataIntegrityError(MigrationError):
    """Base class for source data that cannot be migrated as-is."""


class MalformedRecordError(DataIntegrityError):
    """Raised when a source record lacks required fields or has the wrong types."""


class MalformedHierarchyError(DataIntegrityError):
    """Raised when the task outline does not form a forest in extraction order."""


class DanglingReferenceError(DataIntegrityError):
    """Raised when a record references a task or resource outside the current batch."""


class WorkspaceStructureInvalidError(MigrationError):
    """Raised when a correlated workspace is missing one of its expected sheets."""


class PhaseError(MigrationError):
    """Wraps the cause of a failed migration together with the phase and progress reached."""

    def __init__(
        self,
        phase: str,
        cause: BaseException,
        *,
        state: str | None = None,
        workspace_id: int | None = None,
    ) -> None:
        detail = f"{phase} phase failed: {cause}"
        if workspace_id is not None:
            detail += f" (workspace {workspace_id} left at state {state}; re-run to resume)"
        super().__init__(detail)
        self.phase: str = phase
        self.cause: BaseException = cause
        self.state: str | None = state
        self.workspace_id: int | None = workspace_id
