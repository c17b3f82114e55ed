"""Shared exceptions for the version engine's service layer."""
from uuid import UUID


class VersioningError(Exception):
    """Base class for all version engine errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class NotFoundError(VersioningError):
    """Base for missing whiteboards, versions and rollbacks."""


class WhiteboardNotFoundError(NotFoundError):
    """Raised when a whiteboard doesn't exist or is soft-deleted."""

    def __init__(self, whiteboard_id: UUID) -> None:
        self.whiteboard_id = whiteboard_id
        super().__init__(f"Whiteboard not found: {whiteboard_id}")


class VersionNotFoundError(NotFoundError):
    """Raised when a version doesn't exist or belongs to another whiteboard."""

    def __init__(self, version_id: UUID) -> None:
        self.version_id = version_id
        super().__init__(f"Version not found: {version_id}")


class RollbackNotFoundError(NotFoundError):
    """Raised when a rollback record doesn't exist."""

    def __init__(self, rollback_id: UUID) -> None:
        self.rollback_id = rollback_id
        super().__init__(f"Rollback not found: {rollback_id}")


class CorruptHistoryError(VersioningError):
    """
    Raised when a version chain is missing data required for reconstruction.

    Examples: a delta version without a parent, a snapshot without payload,
    or a parent pointer to a version that no longer exists.
    """

    def __init__(self, version_id: UUID, reason: str) -> None:
        self.version_id = version_id
        self.reason = reason
        super().__init__(f"Corrupt history at version {version_id}: {reason}")


class HistoryDepthExceededError(CorruptHistoryError):
    """Raised when a chain is longer than the configured reconstruction ceiling."""

    def __init__(self, version_id: UUID, max_depth: int) -> None:
        self.max_depth = max_depth
        super().__init__(version_id, f"chain exceeds {max_depth} versions without a snapshot")


class CyclicHistoryError(VersioningError):
    """Raised when a version appears as its own ancestor."""

    def __init__(self, version_id: UUID) -> None:
        self.version_id = version_id
        super().__init__(f"Cycle detected in version history at version {version_id}")


class PatchApplicationFailedError(VersioningError):
    """
    Raised when a delta operation can be applied neither as a patch nor by replacement.

    The codec raises it without a version; the reconstructor re-raises it
    naming the version whose delta failed.
    """

    def __init__(
        self,
        operation_type: str,
        element_id: str | None,
        reason: str,
        version_id: UUID | None = None,
        version_number: int | None = None,
    ) -> None:
        self.operation_type = operation_type
        self.element_id = element_id
        self.reason = reason
        self.version_id = version_id
        self.version_number = version_number
        location = f" in version {version_number} ({version_id})" if version_id else ""
        super().__init__(
            f"Failed to apply delta operation {operation_type} "
            f"for element {element_id}{location}: {reason}",
        )


class TransactionFailedError(VersioningError):
    """Raised when a rollback's state replacement was aborted."""

    def __init__(self, rollback_id: UUID, reason: str) -> None:
        self.rollback_id = rollback_id
        self.reason = reason
        super().__init__(f"Rollback {rollback_id} failed: {reason}")


class VersionValidationError(VersioningError):
    """Raised for malformed filters or request parameters, before any I/O."""


class OperationTimeoutError(VersioningError):
    """Raised when reconstruction or a rollback transaction exceeds its time bound."""

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(f"{operation} exceeded its {timeout_seconds:g}s time limit")


class InvalidStateError(VersioningError):
    """
    Raised when an operation is invalid for a resource's current state.

    Used when resolving a rollback that is not awaiting conflict resolution.
    """
