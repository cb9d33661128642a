"""Error taxonomy returned to callers of the conflict engine.

Every error carries a stable ``kind``, a human-readable message and,
where one applies, the id of the conflict the operation targeted.
"""

from __future__ import annotations

from typing import Any


class ConflictEngineError(Exception):
    """Base class for all engine errors.

    Attributes:
        kind: Stable machine-readable error kind.
        message: Human-readable description.
        conflict_id: Conflict the failing operation targeted, if any.
    """

    kind = "engine_error"

    def __init__(self, message: str, conflict_id: str | None = None) -> None:
        self.message = message
        self.conflict_id = conflict_id
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "conflict_id": self.conflict_id}


class ValidationError(ConflictEngineError):
    """Malformed input. Raised before anything is applied."""

    kind = "validation_error"


class NotFoundError(ConflictEngineError):
    """Unknown conflict, resolution, cluster or export id."""

    kind = "not_found"

    def __init__(self, resource: str, resource_id: str, conflict_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        if conflict_id is None and resource == "conflict":
            conflict_id = resource_id
        super().__init__(f"{resource} {resource_id} not found", conflict_id)


class StateConflictError(ConflictEngineError):
    """Operation is invalid for the conflict's current status."""

    kind = "state_conflict"

    def __init__(
        self,
        message: str,
        conflict_id: str | None = None,
        current_status: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.current_status = current_status
        self.operation = operation
        super().__init__(message, conflict_id)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["current_status"] = self.current_status
        return data


class InvalidTransitionError(StateConflictError):
    """Raised when a status transition is not allowed by the state machine."""

    def __init__(self, from_status: str, to_status: str, conflict_id: str | None = None) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition: {from_status} → {to_status}",
            conflict_id=conflict_id,
            current_status=str(from_status),
            operation=f"transition:{to_status}",
        )


class GenerationError(ConflictEngineError):
    """The generative capability failed or returned unusable output.

    Attributes:
        transient: Whether a retry may succeed.
        attempts: Number of attempts made before giving up.
    """

    kind = "generation_error"
    transient = False

    def __init__(self, message: str, conflict_id: str | None = None, attempts: int = 1) -> None:
        self.attempts = attempts
        super().__init__(message, conflict_id)


class GenerationTimeoutError(GenerationError):
    """The generative capability did not answer in time."""

    transient = True


class GenerationRateLimitError(GenerationError):
    """The generative capability throttled the request."""

    transient = True

    def __init__(self, message: str = "", retry_after: float | None = None, conflict_id: str | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(message or "Generation rate limited", conflict_id)


class GenerationUnavailableError(GenerationError):
    """The generative capability failed on its side (HTTP 5xx or overloaded)."""

    transient = True

    def __init__(self, message: str, conflict_id: str | None = None, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message, conflict_id)


class MalformedGenerationError(GenerationError):
    """The generative capability answered with empty or unparseable output."""


class ConcurrencyError(ConflictEngineError):
    """Lost the single-writer race for a conflict id. Retry the whole operation."""

    kind = "concurrency_error"


class OperationTimeoutError(ConflictEngineError):
    """A caller-supplied timeout elapsed before the operation committed."""

    kind = "timeout"

    def __init__(self, operation: str, timeout: float, conflict_id: str | None = None) -> None:
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout:.2f}s", conflict_id)
