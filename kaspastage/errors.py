"""Error types and message formatting for kaspastage.

Every domain error carries a stable ``kind`` string and a human-readable
message so presentation layers can render it without inspecting the class.

Error Style Guide:
- User-facing errors use 'Error: ' prefix
- Field errors use structured format: '<entity> field '<field>' <issue>'
- Use present tense: 'must be', 'is required'
- Include actionable hints where helpful
"""

from typing import Any


def format_error(message: str) -> str:
    """Format an error message with consistent prefix.

    Examples:
        >>> format_error("profile 'foo' not found")
        "Error: profile 'foo' not found"
    """
    return f"Error: {message}"


def format_field_error(entity: str, field: str, issue: str) -> str:
    """Format a field validation error with structured format.

    Examples:
        >>> format_field_error("Profile 'core'", "services", "must be an array")
        "Profile 'core' field 'services' must be an array"
    """
    return f"{entity} field '{field}' {issue}"


def format_suggestion(message: str, suggestion: str) -> str:
    """Format an error message with a helpful suggestion.

    Examples:
        >>> format_suggestion("no checkpoints recorded", "run 'kaspastage install' first")
        "Error: no checkpoints recorded. Hint: run 'kaspastage install' first"
    """
    return f"{format_error(message)}. Hint: {suggestion}"


class OrchestratorError(Exception):
    """Base class for all orchestration errors."""

    kind = "OrchestratorError"
    internal = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def details(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind, "message": self.message}
        data.update(self.details())
        if self.internal:
            data["internal"] = True
        return data


# Validation errors: detected before any execution, never retried.


class ValidationError(OrchestratorError):
    kind = "ValidationError"


class CatalogError(ValidationError):
    """The profile catalog itself is malformed."""

    kind = "CatalogError"


class UnknownProfile(ValidationError):
    kind = "UnknownProfile"

    def __init__(self, profile_id: str):
        super().__init__(f"profile '{profile_id}' not found")
        self.profile_id = profile_id

    def details(self) -> dict[str, Any]:
        return {"profile": self.profile_id}


class CircularDependency(ValidationError):
    kind = "CircularDependency"

    def __init__(self, cycle: list[str]):
        super().__init__(f"circular dependency: {' -> '.join(cycle)}")
        self.cycle = list(cycle)

    def details(self) -> dict[str, Any]:
        return {"cycle": self.cycle}


class ProfileConflict(ValidationError):
    kind = "ProfileConflict"

    def __init__(self, first: str, second: str):
        super().__init__(f"profile '{first}' conflicts with '{second}'")
        self.profiles = (first, second)

    def details(self) -> dict[str, Any]:
        return {"profiles": list(self.profiles)}


class PrerequisiteNotMet(ValidationError):
    kind = "PrerequisiteNotMet"

    def __init__(self, profile_id: str, group: list[str]):
        super().__init__(
            f"profile '{profile_id}' requires one of: {', '.join(group)}"
        )
        self.profile_id = profile_id
        self.group = list(group)

    def details(self) -> dict[str, Any]:
        return {"profile": self.profile_id, "group": self.group}


class ProfileInUse(ValidationError):
    kind = "ProfileInUse"

    def __init__(self, profile_id: str, dependents: list[str]):
        super().__init__(
            f"profile '{profile_id}' is required by: {', '.join(dependents)}"
        )
        self.profile_id = profile_id
        self.dependents = list(dependents)

    def details(self) -> dict[str, Any]:
        return {"profile": self.profile_id, "dependents": self.dependents}


class ProfileNotInstalled(ValidationError):
    kind = "ProfileNotInstalled"

    def __init__(self, profile_id: str):
        super().__init__(f"profile '{profile_id}' is not installed")
        self.profile_id = profile_id

    def details(self) -> dict[str, Any]:
        return {"profile": self.profile_id}


class InsufficientCapacity(ValidationError):
    """Raised only when the caller asks for capacity shortfalls to be fatal."""

    kind = "InsufficientCapacity"

    def __init__(self, warnings: list[str]):
        super().__init__("insufficient host capacity: " + "; ".join(warnings))
        self.warnings = list(warnings)

    def details(self) -> dict[str, Any]:
        return {"warnings": self.warnings}


# Run coordination


class RunAlreadyInProgress(OrchestratorError):
    kind = "RunAlreadyInProgress"

    def __init__(self, run_id: str | None = None):
        message = "another installation run is in progress"
        if run_id:
            message += f" ({run_id})"
        super().__init__(message)
        self.run_id = run_id


class RuntimeDriverError(OrchestratorError):
    """The container runtime rejected a launch, probe or stop request."""

    kind = "RuntimeDriverError"

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service

    def details(self) -> dict[str, Any]:
        return {"service": self.service}


class StopFailed(RuntimeDriverError):
    """A service could not be stopped; ``stopped`` lists those already stopped."""

    kind = "StopFailed"

    def __init__(self, service: str, cause: str, stopped: list[str]):
        OrchestratorError.__init__(self, f"stopping {service} failed: {cause}")
        self.service = service
        self.stopped = list(stopped)

    def details(self) -> dict[str, Any]:
        return {"service": self.service, "stopped": self.stopped}


# Rollback errors: reported directly, never ignored.


class RollbackError(OrchestratorError):
    kind = "RollbackError"


class NoCheckpointAvailable(RollbackError):
    kind = "NoCheckpointAvailable"

    def __init__(self):
        super().__init__("no earlier checkpoint is available to restore")


class CheckpointNotFound(RollbackError):
    kind = "CheckpointNotFound"

    def __init__(self, checkpoint_id: str):
        super().__init__(f"checkpoint '{checkpoint_id}' not found")
        self.checkpoint_id = checkpoint_id

    def details(self) -> dict[str, Any]:
        return {"checkpoint": self.checkpoint_id}


class CheckpointFormatError(RollbackError):
    kind = "CheckpointFormatError"


# Internal invariant violations: bugs, not user errors.


class InternalInvariantError(OrchestratorError):
    kind = "InternalInvariantError"
    internal = True


class UnplaceableService(InternalInvariantError):
    kind = "UnplaceableService"

    def __init__(self, services: list[str]):
        super().__init__(
            f"services could not be placed in any stage: {', '.join(services)}"
        )
        self.services = list(services)

    def details(self) -> dict[str, Any]:
        return {"services": self.services}


__all__ = [
    "format_error",
    "format_field_error",
    "format_suggestion",
    "OrchestratorError",
    "ValidationError",
    "CatalogError",
    "UnknownProfile",
    "CircularDependency",
    "ProfileConflict",
    "PrerequisiteNotMet",
    "ProfileInUse",
    "ProfileNotInstalled",
    "InsufficientCapacity",
    "RunAlreadyInProgress",
    "RuntimeDriverError",
    "StopFailed",
    "RollbackError",
    "NoCheckpointAvailable",
    "CheckpointNotFound",
    "CheckpointFormatError",
    "InternalInvariantError",
    "UnplaceableService",
]
