"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them
once and map each kind to a consistent HTTP status and error code.

Usage:
    from fieldops.core.exceptions import NotFoundError, GateNotSatisfiedError

    raise NotFoundError(resource="Project", resource_id=project_id)
    raise GateNotSatisfiedError("3 of 5 required checklist items complete (60%)")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Project", "ChecklistItem").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class InvalidReferenceError(Exception):
    """Raised when two entities that must be related are not.

    Example: a stage id that exists but belongs to a different project.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ValidationError(Exception):
    """Raised when a request body does not have the expected shape.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class GateNotSatisfiedError(Exception):
    """Raised when a stage approval is requested before its gate passes.

    The message names the shortfall; ``details`` carries the counts.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InsufficientRoleError(Exception):
    """Raised when the acting user's role is below the role an action needs."""

    def __init__(self, required: str, actual: str | None, action: str = "perform this action") -> None:
        self.required = required
        self.actual = actual
        self.details = {"required_role": required, "current_role": actual}
        super().__init__(f"Role '{required}' or higher is required to {action} (current: {actual or 'none'})")


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness rule.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")
