"""
Engine-wide exception hierarchy.

Why this module exists:
  Expected hierarchy violations are returned as typed results from the
  services, not raised. The exceptions below cover the rest: malformed
  input, failed lookups, duplicate ids and corrupt parent links found
  mid-walk.

Usage:
    from workstream_engine.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Workstream", resource_id="ws-1")
    raise ValidationError("Unknown permission level", details={"level": "owner"})
"""


class NotFoundError(Exception):
    """Raised when a requested workstream or grant does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Workstream", "PermissionGrant").
        resource_id: The identifier that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input to the engine is malformed.

    Distinct from a hierarchy rejection: the data could not even be
    interpreted (e.g. an unknown permission level string).

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when creating a record whose identifier is already taken.

    Args:
        resource: Entity name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class StructuralCorruptionError(Exception):
    """Raised when a walk over existing parent links revisits a node.

    A valid store never contains a cycle. Seeing one means the data was
    written around the validator, so the current operation must stop
    instead of looping.

    Args:
        node_id: The node whose walk hit the cycle.
        path: Ids visited before the repeat, in walk order.
    """

    def __init__(self, node_id, path: list | None = None) -> None:
        self.node_id = node_id
        self.path = list(path or [])
        super().__init__(
            f"Cycle detected in workstream hierarchy while walking from {node_id!r}: "
            f"{' -> '.join(str(p) for p in self.path)}"
        )
