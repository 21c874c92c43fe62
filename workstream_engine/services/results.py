"""Typed outcomes returned by the hierarchy and permission services."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class RejectionReason(str, Enum):
    CIRCULAR_HIERARCHY = "circular_hierarchy"
    DEPTH_EXCEEDED = "depth_exceeded"
    PARENT_NOT_FOUND = "parent_not_found"
    NODE_NOT_FOUND = "node_not_found"
    GRANT_NOT_FOUND = "grant_not_found"
    HAS_CHILDREN = "has_children"
    NOT_AUTHORIZED = "not_authorized"
    STRUCTURAL_CORRUPTION = "structural_corruption"


@dataclass(frozen=True)
class Rejected:
    """An operation that was refused and left the stores untouched."""

    reason: RejectionReason
    message: str

    def to_dict(self) -> dict:
        return {"reason": self.reason.value, "message": self.message}


@dataclass(frozen=True)
class ValidationResult:
    rejection: Rejected | None = None

    @property
    def ok(self) -> bool:
        return self.rejection is None

    @classmethod
    def accept(cls) -> "ValidationResult":
        return cls()

    @classmethod
    def reject(cls, reason: RejectionReason, message: str) -> "ValidationResult":
        return cls(rejection=Rejected(reason, message))


@dataclass(frozen=True)
class MutationResult:
    """Outcome of a create/move/delete/grant call: a value or a rejection."""

    value: Any = None
    rejection: Rejected | None = None

    @property
    def ok(self) -> bool:
        return self.rejection is None

    @classmethod
    def success(cls, value: Any = None) -> "MutationResult":
        return cls(value=value)

    @classmethod
    def rejected(cls, rejection: Rejected) -> "MutationResult":
        return cls(rejection=rejection)


@dataclass
class BulkUpdateResult:
    """Per-item outcome of a bulk update. Items never share fate."""

    updated: list = field(default_factory=list)
    denied: list = field(default_factory=list)
    missing: list = field(default_factory=list)

    @property
    def updated_count(self) -> int:
        return len(self.updated)

    def to_dict(self) -> dict:
        return {
            "updated_count": self.updated_count,
            "updated": list(self.updated),
            "denied": list(self.denied),
            "missing": list(self.missing),
        }
