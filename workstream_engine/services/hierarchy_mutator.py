"""
HierarchyMutator — create, move, update and delete workstreams.

Every structural write runs validate-then-commit inside one store
transaction, so two concurrent moves cannot both pass validation and jointly
produce a cycle or an over-deep branch. A rejected call leaves the stores
exactly as they were.

The acting user id is passed explicitly on every call. The mutator does not
decide which level an operation needs; callers pass required_level where a
check applies (bulk updates).
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Hashable, Iterable, Mapping

from workstream_engine.services.grant_store import GrantStore, PermissionLevel
from workstream_engine.services.hierarchy_validator import (
    DEFAULT_MAX_DEPTH,
    HierarchyValidator,
)
from workstream_engine.services.node_store import (
    MUTABLE_FIELDS,
    NodeStore,
    WorkstreamNode,
)
from workstream_engine.services.permission_resolver import PermissionResolver
from workstream_engine.services.results import (
    BulkUpdateResult,
    MutationResult,
    Rejected,
    RejectionReason,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeSpec:
    """Input for create_node. A missing id is generated as a uuid4 string."""

    owner_id: Any
    parent_id: Hashable | None = None
    id: Hashable | None = None
    name: str | None = None
    type: str | None = None
    status: str | None = None


class HierarchyMutator:
    def __init__(
        self,
        nodes: NodeStore,
        grants: GrantStore,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self._nodes = nodes
        self._grants = grants
        self.validator = HierarchyValidator(nodes, max_depth=max_depth)
        self.resolver = PermissionResolver(nodes, grants)

    def _reject(self, action: str, user_id, node_id, rejection: Rejected) -> MutationResult:
        logger.info(
            "Workstream %s rejected for %s: %s",
            action, node_id, rejection.reason.value,
            extra={"workstream_id": node_id, "user_id": user_id,
                   "reason": rejection.reason.value, "event_type": f"workstream.{action}"},
        )
        return MutationResult.rejected(rejection)

    # ── Create ───────────────────────────────────────────────────────────

    def create_node(self, user_id, spec: NodeSpec) -> MutationResult:
        node = WorkstreamNode(
            id=spec.id if spec.id is not None else str(uuid.uuid4()),
            owner_id=spec.owner_id,
            parent_id=spec.parent_id,
            name=spec.name,
            type=spec.type,
            status=spec.status,
        )
        with self._nodes.transaction():
            verdict = self.validator.validate(node.parent_id, node.id)
            if not verdict.ok:
                return self._reject("create", user_id, node.id, verdict.rejection)
            self._nodes.create_node(node)

        logger.info(
            "Workstream %s created under %s",
            node.id, node.parent_id,
            extra={"workstream_id": node.id, "parent_id": node.parent_id,
                   "user_id": user_id, "event_type": "workstream.create"},
        )
        return MutationResult.success(node)

    # ── Move ─────────────────────────────────────────────────────────────

    def move_node(self, user_id, node_id, new_parent_id) -> MutationResult:
        """Reassign the parent of node_id. Subtree depth is derived, so it
        follows the move without a separate rewrite."""
        with self._nodes.transaction():
            if node_id not in self._nodes:
                return self._reject(
                    "move", user_id, node_id,
                    Rejected(RejectionReason.NODE_NOT_FOUND, f"Workstream {node_id!r} does not exist."),
                )
            verdict = self.validator.validate(new_parent_id, node_id)
            if not verdict.ok:
                return self._reject("move", user_id, node_id, verdict.rejection)
            moved = self._nodes.update_parent(node_id, new_parent_id)

        logger.info(
            "Workstream %s moved under %s",
            node_id, new_parent_id,
            extra={"workstream_id": node_id, "parent_id": new_parent_id,
                   "user_id": user_id, "event_type": "workstream.move"},
        )
        return MutationResult.success(moved)

    # ── Delete ───────────────────────────────────────────────────────────

    def can_delete(self, node_id) -> bool:
        """True iff the node exists and has no direct children."""
        return node_id in self._nodes and not self._nodes.has_children(node_id)

    def delete_node(self, user_id, node_id) -> MutationResult:
        """Remove a childless node together with the grants attached to it."""
        with self._nodes.transaction(), self._grants.transaction():
            if node_id not in self._nodes:
                return self._reject(
                    "delete", user_id, node_id,
                    Rejected(RejectionReason.NODE_NOT_FOUND, f"Workstream {node_id!r} does not exist."),
                )
            if self._nodes.has_children(node_id):
                return self._reject(
                    "delete", user_id, node_id,
                    Rejected(
                        RejectionReason.HAS_CHILDREN,
                        "Cannot delete workstream with child workstreams. "
                        "Move or delete children first.",
                    ),
                )
            removed = self._nodes.delete_node(node_id)
            self._grants.delete_for_workstream(node_id)

        logger.info(
            "Workstream %s deleted",
            node_id,
            extra={"workstream_id": node_id, "user_id": user_id, "event_type": "workstream.delete"},
        )
        return MutationResult.success(removed)

    # ── Bulk update ──────────────────────────────────────────────────────

    def bulk_update(
        self,
        user_id,
        node_ids: Iterable,
        changes: Mapping,
        required_level=PermissionLevel.EDIT,
    ) -> BulkUpdateResult:
        """Apply non-structural field changes node by node.

        Each id is authorised on its own; a denial or a missing id never
        affects the others.
        """
        unknown = set(changes) - set(MUTABLE_FIELDS)
        if unknown:
            raise ValueError(f"bulk_update only changes {MUTABLE_FIELDS}, got {sorted(unknown)}")

        result = BulkUpdateResult()
        ids = list(dict.fromkeys(node_ids))
        with self._nodes.transaction():
            decisions = self.resolver.check_many(user_id, ids, required_level)
            for node_id in ids:
                if node_id not in self._nodes:
                    result.missing.append(node_id)
                    continue
                if not decisions[node_id]:
                    logger.debug(
                        "Bulk update denied on %s for %s",
                        node_id, user_id,
                        extra={"workstream_id": node_id, "user_id": user_id,
                               "reason": RejectionReason.NOT_AUTHORIZED.value},
                    )
                    result.denied.append(node_id)
                    continue
                updated = self._nodes.update_fields(node_id, **changes)
                result.updated.append(updated.id)

        logger.info(
            "Bulk update by %s: %d updated, %d denied, %d missing",
            user_id, len(result.updated), len(result.denied), len(result.missing),
            extra={"user_id": user_id, "event_type": "workstream.bulk_update"},
        )
        return result
