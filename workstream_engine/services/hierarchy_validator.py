"""
HierarchyValidator — decides whether a parent edge may be committed.

Checks, in order:
  1. the candidate parent exists (PARENT_NOT_FOUND),
  2. attaching would not make the node its own ancestor (CIRCULAR_HIERARCHY),
  3. the deepest node of the attached subtree stays within the maximum
     depth (DEPTH_EXCEEDED).

Pure decision over a NodeStore; never writes. Expected violations come back
as a rejected ValidationResult. A cycle among existing links is reported as
STRUCTURAL_CORRUPTION so the caller fails closed.
"""

import logging

from workstream_engine.core.exceptions import StructuralCorruptionError
from workstream_engine.services.node_store import NodeStore
from workstream_engine.services.results import RejectionReason, ValidationResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 3


class HierarchyValidator:
    def __init__(self, nodes: NodeStore, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        self._nodes = nodes
        self.max_depth = max_depth

    def depth_exceeded_message(self) -> str:
        return f"Workstream hierarchy cannot exceed {self.max_depth} levels deep."

    def validate(self, candidate_parent_id, node_id=None) -> ValidationResult:
        """Validate attaching node_id under candidate_parent_id.

        node_id may name a node that does not exist yet (creation); the
        cycle check then has nothing to find. A None parent makes the node
        a root, which is always legal.
        """
        if candidate_parent_id is None:
            return ValidationResult.accept()

        if node_id is not None and candidate_parent_id == node_id:
            return ValidationResult.reject(
                RejectionReason.CIRCULAR_HIERARCHY,
                "A workstream cannot be its own parent.",
            )

        parent = self._nodes.get_node(candidate_parent_id)
        if parent is None:
            return ValidationResult.reject(
                RejectionReason.PARENT_NOT_FOUND,
                f"Parent workstream {candidate_parent_id!r} does not exist.",
            )

        # Walk upward from the candidate parent, counting hops to a root.
        parent_depth = 1
        seen = {candidate_parent_id}
        current = parent
        while current.parent_id is not None:
            next_id = current.parent_id
            if node_id is not None and next_id == node_id:
                return ValidationResult.reject(
                    RejectionReason.CIRCULAR_HIERARCHY,
                    "Cannot create circular workstream relationship.",
                )
            if next_id in seen:
                logger.error(
                    "Existing cycle found above %s while validating parent for %s",
                    candidate_parent_id, node_id,
                    extra={"workstream_id": node_id, "parent_id": candidate_parent_id,
                           "event_type": "structural_corruption"},
                )
                return ValidationResult.reject(
                    RejectionReason.STRUCTURAL_CORRUPTION,
                    "Existing workstream hierarchy contains a cycle.",
                )
            next_node = self._nodes.get_node(next_id)
            if next_node is None:
                break
            seen.add(next_id)
            parent_depth += 1
            current = next_node

        subtree_height = 1
        if node_id is not None and node_id in self._nodes:
            try:
                subtree_height = self._nodes.subtree_height(node_id)
            except StructuralCorruptionError:
                return ValidationResult.reject(
                    RejectionReason.STRUCTURAL_CORRUPTION,
                    "Existing workstream hierarchy contains a cycle.",
                )

        if parent_depth + subtree_height > self.max_depth:
            return ValidationResult.reject(
                RejectionReason.DEPTH_EXCEEDED,
                self.depth_exceeded_message(),
            )

        return ValidationResult.accept()
