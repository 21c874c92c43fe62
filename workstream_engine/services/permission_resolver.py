"""
PermissionResolver — per-user access decisions over the workstream tree.

Resolution for (user, workstream, required level):
  1. the node owner holds every level (ownership implies admin);
  2. every grant on the node itself contributes, whatever its scope;
  3. every ancestor grant with scope node_and_descendants contributes;
     node_only grants on ancestors contribute nothing;
  4. the effective level is the maximum contribution, and access is
     granted iff it is at least the required level.

Deny-by-default: no contributions means no access. Each public call reads
one snapshot of both stores, so a concurrent move is seen either entirely
or not at all. A cycle found while walking ancestors is logged and denied.
"""

import logging
from dataclasses import dataclass, field

from workstream_engine.core.exceptions import StructuralCorruptionError
from workstream_engine.services.grant_store import (
    GrantStore,
    PermissionGrant,
    PermissionLevel,
)
from workstream_engine.services.node_store import NodeStore

logger = logging.getLogger(__name__)

ALL_LEVELS = frozenset(PermissionLevel)


@dataclass(frozen=True)
class InheritedGrant:
    grant: PermissionGrant
    inherited_from: object

    def to_dict(self) -> dict:
        data = self.grant.to_dict()
        data["inherited_from_workstream_id"] = self.inherited_from
        return data


@dataclass(frozen=True)
class EffectivePermissions:
    """Everything that contributed to a user's access on one workstream."""

    workstream_id: object
    user_id: object
    is_owner: bool = False
    owns_ancestor: bool = False
    direct: tuple = ()
    inherited: tuple = ()
    levels: frozenset = field(default_factory=frozenset)

    @property
    def max_level(self) -> PermissionLevel | None:
        return max(self.levels) if self.levels else None

    def to_dict(self) -> dict:
        return {
            "workstream_id": self.workstream_id,
            "user_id": self.user_id,
            "is_owner": self.is_owner,
            "owns_ancestor": self.owns_ancestor,
            "direct_permissions": [g.to_dict() for g in self.direct],
            "inherited_permissions": [g.to_dict() for g in self.inherited],
            "effective_permissions": [lvl.label for lvl in sorted(self.levels)],
        }


class PermissionResolver:
    def __init__(self, nodes: NodeStore, grants: GrantStore) -> None:
        self._nodes = nodes
        self._grants = grants

    def _views(self) -> tuple[NodeStore, GrantStore]:
        # Same lock order as the mutator: a delete is seen whole or not at all.
        with self._nodes.transaction(), self._grants.transaction():
            return self._nodes.snapshot(), self._grants.snapshot()

    # ── Internal evaluation over a fixed snapshot ────────────────────────

    @staticmethod
    def _explain(nodes: NodeStore, grants: GrantStore, user_id, workstream_id) -> EffectivePermissions:
        node = nodes.get_node(workstream_id)
        if node is None:
            logger.debug(
                "Access check on unknown workstream %s",
                workstream_id,
                extra={"workstream_id": workstream_id, "user_id": user_id},
            )
            return EffectivePermissions(workstream_id=workstream_id, user_id=user_id)

        is_owner = node.owner_id == user_id
        direct = tuple(grants.get_grants_for_user(workstream_id, user_id))

        try:
            ancestors = nodes.ancestors(workstream_id)
        except StructuralCorruptionError:
            logger.error(
                "Denying access to %s for %s: ancestor chain is corrupt",
                workstream_id, user_id,
                extra={"workstream_id": workstream_id, "user_id": user_id,
                       "event_type": "structural_corruption"},
            )
            if is_owner:
                return EffectivePermissions(
                    workstream_id=workstream_id, user_id=user_id,
                    is_owner=True, direct=direct, levels=ALL_LEVELS,
                )
            return EffectivePermissions(workstream_id=workstream_id, user_id=user_id)

        owns_ancestor = any(a.owner_id == user_id for a in ancestors)
        inherited = tuple(
            InheritedGrant(grant=g, inherited_from=ancestor.id)
            for ancestor in ancestors
            for g in grants.get_grants_for_user(ancestor.id, user_id)
            if g.cascades
        )

        if is_owner:
            levels = ALL_LEVELS
        else:
            contributions = [g.level for g in direct] + [i.grant.level for i in inherited]
            levels = frozenset(max(contributions).implied()) if contributions else frozenset()

        return EffectivePermissions(
            workstream_id=workstream_id,
            user_id=user_id,
            is_owner=is_owner,
            owns_ancestor=owns_ancestor,
            direct=direct,
            inherited=inherited,
            levels=levels,
        )

    @classmethod
    def _decide(cls, nodes, grants, user_id, workstream_id, required: PermissionLevel) -> bool:
        node = nodes.get_node(workstream_id)
        if node is None:
            return False
        if node.owner_id == user_id:
            return True
        effective = cls._explain(nodes, grants, user_id, workstream_id).max_level
        return effective is not None and effective >= required

    # ── Public API ───────────────────────────────────────────────────────

    def explain(self, user_id, workstream_id) -> EffectivePermissions:
        """Direct, inherited and effective permissions of user_id on a node."""
        nodes, grants = self._views()
        return self._explain(nodes, grants, user_id, workstream_id)

    def effective_levels(self, user_id, workstream_id) -> set[PermissionLevel]:
        return set(self.explain(user_id, workstream_id).levels)

    def has_access(self, user_id, workstream_id, required_level) -> bool:
        required = PermissionLevel.parse(required_level)
        nodes, grants = self._views()
        return self._decide(nodes, grants, user_id, workstream_id, required)

    def check_many(self, user_id, workstream_ids, required_level) -> dict:
        """Decide each id independently against one snapshot."""
        required = PermissionLevel.parse(required_level)
        nodes, grants = self._views()
        return {
            ws_id: self._decide(nodes, grants, user_id, ws_id, required)
            for ws_id in workstream_ids
        }

    def can_grant_permissions(self, user_id, workstream_id) -> bool:
        """Owner, admin on the node, or owner of any ancestor."""
        report = self.explain(user_id, workstream_id)
        if report.is_owner or report.owns_ancestor:
            return True
        return PermissionLevel.ADMIN in report.levels

    def accessible_ids(self, user_id, required_level=PermissionLevel.VIEW) -> list:
        """Every workstream id user_id may reach at required_level."""
        required = PermissionLevel.parse(required_level)
        nodes, grants = self._views()
        return [
            node.id
            for node in nodes.all_nodes()
            if self._decide(nodes, grants, user_id, node.id, required)
        ]
