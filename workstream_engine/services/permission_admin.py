"""Grant and revoke workstream permissions on behalf of an acting user."""

import logging

from workstream_engine.services.grant_store import (
    GrantScope,
    GrantStore,
    PermissionGrant,
    PermissionLevel,
)
from workstream_engine.services.node_store import NodeStore
from workstream_engine.services.permission_resolver import PermissionResolver
from workstream_engine.services.results import MutationResult, Rejected, RejectionReason

logger = logging.getLogger(__name__)


class PermissionAdministrator:
    def __init__(self, nodes: NodeStore, grants: GrantStore) -> None:
        self._nodes = nodes
        self._grants = grants
        self.resolver = PermissionResolver(nodes, grants)

    def _denied(self, acting_user_id, workstream_id) -> MutationResult:
        logger.info(
            "User %s may not manage permissions on %s",
            acting_user_id, workstream_id,
            extra={"user_id": acting_user_id, "workstream_id": workstream_id,
                   "reason": RejectionReason.NOT_AUTHORIZED.value},
        )
        return MutationResult.rejected(
            Rejected(RejectionReason.NOT_AUTHORIZED, "Not allowed to manage permissions on this workstream.")
        )

    def grant(
        self,
        acting_user_id,
        workstream_id,
        user_id,
        level,
        scope=GrantScope.NODE_ONLY,
    ) -> MutationResult:
        """Create a grant, or return the identical one already present."""
        level = PermissionLevel.parse(level)
        scope = GrantScope.parse(scope)
        with self._nodes.transaction(), self._grants.transaction():
            if workstream_id not in self._nodes:
                return MutationResult.rejected(
                    Rejected(RejectionReason.NODE_NOT_FOUND, f"Workstream {workstream_id!r} does not exist.")
                )
            if not self.resolver.can_grant_permissions(acting_user_id, workstream_id):
                return self._denied(acting_user_id, workstream_id)

            candidate = PermissionGrant(
                id=None, workstream_id=workstream_id, user_id=user_id,
                level=level, scope=scope, granted_by=acting_user_id,
            )
            existing = self._grants.find_identical(candidate)
            if existing is not None:
                return MutationResult.success(existing)
            grant = self._grants.create_grant(
                workstream_id, user_id, level, scope, granted_by=acting_user_id,
            )

        logger.info(
            "Granted %s (%s) on %s to %s",
            level.label, scope.value, workstream_id, user_id,
            extra={"workstream_id": workstream_id, "user_id": acting_user_id,
                   "event_type": "permission.grant"},
        )
        return MutationResult.success(grant)

    def revoke(self, acting_user_id, grant_id) -> MutationResult:
        with self._nodes.transaction(), self._grants.transaction():
            grant = self._grants.get_grant(grant_id)
            if grant is None:
                return MutationResult.rejected(
                    Rejected(RejectionReason.GRANT_NOT_FOUND, f"Permission grant {grant_id!r} does not exist.")
                )
            if not self.resolver.can_grant_permissions(acting_user_id, grant.workstream_id):
                return self._denied(acting_user_id, grant.workstream_id)
            self._grants.delete_grant(grant_id)

        logger.info(
            "Revoked grant %s on %s",
            grant_id, grant.workstream_id,
            extra={"workstream_id": grant.workstream_id, "user_id": acting_user_id,
                   "event_type": "permission.revoke"},
        )
        return MutationResult.success(grant)
