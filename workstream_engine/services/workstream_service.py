"""
Workstream Service — database-backed entry point for the hierarchy engine.

Each call loads a NodeStore/GrantStore snapshot from the workstreams and
workstream_permissions tables inside the current session transaction, runs
the engine, and writes the outcome back:

  - writes lock the workstream rows (FOR UPDATE where the dialect supports
    it) so validate-then-write is one unit; a rejection rolls back;
  - reads build both stores from the same transaction, so a concurrent move
    is either fully visible or not at all;
  - access decisions are cached per (user, workstream, level) for
    PERMISSION_CACHE_TTL seconds; any structural or grant write clears the
    whole cache, since a move or cascading grant can change decisions on an
    entire subtree.

The acting user id is always an explicit argument.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Iterable, Mapping, Optional

from flask import current_app
from sqlalchemy import or_

from workstream_engine.core.exceptions import NotFoundError
from workstream_engine.models import db
from workstream_engine.models.workstream import Workstream, WorkstreamPermission
from workstream_engine.services.grant_store import (
    GrantScope,
    GrantStore,
    PermissionGrant,
    PermissionLevel,
)
from workstream_engine.services.hierarchy_mutator import HierarchyMutator, NodeSpec
from workstream_engine.services.hierarchy_validator import DEFAULT_MAX_DEPTH
from workstream_engine.services.node_store import NodeStore, WorkstreamNode
from workstream_engine.services.permission_admin import PermissionAdministrator
from workstream_engine.services.permission_resolver import (
    EffectivePermissions,
    PermissionResolver,
)
from workstream_engine.services.results import BulkUpdateResult, MutationResult
from workstream_engine.services.rollup import RollupAggregator

logger = logging.getLogger(__name__)

# Cache key: (user_id, workstream_id, level)
_decision_cache: dict[tuple[str, str, int], tuple[float, bool]] = {}
_cache_lock = threading.Lock()


def _cache_ttl() -> int:
    return current_app.config.get("PERMISSION_CACHE_TTL", 300)


def _max_depth() -> int:
    return current_app.config.get("MAX_HIERARCHY_DEPTH", DEFAULT_MAX_DEPTH)


def _get_cached(key) -> Optional[bool]:
    ttl = _cache_ttl()
    if ttl <= 0:
        return None
    with _cache_lock:
        entry = _decision_cache.get(key)
        if entry is None:
            return None
        cached_at, allowed = entry
        if time.time() - cached_at > ttl:
            del _decision_cache[key]
            return None
        return allowed


def _set_cached(key, allowed: bool) -> None:
    if _cache_ttl() <= 0:
        return
    with _cache_lock:
        _decision_cache[key] = (time.time(), allowed)


def invalidate_all_cache() -> None:
    with _cache_lock:
        _decision_cache.clear()


# ── Row ↔ engine mapping ─────────────────────────────────────────────────


def _node_from_row(row: Workstream) -> WorkstreamNode:
    return WorkstreamNode(
        id=row.id,
        owner_id=row.owner_id,
        parent_id=row.parent_id,
        name=row.name,
        type=row.type,
        status=row.status,
    )


def _grant_from_row(row: WorkstreamPermission) -> PermissionGrant:
    return PermissionGrant(
        id=row.id,
        workstream_id=row.workstream_id,
        user_id=row.user_id,
        level=PermissionLevel.parse(row.permission_type),
        scope=GrantScope.parse(row.scope),
        granted_by=row.granted_by,
    )


def load_node_store(*, for_update: bool = False) -> NodeStore:
    query = Workstream.query
    if for_update:
        query = query.with_for_update()
    return NodeStore(_node_from_row(r) for r in query.all())


def load_grant_store(*user_ids, grant_ids: Iterable = ()) -> GrantStore:
    """Grants held by user_ids, plus any grant whose id is in grant_ids."""
    query = WorkstreamPermission.query
    conditions = []
    if user_ids:
        conditions.append(WorkstreamPermission.user_id.in_(user_ids))
    grant_ids = list(grant_ids)
    if grant_ids:
        conditions.append(WorkstreamPermission.id.in_(grant_ids))
    if conditions:
        query = query.filter(or_(*conditions))
    return GrantStore(_grant_from_row(r) for r in query.all())


def _require_row(workstream_id) -> Workstream:
    row = db.session.get(Workstream, workstream_id)
    if row is None:
        raise NotFoundError(resource="Workstream", resource_id=workstream_id)
    return row


@contextmanager
def _unit_of_work():
    """Roll back the session if the block raises."""
    try:
        yield
    except Exception:
        db.session.rollback()
        raise


def _sync_depths(nodes: NodeStore, root_id) -> None:
    """Rewrite the cached hierarchy_depth column for root_id's subtree."""
    ids = [root_id] + nodes.descendant_ids(root_id)
    rows = Workstream.query.filter(Workstream.id.in_(ids)).all()
    for row in rows:
        row.hierarchy_depth = nodes.depth(row.id)


# ── Structural writes ────────────────────────────────────────────────────


def create_workstream(acting_user_id, data: Mapping) -> MutationResult:
    """Create a workstream. The owner defaults to the acting user."""
    with _unit_of_work():
        nodes = load_node_store(for_update=True)
        mutator = HierarchyMutator(nodes, GrantStore(), max_depth=_max_depth())
        result = mutator.create_node(
            acting_user_id,
            NodeSpec(
                id=data.get("id"),
                owner_id=data.get("owner_id", acting_user_id),
                parent_id=data.get("parent_id"),
                name=data.get("name", ""),
                type=data.get("type"),
                status=data.get("status", "draft"),
            ),
        )
        if not result.ok:
            db.session.rollback()
            return result

        node = result.value
        row = Workstream(
            id=node.id,
            parent_id=node.parent_id,
            owner_id=node.owner_id,
            name=node.name or "",
            type=node.type,
            status=node.status,
            hierarchy_depth=nodes.depth(node.id),
        )
        db.session.add(row)
        db.session.commit()
    invalidate_all_cache()
    return MutationResult.success(row)


def move_workstream(acting_user_id, workstream_id, new_parent_id) -> MutationResult:
    with _unit_of_work():
        nodes = load_node_store(for_update=True)
        mutator = HierarchyMutator(nodes, GrantStore(), max_depth=_max_depth())
        result = mutator.move_node(acting_user_id, workstream_id, new_parent_id)
        if not result.ok:
            db.session.rollback()
            return result

        row = _require_row(workstream_id)
        row.parent_id = new_parent_id
        _sync_depths(nodes, workstream_id)
        db.session.commit()
    invalidate_all_cache()
    return MutationResult.success(row)


def can_delete_workstream(workstream_id) -> bool:
    _require_row(workstream_id)
    return not db.session.query(
        Workstream.query.filter_by(parent_id=workstream_id).exists()
    ).scalar()


def delete_workstream(acting_user_id, workstream_id) -> MutationResult:
    with _unit_of_work():
        nodes = load_node_store(for_update=True)
        mutator = HierarchyMutator(nodes, GrantStore(), max_depth=_max_depth())
        result = mutator.delete_node(acting_user_id, workstream_id)
        if not result.ok:
            db.session.rollback()
            return result

        row = _require_row(workstream_id)
        WorkstreamPermission.query.filter_by(workstream_id=workstream_id).delete()
        db.session.delete(row)
        db.session.commit()
    invalidate_all_cache()
    return result


def bulk_update_workstreams(
    acting_user_id,
    workstream_ids: Iterable,
    updates: Mapping,
    required_level=PermissionLevel.EDIT,
) -> BulkUpdateResult:
    """Update name/type/status on many workstreams, authorising each one."""
    with _unit_of_work():
        nodes = load_node_store(for_update=True)
        grants = load_grant_store(acting_user_id)
        mutator = HierarchyMutator(nodes, grants, max_depth=_max_depth())
        result = mutator.bulk_update(acting_user_id, workstream_ids, updates, required_level)
        if result.updated:
            rows = Workstream.query.filter(Workstream.id.in_(result.updated)).all()
            for row in rows:
                for field, value in updates.items():
                    setattr(row, field, value)
        db.session.commit()
    return result


# ── Grants ───────────────────────────────────────────────────────────────


def grant_permission(
    acting_user_id,
    workstream_id,
    user_id,
    permission_type,
    scope=GrantScope.NODE_ONLY,
) -> MutationResult:
    """Grant a permission; the stored row is the result value."""
    with _unit_of_work():
        nodes = load_node_store(for_update=True)
        grants = load_grant_store(acting_user_id, user_id)
        existing_ids = {g.id for g in grants.get_grants(workstream_id)}
        admin = PermissionAdministrator(nodes, grants)
        result = admin.grant(acting_user_id, workstream_id, user_id, permission_type, scope)
        if not result.ok:
            db.session.rollback()
            return result

        grant = result.value
        if grant.id in existing_ids:
            db.session.rollback()
            return MutationResult.success(db.session.get(WorkstreamPermission, grant.id))

        row = WorkstreamPermission(
            workstream_id=grant.workstream_id,
            user_id=grant.user_id,
            permission_type=grant.level.label,
            scope=grant.scope.value,
            granted_by=grant.granted_by,
        )
        db.session.add(row)
        db.session.commit()
    invalidate_all_cache()
    return MutationResult.success(row)


def revoke_permission(acting_user_id, grant_id) -> MutationResult:
    with _unit_of_work():
        nodes = load_node_store(for_update=True)
        grants = load_grant_store(acting_user_id, grant_ids=[grant_id])
        admin = PermissionAdministrator(nodes, grants)
        result = admin.revoke(acting_user_id, grant_id)
        if not result.ok:
            db.session.rollback()
            return result

        WorkstreamPermission.query.filter_by(id=grant_id).delete()
        db.session.commit()
    invalidate_all_cache()
    return result


# ── Reads ────────────────────────────────────────────────────────────────


def _resolver_for(user_id) -> PermissionResolver:
    return PermissionResolver(load_node_store(), load_grant_store(user_id))


def has_access(user_id, workstream_id, required_level) -> bool:
    required = PermissionLevel.parse(required_level)
    key = (str(user_id), str(workstream_id), int(required))
    cached = _get_cached(key)
    if cached is not None:
        return cached
    allowed = _resolver_for(user_id).has_access(user_id, workstream_id, required)
    _set_cached(key, allowed)
    return allowed


def get_effective_permissions(user_id, workstream_id) -> EffectivePermissions:
    _require_row(workstream_id)
    return _resolver_for(user_id).explain(user_id, workstream_id)


def can_grant_permissions(user_id, workstream_id) -> bool:
    return _resolver_for(user_id).can_grant_permissions(user_id, workstream_id)


def get_accessible_workstreams(user_id, required_level=PermissionLevel.VIEW) -> list[Workstream]:
    return list_workstreams(user_id, required_level=required_level)


def get_hierarchy(user_id, workstream_id) -> Optional[dict]:
    """Nested tree under workstream_id, or None without view access."""
    _require_row(workstream_id)
    nodes = load_node_store()
    resolver = PermissionResolver(nodes, load_grant_store(user_id))
    if not resolver.has_access(user_id, workstream_id, PermissionLevel.VIEW):
        return None
    return RollupAggregator(nodes).build_tree(workstream_id).to_dict()


def get_rollup_report(user_id, workstream_id, metrics: Mapping | None = None) -> Optional[dict]:
    """Rollup over workstream_id's subtree, or None without view access."""
    _require_row(workstream_id)
    nodes = load_node_store()
    resolver = PermissionResolver(nodes, load_grant_store(user_id))
    if not resolver.has_access(user_id, workstream_id, PermissionLevel.VIEW):
        return None
    return RollupAggregator(nodes).rollup(workstream_id, metrics).to_dict()


def get_workstream(user_id, workstream_id, required_level=PermissionLevel.VIEW) -> Optional[Workstream]:
    """The row, or None when user_id lacks required_level on it."""
    row = _require_row(workstream_id)
    if not has_access(user_id, workstream_id, required_level):
        return None
    return row


def update_workstream(acting_user_id, workstream_id, updates: Mapping) -> Optional[Workstream]:
    """Change name/type/status on one workstream; None without edit access."""
    _require_row(workstream_id)
    result = bulk_update_workstreams(acting_user_id, [workstream_id], updates)
    if not result.updated:
        return None
    return db.session.get(Workstream, workstream_id)


def list_workstreams(
    user_id,
    *,
    type: str | None = None,
    status: str | None = None,
    depth: int | None = None,
    roots_only: bool = False,
    required_level=PermissionLevel.VIEW,
) -> list[Workstream]:
    """Accessible workstreams, optionally narrowed by type, status or depth."""
    ids = _resolver_for(user_id).accessible_ids(user_id, required_level)
    if not ids:
        return []
    query = Workstream.query.filter(Workstream.id.in_(ids))
    if type is not None:
        query = query.filter(Workstream.type == type)
    if status is not None:
        query = query.filter(Workstream.status == status)
    if depth is not None:
        query = query.filter(Workstream.hierarchy_depth == depth)
    if roots_only:
        query = query.filter(Workstream.parent_id.is_(None))
    return query.order_by(Workstream.name).all()
