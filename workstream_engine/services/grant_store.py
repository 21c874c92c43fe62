"""
GrantStore — explicit permission grants attached to workstreams.

A grant is (workstream, user, level, scope, granted_by). Several grants may
exist for the same (workstream, user) pair; none exclude each other. Grants
are never edited in place: a change is a new grant or a revocation.

Ownership is not a grant. It is read from WorkstreamNode.owner_id by the
resolver.
"""

import itertools
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Hashable, Iterable, NamedTuple

from workstream_engine.core.exceptions import ConflictError, ValidationError

logger = logging.getLogger(__name__)


class PermissionLevel(IntEnum):
    """Totally ordered access level: view < edit < admin."""

    VIEW = 1
    EDIT = 2
    ADMIN = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value) -> "PermissionLevel":
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValidationError(
                f"Unknown permission level {value!r}",
                details={"permission_type": "must be one of view, edit, admin"},
            ) from None

    def implied(self) -> set["PermissionLevel"]:
        """Every level at or below this one."""
        return {level for level in PermissionLevel if level <= self}


class GrantScope(str, Enum):
    NODE_ONLY = "node_only"
    NODE_AND_DESCENDANTS = "node_and_descendants"

    @classmethod
    def parse(cls, value) -> "GrantScope":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        key = _LEGACY_SCOPES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValidationError(
                f"Unknown grant scope {value!r}",
                details={"scope": "must be node_only or node_and_descendants"},
            ) from None


# Scope names used by older clients.
_LEGACY_SCOPES = {
    "workstream_only": GrantScope.NODE_ONLY.value,
    "workstream_and_children": GrantScope.NODE_AND_DESCENDANTS.value,
}


@dataclass(frozen=True)
class PermissionGrant:
    id: Hashable
    workstream_id: Hashable
    user_id: Any
    level: PermissionLevel
    scope: GrantScope = GrantScope.NODE_ONLY
    granted_by: Any = None

    @property
    def cascades(self) -> bool:
        return self.scope is GrantScope.NODE_AND_DESCENDANTS

    def same_terms(self, other: "PermissionGrant") -> bool:
        return (
            self.workstream_id == other.workstream_id
            and self.user_id == other.user_id
            and self.level == other.level
            and self.scope == other.scope
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workstream_id": self.workstream_id,
            "user_id": self.user_id,
            "permission_type": self.level.label,
            "scope": self.scope.value,
            "granted_by": self.granted_by,
        }


class _State(NamedTuple):
    grants: dict
    by_workstream: dict


class GrantStore:
    """Grants keyed by id, indexed by workstream id. Copy-on-write like NodeStore."""

    def __init__(self, grants: Iterable[PermissionGrant] = ()) -> None:
        self._lock = threading.RLock()
        table: dict = {}
        index: dict = {}
        for grant in grants:
            if grant.id in table:
                raise ConflictError("PermissionGrant", "id", str(grant.id))
            table[grant.id] = grant
            index[grant.workstream_id] = index.get(grant.workstream_id, ()) + (grant.id,)
        numeric = [g for g in table if isinstance(g, int)]
        self._ids = itertools.count(max(numeric, default=0) + 1)
        self._state = _State(table, index)

    def snapshot(self) -> "GrantStore":
        view = GrantStore.__new__(GrantStore)
        view._lock = threading.RLock()
        view._ids = self._ids
        view._state = self._state
        return view

    @contextmanager
    def transaction(self):
        with self._lock:
            yield self

    # ── Reads ────────────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._state.grants)

    def get_grant(self, grant_id) -> PermissionGrant | None:
        return self._state.grants.get(grant_id)

    def get_grants(self, workstream_id) -> list[PermissionGrant]:
        state = self._state
        return [state.grants[g] for g in state.by_workstream.get(workstream_id, ())]

    def get_grants_for_user(self, workstream_id, user_id) -> list[PermissionGrant]:
        return [g for g in self.get_grants(workstream_id) if g.user_id == user_id]

    def grants_for_user(self, user_id) -> list[PermissionGrant]:
        return [g for g in self._state.grants.values() if g.user_id == user_id]

    def find_identical(self, candidate: PermissionGrant) -> PermissionGrant | None:
        for grant in self.get_grants(candidate.workstream_id):
            if grant.same_terms(candidate):
                return grant
        return None

    # ── Writes ───────────────────────────────────────────────────────────

    def create_grant(
        self,
        workstream_id,
        user_id,
        level,
        scope=GrantScope.NODE_ONLY,
        granted_by=None,
        grant_id=None,
    ) -> PermissionGrant:
        with self._lock:
            grant = PermissionGrant(
                id=grant_id if grant_id is not None else next(self._ids),
                workstream_id=workstream_id,
                user_id=user_id,
                level=PermissionLevel.parse(level),
                scope=GrantScope.parse(scope),
                granted_by=granted_by,
            )
            state = self._state
            if grant.id in state.grants:
                raise ConflictError("PermissionGrant", "id", str(grant.id))
            grants = dict(state.grants)
            grants[grant.id] = grant
            index = dict(state.by_workstream)
            index[workstream_id] = index.get(workstream_id, ()) + (grant.id,)
            self._state = _State(grants, index)
            return grant

    def delete_grant(self, grant_id) -> PermissionGrant | None:
        with self._lock:
            state = self._state
            grant = state.grants.get(grant_id)
            if grant is None:
                return None
            grants = dict(state.grants)
            del grants[grant_id]
            index = dict(state.by_workstream)
            remaining = tuple(g for g in index.get(grant.workstream_id, ()) if g != grant_id)
            if remaining:
                index[grant.workstream_id] = remaining
            else:
                index.pop(grant.workstream_id, None)
            self._state = _State(grants, index)
            return grant

    def delete_for_workstream(self, workstream_id) -> list[PermissionGrant]:
        with self._lock:
            state = self._state
            removed = [state.grants[g] for g in state.by_workstream.get(workstream_id, ())]
            if not removed:
                return []
            grants = {k: v for k, v in state.grants.items() if v.workstream_id != workstream_id}
            index = dict(state.by_workstream)
            index.pop(workstream_id, None)
            self._state = _State(grants, index)
            return removed
