"""
Workstream service — DB-backed hierarchy and permission operations.

Covers:
    - create / move / delete round-trip through the workstreams table
    - cached hierarchy_depth column follows moves
    - rejections leave the database untouched
    - grant / revoke rows and duplicate suppression
    - access decisions, cache TTL and invalidation
    - hierarchy and rollup reads gated on view access
"""

import pytest
from sqlalchemy.exc import IntegrityError

from workstream_engine.core.exceptions import NotFoundError
from workstream_engine.models import db
from workstream_engine.models.workstream import Workstream, WorkstreamPermission
from workstream_engine.services import workstream_service as svc
from workstream_engine.services.grant_store import PermissionLevel
from workstream_engine.services.results import RejectionReason


# ── Helpers ──────────────────────────────────────────────────────────────


def _make(acting="olivia", **data):
    result = svc.create_workstream(acting, data)
    assert result.ok, result.rejection
    return result.value


@pytest.fixture()
def db_tree():
    """R ← C ← G owned by olivia, stored in the database."""
    _make(id="R", name="Root", type="product_line", status="active")
    _make(id="C", name="Child", type="initiative", parent_id="R")
    _make(id="G", name="Grandchild", type="experiment", parent_id="C")
    return ("R", "C", "G")


# ═════════════════════════════════════════════════════════════════════════
# Structure
# ═════════════════════════════════════════════════════════════════════════


class TestCreate:
    def test_defaults(self):
        row = _make(name="Payments")
        assert row.owner_id == "olivia"
        assert row.status == "draft"
        assert row.hierarchy_depth == 1
        assert len(row.id) == 36

    def test_depth_column_is_written(self, db_tree):
        assert db.session.get(Workstream, "G").hierarchy_depth == 3

    def test_too_deep_is_rejected_without_insert(self, db_tree):
        result = svc.create_workstream("olivia", {"id": "N", "parent_id": "G"})
        assert result.rejection.reason is RejectionReason.DEPTH_EXCEEDED
        assert db.session.get(Workstream, "N") is None
        assert Workstream.query.count() == 3


class TestMove:
    def test_move_rewrites_subtree_depths(self, db_tree):
        _make(id="R2", name="Other root")
        assert svc.move_workstream("olivia", "C", "R2").ok
        assert db.session.get(Workstream, "C").parent_id == "R2"

        result = svc.move_workstream("olivia", "C", None)
        assert result.ok
        assert db.session.get(Workstream, "C").hierarchy_depth == 1
        assert db.session.get(Workstream, "G").hierarchy_depth == 2

    def test_cycle_is_rejected(self, db_tree):
        result = svc.move_workstream("olivia", "R", "G")
        assert result.rejection.reason is RejectionReason.CIRCULAR_HIERARCHY
        assert db.session.get(Workstream, "R").parent_id is None


class TestDelete:
    def test_parent_with_children_is_kept(self, db_tree):
        assert not svc.can_delete_workstream("C")
        result = svc.delete_workstream("olivia", "C")
        assert result.rejection.reason is RejectionReason.HAS_CHILDREN
        assert db.session.get(Workstream, "C") is not None

    def test_leaf_delete_removes_grants(self, db_tree):
        svc.grant_permission("olivia", "G", "alice", "edit")
        assert svc.can_delete_workstream("G")
        assert svc.delete_workstream("olivia", "G").ok
        assert db.session.get(Workstream, "G") is None
        assert WorkstreamPermission.query.filter_by(workstream_id="G").count() == 0

    def test_unknown_workstream(self):
        with pytest.raises(NotFoundError):
            svc.can_delete_workstream("ghost")

    def test_database_refuses_parent_delete_with_children(self, db_tree):
        db.session.delete(db.session.get(Workstream, "C"))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()
        assert db.session.get(Workstream, "C") is not None


def test_schema_recreates_over_nested_rows(db_tree):
    db.drop_all()
    db.create_all()
    assert Workstream.query.count() == 0


def test_bulk_update_authorises_each_row(db_tree):
    svc.grant_permission("olivia", "C", "alice", "edit")
    result = svc.bulk_update_workstreams("alice", ["C", "G", "ghost"], {"status": "on_hold"})

    assert result.to_dict() == {
        "updated_count": 1, "updated": ["C"], "denied": ["G"], "missing": ["ghost"],
    }
    assert db.session.get(Workstream, "C").status == "on_hold"
    assert db.session.get(Workstream, "G").status == "draft"


# ═════════════════════════════════════════════════════════════════════════
# Permissions
# ═════════════════════════════════════════════════════════════════════════


class TestGrants:
    def test_cascading_grant_reaches_grandchild(self, db_tree):
        result = svc.grant_permission("olivia", "R", "alice", "edit", "node_and_descendants")
        assert result.ok
        assert result.value.permission_type == "edit"
        assert svc.has_access("alice", "G", "edit")
        assert not svc.has_access("alice", "G", "admin")

    def test_duplicate_grant_returns_existing_row(self, db_tree):
        first = svc.grant_permission("olivia", "C", "bob", "view")
        second = svc.grant_permission("olivia", "C", "bob", "view")
        assert second.value.id == first.value.id
        assert WorkstreamPermission.query.filter_by(user_id="bob").count() == 1

    def test_non_admin_cannot_grant(self, db_tree):
        svc.grant_permission("olivia", "C", "ed", "edit")
        result = svc.grant_permission("ed", "C", "mallory", "view")
        assert result.rejection.reason is RejectionReason.NOT_AUTHORIZED
        assert WorkstreamPermission.query.filter_by(user_id="mallory").count() == 0

    def test_revoke(self, db_tree):
        grant = svc.grant_permission("olivia", "C", "bob", "view").value
        assert svc.revoke_permission("olivia", grant.id).ok
        assert not svc.has_access("bob", "C", PermissionLevel.VIEW)

    def test_revoke_unknown(self):
        result = svc.revoke_permission("olivia", 12345)
        assert result.rejection.reason is RejectionReason.GRANT_NOT_FOUND

    def test_owner_of_ancestor_can_grant(self, db_tree):
        _make(acting="gina", id="G2", parent_id="C")
        assert svc.can_grant_permissions("olivia", "G2")
        assert svc.grant_permission("olivia", "G2", "bob", "admin").ok


class TestReads:
    def test_effective_permissions(self, db_tree):
        svc.grant_permission("olivia", "R", "alice", "view", "workstream_and_children")
        svc.grant_permission("olivia", "G", "alice", "edit")
        data = svc.get_effective_permissions("alice", "G").to_dict()
        assert data["effective_permissions"] == ["view", "edit"]
        assert len(data["inherited_permissions"]) == 1

    def test_accessible_workstreams_ordered_by_name(self, db_tree):
        svc.grant_permission("olivia", "C", "alice", "view", "node_and_descendants")
        rows = svc.get_accessible_workstreams("alice")
        assert [r.id for r in rows] == ["C", "G"]
        assert svc.get_accessible_workstreams("nobody") == []

    def test_hierarchy_requires_view(self, db_tree):
        assert svc.get_hierarchy("stranger", "R") is None
        tree = svc.get_hierarchy("olivia", "R")
        assert tree["children"][0]["children"][0]["id"] == "G"

    def test_rollup_report(self, db_tree):
        report = svc.get_rollup_report("olivia", "R", {"G": {"tasks": 2}})
        assert report["summary"]["node_count"] == 3
        assert report["summary"]["totals"] == {"tasks": 2}
        assert svc.get_rollup_report("stranger", "R") is None


class TestDecisionCache:
    def test_cached_decision_until_invalidated(self, app, db_tree, monkeypatch):
        monkeypatch.setitem(app.config, "PERMISSION_CACHE_TTL", 300)
        assert not svc.has_access("alice", "C", "view")

        # Written behind the service's back: the cached denial still stands.
        db.session.add(WorkstreamPermission(
            workstream_id="C", user_id="alice", permission_type="view", scope="node_only",
        ))
        db.session.commit()
        assert not svc.has_access("alice", "C", "view")

        svc.invalidate_all_cache()
        assert svc.has_access("alice", "C", "view")

    def test_service_writes_invalidate(self, app, db_tree, monkeypatch):
        monkeypatch.setitem(app.config, "PERMISSION_CACHE_TTL", 300)
        assert not svc.has_access("alice", "G", "view")
        svc.grant_permission("olivia", "R", "alice", "view", "node_and_descendants")
        assert svc.has_access("alice", "G", "view")

    def test_zero_ttl_disables_cache(self, db_tree):
        assert not svc.has_access("alice", "C", "view")
        db.session.add(WorkstreamPermission(
            workstream_id="C", user_id="alice", permission_type="view", scope="node_only",
        ))
        db.session.commit()
        assert svc.has_access("alice", "C", "view")


class TestSingleReadsAndListing:
    def test_get_requires_level(self, db_tree):
        svc.grant_permission("olivia", "C", "alice", "view")
        assert svc.get_workstream("alice", "C").id == "C"
        assert svc.get_workstream("alice", "C", "edit") is None
        assert svc.get_workstream("alice", "G") is None
        with pytest.raises(NotFoundError):
            svc.get_workstream("alice", "ghost")

    def test_update_requires_edit(self, db_tree):
        svc.grant_permission("olivia", "G", "alice", "view")
        assert svc.update_workstream("alice", "G", {"status": "active"}) is None
        assert db.session.get(Workstream, "G").status == "draft"

        row = svc.update_workstream("olivia", "G", {"status": "active", "name": "Pilot"})
        assert (row.status, row.name) == ("active", "Pilot")

    @pytest.mark.parametrize("filters,expected", [
        ({}, ["C", "G", "R"]),
        ({"roots_only": True}, ["R"]),
        ({"type": "experiment"}, ["G"]),
        ({"status": "active"}, ["R"]),
        ({"depth": 2}, ["C"]),
    ])
    def test_list_filters(self, db_tree, filters, expected):
        assert [r.id for r in svc.list_workstreams("olivia", **filters)] == expected

    def test_list_only_accessible(self, db_tree):
        svc.grant_permission("olivia", "C", "alice", "view")
        assert [r.id for r in svc.list_workstreams("alice")] == ["C"]
        assert svc.list_workstreams("alice", depth=3) == []
