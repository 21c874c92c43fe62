"""PermissionAdministrator — who may grant and revoke."""

import pytest

from workstream_engine.services.grant_store import GrantScope, PermissionLevel
from workstream_engine.services.permission_admin import PermissionAdministrator
from workstream_engine.services.results import RejectionReason


@pytest.fixture()
def admin(tree):
    return PermissionAdministrator(tree.nodes, tree.grants)


def test_owner_grants_cascading_edit(admin, tree):
    result = admin.grant("olivia", "R", "alice", "edit", "workstream_and_children")
    assert result.ok
    grant = result.value
    assert grant.level is PermissionLevel.EDIT
    assert grant.scope is GrantScope.NODE_AND_DESCENDANTS
    assert grant.granted_by == "olivia"
    assert admin.resolver.has_access("alice", "G", PermissionLevel.EDIT)


def test_identical_grant_is_not_duplicated(admin, tree):
    first = admin.grant("olivia", "C", "alice", "view")
    second = admin.grant("olivia", "C", "alice", PermissionLevel.VIEW, GrantScope.NODE_ONLY)
    assert second.value.id == first.value.id
    assert len(tree.grants.get_grants("C")) == 1


def test_different_scope_is_a_separate_grant(admin, tree):
    admin.grant("olivia", "C", "alice", "view")
    admin.grant("olivia", "C", "alice", "view", GrantScope.NODE_AND_DESCENDANTS)
    assert len(tree.grants.get_grants("C")) == 2


def test_editor_may_not_grant(admin, tree):
    tree.grants.create_grant("C", "ed", PermissionLevel.EDIT)
    result = admin.grant("ed", "C", "mallory", "admin")
    assert result.rejection.reason is RejectionReason.NOT_AUTHORIZED
    assert tree.grants.get_grants_for_user("C", "mallory") == []


def test_cascading_admin_may_grant_below(admin, tree):
    tree.grants.create_grant("R", "ada", PermissionLevel.ADMIN, GrantScope.NODE_AND_DESCENDANTS)
    assert admin.grant("ada", "G", "bob", "view").ok


def test_grant_on_unknown_workstream(admin):
    result = admin.grant("olivia", "ghost", "alice", "view")
    assert result.rejection.reason is RejectionReason.NODE_NOT_FOUND


class TestRevoke:
    def test_owner_revokes(self, admin, tree):
        grant = tree.grants.create_grant("G", "alice", PermissionLevel.EDIT)
        assert admin.revoke("olivia", grant.id).ok
        assert tree.grants.get_grant(grant.id) is None
        assert not admin.resolver.has_access("alice", "G", PermissionLevel.VIEW)

    def test_grantee_cannot_revoke_others(self, admin, tree):
        grant = tree.grants.create_grant("G", "alice", PermissionLevel.EDIT)
        result = admin.revoke("alice", grant.id)
        assert result.rejection.reason is RejectionReason.NOT_AUTHORIZED
        assert tree.grants.get_grant(grant.id) is not None

    def test_unknown_grant(self, admin):
        assert admin.revoke("olivia", 999).rejection.reason is RejectionReason.GRANT_NOT_FOUND
