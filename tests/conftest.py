"""
Shared pytest fixtures for the workstream engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test app context + table recreate (autouse)
    - stores: Fresh in-memory NodeStore/GrantStore pair
    - tree: Root R (owner "olivia") ← Child C ← Grandchild G in memory
"""

from types import SimpleNamespace

import pytest

from workstream_engine import create_app
from workstream_engine.models import db as _db
from workstream_engine.services.grant_store import GrantStore
from workstream_engine.services.node_store import NodeStore, WorkstreamNode
from workstream_engine.services.workstream_service import invalidate_all_cache


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # Ids are reused across tests; drop cached access decisions.
        invalidate_all_cache()
        yield
        invalidate_all_cache()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


# ── In-memory engine fixtures ────────────────────────────────────────────


@pytest.fixture()
def stores():
    return SimpleNamespace(nodes=NodeStore(), grants=GrantStore())


@pytest.fixture()
def tree(stores):
    """R (depth 1) ← C (depth 2) ← G (depth 3), all owned by olivia."""
    for node in (
        WorkstreamNode(id="R", owner_id="olivia", name="Root", type="product_line", status="active"),
        WorkstreamNode(id="C", owner_id="olivia", parent_id="R", name="Child", type="initiative", status="active"),
        WorkstreamNode(id="G", owner_id="olivia", parent_id="C", name="Grandchild", type="experiment", status="draft"),
    ):
        stores.nodes.create_node(node)
    return stores
