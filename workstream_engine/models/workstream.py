"""
Workstream hierarchy tables.

Models:
  - Workstream: a node of the bounded-depth workstream forest
  - WorkstreamPermission: an explicit (user, level, scope) grant on a node

hierarchy_depth is a cached copy of the derived depth, rewritten for the
whole subtree whenever a node moves.
"""

import uuid
from datetime import datetime, timezone

from workstream_engine.models import db


class Workstream(db.Model):
    __tablename__ = "workstreams"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    parent_id = db.Column(
        db.String(36),
        db.ForeignKey("workstreams.id"),
        nullable=True,
        index=True,
    )
    owner_id = db.Column(db.String(64), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False, default="")
    type = db.Column(
        db.String(30),
        nullable=True,
        comment="product_line | initiative | experiment",
    )
    status = db.Column(
        db.String(20),
        default="draft",
        comment="draft | active | on_hold | completed | cancelled",
    )
    hierarchy_depth = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Relationships
    permissions = db.relationship(
        "WorkstreamPermission",
        backref="workstream",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "owner_id": self.owner_id,
            "name": self.name,
            "type": self.type,
            "status": self.status,
            "hierarchy_depth": self.hierarchy_depth,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class WorkstreamPermission(db.Model):
    __tablename__ = "workstream_permissions"

    id = db.Column(db.Integer, primary_key=True)
    workstream_id = db.Column(
        db.String(36),
        db.ForeignKey("workstreams.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = db.Column(db.String(64), nullable=False)
    permission_type = db.Column(
        db.String(10),
        nullable=False,
        comment="view | edit | admin",
    )
    scope = db.Column(
        db.String(30),
        nullable=False,
        default="node_only",
        comment="node_only | node_and_descendants",
    )
    granted_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_workstream_permissions_workstream_user", "workstream_id", "user_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "workstream_id": self.workstream_id,
            "user_id": self.user_id,
            "permission_type": self.permission_type,
            "scope": self.scope,
            "granted_by": self.granted_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
