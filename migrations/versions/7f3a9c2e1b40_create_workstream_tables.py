"""create_workstream_tables

Workstream forest and per-user permission grants.

Revision ID: 7f3a9c2e1b40
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "7f3a9c2e1b40"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "workstreams",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("parent_id", sa.String(length=36), nullable=True),
        sa.Column("owner_id", sa.String(length=64), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=30), nullable=True,
                  comment="product_line | initiative | experiment"),
        sa.Column("status", sa.String(length=20), nullable=True,
                  comment="draft | active | on_hold | completed | cancelled"),
        sa.Column("hierarchy_depth", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["parent_id"], ["workstreams.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_workstreams_parent_id", "workstreams", ["parent_id"])
    op.create_index("ix_workstreams_owner_id", "workstreams", ["owner_id"])

    op.create_table(
        "workstream_permissions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("workstream_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("permission_type", sa.String(length=10), nullable=False,
                  comment="view | edit | admin"),
        sa.Column("scope", sa.String(length=30), nullable=False,
                  comment="node_only | node_and_descendants"),
        sa.Column("granted_by", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["workstream_id"], ["workstreams.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_workstream_permissions_workstream_user",
        "workstream_permissions",
        ["workstream_id", "user_id"],
    )


def downgrade():
    op.drop_index("ix_workstream_permissions_workstream_user", table_name="workstream_permissions")
    op.drop_table("workstream_permissions")
    op.drop_index("ix_workstreams_owner_id", table_name="workstreams")
    op.drop_index("ix_workstreams_parent_id", table_name="workstreams")
    op.drop_table("workstreams")
