"""create change request workflow tables

Revision ID: b3e1c9a7d5f2
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision = "b3e1c9a7d5f2"
down_revision = None
branch_labels = None
depends_on = None

_INDEXES: tuple[tuple[str, str, list[str]], ...] = (
    ("ix_users_username", "users", ["username"]),
    ("ix_users_email", "users", ["email"]),
    ("ix_teams_name", "teams", ["name"]),
    ("ix_team_memberships_team_id", "team_memberships", ["team_id"]),
    ("ix_change_requests_requester_user_id", "change_requests", ["requester_user_id"]),
    ("ix_change_requests_requester_team_id", "change_requests", ["requester_team_id"]),
    ("ix_change_requests_approval_status", "change_requests", ["approval_status"]),
    ("ix_change_requests_execution_status", "change_requests", ["execution_status"]),
    ("ix_change_requests_created_at", "change_requests", ["created_at"]),
    ("ix_change_request_reviews_change_request_id", "change_request_reviews", ["change_request_id"]),
    ("ix_change_request_reviews_reviewer_user_id", "change_request_reviews", ["reviewer_user_id"]),
    ("ix_change_request_comments_change_request_id", "change_request_comments", ["change_request_id"]),
    ("ix_change_request_comments_author_user_id", "change_request_comments", ["author_user_id"]),
    ("ix_change_request_comments_created_at", "change_request_comments", ["created_at"]),
    ("ix_change_request_history_change_request_id", "change_request_history", ["change_request_id"]),
    ("ix_change_request_history_actor_user_id", "change_request_history", ["actor_user_id"]),
    ("ix_change_request_history_created_at", "change_request_history", ["created_at"]),
)
_UNIQUE_INDEXES = frozenset({"ix_users_username", "ix_users_email", "ix_teams_name"})


def _create_tables(table_names: set[str]) -> None:
    if "users" not in table_names:
        op.create_table(
            "users",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("username", sa.String(), nullable=False),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
    if "teams" not in table_names:
        op.create_table(
            "teams",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
    if "team_memberships" not in table_names:
        op.create_table(
            "team_memberships",
            sa.Column("user_id", sa.Uuid(), nullable=False),
            sa.Column("team_id", sa.Uuid(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("user_id", "team_id"),
        )
    for role_table in ("super_managers", "gateway_editors"):
        if role_table not in table_names:
            op.create_table(
                role_table,
                sa.Column("user_id", sa.Uuid(), nullable=False),
                sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
                sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
                sa.PrimaryKeyConstraint("user_id"),
            )
    if "change_requests" not in table_names:
        op.create_table(
            "change_requests",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("requester_user_id", sa.Uuid(), nullable=False),
            sa.Column("requester_team_id", sa.Uuid(), nullable=False),
            sa.Column("title", sa.String(), nullable=False),
            sa.Column("config_changes_payload", sa.Text(), nullable=False),
            sa.Column(
                "approval_status",
                sa.String(),
                nullable=False,
                server_default="PENDING_APPROVAL",
            ),
            sa.Column("execution_status", sa.String(), nullable=False, server_default="DRAFT"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["requester_user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["requester_team_id"], ["teams.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    if "change_request_reviews" not in table_names:
        op.create_table(
            "change_request_reviews",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("change_request_id", sa.Uuid(), nullable=False),
            sa.Column("reviewer_user_id", sa.Uuid(), nullable=False),
            sa.Column("decision", sa.String(), nullable=False),
            sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(
                ["change_request_id"],
                ["change_requests.id"],
                ondelete="CASCADE",
            ),
            sa.ForeignKeyConstraint(["reviewer_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "change_request_id",
                "reviewer_user_id",
                name="uq_change_request_reviews_cr_reviewer",
            ),
        )
    if "change_request_comments" not in table_names:
        op.create_table(
            "change_request_comments",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("change_request_id", sa.Uuid(), nullable=False),
            sa.Column("author_user_id", sa.Uuid(), nullable=False),
            sa.Column("body", sa.Text(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(
                ["change_request_id"],
                ["change_requests.id"],
                ondelete="CASCADE",
            ),
            sa.ForeignKeyConstraint(["author_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    if "change_request_history" not in table_names:
        op.create_table(
            "change_request_history",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("change_request_id", sa.Uuid(), nullable=False),
            sa.Column("actor_user_id", sa.Uuid(), nullable=False),
            sa.Column("event_type", sa.String(), nullable=False),
            sa.Column("old_status", sa.String(), nullable=True),
            sa.Column("new_status", sa.String(), nullable=False, server_default=""),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(
                ["change_request_id"],
                ["change_requests.id"],
                ondelete="CASCADE",
            ),
            sa.PrimaryKeyConstraint("id"),
        )


def upgrade() -> None:
    """Create users, teams, capability grants, and change request tables."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    _create_tables(set(inspector.get_table_names()))

    refreshed = sa.inspect(bind)
    for index_name, table_name, columns in _INDEXES:
        existing = {index["name"] for index in refreshed.get_indexes(table_name)}
        if index_name not in existing:
            op.create_index(index_name, table_name, columns, unique=index_name in _UNIQUE_INDEXES)


def downgrade() -> None:
    """Drop change request workflow tables."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    table_names = set(inspector.get_table_names())
    for index_name, table_name, _ in reversed(_INDEXES):
        if table_name not in table_names:
            continue
        existing = {index["name"] for index in inspector.get_indexes(table_name)}
        if index_name in existing:
            op.drop_index(index_name, table_name=table_name)
    for table_name in (
        "change_request_history",
        "change_request_comments",
        "change_request_reviews",
        "change_requests",
        "gateway_editors",
        "super_managers",
        "team_memberships",
        "teams",
        "users",
    ):
        if table_name in table_names:
            op.drop_table(table_name)
