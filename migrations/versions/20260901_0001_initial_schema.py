"""initial whitelist voting schema

Revision ID: 5c1f0a7d2e41
Revises:
Create Date: 2026-09-01 10:12:44.318502

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1f0a7d2e41"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

STATUS_VALUES = ("pending", "voting", "approved", "rejected", "expired")
POLARITY_VALUES = ("positive", "negative")
ACTIVE_PREDICATE = sa.text("status IN ('pending', 'voting')")


def _status(name: str) -> sa.Enum:
    return sa.Enum(*STATUS_VALUES, name=name, native_enum=False, create_constraint=True, length=16)


def _polarity(name: str) -> sa.Enum:
    return sa.Enum(*POLARITY_VALUES, name=name, native_enum=False, create_constraint=True, length=8)


def upgrade() -> None:
    """Create users, applications, votes, reputation and settings tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("external_id", sa.BigInteger(), nullable=False),
        sa.Column("handle", sa.Text(), nullable=True),
        sa.Column("nickname", sa.String(length=64), nullable=True),
        sa.Column("identity_key", sa.String(length=36), nullable=True),
        sa.Column(
            "role",
            sa.Enum(
                "applicant",
                "member",
                "admin",
                name="user_role",
                native_enum=False,
                create_constraint=True,
                length=16,
            ),
            nullable=False,
        ),
        sa.Column("can_vote", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("reputation_positive", sa.Float(), nullable=False),
        sa.Column("reputation_negative", sa.Float(), nullable=False),
        sa.Column("reputation_reset_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ratings_given", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "NOT can_vote OR role IN ('member', 'admin')", name="ck_users_can_vote_role"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_id"),
    )

    op.create_table(
        "system_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("voting_duration_days", sa.Integer(), nullable=False),
        sa.Column("voting_duration_hours", sa.Integer(), nullable=False),
        sa.Column("voting_duration_minutes", sa.Integer(), nullable=False),
        sa.Column("min_votes_required", sa.Integer(), nullable=False),
        sa.Column("min_participation_percent", sa.Float(), nullable=False),
        sa.Column("approval_threshold_percent", sa.Float(), nullable=False),
        sa.Column("rejection_threshold_percent", sa.Float(), nullable=False),
        sa.Column("negative_ratings_threshold", sa.Float(), nullable=False),
        sa.Column("rating_cooldown_minutes", sa.Integer(), nullable=False),
        sa.Column("max_daily_ratings", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("id = 1", name="ck_system_settings_singleton"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "applications",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("candidate_id", sa.Integer(), nullable=False),
        sa.Column("nickname", sa.String(length=64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("status", _status("application_status"), nullable=False),
        sa.Column("voting_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("positive_votes", sa.Integer(), nullable=False),
        sa.Column("negative_votes", sa.Integer(), nullable=False),
        sa.Column("resolution_cause", sa.String(length=16), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("positive_votes >= 0", name="ck_applications_positive_votes"),
        sa.CheckConstraint("negative_votes >= 0", name="ck_applications_negative_votes"),
        sa.ForeignKeyConstraint(["candidate_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_applications_status_deadline",
        "applications",
        ["status", "voting_deadline"],
    )
    op.create_index(
        "uq_applications_active_candidate",
        "applications",
        ["candidate_id"],
        unique=True,
        sqlite_where=ACTIVE_PREDICATE,
        postgresql_where=ACTIVE_PREDICATE,
    )

    op.create_table(
        "application_transitions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("application_id", sa.Integer(), nullable=False),
        sa.Column("from_status", _status("transition_from_status"), nullable=False),
        sa.Column("to_status", _status("transition_to_status"), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("cause", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["actor_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_application_transitions_application",
        "application_transitions",
        ["application_id", "id"],
    )

    op.create_table(
        "votes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("application_id", sa.Integer(), nullable=False),
        sa.Column("voter_id", sa.Integer(), nullable=False),
        sa.Column("polarity", _polarity("vote_polarity"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["voter_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("application_id", "voter_id", name="uq_votes_application_voter"),
    )
    op.create_index("ix_votes_application_polarity", "votes", ["application_id", "polarity"])

    op.create_table(
        "reputation_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("rater_id", sa.Integer(), nullable=False),
        sa.Column("target_id", sa.Integer(), nullable=False),
        sa.Column("polarity", _polarity("rating_polarity"), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("weight", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("weight > 0", name="ck_reputation_records_weight_positive"),
        sa.ForeignKeyConstraint(["rater_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["target_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_reputation_records_pair",
        "reputation_records",
        ["rater_id", "target_id", "created_at"],
    )
    op.create_index(
        "ix_reputation_records_target",
        "reputation_records",
        ["target_id", "created_at"],
    )


def downgrade() -> None:
    """Drop every table created by this revision."""
    op.drop_index("ix_reputation_records_target", table_name="reputation_records")
    op.drop_index("ix_reputation_records_pair", table_name="reputation_records")
    op.drop_table("reputation_records")
    op.drop_index("ix_votes_application_polarity", table_name="votes")
    op.drop_table("votes")
    op.drop_index(
        "ix_application_transitions_application", table_name="application_transitions"
    )
    op.drop_table("application_transitions")
    op.drop_index("uq_applications_active_candidate", table_name="applications")
    op.drop_index("ix_applications_status_deadline", table_name="applications")
    op.drop_table("applications")
    op.drop_table("system_settings")
    op.drop_table("users")
