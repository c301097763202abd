"""initial schema: activities, participants, rounds, winners

Revision ID: 0001_initial_schema
Revises:
Create Date: 2025-01-06 10:00:00
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "activities",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "allow_multi_win", sa.Boolean(), server_default=sa.false(), nullable=False
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_activities")),
    )

    op.create_table(
        "participants",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("activity_id", ID_TYPE, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("employee_id", sa.String(length=64), nullable=True),
        sa.Column("department", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["activity_id"],
            ["activities.id"],
            name=op.f("fk_participants_activity_id_activities"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_participants")),
    )
    op.create_index(
        op.f("ix_participants_activity_id"), "participants", ["activity_id"]
    )

    op.create_table(
        "rounds",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("activity_id", ID_TYPE, nullable=False),
        sa.Column("order_index", sa.Integer(), nullable=False),
        sa.Column("prize_name", sa.String(length=255), nullable=False),
        sa.Column("prize_description", sa.Text(), nullable=True),
        sa.Column("winner_count", sa.Integer(), nullable=False),
        sa.Column("lottery_mode", sa.String(length=32), nullable=False),
        sa.Column("animation_duration_ms", sa.Integer(), nullable=False),
        sa.Column("is_drawn", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "winner_count >= 1", name=op.f("ck_rounds_winner_count_positive")
        ),
        sa.ForeignKeyConstraint(
            ["activity_id"],
            ["activities.id"],
            name=op.f("fk_rounds_activity_id_activities"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_rounds")),
        sa.UniqueConstraint(
            "activity_id", "order_index", name="uq_rounds_activity_order"
        ),
    )
    op.create_index(op.f("ix_rounds_activity_id"), "rounds", ["activity_id"])

    op.create_table(
        "winners",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("round_id", ID_TYPE, nullable=False),
        sa.Column("participant_id", ID_TYPE, nullable=True),
        sa.Column("drawn_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["participant_id"],
            ["participants.id"],
            name=op.f("fk_winners_participant_id_participants"),
            ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["round_id"],
            ["rounds.id"],
            name=op.f("fk_winners_round_id_rounds"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_winners")),
        sa.UniqueConstraint(
            "round_id", "participant_id", name="uq_winners_round_participant"
        ),
    )
    op.create_index(op.f("ix_winners_round_id"), "winners", ["round_id"])
    op.create_index("ix_winners_participant_id", "winners", ["participant_id"])


def downgrade() -> None:
    op.drop_index("ix_winners_participant_id", table_name="winners")
    op.drop_index(op.f("ix_winners_round_id"), table_name="winners")
    op.drop_table("winners")
    op.drop_index(op.f("ix_rounds_activity_id"), table_name="rounds")
    op.drop_table("rounds")
    op.drop_index(op.f("ix_participants_activity_id"), table_name="participants")
    op.drop_table("participants")
    op.drop_table("activities")
