"""Initial schema: users, refresh_tokens, slots, swap_requests.

Revision ID: 001_initial
Revises:
Create Date: 2025-11-02

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

slot_status = sa.Enum("BUSY", "SWAPPABLE", "SWAP_PENDING", name="slotstatus")
swap_status = sa.Enum("PENDING", "ACCEPTED", "REJECTED", name="swapstatus")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("hashed_password", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("jti", sa.String(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("revoked", sa.Boolean(), nullable=False, server_default="false"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_refresh_tokens_user_id"), "refresh_tokens", ["user_id"], unique=False)
    op.create_index(op.f("ix_refresh_tokens_jti"), "refresh_tokens", ["jti"], unique=True)
    op.create_index(op.f("ix_refresh_tokens_expires_at"), "refresh_tokens", ["expires_at"], unique=False)

    op.create_table(
        "slots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("status", slot_status, nullable=False, server_default="BUSY"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("start_time < end_time", name="ck_slots_start_before_end"),
    )
    op.create_index(op.f("ix_slots_user_id"), "slots", ["user_id"], unique=False)
    op.create_index(op.f("ix_slots_start_time"), "slots", ["start_time"], unique=False)
    op.create_index(op.f("ix_slots_status"), "slots", ["status"], unique=False)

    op.create_table(
        "swap_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("offered_slot_id", sa.Integer(), nullable=False),
        sa.Column("wanted_slot_id", sa.Integer(), nullable=False),
        sa.Column("requester_id", sa.Integer(), nullable=False),
        sa.Column("responder_id", sa.Integer(), nullable=False),
        sa.Column("status", swap_status, nullable=False, server_default="PENDING"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("responded_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["offered_slot_id"], ["slots.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["wanted_slot_id"], ["slots.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["requester_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["responder_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("offered_slot_id <> wanted_slot_id", name="ck_swap_requests_distinct_slots"),
    )
    op.create_index(op.f("ix_swap_requests_offered_slot_id"), "swap_requests", ["offered_slot_id"], unique=False)
    op.create_index(op.f("ix_swap_requests_wanted_slot_id"), "swap_requests", ["wanted_slot_id"], unique=False)
    op.create_index(op.f("ix_swap_requests_requester_id"), "swap_requests", ["requester_id"], unique=False)
    op.create_index(op.f("ix_swap_requests_responder_id"), "swap_requests", ["responder_id"], unique=False)
    op.create_index(op.f("ix_swap_requests_status"), "swap_requests", ["status"], unique=False)
    # At most one PENDING request per slot on either side
    op.create_index(
        "uq_swap_requests_pending_offered",
        "swap_requests",
        ["offered_slot_id"],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
        sqlite_where=sa.text("status = 'PENDING'"),
    )
    op.create_index(
        "uq_swap_requests_pending_wanted",
        "swap_requests",
        ["wanted_slot_id"],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
        sqlite_where=sa.text("status = 'PENDING'"),
    )


def downgrade() -> None:
    op.drop_index("uq_swap_requests_pending_wanted", table_name="swap_requests")
    op.drop_index("uq_swap_requests_pending_offered", table_name="swap_requests")
    op.drop_index(op.f("ix_swap_requests_status"), table_name="swap_requests")
    op.drop_index(op.f("ix_swap_requests_responder_id"), table_name="swap_requests")
    op.drop_index(op.f("ix_swap_requests_requester_id"), table_name="swap_requests")
    op.drop_index(op.f("ix_swap_requests_wanted_slot_id"), table_name="swap_requests")
    op.drop_index(op.f("ix_swap_requests_offered_slot_id"), table_name="swap_requests")
    op.drop_table("swap_requests")
    op.drop_index(op.f("ix_slots_status"), table_name="slots")
    op.drop_index(op.f("ix_slots_start_time"), table_name="slots")
    op.drop_index(op.f("ix_slots_user_id"), table_name="slots")
    op.drop_table("slots")
    op.drop_index(op.f("ix_refresh_tokens_expires_at"), table_name="refresh_tokens")
    op.drop_index(op.f("ix_refresh_tokens_jti"), table_name="refresh_tokens")
    op.drop_index(op.f("ix_refresh_tokens_user_id"), table_name="refresh_tokens")
    op.drop_table("refresh_tokens")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")
    swap_status.drop(op.get_bind(), checkfirst=True)
    slot_status.drop(op.get_bind(), checkfirst=True)
