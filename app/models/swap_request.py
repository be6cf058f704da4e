from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, Index, text
from sqlmodel import Field, SQLModel

from app.core.clock import utc_naive_now


class SwapStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class SwapRequest(SQLModel, table=True):
    __tablename__ = "swap_requests"
    __table_args__ = (
        CheckConstraint("offered_slot_id <> wanted_slot_id", name="ck_swap_requests_distinct_slots"),
        # At most one PENDING request per slot on either side
        Index(
            "uq_swap_requests_pending_offered",
            "offered_slot_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
        Index(
            "uq_swap_requests_pending_wanted",
            "wanted_slot_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )
    id: int | None = Field(default=None, primary_key=True)
    offered_slot_id: int = Field(foreign_key="slots.id", ondelete="CASCADE", index=True)
    wanted_slot_id: int = Field(foreign_key="slots.id", ondelete="CASCADE", index=True)
    requester_id: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    responder_id: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    status: SwapStatus = Field(default=SwapStatus.PENDING, index=True)
    created_at: datetime = Field(default_factory=utc_naive_now)
    responded_at: datetime | None = None
