from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint
from sqlmodel import Field, SQLModel

from app.core.clock import utc_naive_now


class SlotStatus(str, Enum):
    BUSY = "BUSY"
    SWAPPABLE = "SWAPPABLE"
    # Only the swap coordinator moves slots in and out of this state
    SWAP_PENDING = "SWAP_PENDING"


OWNER_SETTABLE_STATUSES = (SlotStatus.BUSY, SlotStatus.SWAPPABLE)


class Slot(SQLModel, table=True):
    __tablename__ = "slots"
    __table_args__ = (CheckConstraint("start_time < end_time", name="ck_slots_start_before_end"),)
    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    title: str
    start_time: datetime = Field(index=True)
    end_time: datetime
    status: SlotStatus = Field(default=SlotStatus.BUSY, index=True)
    created_at: datetime = Field(default_factory=utc_naive_now)
    updated_at: datetime = Field(default_factory=utc_naive_now)


class SlotCreate(SQLModel):
    title: str = Field(min_length=1)
    start_time: datetime
    end_time: datetime
    status: SlotStatus = SlotStatus.BUSY


class SlotUpdate(SQLModel):
    title: str | None = Field(default=None, min_length=1)
    start_time: datetime | None = None
    end_time: datetime | None = None
    status: SlotStatus | None = None


class SlotPublic(SQLModel):
    id: int
    user_id: int
    title: str
    start_time: datetime
    end_time: datetime
    status: SlotStatus
    created_at: datetime
    updated_at: datetime
