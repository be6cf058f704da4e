from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import naive_utc, utc_naive_now
from app.core.exceptions import NotFound, ValidationError
from app.models.slot import (
    OWNER_SETTABLE_STATUSES,
    Slot,
    SlotCreate,
    SlotStatus,
    SlotUpdate,
)
from app.models.user import User
from app.services.swap_guard import guarded_delete, guarded_status_update


def _check_window(start: datetime, end: datetime) -> None:
    if start >= end:
        raise ValidationError("start_time must be before end_time")


async def get_owned_slot(session: AsyncSession, slot_id: int, user_id: int) -> Slot:
    result = await session.execute(
        select(Slot).where(Slot.id == slot_id, Slot.user_id == user_id)
    )
    slot = result.scalar_one_or_none()
    if not slot:
        raise NotFound("Slot not found")
    return slot


async def list_slots_for_user(session: AsyncSession, user_id: int) -> list[Slot]:
    result = await session.execute(
        select(Slot).where(Slot.user_id == user_id).order_by(Slot.start_time)
    )
    return list(result.scalars().all())


async def create_slot(session: AsyncSession, user_id: int, data: SlotCreate) -> Slot:
    start = naive_utc(data.start_time)
    end = naive_utc(data.end_time)
    _check_window(start, end)
    if data.status not in OWNER_SETTABLE_STATUSES:
        raise ValidationError("New slots can only be BUSY or SWAPPABLE")
    slot = Slot(
        user_id=user_id,
        title=data.title,
        start_time=start,
        end_time=end,
        status=data.status,
    )
    session.add(slot)
    await session.flush()
    await session.refresh(slot)
    return slot


async def update_slot(
    session: AsyncSession, slot_id: int, user_id: int, data: SlotUpdate
) -> Slot:
    """Partial update. A status change goes through the lock guard; title and
    times may be edited even while the slot is locked in a swap."""
    slot = await get_owned_slot(session, slot_id, user_id)
    start = naive_utc(data.start_time) if data.start_time else slot.start_time
    end = naive_utc(data.end_time) if data.end_time else slot.end_time
    _check_window(start, end)

    if data.status is not None and data.status != slot.status:
        await guarded_status_update(session, slot_id, user_id, data.status)

    if data.title:
        slot.title = data.title
    slot.start_time = start
    slot.end_time = end
    slot.updated_at = utc_naive_now()
    session.add(slot)
    await session.flush()
    await session.refresh(slot)
    return slot


async def delete_slot(session: AsyncSession, slot_id: int, user_id: int) -> None:
    await guarded_delete(session, slot_id, user_id)


async def list_swappable_slots(
    session: AsyncSession, exclude_user_id: int
) -> list[tuple[Slot, User]]:
    """SWAPPABLE slots of everyone except the given user, soonest first, with owners."""
    result = await session.execute(
        select(Slot, User)
        .join(User, User.id == Slot.user_id)
        .where(Slot.status == SlotStatus.SWAPPABLE, Slot.user_id != exclude_user_id)
        .order_by(Slot.start_time, Slot.id)
    )
    return [(slot, user) for slot, user in result.all()]
