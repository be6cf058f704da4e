"""
Lock guard for slots that take part in an unresolved swap.

A slot referenced by a PENDING swap request is locked: its owner may still edit
its title or times, but not its status, and may not delete it. The checks here
are folded into the WHERE clause of the mutating statement itself, so a
concurrent request_swap cannot slip in between "is it locked?" and the write.
"""

import logging
from collections.abc import Iterable

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col

from app.core.clock import utc_naive_now
from app.core.exceptions import NotFound, SlotLocked, ValidationError
from app.models.slot import OWNER_SETTABLE_STATUSES, Slot, SlotStatus
from app.models.swap_request import SwapRequest, SwapStatus

logger = logging.getLogger(__name__)


def _references_any(slot_ids: Iterable[int]):
    ids = list(slot_ids)
    return or_(
        col(SwapRequest.offered_slot_id).in_(ids),
        col(SwapRequest.wanted_slot_id).in_(ids),
    )


def _pending_reference_exists(slot_id: int):
    return (
        select(SwapRequest.id)
        .where(SwapRequest.status == SwapStatus.PENDING, _references_any([slot_id]))
        .exists()
    )


async def find_pending_referencing(
    session: AsyncSession, slot_ids: Iterable[int]
) -> list[SwapRequest]:
    """PENDING swap requests that reference any of the given slots."""
    result = await session.execute(
        select(SwapRequest).where(
            SwapRequest.status == SwapStatus.PENDING,
            _references_any(slot_ids),
        )
    )
    return list(result.scalars().all())


async def is_locked(session: AsyncSession, slot_id: int) -> bool:
    result = await session.execute(select(_pending_reference_exists(slot_id)))
    return bool(result.scalar())


async def _raise_for_missed_write(session: AsyncSession, slot_id: int, owner_id: int) -> None:
    """A guarded write touched no row: work out whether the slot is gone or locked."""
    result = await session.execute(
        select(Slot.id).where(Slot.id == slot_id, Slot.user_id == owner_id)
    )
    if result.scalar_one_or_none() is None:
        raise NotFound("Slot not found")
    logger.info("Rejected change to locked slot %s by user %s", slot_id, owner_id)
    raise SlotLocked("Slot is involved in a pending swap")


async def guarded_status_update(
    session: AsyncSession, slot_id: int, owner_id: int, new_status: SlotStatus
) -> None:
    """Set an owner-chosen status unless the slot is locked, in one statement."""
    if new_status not in OWNER_SETTABLE_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(s.value for s in OWNER_SETTABLE_STATUSES)}")
    result = await session.execute(
        update(Slot)
        .where(
            Slot.id == slot_id,
            Slot.user_id == owner_id,
            Slot.status != SlotStatus.SWAP_PENDING,
            ~_pending_reference_exists(slot_id),
        )
        .values(status=new_status, updated_at=utc_naive_now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await _raise_for_missed_write(session, slot_id, owner_id)


async def guarded_delete(session: AsyncSession, slot_id: int, owner_id: int) -> None:
    result = await session.execute(
        delete(Slot)
        .where(
            Slot.id == slot_id,
            Slot.user_id == owner_id,
            Slot.status != SlotStatus.SWAP_PENDING,
            ~_pending_reference_exists(slot_id),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await _raise_for_missed_write(session, slot_id, owner_id)
