from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_session
from app.models.slot import Slot, SlotCreate, SlotPublic, SlotUpdate
from app.models.user import User
from app.services.slot_service import (
    create_slot,
    delete_slot,
    list_slots_for_user,
    update_slot,
)

router = APIRouter(prefix="/slots", tags=["slots"])


def _to_public(slot: Slot) -> SlotPublic:
    return SlotPublic.model_validate(slot)


@router.get("", response_model=list[SlotPublic])
async def list_my_slots(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> list[SlotPublic]:
    """The caller's own slots, soonest first."""
    slots = await list_slots_for_user(session, current_user.id)
    return [_to_public(s) for s in slots]


@router.post("", response_model=SlotPublic, status_code=status.HTTP_201_CREATED)
async def create_my_slot(
    body: SlotCreate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> SlotPublic:
    slot = await create_slot(session, current_user.id, body)
    await session.commit()
    return _to_public(slot)


@router.put("/{slot_id}", response_model=SlotPublic)
async def update_my_slot(
    slot_id: int,
    body: SlotUpdate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> SlotPublic:
    """Partial update. Status changes are refused (409) while the slot is in a pending swap."""
    slot = await update_slot(session, slot_id, current_user.id, body)
    await session.commit()
    return _to_public(slot)


@router.delete("/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_my_slot(
    slot_id: int,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> None:
    await delete_slot(session, slot_id, current_user.id)
    await session.commit()
