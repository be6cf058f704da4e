from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_session
from app.api.schemas.swap import (
    CreateSwapRequest,
    RespondSwapRequest,
    SwappableSlot,
    SwapRequestPublic,
    SwapRequestsResponse,
    SwapResponseConfirmation,
)
from app.models.slot import Slot, SlotPublic
from app.models.swap_request import SwapRequest
from app.models.user import User, UserSummary
from app.services.slot_service import list_swappable_slots
from app.services.swap_service import (
    list_swap_requests,
    load_related,
    request_swap,
    respond_to_swap,
)

router = APIRouter(prefix="/swaps", tags=["swaps"])


def _slot_public(slot: Slot | None) -> SlotPublic | None:
    return SlotPublic.model_validate(slot) if slot else None


def _user_summary(user: User | None) -> UserSummary | None:
    return UserSummary.model_validate(user) if user else None


def _to_public(
    r: SwapRequest,
    slots: dict[int, Slot],
    users: dict[int, User],
    counterpart_id: int,
) -> SwapRequestPublic:
    return SwapRequestPublic(
        id=r.id,
        status=r.status,
        created_at=r.created_at,
        responded_at=r.responded_at,
        requester_id=r.requester_id,
        responder_id=r.responder_id,
        offered_slot=_slot_public(slots.get(r.offered_slot_id)),
        wanted_slot=_slot_public(slots.get(r.wanted_slot_id)),
        counterpart=_user_summary(users.get(counterpart_id)),
    )


@router.get("/swappable-slots", response_model=list[SwappableSlot])
async def swappable_slots(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> list[SwappableSlot]:
    """All SWAPPABLE slots owned by other users, soonest first."""
    rows = await list_swappable_slots(session, exclude_user_id=current_user.id)
    return [
        SwappableSlot(**SlotPublic.model_validate(slot).model_dump(), owner=UserSummary.model_validate(owner))
        for slot, owner in rows
    ]


@router.get("/requests", response_model=SwapRequestsResponse)
async def my_swap_requests(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> SwapRequestsResponse:
    incoming, outgoing = await list_swap_requests(session, current_user.id)
    slots, users = await load_related(session, incoming + outgoing)
    return SwapRequestsResponse(
        incoming=[_to_public(r, slots, users, r.requester_id) for r in incoming],
        outgoing=[_to_public(r, slots, users, r.responder_id) for r in outgoing],
    )


@router.post("/requests", response_model=SwapRequestPublic, status_code=status.HTTP_201_CREATED)
async def create_swap_request(
    body: CreateSwapRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> SwapRequestPublic:
    swap = await request_swap(session, current_user.id, body.offered_slot_id, body.wanted_slot_id)
    slots, users = await load_related(session, [swap])
    await session.commit()
    return _to_public(swap, slots, users, swap.responder_id)


@router.post("/requests/{request_id}/respond", response_model=SwapResponseConfirmation)
async def respond_to_swap_request(
    request_id: int,
    body: RespondSwapRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> SwapResponseConfirmation:
    resolution = await respond_to_swap(session, current_user.id, request_id, body.accepted)
    await session.commit()
    return SwapResponseConfirmation(
        request_id=resolution.request.id,
        status=resolution.request.status,
        message=resolution.message,
    )
