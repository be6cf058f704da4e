"""
Swap negotiation: proposing a slot exchange and resolving it.

Slot status machine:
    BUSY <-> SWAPPABLE          owner, only while unlocked (see swap_guard)
    SWAPPABLE -> SWAP_PENDING   request_swap
    SWAP_PENDING -> BUSY        accept, owners exchanged
    SWAP_PENDING -> SWAPPABLE   reject

Swap request machine:
    PENDING -> ACCEPTED | REJECTED, both terminal.

Every write below is a compare-and-set guarded by the state it expects, so of
two operations racing on the same slot or request exactly one matches its
rows and the other raises a Conflict. All functions run inside the caller's
transaction; raising aborts it as a whole.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col

from app.core.clock import utc_naive_now
from app.core.exceptions import (
    AlreadyResolved,
    Conflict,
    NotFound,
    NotOwner,
    NotResponder,
    NotSwappable,
    SelfTrade,
    SlotLocked,
    ValidationError,
)
from app.models.slot import Slot, SlotStatus
from app.models.swap_request import SwapRequest, SwapStatus
from app.models.user import User
from app.services.swap_guard import find_pending_referencing

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    """What a response does to the request and to both of its slots."""

    request_status: SwapStatus
    slot_status: SlotStatus
    exchange_owners: bool
    message: str


# Keyed by (current request status, requested outcome). Anything missing is illegal.
TRANSITIONS: dict[tuple[SwapStatus, SwapStatus], Transition] = {
    (SwapStatus.PENDING, SwapStatus.ACCEPTED): Transition(
        request_status=SwapStatus.ACCEPTED,
        slot_status=SlotStatus.BUSY,
        exchange_owners=True,
        message="Swap accepted successfully",
    ),
    (SwapStatus.PENDING, SwapStatus.REJECTED): Transition(
        request_status=SwapStatus.REJECTED,
        slot_status=SlotStatus.SWAPPABLE,
        exchange_owners=False,
        message="Swap rejected",
    ),
}


def resolve_transition(current: SwapStatus, accepted: bool) -> Transition:
    outcome = SwapStatus.ACCEPTED if accepted else SwapStatus.REJECTED
    transition = TRANSITIONS.get((current, outcome))
    if transition is None:
        raise AlreadyResolved(f"Swap request already {current.value.lower()}")
    return transition


@dataclass(frozen=True)
class SwapResolution:
    request: SwapRequest
    message: str


async def _lock_slots(session: AsyncSession, slot_ids: Sequence[int]) -> dict[int, Slot]:
    """Load slots in id order, row-locked where the backend supports it."""
    result = await session.execute(
        select(Slot)
        .where(col(Slot.id).in_(slot_ids))
        .order_by(Slot.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {slot.id: slot for slot in result.scalars().all()}


async def request_swap(
    session: AsyncSession, actor_id: int, offered_slot_id: int, wanted_slot_id: int
) -> SwapRequest:
    """Propose trading actor's offered slot for someone else's wanted slot.

    Both slots move to SWAP_PENDING and a PENDING request is created, or nothing
    changes at all.
    """
    if offered_slot_id == wanted_slot_id:
        raise ValidationError("Offered and wanted slot must be different")

    slots = await _lock_slots(session, [offered_slot_id, wanted_slot_id])
    offered = slots.get(offered_slot_id)
    wanted = slots.get(wanted_slot_id)
    if offered is None:
        raise NotFound("Your slot not found")
    if wanted is None:
        raise NotFound("Their slot not found")
    if offered.user_id != actor_id:
        raise NotOwner()
    if wanted.user_id == actor_id:
        raise SelfTrade()

    if SlotStatus.SWAP_PENDING in (offered.status, wanted.status) or await find_pending_referencing(
        session, slots.keys()
    ):
        raise SlotLocked()
    if offered.status != SlotStatus.SWAPPABLE:
        raise NotSwappable("Your slot is not marked as swappable")
    if wanted.status != SlotStatus.SWAPPABLE:
        raise NotSwappable("Their slot is not marked as swappable")

    # Compare-and-set both slots; a concurrent request that got there first
    # leaves fewer than two rows matching.
    result = await session.execute(
        update(Slot)
        .where(
            or_(
                and_(Slot.id == offered.id, Slot.user_id == offered.user_id),
                and_(Slot.id == wanted.id, Slot.user_id == wanted.user_id),
            ),
            Slot.status == SlotStatus.SWAPPABLE,
        )
        .values(status=SlotStatus.SWAP_PENDING, updated_at=utc_naive_now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 2:
        logger.warning(
            "Lost race locking slots %s/%s for user %s (matched %s)",
            offered.id,
            wanted.id,
            actor_id,
            result.rowcount,
        )
        raise SlotLocked()

    swap = SwapRequest(
        offered_slot_id=offered.id,
        wanted_slot_id=wanted.id,
        requester_id=actor_id,
        responder_id=wanted.user_id,
        status=SwapStatus.PENDING,
    )
    session.add(swap)
    await session.flush()
    await session.refresh(swap)
    logger.info(
        "Swap request %s created: user %s offers slot %s for slot %s of user %s",
        swap.id,
        actor_id,
        offered.id,
        wanted.id,
        wanted.user_id,
    )
    return swap


async def _get_request(session: AsyncSession, request_id: int) -> SwapRequest | None:
    result = await session.execute(
        select(SwapRequest)
        .where(SwapRequest.id == request_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def respond_to_swap(
    session: AsyncSession, actor_id: int, request_id: int, accepted: bool
) -> SwapResolution:
    """Accept or reject a pending swap addressed to the actor."""
    swap = await _get_request(session, request_id)
    if swap is None:
        raise NotFound("Swap request not found")
    if swap.responder_id != actor_id:
        raise NotResponder()
    transition = resolve_transition(swap.status, accepted)
    # Same lock order as request_swap (slot id ascending) so the two cannot deadlock
    await _lock_slots(session, [swap.offered_slot_id, swap.wanted_slot_id])

    result = await session.execute(
        update(SwapRequest)
        .where(SwapRequest.id == swap.id, SwapRequest.status == SwapStatus.PENDING)
        .values(status=transition.request_status, responded_at=utc_naive_now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise AlreadyResolved()

    # Offered slot belongs to the requester, wanted slot to the responder.
    plan = [
        (swap.offered_slot_id, swap.requester_id, swap.responder_id),
        (swap.wanted_slot_id, swap.responder_id, swap.requester_id),
    ]
    for slot_id, current_owner, new_owner in plan:
        values = {"status": transition.slot_status, "updated_at": utc_naive_now()}
        if transition.exchange_owners:
            values["user_id"] = new_owner
        result = await session.execute(
            update(Slot)
            .where(
                Slot.id == slot_id,
                Slot.user_id == current_owner,
                Slot.status == SlotStatus.SWAP_PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.error(
                "Swap request %s: slot %s not pending for user %s, aborting",
                swap.id,
                slot_id,
                current_owner,
            )
            raise Conflict("Slot state is inconsistent with the swap request")

    await session.refresh(swap)
    logger.info(
        "Swap request %s %s by user %s",
        swap.id,
        transition.request_status.value.lower(),
        actor_id,
    )
    return SwapResolution(request=swap, message=transition.message)


async def list_swap_requests(
    session: AsyncSession, user_id: int
) -> tuple[list[SwapRequest], list[SwapRequest]]:
    """(incoming, outgoing) requests for the user, newest first."""
    newest_first = (col(SwapRequest.created_at).desc(), col(SwapRequest.id).desc())
    incoming = await session.execute(
        select(SwapRequest).where(SwapRequest.responder_id == user_id).order_by(*newest_first)
    )
    outgoing = await session.execute(
        select(SwapRequest).where(SwapRequest.requester_id == user_id).order_by(*newest_first)
    )
    return list(incoming.scalars().all()), list(outgoing.scalars().all())


async def load_related(
    session: AsyncSession, requests: Iterable[SwapRequest]
) -> tuple[dict[int, Slot], dict[int, User]]:
    """Slots and users referenced by the given requests, keyed by id."""
    requests = list(requests)
    if not requests:
        return {}, {}
    slot_ids = {r.offered_slot_id for r in requests} | {r.wanted_slot_id for r in requests}
    user_ids = {r.requester_id for r in requests} | {r.responder_id for r in requests}
    # Bulk CAS writes bypass the identity map, so reload what the session holds
    slots = await session.execute(
        select(Slot).where(col(Slot.id).in_(slot_ids)).execution_options(populate_existing=True)
    )
    users = await session.execute(select(User).where(col(User.id).in_(user_ids)))
    return (
        {s.id: s for s in slots.scalars().all()},
        {u.id: u for u in users.scalars().all()},
    )
