"""Seeding and inspection helpers shared by the service and API tests."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, or_, select

from app.models.slot import Slot, SlotStatus
from app.models.swap_request import SwapRequest, SwapStatus
from app.models.user import User

BASE_DAY = datetime(2030, 3, 4)


@dataclass(frozen=True)
class World:
    alice: int
    bob: int
    carol: int
    s1: int  # alice, swappable
    s2: int  # bob, swappable
    s3: int  # carol, swappable
    s4: int  # alice, busy


async def in_transaction(maker, op, *args, **kwargs):
    """Run `op(session, ...)` as one unit of work, the way a request does."""
    async with maker() as session:
        try:
            result = await op(session, *args, **kwargs)
            await session.commit()
            return result
        except Exception:
            await session.rollback()
            raise


async def add_user(maker, email: str, full_name: str | None = None) -> int:
    async with maker() as session:
        user = User(email=email, full_name=full_name, hashed_password="not-a-real-hash")
        session.add(user)
        await session.commit()
        return user.id


async def add_slot(
    maker,
    user_id: int,
    title: str = "Shift",
    hour: int = 9,
    status: SlotStatus = SlotStatus.SWAPPABLE,
) -> int:
    start = BASE_DAY + timedelta(hours=hour)
    async with maker() as session:
        slot = Slot(
            user_id=user_id,
            title=title,
            start_time=start,
            end_time=start + timedelta(hours=1),
            status=status,
        )
        session.add(slot)
        await session.commit()
        return slot.id


async def fetch_slot(maker, slot_id: int) -> Slot | None:
    async with maker() as session:
        result = await session.execute(select(Slot).where(Slot.id == slot_id))
        return result.scalar_one_or_none()


async def fetch_request(maker, request_id: int) -> SwapRequest | None:
    async with maker() as session:
        result = await session.execute(select(SwapRequest).where(SwapRequest.id == request_id))
        return result.scalar_one_or_none()


async def count_requests(maker) -> int:
    async with maker() as session:
        result = await session.execute(select(func.count()).select_from(SwapRequest))
        return result.scalar_one()


async def lock_invariant_violations(maker) -> list[str]:
    """Slots where SWAP_PENDING does not coincide with exactly one PENDING request."""
    problems: list[str] = []
    async with maker() as session:
        slots = (await session.execute(select(Slot))).scalars().all()
        for slot in slots:
            pending = await session.execute(
                select(func.count())
                .select_from(SwapRequest)
                .where(
                    SwapRequest.status == SwapStatus.PENDING,
                    or_(
                        SwapRequest.offered_slot_id == slot.id,
                        SwapRequest.wanted_slot_id == slot.id,
                    ),
                )
            )
            n = pending.scalar_one()
            if n > 1:
                problems.append(f"slot {slot.id} in {n} pending requests")
            if (slot.status == SlotStatus.SWAP_PENDING) != (n == 1):
                problems.append(f"slot {slot.id} is {slot.status.value} with {n} pending requests")
    return problems
