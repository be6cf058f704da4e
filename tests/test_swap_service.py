"""
Tests for the swap coordinator (app.services.swap_service).

Covers:
- request_swap preconditions and every error kind
- accept / reject round-trips and ownership exchange
- terminal requests cannot be answered again
- rollback leaves no partial state
- concurrent requests racing for the same slot
- incoming / outgoing listings and the swappable marketplace
"""

import asyncio

import pytest
from sqlalchemy import event, update
from sqlalchemy.dialects import postgresql

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
from app.models.swap_request import SwapStatus
from app.services.slot_service import list_swappable_slots
from app.services.swap_service import (
    list_swap_requests,
    load_related,
    request_swap,
    respond_to_swap,
)
from tests.helpers import (
    count_requests,
    fetch_request,
    fetch_slot,
    in_transaction,
    lock_invariant_violations,
)


# =============================================================================
# request_swap
# =============================================================================


class TestRequestSwap:
    """Proposing a swap."""

    def test_locks_both_slots_and_creates_pending_request(self, run_db, world):
        async def scenario(maker):
            swap = await in_transaction(maker, request_swap, world.alice, world.s1, world.s2)
            return swap, await fetch_slot(maker, world.s1), await fetch_slot(maker, world.s2)

        swap, s1, s2 = run_db(scenario)
        assert swap.status == SwapStatus.PENDING
        assert swap.requester_id == world.alice
        assert swap.responder_id == world.bob
        assert swap.offered_slot_id == world.s1
        assert swap.wanted_slot_id == world.s2
        assert s1.status == SlotStatus.SWAP_PENDING
        assert s2.status == SlotStatus.SWAP_PENDING
        assert run_db(lock_invariant_violations) == []

    def test_unknown_offered_slot_is_not_found(self, run_db, world):
        async def scenario(maker):
            await in_transaction(maker, request_swap, world.alice, 9999, world.s2)

        with pytest.raises(NotFound):
            run_db(scenario)

    def test_unknown_wanted_slot_is_not_found(self, run_db, world):
        async def scenario(maker):
            await in_transaction(maker, request_swap, world.alice, world.s1, 9999)

        with pytest.raises(NotFound):
            run_db(scenario)

    def test_offering_someone_elses_slot_is_not_owner(self, run_db, world):
        async def scenario(maker):
            await in_transaction(maker, request_swap, world.alice, world.s3, world.s2)

        with pytest.raises(NotOwner):
            run_db(scenario)

    def test_wanting_own_slot_is_self_trade(self, run_db, world):
        async def scenario(maker):
            await in_transaction(maker, request_swap, world.alice, world.s1, world.s4)

        with pytest.raises(SelfTrade):
            run_db(scenario)

    def test_same_slot_on_both_sides_is_invalid(self, run_db, world):
        async def scenario(maker):
            await in_transaction(maker, request_swap, world.alice, world.s1, world.s1)

        with pytest.raises(ValidationError):
            run_db(scenario)

    def test_busy_offered_slot_is_not_swappable(self, run_db, world):
        async def scenario(maker):
            await in_transaction(maker, request_swap, world.alice, world.s4, world.s2)

        with pytest.raises(NotSwappable):
            run_db(scenario)

    def test_slot_in_pending_swap_is_locked(self, run_db, world):
        async def scenario(maker):
            await in_transaction(maker, request_swap, world.alice, world.s1, world.s2)
            await in_transaction(maker, request_swap, world.carol, world.s3, world.s2)

        with pytest.raises(SlotLocked):
            run_db(scenario)

    def test_failed_request_leaves_no_partial_state(self, run_db, world):
        """Wanted slot is busy: the offered slot must stay SWAPPABLE and no row is created."""

        async def scenario(maker):
            async with maker() as session:
                await session.execute(
                    update(Slot).where(Slot.id == world.s2).values(status=SlotStatus.BUSY)
                )
                await session.commit()
            with pytest.raises(NotSwappable):
                await in_transaction(maker, request_swap, world.alice, world.s1, world.s2)
            return await fetch_slot(maker, world.s1), await count_requests(maker)

        s1, n = run_db(scenario)
        assert s1.status == SlotStatus.SWAPPABLE
        assert n == 0

    def test_errors_map_to_taxonomy(self):
        assert issubclass(SlotLocked, Conflict)
        assert issubclass(NotSwappable, Conflict)
        assert issubclass(AlreadyResolved, Conflict)
        assert NotOwner.status_code == 403
        assert NotResponder.status_code == 403
        assert SelfTrade.status_code == 400
        assert NotFound.status_code == 404
        assert SlotLocked.status_code == 409


# =============================================================================
# respond_to_swap
# =============================================================================


class TestRespondToSwap:
    """Accepting and rejecting."""

    def test_accept_exchanges_owners_and_sets_busy(self, run_db, world):
        async def scenario(maker):
            swap = await in_transaction(maker, request_swap, world.alice, world.s1, world.s2)
            resolution = await in_transaction(maker, respond_to_swap, world.bob, swap.id, True)
            return (
                resolution,
                await fetch_slot(maker, world.s1),
                await fetch_slot(maker, world.s2),
                await fetch_request(maker, swap.id),
            )

        resolution, s1, s2, stored = run_db(scenario)
        assert resolution.message == "Swap accepted successfully"
        assert resolution.request.status == SwapStatus.ACCEPTED
        assert s1.user_id == world.bob
        assert s2.user_id == world.alice
        assert s1.status == SlotStatus.BUSY
        assert s2.status == SlotStatus.BUSY
        assert stored.status == SwapStatus.ACCEPTED
        assert stored.responded_at is not None
        assert run_db(lock_invariant_violations) == []

    def test_reject_restores_swappable_and_keeps_owners(self, run_db, world):
        async def scenario(maker):
            swap = await in_transaction(maker, request_swap, world.alice, world.s1, world.s2)
            resolution = await in_transaction(maker, respond_to_swap, world.bob, swap.id, False)
            return (
                resolution,
                await fetch_slot(maker, world.s1),
                await fetch_slot(maker, world.s2),
            )

        resolution, s1, s2 = run_db(scenario)
        assert resolution.message == "Swap rejected"
        assert resolution.request.status == SwapStatus.REJECTED
        assert (s1.user_id, s1.status) == (world.alice, SlotStatus.SWAPPABLE)
        assert (s2.user_id, s2.status) == (world.bob, SlotStatus.SWAPPABLE)
        assert run_db(lock_invariant_violations) == []

    @pytest.mark.parametrize("first, second", [(True, False), (False, True), (True, True)])
    def test_resolved_request_cannot_be_answered_again(self, run_db, world, first, second):
        async def scenario(maker):
            swap = await in_transaction(maker, request_swap, world.alice, world.s1, world.s2)
            await in_transaction(maker, respond_to_swap, world.bob, swap.id, first)
            await in_transaction(maker, respond_to_swap, world.bob, swap.id, second)

        with pytest.raises(AlreadyResolved):
            run_db(scenario)

    def test_second_answer_does_not_undo_the_first(self, run_db, world):
        async def scenario(maker):
            swap = await in_transaction(maker, request_swap, world.alice, world.s1, world.s2)
            await in_transaction(maker, respond_to_swap, world.bob, swap.id, True)
            with pytest.raises(AlreadyResolved):
                await in_transaction(maker, respond_to_swap, world.bob, swap.id, False)
            return await fetch_slot(maker, world.s1), await fetch_request(maker, swap.id)

        s1, stored = run_db(scenario)
        assert s1.user_id == world.bob
        assert stored.status == SwapStatus.ACCEPTED

    def test_requester_cannot_answer_own_request(self, run_db, world):
        async def scenario(maker):
            swap = await in_transaction(maker, request_swap, world.alice, world.s1, world.s2)
            await in_transaction(maker, respond_to_swap, world.alice, swap.id, True)

        with pytest.raises(NotResponder):
            run_db(scenario)

    def test_unknown_request_is_not_found(self, run_db, world):
        async def scenario(maker):
            await in_transaction(maker, respond_to_swap, world.bob, 4242, True)

        with pytest.raises(NotFound):
            run_db(scenario)

    def test_inconsistent_slot_state_is_conflict_and_rolls_back(self, run_db, world):
        """If a slot left SWAP_PENDING behind the coordinator's back, nothing is committed."""

        async def scenario(maker):
            swap = await in_transaction(maker, request_swap, world.alice, world.s1, world.s2)
            async with maker() as session:
                await session.execute(
                    update(Slot).where(Slot.id == world.s2).values(status=SlotStatus.BUSY)
                )
                await session.commit()
            with pytest.raises(Conflict):
                await in_transaction(maker, respond_to_swap, world.bob, swap.id, True)
            return await fetch_request(maker, swap.id), await fetch_slot(maker, world.s1)

        stored, s1 = run_db(scenario)
        assert stored.status == SwapStatus.PENDING
        assert (s1.user_id, s1.status) == (world.alice, SlotStatus.SWAP_PENDING)

    def test_swapped_slot_can_be_offered_again_by_new_owner(self, run_db, world):
        async def scenario(maker):
            swap = await in_transaction(maker, request_swap, world.alice, world.s1, world.s2)
            await in_transaction(maker, respond_to_swap, world.bob, swap.id, True)
            # Bob now owns s1; it came back BUSY, so he flags it first
            async with maker() as session:
                await session.execute(
                    update(Slot).where(Slot.id == world.s1).values(status=SlotStatus.SWAPPABLE)
                )
                await session.commit()
            return await in_transaction(maker, request_swap, world.bob, world.s1, world.s3)

        swap = run_db(scenario)
        assert swap.requester_id == world.bob
        assert swap.responder_id == world.carol

    def test_slot_rows_locked_in_id_order_before_slot_writes(self, run_db, world):
        """Responding locks slots the way request_swap does, whichever side has the lower id."""

        async def scenario(maker):
            # Bob offers s2 for s1, so the offered slot has the higher id
            swap = await in_transaction(maker, request_swap, world.bob, world.s2, world.s1)
            statements: list[str] = []

            def record(state):
                statements.append(str(state.statement.compile(dialect=postgresql.dialect())))

            async with maker() as session:
                event.listen(session.sync_session, "do_orm_execute", record)
                await respond_to_swap(session, world.alice, swap.id, True)
                await session.commit()
            return statements

        slot_statements = [
            s for s in run_db(scenario) if "FROM slots" in s or s.startswith("UPDATE slots")
        ]
        assert len(slot_statements) == 3
        assert "ORDER BY slots.id" in slot_statements[0]
        assert "FOR UPDATE" in slot_statements[0]
        assert all(s.startswith("UPDATE slots") for s in slot_statements[1:])


# =============================================================================
# Concurrency
# =============================================================================


class TestConcurrentRequests:
    """Two actors racing for the same slot."""

    def test_exactly_one_of_two_racing_requests_wins(self, run_db, world):
        async def scenario(maker):
            return await asyncio.gather(
                in_transaction(maker, request_swap, world.alice, world.s1, world.s2),
                in_transaction(maker, request_swap, world.carol, world.s3, world.s2),
                return_exceptions=True,
            )

        outcomes = run_db(scenario)
        winners = [o for o in outcomes if not isinstance(o, Exception)]
        losers = [o for o in outcomes if isinstance(o, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], Conflict)
        assert run_db(count_requests) == 1
        assert run_db(lock_invariant_violations) == []

    def test_racing_responses_resolve_once(self, run_db, world):
        async def scenario(maker):
            swap = await in_transaction(maker, request_swap, world.alice, world.s1, world.s2)
            outcomes = await asyncio.gather(
                in_transaction(maker, respond_to_swap, world.bob, swap.id, True),
                in_transaction(maker, respond_to_swap, world.bob, swap.id, False),
                return_exceptions=True,
            )
            return outcomes, await fetch_slot(maker, world.s1)

        outcomes, s1 = run_db(scenario)
        errors = [o for o in outcomes if isinstance(o, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], AlreadyResolved)
        assert s1.status in (SlotStatus.BUSY, SlotStatus.SWAPPABLE)
        assert run_db(lock_invariant_violations) == []


# =============================================================================
# Listings
# =============================================================================


class TestListings:
    """Marketplace and request inbox/outbox."""

    def test_swappable_slots_exclude_own_and_non_swappable(self, run_db, world):
        async def scenario(maker):
            async with maker() as session:
                return await list_swappable_slots(session, exclude_user_id=world.alice)

        rows = run_db(scenario)
        assert [slot.id for slot, _ in rows] == [world.s2, world.s3]
        assert [owner.id for _, owner in rows] == [world.bob, world.carol]

    def test_pending_slots_leave_the_marketplace(self, run_db, world):
        async def scenario(maker):
            await in_transaction(maker, request_swap, world.alice, world.s1, world.s2)
            async with maker() as session:
                return await list_swappable_slots(session, exclude_user_id=world.carol)

        rows = run_db(scenario)
        assert [slot.id for slot, _ in rows] == []

    def test_incoming_and_outgoing(self, run_db, world):
        async def scenario(maker):
            first = await in_transaction(maker, request_swap, world.alice, world.s1, world.s2)
            await in_transaction(maker, respond_to_swap, world.bob, first.id, False)
            second = await in_transaction(maker, request_swap, world.carol, world.s3, world.s1)
            async with maker() as session:
                alice_in, alice_out = await list_swap_requests(session, world.alice)
                slots, users = await load_related(session, alice_in + alice_out)
            return first, second, alice_in, alice_out, slots, users

        first, second, alice_in, alice_out, slots, users = run_db(scenario)
        assert [r.id for r in alice_in] == [second.id]
        assert [r.id for r in alice_out] == [first.id]
        assert alice_out[0].status == SwapStatus.REJECTED
        assert set(slots) == {world.s1, world.s2, world.s3}
        assert set(users) == {world.alice, world.bob, world.carol}
        assert slots[world.s1].status == SlotStatus.SWAP_PENDING
