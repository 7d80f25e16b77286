import threading
from datetime import date, datetime

import pytest

from seat_engine.allocator import BookingAllocator, InventoryChange
from seat_engine.config import EngineConfig
from seat_engine.errors import (
    ConcurrentModification, HoldExpired, InvalidBookingState, InvalidJourneyDate,
    InvalidRange, InvalidRequest, UnknownBooking, UnknownCoachClass,
)
from seat_engine.models import BookingStatus, CancelReason, InventoryKey, TrainRun
from seat_engine.route_model import RouteModel
from seat_engine.store import MemoryInventoryStore

JOURNEY_DATE = date(2026, 1, 10)
SL = InventoryKey("12301", JOURNEY_DATE, "SL")

def available(allocator, key, from_order, to_order):
    inventory = allocator.store.load(key)
    return allocator.availability.available_count(inventory, from_order, to_order)

def status_of(allocator, booking_id):
    booking, _ = allocator.get_booking(booking_id)
    return booking.status

def test_hold_then_waitlist_then_promote_on_cancel(allocator, run):
    a = allocator.reserve(run, "SL", 1, 5, 1)
    b = allocator.reserve(run, "SL", 3, 7, 1)
    c = allocator.reserve(run, "SL", 1, 5, 1)

    assert (a.status, a.seats) == (BookingStatus.HELD, (1,))
    assert (b.status, b.seats) == (BookingStatus.HELD, (2,))
    assert a.expires_at == datetime(2026, 1, 1, 8, 15)
    assert c.status == BookingStatus.WAITLISTED
    assert c.waitlist_position == 1
    assert c.seats == ()

    cancelled = allocator.cancel(a.booking_id)
    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.seats == ()

    _, promoted = allocator.get_booking(c.booking_id)
    assert promoted.status == BookingStatus.CONFIRMED
    assert promoted.seats == (1,)
    assert promoted.waitlist_position is None
    assert allocator.store.load(SL).seat_conflicts() == []

def test_partially_free_seat_is_not_bookable(allocator, run):
    held = allocator.reserve(run, "3A", 1, 3, 1)
    assert held.status == BookingStatus.HELD

    result = allocator.reserve(run, "3A", 1, 5, 1)
    assert result.status == BookingStatus.WAITLISTED

    inventory = allocator.store.load(InventoryKey("12301", JOURNEY_DATE, "3A"))
    snapshot = allocator.availability.snapshot(inventory, 1, 5)
    assert (snapshot.total_available, snapshot.partially_available) == (0, 1)

def test_reserve_and_cancel_restores_availability(allocator, run):
    allocator.reserve(run, "SL", 2, 6, 1)
    before = available(allocator, SL, 1, 8)

    result = allocator.reserve(run, "SL", 1, 8, 1)
    assert available(allocator, SL, 1, 8) == before - 1

    allocator.cancel(result.booking_id)
    assert available(allocator, SL, 1, 8) == before

def test_fragmented_seats_fall_back_to_waitlist(allocator, run):
    allocator.reserve(run, "SL", 1, 3, 1)
    blocker = allocator.reserve(run, "SL", 3, 8, 1)
    tail = allocator.reserve(run, "SL", 3, 5, 1)
    assert tail.seats == (2,)
    allocator.cancel(blocker.booking_id)

    # One seat is free on every leg of [1,5) but no single seat is free throughout
    assert available(allocator, SL, 1, 5) == 1
    result = allocator.reserve(run, "SL", 1, 5, 1)
    assert result.status == BookingStatus.WAITLISTED

def test_waitlist_promotes_in_ticket_order(allocator, run):
    holder = allocator.reserve(run, "3A", 1, 8, 1)
    first = allocator.reserve(run, "3A", 1, 8, 1)
    second = allocator.reserve(run, "3A", 5, 8, 1)
    assert (first.waitlist_position, second.waitlist_position) == (1, 2)

    allocator.cancel(holder.booking_id)

    assert status_of(allocator, first.booking_id) == BookingStatus.CONFIRMED
    assert status_of(allocator, second.booking_id) == BookingStatus.WAITLISTED
    _, still_waiting = allocator.get_booking(second.booking_id)
    assert still_waiting.waitlist_position == 1

def test_ticket_that_does_not_fit_keeps_its_place(allocator, run):
    a = allocator.reserve(run, "SL", 1, 8, 1)
    allocator.reserve(run, "SL", 1, 8, 1)
    large = allocator.reserve(run, "SL", 1, 8, 2)
    small = allocator.reserve(run, "SL", 1, 3, 1)

    allocator.cancel(a.booking_id)

    _, large_result = allocator.get_booking(large.booking_id)
    assert large_result.status == BookingStatus.WAITLISTED
    assert large_result.waitlist_position == 1
    assert status_of(allocator, small.booking_id) == BookingStatus.CONFIRMED

def test_cancel_waitlisted_booking_shifts_positions(allocator, run):
    allocator.reserve(run, "3A", 1, 8, 1)
    first = allocator.reserve(run, "3A", 1, 8, 1)
    second = allocator.reserve(run, "3A", 1, 8, 1)

    allocator.cancel(first.booking_id)

    _, result = allocator.get_booking(second.booking_id)
    assert result.waitlist_position == 1

def test_confirm_is_idempotent(allocator, run):
    held = allocator.reserve(run, "SL", 1, 8, 2)
    confirmed = allocator.confirm(held.booking_id)
    assert confirmed.status == BookingStatus.CONFIRMED
    assert confirmed.seats == (1, 2)
    assert confirmed.expires_at is None
    assert allocator.confirm(held.booking_id) == confirmed

def test_cancel_is_idempotent(allocator, run):
    held = allocator.reserve(run, "SL", 1, 8, 1)
    first = allocator.cancel(held.booking_id)
    assert allocator.cancel(held.booking_id) == first

def test_cannot_confirm_cancelled_or_waitlisted(allocator, run):
    held = allocator.reserve(run, "3A", 1, 8, 1)
    waiting = allocator.reserve(run, "3A", 1, 8, 1)

    with pytest.raises(InvalidBookingState):
        allocator.confirm(waiting.booking_id)

    allocator.cancel(held.booking_id)
    with pytest.raises(InvalidBookingState):
        allocator.confirm(held.booking_id)

def test_confirming_expired_hold_releases_it(allocator, run, clock):
    held = allocator.reserve(run, "3A", 1, 8, 1)
    waiting = allocator.reserve(run, "3A", 1, 8, 1)
    clock.advance(minutes=16)

    with pytest.raises(HoldExpired):
        allocator.confirm(held.booking_id)

    assert status_of(allocator, held.booking_id) == BookingStatus.CANCELLED
    assert status_of(allocator, waiting.booking_id) == BookingStatus.CONFIRMED

def test_hold_swept_by_a_later_booking_still_reports_expiry(allocator, run, clock):
    held = allocator.reserve(run, "SL", 1, 5, 1)
    clock.advance(minutes=16)
    allocator.reserve(run, "SL", 6, 8, 1)

    with pytest.raises(HoldExpired):
        allocator.confirm(held.booking_id)

    booking, result = allocator.get_booking(held.booking_id)
    assert result.status == BookingStatus.CANCELLED
    assert booking.cancel_reason == CancelReason.HOLD_EXPIRED

def test_hold_released_by_sweep_still_reports_expiry(allocator, run, clock):
    held = allocator.reserve(run, "3A", 1, 8, 1)
    clock.advance(minutes=15)
    assert allocator.release_expired() == [held.booking_id]

    with pytest.raises(HoldExpired):
        allocator.confirm(held.booking_id)

def test_cancel_records_requested_reason(allocator, run):
    held = allocator.reserve(run, "SL", 1, 8, 1)
    allocator.cancel(held.booking_id)

    booking, _ = allocator.get_booking(held.booking_id)
    assert booking.cancel_reason == CancelReason.REQUESTED

def test_release_expired_is_idempotent(allocator, run, clock):
    held = allocator.reserve(run, "3A", 1, 8, 1)
    waiting = allocator.reserve(run, "3A", 1, 8, 1)
    kept = allocator.reserve(run, "SL", 1, 8, 1)
    allocator.confirm(kept.booking_id)

    clock.advance(minutes=10)
    assert allocator.release_expired() == []

    clock.advance(minutes=5)
    assert allocator.release_expired() == [held.booking_id]
    assert allocator.release_expired() == []

    assert status_of(allocator, waiting.booking_id) == BookingStatus.CONFIRMED
    assert status_of(allocator, kept.booking_id) == BookingStatus.CONFIRMED

def test_reserve_expires_stale_holds_first(allocator, run, clock):
    stale = allocator.reserve(run, "3A", 1, 8, 1)
    clock.advance(minutes=20)

    fresh = allocator.reserve(run, "3A", 1, 8, 1)

    assert fresh.status == BookingStatus.HELD
    assert status_of(allocator, stale.booking_id) == BookingStatus.CANCELLED

def test_rejects_bad_requests(allocator, run):
    with pytest.raises(InvalidRange):
        allocator.reserve(run, "SL", 5, 5, 1)
    with pytest.raises(InvalidRequest):
        allocator.reserve(run, "SL", 1, 5, 3)
    with pytest.raises(InvalidRequest):
        allocator.reserve(run, "SL", 1, 5, 0)
    with pytest.raises(UnknownCoachClass):
        allocator.reserve(run, "1A", 1, 5, 1)
    with pytest.raises(UnknownBooking):
        allocator.confirm("missing")

def test_reserve_rejects_a_day_the_train_does_not_run(store, clock, route_factory):
    model = RouteModel()
    model.publish(route_factory(operating_days={0}))
    allocator = BookingAllocator(model, store, config=EngineConfig(), clock=clock)

    with pytest.raises(InvalidJourneyDate):
        allocator.reserve(TrainRun("12301", JOURNEY_DATE), "SL", 1, 3, 1)
    assert store.keys() == []

    monday = allocator.reserve(TrainRun("12301", date(2026, 1, 12)), "SL", 1, 3, 1)
    assert monday.status == BookingStatus.HELD

def test_listeners_see_every_commit(allocator, run):
    changes = []
    allocator.subscribe(changes.append)

    held = allocator.reserve(run, "SL", 1, 4, 1)
    allocator.confirm(held.booking_id)

    assert [c.action for c in changes] == ["reserve", "confirm"]
    assert changes[0] == InventoryChange(SL, "reserve", held.booking_id, BookingStatus.HELD)

def test_failing_listener_does_not_break_booking(allocator, run):
    def broken(change):
        raise RuntimeError("listener down")

    allocator.subscribe(broken)
    result = allocator.reserve(run, "SL", 1, 4, 1)
    assert result.status == BookingStatus.HELD

def test_concurrent_reservations_never_double_book(allocator, run):
    workers = 8
    barrier = threading.Barrier(workers)
    results = []
    errors = []

    def book():
        barrier.wait()
        try:
            results.append(allocator.reserve(run, "SL", 1, 8, 1))
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=book) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    statuses = [r.status for r in results]
    assert statuses.count(BookingStatus.HELD) == 2
    assert statuses.count(BookingStatus.WAITLISTED) == 6
    assert sorted(s for r in results for s in r.seats) == [1, 2]
    assert sorted(r.waitlist_position for r in results if r.waitlist_position) == [1, 2, 3, 4, 5, 6]
    assert allocator.store.load(SL).seat_conflicts() == []

class InterleavingStore(MemoryInventoryStore):
    """Runs ``before_save`` once, just ahead of the next save"""

    def __init__(self):
        super().__init__()
        self.before_save = None

    def save(self, inventory):
        hook, self.before_save = self.before_save, None
        if hook is not None:
            hook()
        return super().save(inventory)

def test_lost_update_is_detected(route_model, clock, run):
    store = InterleavingStore()
    config = EngineConfig(hold_ttl_minutes=15)
    first = BookingAllocator(route_model, store, config=config, clock=clock)
    second = BookingAllocator(route_model, store, config=config, clock=clock)
    winner = []

    store.before_save = lambda: winner.append(second.reserve(run, "SL", 1, 8, 1))
    with pytest.raises(ConcurrentModification) as excinfo:
        first.reserve(run, "SL", 1, 8, 1)

    assert excinfo.value.retryable is True
    assert len(store.load(SL).bookings) == 1
    assert winner[0].seats == (1,)

    retried = first.reserve(run, "SL", 1, 8, 1)
    assert retried.seats == (2,)
