import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from .availability import AvailabilityEngine
from .config import EngineConfig
from .errors import (
    HoldExpired, InvalidBookingState, InvalidRequest, UnknownBooking,
)
from .inventory import CoachClassInventory
from .models import (
    Booking, BookingResult, BookingStatus, CancelReason, InventoryKey, TrainRun, utcnow,
)
from .route_model import RouteModel
from .store import InventoryStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InventoryChange:
    """Emitted after a mutation of one class inventory has been saved"""
    key: InventoryKey
    action: str  # reserve, confirm, cancel, expire
    booking_id: Optional[str]
    status: Optional[BookingStatus]
    promoted: Tuple[str, ...] = ()
    expired: Tuple[str, ...] = ()


class LockRegistry:
    """One mutex per (train, journey date, coach class)"""

    def __init__(self):
        self._locks: Dict[InventoryKey, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, key: InventoryKey) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock


class BookingAllocator:
    def __init__(
        self,
        route_model: RouteModel,
        store: InventoryStore,
        availability: Optional[AvailabilityEngine] = None,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.route_model = route_model
        self.store = store
        self.availability = availability or AvailabilityEngine()
        self.config = config or EngineConfig()
        self.clock = clock
        self.id_factory = id_factory
        self.locks = LockRegistry()
        self._listeners: List[Callable[[InventoryChange], None]] = []

    def subscribe(self, listener: Callable[[InventoryChange], None]):
        self._listeners.append(listener)

    # ── Booking path ──

    def reserve(
        self, run: TrainRun, coach_class: str, from_order: int, to_order: int, seat_count: int
    ) -> BookingResult:
        """Hold seats free over [from_order, to_order), or waitlist the request"""
        self.route_model.validate_range(run.train_id, from_order, to_order)
        self.route_model.validate_run(run.train_id, run.journey_date)
        capacity = self.route_model.capacity_of(run.train_id, coach_class)
        if seat_count < 1 or seat_count > capacity:
            raise InvalidRequest(
                f"Seat count must be between 1 and {capacity}",
                seat_count=seat_count,
                capacity=capacity,
            )

        key = InventoryKey(run.train_id, run.journey_date, coach_class)
        with self.locks.lock_for(key):
            inventory = self.store.load(key) or CoachClassInventory(key=key, capacity=capacity)
            now = self.clock()
            expired = self._expire_holds(inventory, now)
            promoted = self.promote(inventory, now) if expired else []

            booking = Booking(
                booking_id=self.id_factory(),
                key=key,
                from_order=from_order,
                to_order=to_order,
                seat_count=seat_count,
                status=BookingStatus.HELD,
                created_at=now,
                updated_at=now,
            )
            inventory.bookings[booking.booking_id] = booking

            seats = self._select_seats(inventory, from_order, to_order, seat_count)
            if seats:
                inventory.assign(booking, seats, BookingStatus.HELD)
                booking.expires_at = now + self.config.hold_ttl
                logger.info(
                    f"Held seats {seats} on {key} [{from_order},{to_order}) "
                    f"for booking {booking.booking_id}"
                )
            else:
                ticket = inventory.issue_ticket(booking)
                logger.info(
                    f"Waitlisted booking {booking.booking_id} on {key} "
                    f"[{from_order},{to_order}) x{seat_count} as ticket {ticket.sequence}"
                )

            self._commit(inventory, InventoryChange(
                key, "reserve", booking.booking_id, booking.status,
                tuple(promoted), tuple(expired),
            ))
            return self._result(inventory, booking)

    def confirm(self, booking_id: str) -> BookingResult:
        """Turn a live hold into a confirmed booking"""
        key = self._key_of(booking_id)
        with self.locks.lock_for(key):
            inventory = self._load(key, booking_id)
            booking = self._booking(inventory, booking_id)
            now = self.clock()

            if booking.status == BookingStatus.CONFIRMED:
                return self._result(inventory, booking)
            if booking.cancel_reason == CancelReason.HOLD_EXPIRED:
                raise HoldExpired(booking_id)
            if booking.status != BookingStatus.HELD:
                raise InvalidBookingState(
                    f"Booking {booking_id} is {booking.status.value} and cannot be confirmed",
                    booking_id=booking_id,
                    status=booking.status.value,
                )

            if booking.is_expired(now):
                expired = self._expire_holds(inventory, now)
                promoted = self.promote(inventory, now)
                self._commit(inventory, InventoryChange(
                    key, "expire", booking_id, booking.status,
                    tuple(promoted), tuple(expired),
                ))
                logger.warning(f"Hold {booking_id} expired at {booking.expires_at} before confirmation")
                raise HoldExpired(booking_id)

            inventory.set_status(booking_id, BookingStatus.CONFIRMED)
            booking.expires_at = None
            booking.updated_at = now
            self._commit(inventory, InventoryChange(key, "confirm", booking_id, booking.status))
            logger.info(f"Confirmed booking {booking_id} on {key}")
            return self._result(inventory, booking)

    def cancel(self, booking_id: str) -> BookingResult:
        """Cancel a booking for good and hand its seats to the waitlist"""
        key = self._key_of(booking_id)
        with self.locks.lock_for(key):
            inventory = self._load(key, booking_id)
            booking = self._booking(inventory, booking_id)
            if booking.status == BookingStatus.CANCELLED:
                return self._result(inventory, booking)

            now = self.clock()
            if booking.status.holds_seats:
                freed = inventory.release(booking_id)
                logger.info(f"Released {freed} seat(s) of booking {booking_id} on {key}")
            else:
                inventory.remove_ticket(booking_id)
                logger.info(f"Removed waitlist ticket {booking.ticket_sequence} of booking {booking_id}")
            booking.status = BookingStatus.CANCELLED
            booking.expires_at = None
            booking.cancel_reason = CancelReason.REQUESTED
            booking.updated_at = now

            expired = self._expire_holds(inventory, now)
            promoted = self.promote(inventory, now)
            self._commit(inventory, InventoryChange(
                key, "cancel", booking_id, booking.status, tuple(promoted), tuple(expired),
            ))
            return self._result(inventory, booking)

    def release_expired(self, key: Optional[InventoryKey] = None) -> List[str]:
        """Release every hold past its expiry. Safe to call repeatedly from any caller."""
        keys = [key] if key is not None else self.store.keys()
        released = []
        for inventory_key in keys:
            now = self.clock()
            snapshot = self.store.load(inventory_key)
            if snapshot is None or not snapshot.expired_holds(now):
                continue

            with self.locks.lock_for(inventory_key):
                inventory = self.store.load(inventory_key)
                now = self.clock()
                expired = self._expire_holds(inventory, now)
                if not expired:
                    continue
                promoted = self.promote(inventory, now)
                self._commit(inventory, InventoryChange(
                    inventory_key, "expire", None, None, tuple(promoted), tuple(expired),
                ))
                released.extend(expired)
        return released

    def promote(self, inventory: CoachClassInventory, now: Optional[datetime] = None) -> List[str]:
        """Confirm waitlisted bookings that now fit, strictly in ticket order.

        Every ticket is attempted once per scan. A ticket that does not fit
        stays in place; seats only get scarcer during the scan, so no later
        ticket can overtake an earlier one that was eligible.
        """
        now = now or self.clock()
        promoted = []
        for ticket in list(inventory.waitlist):
            seats = self._select_seats(
                inventory, ticket.from_order, ticket.to_order, ticket.seat_count
            )
            if not seats:
                continue
            inventory.remove_ticket(ticket.booking_id)
            booking = inventory.bookings[ticket.booking_id]
            inventory.assign(booking, seats, BookingStatus.CONFIRMED)
            booking.updated_at = now
            promoted.append(booking.booking_id)
            logger.info(
                f"Promoted waitlist ticket {ticket.sequence} (booking {booking.booking_id}) "
                f"to confirmed seats {seats} on {inventory.key}"
            )
        return promoted

    # ── Reads ──

    def get_booking(self, booking_id: str) -> Tuple[Booking, BookingResult]:
        key = self._key_of(booking_id)
        inventory = self._load(key, booking_id)
        booking = self._booking(inventory, booking_id)
        return booking, self._result(inventory, booking)

    # ── Internals ──

    def _select_seats(
        self, inventory: CoachClassInventory, from_order: int, to_order: int, seat_count: int
    ) -> Optional[List[int]]:
        if self.availability.available_count(inventory, from_order, to_order) < seat_count:
            return None
        free = inventory.seats_free_for(from_order, to_order)
        if len(free) < seat_count:
            logger.info(
                f"{inventory.key}: {seat_count} seat(s) requested over [{from_order},{to_order}) "
                f"but only {len(free)} free for the whole span"
            )
            return None
        return free[:seat_count]

    def _expire_holds(self, inventory: CoachClassInventory, now: datetime) -> List[str]:
        expired = []
        for booking_id in inventory.expired_holds(now):
            inventory.release(booking_id)
            booking = inventory.bookings[booking_id]
            booking.status = BookingStatus.CANCELLED
            booking.cancel_reason = CancelReason.HOLD_EXPIRED
            booking.updated_at = now
            expired.append(booking_id)
        if expired:
            logger.info(f"Expired {len(expired)} hold(s) on {inventory.key}: {expired}")
        return expired

    def _commit(self, inventory: CoachClassInventory, change: InventoryChange):
        self.store.save(inventory)
        for listener in self._listeners:
            try:
                listener(change)
            except Exception:
                logger.exception(f"Inventory listener failed for {change.key}")

    def _key_of(self, booking_id: str) -> InventoryKey:
        key = self.store.locate_booking(booking_id)
        if key is None:
            raise UnknownBooking(booking_id)
        return key

    def _load(self, key: InventoryKey, booking_id: str) -> CoachClassInventory:
        inventory = self.store.load(key)
        if inventory is None:
            raise UnknownBooking(booking_id)
        return inventory

    @staticmethod
    def _booking(inventory: CoachClassInventory, booking_id: str) -> Booking:
        try:
            return inventory.bookings[booking_id]
        except KeyError:
            raise UnknownBooking(booking_id) from None

    @staticmethod
    def _result(inventory: CoachClassInventory, booking: Booking) -> BookingResult:
        return BookingResult(
            booking_id=booking.booking_id,
            status=booking.status,
            seats=tuple(booking.seats) if booking.status.holds_seats else (),
            waitlist_position=inventory.waitlist_position(booking.booking_id),
            expires_at=booking.expires_at if booking.status == BookingStatus.HELD else None,
        )
