"""Per train-run, per coach-class seat inventory.

A ``CoachClassInventory`` is the unit of atomic read-modify-write: it owns the
berth intervals of every Held/Confirmed booking, the bookings themselves and
the FIFO waitlist for one (train, journey date, coach class).

Occupancy over a station-order range is the peak of a sweep over interval
start/end events clipped to that range.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from itertools import groupby
from operator import itemgetter
from typing import Dict, Iterable, List, Optional, Tuple

from .models import (
    BerthInterval, Booking, BookingStatus, InventoryKey, WaitlistTicket,
)

# (from_order, to_order, weight)
Span = Tuple[int, int, int]


def occupancy_events(spans: Iterable[Span], q_from: int, q_to: int) -> List[Tuple[int, int]]:
    """Sorted (order, +w)/(order, -w) events of the spans clipped to [q_from, q_to)"""
    events = []
    for start, end, weight in spans:
        start, end = max(start, q_from), min(end, q_to)
        if start < end and weight:
            events.append((start, weight))
            events.append((end, -weight))
    # Ends sort before starts at the same order: ranges are half-open
    events.sort()
    return events


def peak_occupancy(spans: Iterable[Span], q_from: int, q_to: int) -> int:
    """Maximum simultaneous weight at any point p in [q_from, q_to)"""
    running = 0
    peak = 0
    for order, group in groupby(occupancy_events(spans, q_from, q_to), key=itemgetter(0)):
        running += sum(delta for _, delta in group)
        if order < q_to:
            peak = max(peak, running)
    return peak


def covered_length(spans: Iterable[Tuple[int, int]], q_from: int, q_to: int) -> int:
    """Number of unit legs of [q_from, q_to) covered by the union of spans"""
    clipped = sorted(
        (max(start, q_from), min(end, q_to))
        for start, end in spans
        if start < q_to and q_from < end
    )
    covered = 0
    cursor = q_from
    for start, end in clipped:
        start = max(start, cursor)
        if end > start:
            covered += end - start
            cursor = end
    return covered


@dataclass
class CoachClassInventory:
    key: InventoryKey
    capacity: int
    intervals: List[BerthInterval] = field(default_factory=list)
    bookings: Dict[str, Booking] = field(default_factory=dict)
    waitlist: List[WaitlistTicket] = field(default_factory=list)
    next_ticket_seq: int = 1
    version: int = 0

    # -- reads --

    def spans(self, status: Optional[BookingStatus] = None) -> List[Span]:
        return [
            (i.from_order, i.to_order, 1)
            for i in self.intervals
            if status is None or i.status == status
        ]

    def intervals_by_seat(self) -> Dict[int, List[BerthInterval]]:
        by_seat = defaultdict(list)
        for interval in self.intervals:
            by_seat[interval.seat].append(interval)
        return by_seat

    def seats_free_for(self, from_order: int, to_order: int) -> List[int]:
        """Seats with no active interval overlapping [from_order, to_order), lowest first"""
        by_seat = self.intervals_by_seat()
        return [
            seat for seat in range(1, self.capacity + 1)
            if not any(i.overlaps(from_order, to_order) for i in by_seat.get(seat, ()))
        ]

    def seats_with_status(self, status: BookingStatus, from_order: int, to_order: int) -> int:
        return len({
            i.seat for i in self.intervals
            if i.status == status and i.overlaps(from_order, to_order)
        })

    def waitlisted_seats(self, from_order: int, to_order: int) -> int:
        return sum(
            t.seat_count for t in self.waitlist
            if t.from_order < to_order and from_order < t.to_order
        )

    def waitlist_position(self, booking_id: str) -> Optional[int]:
        for position, ticket in enumerate(self.waitlist, start=1):
            if ticket.booking_id == booking_id:
                return position
        return None

    def expired_holds(self, now: datetime) -> List[str]:
        return [b.booking_id for b in self.bookings.values() if b.is_expired(now)]

    def next_hold_expiry(self, now: datetime) -> Optional[datetime]:
        """Earliest expiry among holds still live at ``now``"""
        return min(
            (
                b.expires_at for b in self.bookings.values()
                if b.status == BookingStatus.HELD and b.expires_at is not None and b.expires_at > now
            ),
            default=None,
        )

    def seat_conflicts(self) -> List[Tuple[BerthInterval, BerthInterval]]:
        """Pairs of intervals on the same seat whose ranges overlap; empty when consistent"""
        conflicts = []
        for intervals in self.intervals_by_seat().values():
            ordered = sorted(intervals, key=lambda i: (i.from_order, i.to_order))
            for first, second in zip(ordered, ordered[1:]):
                if second.from_order < first.to_order:
                    conflicts.append((first, second))
        return conflicts

    # -- mutations --

    def assign(self, booking: Booking, seats: List[int], status: BookingStatus):
        for seat in seats:
            if not 1 <= seat <= self.capacity:
                raise ValueError(f"Seat {seat} outside 1..{self.capacity} for {self.key}")
            self.intervals.append(BerthInterval(
                seat=seat,
                from_order=booking.from_order,
                to_order=booking.to_order,
                booking_id=booking.booking_id,
                status=status,
            ))
        booking.seats = list(seats)
        booking.status = status

    def set_status(self, booking_id: str, status: BookingStatus):
        for interval in self.intervals:
            if interval.booking_id == booking_id:
                interval.status = status
        self.bookings[booking_id].status = status

    def release(self, booking_id: str) -> int:
        """Drop every interval of a booking; returns the number of seats freed"""
        before = len(self.intervals)
        self.intervals = [i for i in self.intervals if i.booking_id != booking_id]
        return before - len(self.intervals)

    def issue_ticket(self, booking: Booking) -> WaitlistTicket:
        ticket = WaitlistTicket(
            sequence=self.next_ticket_seq,
            booking_id=booking.booking_id,
            from_order=booking.from_order,
            to_order=booking.to_order,
            seat_count=booking.seat_count,
            created_at=booking.created_at,
        )
        self.next_ticket_seq += 1
        self.waitlist.append(ticket)
        booking.ticket_sequence = ticket.sequence
        booking.status = BookingStatus.WAITLISTED
        return ticket

    def remove_ticket(self, booking_id: str) -> Optional[WaitlistTicket]:
        for index, ticket in enumerate(self.waitlist):
            if ticket.booking_id == booking_id:
                return self.waitlist.pop(index)
        return None
