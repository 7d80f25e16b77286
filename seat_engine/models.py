from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Tuple

ALL_DAYS: FrozenSet[int] = frozenset(range(7))


def utcnow() -> datetime:
    """Naive UTC timestamp; the store keeps timestamps without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BookingStatus(Enum):
    HELD = "Held"
    CONFIRMED = "Confirmed"
    WAITLISTED = "Waitlisted"
    CANCELLED = "Cancelled"

    @property
    def holds_seats(self) -> bool:
        return self in (BookingStatus.HELD, BookingStatus.CONFIRMED)


class CancelReason(Enum):
    REQUESTED = "Requested"
    HOLD_EXPIRED = "HoldExpired"


@dataclass(frozen=True)
class Station:
    code: str
    name: str
    order: int
    distance_km: float = 0.0
    arrival_time: Optional[time] = None
    departure_time: Optional[time] = None
    day: int = 1
    is_technical_stop: bool = False


@dataclass(frozen=True)
class RouteTemplate:
    train_id: str
    train_number: str
    train_name: str
    stations: Tuple[Station, ...]
    coach_classes: Dict[str, int]
    operating_days: FrozenSet[int] = ALL_DAYS

    def station(self, code: str) -> Optional[Station]:
        for station in self.stations:
            if station.code == code:
                return station
        return None

    def runs_on(self, journey_date: date) -> bool:
        return journey_date.weekday() in self.operating_days


class TrainRun(NamedTuple):
    train_id: str
    journey_date: date


class InventoryKey(NamedTuple):
    train_id: str
    journey_date: date
    coach_class: str

    @property
    def run(self) -> TrainRun:
        return TrainRun(self.train_id, self.journey_date)

    def __str__(self):
        return f"{self.train_id}/{self.journey_date.isoformat()}/{self.coach_class}"


@dataclass
class BerthInterval:
    """One seat reserved over the half-open station-order range [from, to)."""
    seat: int
    from_order: int
    to_order: int
    booking_id: str
    status: BookingStatus

    def overlaps(self, from_order: int, to_order: int) -> bool:
        return self.from_order < to_order and from_order < self.to_order


@dataclass
class WaitlistTicket:
    sequence: int
    booking_id: str
    from_order: int
    to_order: int
    seat_count: int
    created_at: datetime


@dataclass
class Booking:
    booking_id: str
    key: InventoryKey
    from_order: int
    to_order: int
    seat_count: int
    status: BookingStatus
    created_at: datetime
    seats: List[int] = field(default_factory=list)
    expires_at: Optional[datetime] = None
    ticket_sequence: Optional[int] = None
    updated_at: Optional[datetime] = None
    cancel_reason: Optional[CancelReason] = None

    def is_expired(self, now: datetime) -> bool:
        return (
            self.status == BookingStatus.HELD
            and self.expires_at is not None
            and now >= self.expires_at
        )


@dataclass(frozen=True)
class BookingResult:
    booking_id: str
    status: BookingStatus
    seats: Tuple[int, ...] = ()
    waitlist_position: Optional[int] = None
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class SearchHit:
    run: TrainRun
    from_order: int
    to_order: int


@dataclass(frozen=True)
class Availability:
    total_available: int
    partially_available: int
    confirmed_seats: int
    held_seats: int
    waitlisted_seats: int
    occupancy_percentage: float
    capacity: int


@dataclass(frozen=True)
class SegmentUtilization:
    from_order: int
    to_order: int
    from_station: str
    to_station: str
    total_seats: int
    occupied_seats: int
    available_seats: int
    confirmed_seats: int
    held_seats: int
    waitlisted_seats: int
    occupancy_percentage: float
