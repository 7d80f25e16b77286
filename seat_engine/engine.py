import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from .allocator import BookingAllocator, InventoryChange
from .availability import AvailabilityEngine
from .config import COACH_TYPES, EngineConfig
from .errors import InvalidBookingState, InvalidJourneyDate, InvalidRequest, UnknownStation
from .inventory import CoachClassInventory
from .models import (
    Availability, Booking, BookingResult, BookingStatus, InventoryKey, RouteTemplate,
    SegmentUtilization, Station, TrainRun, utcnow,
)
from .route_model import RouteModel
from .search_index import RouteSearchIndex
from .store import InventoryStore

logger = logging.getLogger(__name__)


def minutes_at(station: Station, arrival: bool) -> Optional[int]:
    """Minutes since midnight of day 1 at which the train is at ``station``"""
    moment = station.arrival_time if arrival else station.departure_time
    if moment is None:
        moment = station.departure_time if arrival else station.arrival_time
    if moment is None:
        return None
    return (station.day - 1) * 24 * 60 + moment.hour * 60 + moment.minute


def journey_minutes(origin: Station, destination: Station) -> Optional[int]:
    start = minutes_at(origin, arrival=False)
    end = minutes_at(destination, arrival=True)
    if start is None or end is None:
        return None
    return end - start


@dataclass(frozen=True)
class RouteStop:
    station: Station
    distance_from_previous: float
    running_minutes: Optional[int]
    elapsed_minutes: Optional[int]
    is_first: bool
    is_last: bool


@dataclass(frozen=True)
class PopularRoute:
    from_station: Station
    to_station: Station
    booking_count: int
    passenger_count: int


@dataclass
class TrainOption:
    train_id: str
    train_number: str
    train_name: str
    journey_date: date
    from_station: Station
    to_station: Station
    duration_minutes: Optional[int]
    available_coach_types: List[str]
    availability: Dict[str, Availability] = field(default_factory=dict)
    best_coach_type: Optional[str] = None
    can_book: bool = False

    @property
    def from_order(self) -> int:
        return self.from_station.order

    @property
    def to_order(self) -> int:
        return self.to_station.order

    @property
    def best_availability(self) -> Optional[Availability]:
        if self.best_coach_type is None:
            return None
        return self.availability[self.best_coach_type]


class AvailabilityCache:
    """Display availability keyed by (inventory key, from, to).

    Entries are dropped when their inventory changes or once the earliest
    hold they counted has lapsed. A read that raced with a mutation is not
    cached, so a stale value never outlives the next change signal.
    """

    def __init__(self, max_entries: int):
        self.max_entries = max_entries
        # (key, from, to) -> (value, valid until)
        self._entries: Dict[Tuple[InventoryKey, int, int], Tuple[Availability, Optional[datetime]]] = {}
        self._generations: Dict[InventoryKey, int] = {}
        self._lock = threading.Lock()

    def generation(self, key: InventoryKey) -> int:
        with self._lock:
            return self._generations.get(key, 0)

    def get(self, key: InventoryKey, from_order: int, to_order: int,
            now: datetime) -> Optional[Availability]:
        with self._lock:
            entry = self._entries.get((key, from_order, to_order))
            if entry is None:
                return None
            value, valid_until = entry
            if valid_until is not None and now >= valid_until:
                del self._entries[(key, from_order, to_order)]
                return None
            return value

    def put(self, key: InventoryKey, from_order: int, to_order: int,
            value: Availability, generation: int, valid_until: Optional[datetime] = None):
        with self._lock:
            if self._generations.get(key, 0) != generation:
                return
            if len(self._entries) >= self.max_entries:
                self._entries.clear()
            self._entries[(key, from_order, to_order)] = (value, valid_until)

    def invalidate(self, change: InventoryChange):
        with self._lock:
            self._generations[change.key] = self._generations.get(change.key, 0) + 1
            for entry in [e for e in self._entries if e[0] == change.key]:
                del self._entries[entry]

    def __len__(self):
        return len(self._entries)


class BookingEngine:
    """Entry point used by the service: search, availability and booking"""

    def __init__(
        self,
        store: InventoryStore,
        route_model: Optional[RouteModel] = None,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or EngineConfig()
        self.clock = clock
        self.store = store
        self.route_model = route_model or RouteModel()
        self.search_index = RouteSearchIndex(self.route_model)
        self.availability = AvailabilityEngine()
        self.allocator = BookingAllocator(
            self.route_model, store, self.availability, self.config, clock=clock,
        )
        self.cache = AvailabilityCache(self.config.availability_cache_size)
        self.allocator.subscribe(self.cache.invalidate)

    def subscribe(self, listener: Callable[[InventoryChange], None]):
        self.allocator.subscribe(listener)

    # ── Routes ──

    def publish_route(self, template: RouteTemplate) -> bool:
        created = self.route_model.publish(template)
        if created:
            self.search_index.add(template)
        return created

    def route_view(self, train_id: str) -> List[RouteStop]:
        stations = self.route_model.stations_for(train_id)
        origin = stations[0]
        stops = []
        for index, station in enumerate(stations):
            previous = stations[index - 1] if index else None
            stops.append(RouteStop(
                station=station,
                distance_from_previous=round(station.distance_km - previous.distance_km, 2) if previous else 0.0,
                running_minutes=journey_minutes(previous, station) if previous else None,
                elapsed_minutes=journey_minutes(origin, station) if previous else 0,
                is_first=index == 0,
                is_last=index == len(stations) - 1,
            ))
        return stops

    def station_options(self) -> List[Dict]:
        names = {}
        for template in self.route_model.templates():
            for station in template.stations:
                names.setdefault(station.code, station.name)
        return [
            {"code": code, "name": names[code], "trains": self.search_index.trains_serving(code)}
            for code in self.search_index.stations()
        ]

    def coach_type_options(self) -> List[Dict]:
        served = {c for t in self.route_model.templates() for c in t.coach_classes}
        options = []
        for code in sorted(served):
            label, description = COACH_TYPES.get(code, (code, ""))
            options.append({"value": code, "label": label, "description": description})
        return options

    # ── Search & availability ──

    def search(
        self,
        from_code: str,
        to_code: str,
        journey_date: date,
        coach_type: Optional[str] = None,
        passenger_count: int = 1,
    ) -> List[TrainOption]:
        if from_code == to_code:
            raise InvalidRequest("From and to stations must differ", station_code=from_code)
        for code in (from_code, to_code):
            if not self.search_index.trains_serving(code):
                raise UnknownStation(None, code)
        self.validate_journey_date(journey_date)
        self.validate_passenger_count(passenger_count)

        options = []
        for hit in self.search_index.search(from_code, to_code, journey_date):
            template = self.route_model.template(hit.run.train_id)
            option = TrainOption(
                train_id=template.train_id,
                train_number=template.train_number,
                train_name=template.train_name,
                journey_date=journey_date,
                from_station=template.stations[hit.from_order - 1],
                to_station=template.stations[hit.to_order - 1],
                duration_minutes=journey_minutes(
                    template.stations[hit.from_order - 1], template.stations[hit.to_order - 1]
                ),
                available_coach_types=sorted(template.coach_classes),
            )
            for coach in option.available_coach_types:
                availability = self.check_availability(
                    hit.run.train_id, journey_date, hit.from_order, hit.to_order, coach
                )
                option.availability[coach] = availability
                if availability.total_available >= passenger_count:
                    option.can_book = True

            if coach_type in option.availability:
                option.best_coach_type = coach_type
            elif option.availability:
                option.best_coach_type = max(
                    option.availability, key=lambda c: option.availability[c].total_available
                )
            options.append(option)

        options.sort(key=self._rank)
        logger.info(
            f"Search {from_code}->{to_code} on {journey_date}: {len(options)} train(s), "
            f"{sum(o.can_book for o in options)} bookable"
        )
        return options

    @staticmethod
    def _rank(option: TrainOption):
        best = option.best_availability
        departure = option.from_station.departure_time or time.max
        return (
            not option.can_book,
            -(best.total_available if best else 0),
            option.from_station.day,
            departure,
            option.train_id,
        )

    def check_availability(
        self, train_id: str, journey_date: date, from_order: int, to_order: int, coach_type: str
    ) -> Availability:
        """Lock-free snapshot read; may lag behind an in-flight booking"""
        self.route_model.validate_range(train_id, from_order, to_order)
        self.route_model.validate_run(train_id, journey_date)
        key = InventoryKey(train_id, journey_date, coach_type)
        now = self.clock()
        cached = self.cache.get(key, from_order, to_order, now)
        if cached is not None:
            return cached

        generation = self.cache.generation(key)
        inventory = self._snapshot(key, now)
        availability = self.availability.snapshot(inventory, from_order, to_order)
        self.cache.put(
            key, from_order, to_order, availability, generation, inventory.next_hold_expiry(now)
        )
        return availability

    def segment_utilization(
        self, train_id: str, journey_date: date, coach_type: Optional[str] = None
    ) -> Dict[str, List[SegmentUtilization]]:
        template = self.route_model.template(train_id)
        self.route_model.validate_run(train_id, journey_date)
        coaches = [coach_type] if coach_type else sorted(template.coach_classes)
        return {
            coach: self.availability.segment_utilization(
                self._snapshot(InventoryKey(train_id, journey_date, coach)), template.stations
            )
            for coach in coaches
        }

    def _snapshot(self, key: InventoryKey, now: Optional[datetime] = None) -> CoachClassInventory:
        """Read-only copy with lapsed holds already dropped"""
        capacity = self.route_model.capacity_of(key.train_id, key.coach_class)
        inventory = self.store.load(key) or CoachClassInventory(key=key, capacity=capacity)
        for booking_id in inventory.expired_holds(now or self.clock()):
            inventory.release(booking_id)
        return inventory

    # ── Bookings ──

    def book(
        self,
        train_id: str,
        journey_date: date,
        from_order: int,
        to_order: int,
        coach_type: str,
        passenger_count: int,
    ) -> BookingResult:
        self.validate_journey_date(journey_date)
        self.validate_passenger_count(passenger_count)
        return self.allocator.reserve(
            TrainRun(train_id, journey_date), coach_type, from_order, to_order, passenger_count
        )

    def confirm(self, booking_id: str) -> BookingResult:
        self._ensure_not_archived(booking_id)
        return self.allocator.confirm(booking_id)

    def cancel(self, booking_id: str) -> BookingResult:
        self._ensure_not_archived(booking_id)
        return self.allocator.cancel(booking_id)

    def get_booking(self, booking_id: str) -> Tuple[Booking, BookingResult]:
        return self.allocator.get_booking(booking_id)

    def release_expired(self) -> List[str]:
        released = self.allocator.release_expired()
        if released:
            logger.info(f"Expiry sweep released {len(released)} hold(s)")
        return released

    # ── Insights ──

    def popular_routes(self, limit: int = 5) -> List[PopularRoute]:
        """Station pairs with the most live bookings across every stored run"""
        if limit < 1:
            raise InvalidRequest("Limit must be at least 1", limit=limit)

        now = self.clock()
        totals: Dict[Tuple[str, str], List] = {}
        for key in self.store.keys():
            inventory = self.store.load(key)
            if inventory is None:
                continue
            stations = self.route_model.stations_for(key.train_id)
            for booking in inventory.bookings.values():
                if booking.status == BookingStatus.CANCELLED or booking.is_expired(now):
                    continue
                origin = stations[booking.from_order - 1]
                destination = stations[booking.to_order - 1]
                entry = totals.setdefault((origin.code, destination.code), [origin, destination, 0, 0])
                entry[2] += 1
                entry[3] += booking.seat_count

        ranked = sorted(totals.items(), key=lambda item: (-item[1][2], -item[1][3], item[0]))
        return [
            PopularRoute(origin, destination, bookings, passengers)
            for _, (origin, destination, bookings, passengers) in ranked[:limit]
        ]

    # ── Validation ──

    def validate_journey_date(self, journey_date: date):
        today = self.clock().date()
        if journey_date < today:
            raise InvalidJourneyDate(
                "Journey date cannot be in the past", journey_date=journey_date.isoformat()
            )
        if journey_date > today + timedelta(days=self.config.max_advance_days):
            raise InvalidJourneyDate(
                f"Journey date cannot be more than {self.config.max_advance_days} days ahead",
                journey_date=journey_date.isoformat(),
            )

    def validate_passenger_count(self, passenger_count: int):
        if not 1 <= passenger_count <= self.config.max_passengers:
            raise InvalidRequest(
                f"Passenger count must be between 1 and {self.config.max_passengers}",
                passenger_count=passenger_count,
            )

    def _ensure_not_archived(self, booking_id: str):
        booking, _ = self.allocator.get_booking(booking_id)
        if booking.key.journey_date < self.clock().date():
            raise InvalidBookingState(
                f"Booking {booking_id} belongs to a completed journey and is read-only",
                booking_id=booking_id,
            )
