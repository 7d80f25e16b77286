import pytest
from datetime import date, datetime, time, timedelta

from seat_engine.allocator import BookingAllocator
from seat_engine.config import EngineConfig
from seat_engine.models import ALL_DAYS, RouteTemplate, Station, TrainRun
from seat_engine.route_model import RouteModel
from seat_engine.store import MemoryInventoryStore

JOURNEY_DATE = date(2026, 1, 10)
MAIN_LINE = ("NDLS", "GZB", "MB", "BE", "LKO", "CNB", "ALD", "MGS")

class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)

def make_route(
    train_id="12301",
    train_number=None,
    train_name="Rajdhani Express",
    codes=MAIN_LINE,
    coach_classes=None,
    start=time(6, 0),
    operating_days=ALL_DAYS,
):
    """Stops one hour and 100 km apart, 5 minute halts"""
    base = datetime.combine(date(2026, 1, 1), start)
    stations = []
    for order, code in enumerate(codes, start=1):
        arrival = base + timedelta(hours=order - 1)
        stations.append(Station(
            code=code,
            name=f"{code} Junction",
            order=order,
            distance_km=(order - 1) * 100.0,
            arrival_time=None if order == 1 else arrival.time(),
            departure_time=None if order == len(codes) else (
                arrival if order == 1 else arrival + timedelta(minutes=5)
            ).time(),
        ))
    return RouteTemplate(
        train_id=train_id,
        train_number=train_number or train_id,
        train_name=train_name,
        stations=tuple(stations),
        coach_classes=dict(coach_classes or {"SL": 2, "3A": 1}),
        operating_days=frozenset(operating_days),
    )

@pytest.fixture
def route_factory():
    return make_route

@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 1, 8, 0))

@pytest.fixture
def route_model():
    model = RouteModel()
    model.publish(make_route())
    return model

@pytest.fixture
def store():
    return MemoryInventoryStore()

@pytest.fixture
def allocator(route_model, store, clock):
    return BookingAllocator(route_model, store, config=EngineConfig(hold_ttl_minutes=15), clock=clock)

@pytest.fixture
def run():
    return TrainRun("12301", JOURNEY_DATE)
