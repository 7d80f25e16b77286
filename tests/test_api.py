import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from booking_service import crud
from booking_service.app import app, get_booking_engine
from booking_service.database import get_db, Base
from booking_service.metrics import record_inventory_change
from booking_service.store import SqlInventoryStore
from seat_engine.config import EngineConfig
from seat_engine.engine import BookingEngine

JOURNEY_DATE = "2026-01-10"

ROUTE = {
    "trainId": "12301",
    "trainNumber": "12301",
    "trainName": "Rajdhani Express",
    "stations": [
        {"code": "NDLS", "name": "New Delhi", "order": 1, "distanceKm": 0,
         "departureTime": "06:00:00"},
        {"code": "GZB", "name": "Ghaziabad", "order": 2, "distanceKm": 100,
         "arrivalTime": "07:00:00", "departureTime": "07:05:00"},
        {"code": "MB", "name": "Moradabad", "order": 3, "distanceKm": 200,
         "arrivalTime": "08:00:00", "departureTime": "08:05:00"},
        {"code": "BE", "name": "Bareilly", "order": 4, "distanceKm": 300,
         "arrivalTime": "09:00:00", "departureTime": "09:05:00"},
        {"code": "LKO", "name": "Lucknow", "order": 5, "distanceKm": 400,
         "arrivalTime": "10:00:00", "departureTime": "10:05:00"},
        {"code": "CNB", "name": "Kanpur Central", "order": 6, "distanceKm": 500,
         "arrivalTime": "11:00:00", "departureTime": "11:05:00"},
        {"code": "ALD", "name": "Prayagraj Junction", "order": 7, "distanceKm": 600,
         "arrivalTime": "12:00:00", "departureTime": "12:05:00"},
        {"code": "MGS", "name": "Mughal Sarai", "order": 8, "distanceKm": 700,
         "arrivalTime": "13:00:00"},
    ],
    "coachClasses": {"SL": 2, "3A": 1},
}

@pytest.fixture
def client(clock):
    # Test database
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    booking_engine = BookingEngine(
        SqlInventoryStore(TestingSessionLocal), config=EngineConfig(), clock=clock
    )
    booking_engine.subscribe(record_inventory_change)

    def override_get_db():
        try:
            db = TestingSessionLocal()
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_booking_engine] = lambda: booking_engine
    yield TestClient(app)
    app.dependency_overrides.clear()
    engine.dispose()

@pytest.fixture
def published(client):
    response = client.post("/routes", json=ROUTE)
    assert response.status_code == 200
    return client

def book(client, from_order, to_order, coach_type="SL", passengers=1):
    response = client.post("/bookings", json={
        "trainId": "12301",
        "journeyDate": JOURNEY_DATE,
        "fromOrder": from_order,
        "toOrder": to_order,
        "coachType": coach_type,
        "passengerCount": passengers,
    })
    assert response.status_code == 200
    return response.json()

def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["message"] == "Seat Inventory Service"

def test_publish_route(client):
    response = client.post("/routes", json=ROUTE)
    assert response.status_code == 200
    data = response.json()
    assert data["created"] is True
    assert data["stationsCount"] == 8

    again = client.post("/routes", json=ROUTE)
    assert again.status_code == 200
    assert again.json()["created"] is False

def test_conflicting_route_is_rejected(published):
    response = published.post("/routes", json=dict(ROUTE, coachClasses={"SL": 72}))
    assert response.status_code == 409
    assert response.json()["error"] == "route_already_published"

def test_route_publish_survives_a_failed_write(client, monkeypatch):
    def locked(db, template):
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(crud, "create_route", locked)
    failed = client.post("/routes", json=ROUTE)
    assert failed.status_code == 503
    assert failed.json()["error"] == "store_unavailable"
    assert client.get("/routes/12301").status_code == 404

    monkeypatch.undo()
    retried = client.post("/routes", json=ROUTE)
    assert retried.status_code == 200
    assert retried.json()["created"] is True
    assert client.get("/status").json()["totalRoutes"] == 1

def test_invalid_route_is_rejected(client):
    response = client.post("/routes", json=dict(ROUTE, stations=ROUTE["stations"][:1]))
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_route"

def test_route_view(published):
    response = published.get("/routes/12301")
    assert response.status_code == 200
    data = response.json()
    stops = data["routeStations"]
    assert data["trainName"] == "Rajdhani Express"
    assert len(stops) == 8
    assert stops[0]["isFirst"] is True
    assert stops[0]["runningTime"] is None
    assert stops[1]["runningTime"] == "1h 0m"
    assert stops[1]["averageSpeed"] == 100.0
    assert stops[2]["runningTime"] == "0h 55m"
    assert stops[2]["elapsedTime"] == "2h 0m"
    assert stops[7]["isLast"] is True

    assert published.get("/routes/99999").status_code == 404

def test_station_and_coach_type_options(published):
    stations = published.get("/stations").json()
    assert {"value": "LKO", "label": "Lucknow", "trains": ["12301"]} in stations

    coach_types = published.get("/coach-types").json()
    assert [c["value"] for c in coach_types] == ["3A", "SL"]

def test_search(published):
    response = published.get("/search", params={
        "fromStation": "NDLS", "toStation": "LKO", "journeyDate": JOURNEY_DATE,
    })
    assert response.status_code == 200
    results = response.json()
    assert len(results) == 1
    result = results[0]
    assert result["canBook"] is True
    assert result["duration"] == "4h 0m"
    assert (result["fromStationOrder"], result["toStationOrder"]) == (1, 5)
    assert result["bestCoachType"] == "SL"
    sleeper = next(c for c in result["coachAvailabilities"] if c["coachType"] == "SL")
    assert sleeper["totalAvailable"] == 2
    assert sleeper["availabilityClass"] == "low"

def test_search_errors(published):
    unknown = published.get("/search", params={
        "fromStation": "NDLS", "toStation": "HWH", "journeyDate": JOURNEY_DATE,
    })
    assert unknown.status_code == 404

    past = published.get("/search", params={
        "fromStation": "NDLS", "toStation": "LKO", "journeyDate": "2025-12-01",
    })
    assert past.status_code == 400
    assert past.json()["error"] == "invalid_journey_date"

def test_availability(published):
    book(published, 1, 3, coach_type="3A")
    response = published.post("/availability", json={
        "trainId": "12301",
        "journeyDate": JOURNEY_DATE,
        "fromOrder": 1,
        "toOrder": 5,
        "coachType": "3A",
    })
    assert response.status_code == 200
    data = response.json()
    assert data["totalAvailable"] == 0
    assert data["partiallyAvailable"] == 1
    assert data["heldSeats"] == 1

def test_waitlisted_booking_is_promoted_on_cancel(published):
    a = book(published, 1, 5)
    b = book(published, 3, 7)
    c = book(published, 1, 5)

    assert (a["status"], a["seats"]) == ("Held", [1])
    assert (b["status"], b["seats"]) == ("Held", [2])
    assert c["status"] == "Waitlisted"
    assert c["waitlistPosition"] == 1

    cancelled = published.post(f"/bookings/{a['bookingId']}/cancel")
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "Cancelled"

    promoted = published.get(f"/bookings/{c['bookingId']}").json()
    assert promoted["status"] == "Confirmed"
    assert promoted["seats"] == [1]
    assert promoted["waitlistPosition"] is None
    assert (promoted["fromOrder"], promoted["toOrder"]) == (1, 5)

def test_confirm_booking(published):
    held = book(published, 2, 6, passengers=2)
    assert held["expiresAt"] is not None

    response = published.post(f"/bookings/{held['bookingId']}/confirm")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "Confirmed"
    assert data["seats"] == [1, 2]
    assert data["expiresAt"] is None

def test_expired_hold_cannot_be_confirmed(published, clock):
    held = book(published, 1, 8, coach_type="3A")
    clock.advance(minutes=16)

    response = published.post(f"/bookings/{held['bookingId']}/confirm")
    assert response.status_code == 410
    assert response.json()["error"] == "hold_expired"

    detail = published.get(f"/bookings/{held['bookingId']}").json()
    assert detail["status"] == "Cancelled"
    assert detail["cancelReason"] == "HoldExpired"

    again = published.post(f"/bookings/{held['bookingId']}/confirm")
    assert again.status_code == 410

def test_expire_holds(published, clock):
    held = book(published, 1, 8, coach_type="3A")
    waiting = book(published, 1, 8, coach_type="3A")
    clock.advance(minutes=16)

    response = published.post("/holds/expire")
    assert response.status_code == 200
    assert response.json() == {"released": [held["bookingId"]], "count": 1}
    assert published.post("/holds/expire").json()["count"] == 0

    promoted = published.get(f"/bookings/{waiting['bookingId']}").json()
    assert promoted["status"] == "Confirmed"

    swept = published.post(f"/bookings/{held['bookingId']}/confirm")
    assert swept.status_code == 410
    assert swept.json()["error"] == "hold_expired"

def test_booking_errors(published):
    assert published.get("/bookings/missing").status_code == 404
    assert published.post("/bookings/missing/cancel").status_code == 404

    payload = {
        "trainId": "12301", "journeyDate": JOURNEY_DATE,
        "fromOrder": 5, "toOrder": 3, "coachType": "SL",
    }
    bad_range = published.post("/bookings", json=payload)
    assert bad_range.status_code == 400
    assert bad_range.json()["error"] == "invalid_range"

    too_many = published.post("/bookings", json=dict(payload, fromOrder=1, toOrder=3, passengerCount=9))
    assert too_many.status_code == 400

    unknown_class = published.post("/bookings", json=dict(payload, fromOrder=1, toOrder=3, coachType="1A"))
    assert unknown_class.status_code == 404

    unknown_train = published.post("/bookings", json=dict(payload, trainId="99999", fromOrder=1, toOrder=3))
    assert unknown_train.status_code == 404
    assert unknown_train.json()["retryable"] is False

def test_segment_utilization(published):
    book(published, 2, 4)
    response = published.get("/trains/12301/utilization", params={"journeyDate": JOURNEY_DATE})
    assert response.status_code == 200
    segments = response.json()["segments"]
    assert sorted(segments) == ["3A", "SL"]
    legs = segments["SL"]
    assert len(legs) == 7
    assert legs[1]["occupiedSeats"] == 1
    assert legs[1]["occupancyPercentage"] == 50.0
    assert legs[1]["utilizationClass"] == "low"
    assert legs[0]["utilizationClass"] == "empty"

def test_get_status(published):
    book(published, 1, 5)
    response = published.get("/status")
    assert response.status_code == 200
    data = response.json()
    assert data["totalRoutes"] == 1
    assert data["totalInventories"] == 1
    assert data["bookingsByStatus"] == {"Held": 1}

def test_metrics(published):
    book(published, 1, 5)
    response = published.get("/metrics")
    assert response.status_code == 200
    assert "booking_outcomes_total" in response.text
    assert "http_requests_total" in response.text

def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Request-ID" in response.headers

def test_booking_on_a_non_operating_day(client):
    weekly = dict(ROUTE, trainId="12302", trainNumber="12302", operatingDays=[0])
    assert client.post("/routes", json=weekly).status_code == 200

    payload = {
        "trainId": "12302", "journeyDate": JOURNEY_DATE,
        "fromOrder": 1, "toOrder": 3, "coachType": "SL", "passengerCount": 1,
    }
    saturday = client.post("/bookings", json=payload)
    assert saturday.status_code == 400
    assert saturday.json()["error"] == "invalid_journey_date"

    availability = client.post("/availability", json={
        "trainId": "12302", "journeyDate": JOURNEY_DATE,
        "fromOrder": 1, "toOrder": 3, "coachType": "SL",
    })
    assert availability.status_code == 400

    monday = client.post("/bookings", json=dict(payload, journeyDate="2026-01-12"))
    assert monday.status_code == 200
    assert monday.json()["status"] == "Held"

def test_popular_routes(published):
    book(published, 1, 5)
    book(published, 1, 5, coach_type="3A")
    book(published, 2, 4)

    response = published.get("/popular-routes", params={"limit": 1})
    assert response.status_code == 200
    assert response.json() == [{
        "fromCode": "NDLS", "fromName": "New Delhi",
        "toCode": "LKO", "toName": "Lucknow",
        "bookingCount": 2, "passengerCount": 2,
    }]

    assert len(published.get("/popular-routes").json()) == 2
    assert published.get("/popular-routes", params={"limit": 0}).status_code == 422
