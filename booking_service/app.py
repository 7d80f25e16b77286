from fastapi import FastAPI, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date
import logging
import threading
import time

from seat_engine.engine import BookingEngine
from seat_engine.errors import (
    BookingError, ConcurrentModification, HoldExpired, InvalidBookingState, InvalidRequest,
    RouteAlreadyPublished, StoreUnavailable, UnknownBooking, UnknownCoachClass,
    UnknownRoute, UnknownStation,
)
from seat_engine.models import Availability, BookingResult
from seat_engine.route_model import validate_template

from .database import get_db, engine, SessionLocal, Base
from .schemas import (
    RouteUpload, RouteResponse, RouteView, RouteStopView, StationOption, CoachTypeOption,
    SearchResult, CoachAvailability, AvailabilityRequest, AvailabilityResponse,
    UtilizationResponse, SegmentUtilizationView, BookingRequest, BookingResponse,
    BookingDetail, ExpiryResponse, StatusResponse, PopularRouteView,
)
from . import crud
from .config import load_engine_config
from .store import SqlInventoryStore
from .middleware import LoggingMiddleware
from .metrics import record_inventory_change, record_booking_error, get_metrics
from .utils import format_duration, average_speed, utilization_class, availability_class

# Create tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Seat Inventory Service",
    description="Segment-based seat availability, booking and waitlist service for train runs",
    version="1.0.0"
)

app.add_middleware(LoggingMiddleware)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_booking_engine: Optional[BookingEngine] = None
_engine_lock = threading.Lock()
_publish_lock = threading.Lock()

def get_booking_engine() -> BookingEngine:
    """Process-wide booking engine, with published routes loaded from the database"""
    global _booking_engine
    with _engine_lock:
        if _booking_engine is None:
            booking_engine = BookingEngine(SqlInventoryStore(SessionLocal), config=load_engine_config())
            db = SessionLocal()
            try:
                for template in crud.load_route_templates(db):
                    booking_engine.publish_route(template)
            finally:
                db.close()
            booking_engine.subscribe(record_inventory_change)
            logger.info(f"Booking engine ready with {len(booking_engine.route_model)} routes")
            _booking_engine = booking_engine
        return _booking_engine

_STATUS_CODES = (
    ((UnknownRoute, UnknownStation, UnknownCoachClass, UnknownBooking), 404),
    ((InvalidRequest,), 400),
    ((RouteAlreadyPublished, InvalidBookingState, ConcurrentModification), 409),
    ((HoldExpired,), 410),
    ((StoreUnavailable,), 503),
)

def http_status_for(error: BookingError) -> int:
    for error_types, status_code in _STATUS_CODES:
        if isinstance(error, error_types):
            return status_code
    return 500

@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    status_code = http_status_for(exc)
    record_booking_error(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.code}): {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())

def _availability_fields(availability: Availability) -> dict:
    return dict(
        total_available=availability.total_available,
        partially_available=availability.partially_available,
        confirmed_seats=availability.confirmed_seats,
        held_seats=availability.held_seats,
        waitlisted_seats=availability.waitlisted_seats,
        occupancy_percentage=availability.occupancy_percentage,
    )

def _booking_response(result: BookingResult) -> BookingResponse:
    return BookingResponse(
        status=result.status.value,
        booking_id=result.booking_id,
        waitlist_position=result.waitlist_position,
        seats=list(result.seats),
        expires_at=result.expires_at,
    )

@app.get("/")
async def root():
    return {"message": "Seat Inventory Service", "version": "1.0.0"}

@app.post("/routes", response_model=RouteResponse)
def publish_route(
    route: RouteUpload,
    db: Session = Depends(get_db),
    booking_engine: BookingEngine = Depends(get_booking_engine),
):
    """Publish an immutable route template (stations and coach capacities)"""
    template = crud.template_from_upload(route)
    with _publish_lock:
        if template.train_id not in booking_engine.route_model:
            validate_template(template)
            try:
                crud.create_route(db, template)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Error persisting route {template.train_id}: {str(e)}")
                raise StoreUnavailable(f"Could not persist route {template.train_id}") from e
        created = booking_engine.publish_route(template)
    logger.info(f"Route {template.train_id} {'published' if created else 'already published'}")
    return RouteResponse(
        message="Route published" if created else "Route already published",
        train_id=template.train_id,
        stations_count=len(template.stations),
        created=created,
    )

@app.get("/routes/{train_id}", response_model=RouteView)
def get_route(train_id: str, booking_engine: BookingEngine = Depends(get_booking_engine)):
    """Stations of a route with distances and running times"""
    template = booking_engine.route_model.template(train_id)
    stops = []
    for stop in booking_engine.route_view(train_id):
        station = stop.station
        stops.append(RouteStopView(
            stop_number=station.order,
            station_code=station.code,
            station_name=station.name,
            distance_from_origin=station.distance_km,
            distance_from_previous=stop.distance_from_previous,
            arrival_time=station.arrival_time,
            departure_time=station.departure_time,
            day=station.day,
            running_time=format_duration(stop.running_minutes),
            elapsed_time=format_duration(stop.elapsed_minutes),
            average_speed=average_speed(stop.distance_from_previous, stop.running_minutes),
            is_first=stop.is_first,
            is_last=stop.is_last,
            is_technical_stop=station.is_technical_stop,
        ))
    return RouteView(
        train_id=template.train_id,
        train_number=template.train_number,
        train_name=template.train_name,
        route_stations=stops,
    )

@app.get("/stations", response_model=List[StationOption])
def get_station_options(booking_engine: BookingEngine = Depends(get_booking_engine)):
    return [
        StationOption(value=option["code"], label=option["name"], trains=option["trains"])
        for option in booking_engine.station_options()
    ]

@app.get("/coach-types", response_model=List[CoachTypeOption])
def get_coach_type_options(booking_engine: BookingEngine = Depends(get_booking_engine)):
    return [CoachTypeOption(**option) for option in booking_engine.coach_type_options()]

@app.get("/search", response_model=List[SearchResult])
def search_trains(
    from_station: str = Query(..., alias="fromStation"),
    to_station: str = Query(..., alias="toStation"),
    journey_date: date = Query(..., alias="journeyDate"),
    coach_type: Optional[str] = Query(None, alias="coachType"),
    passenger_count: int = Query(1, alias="passengerCount"),
    booking_engine: BookingEngine = Depends(get_booking_engine),
):
    """Trains serving from -> to on a date, bookable ones first"""
    options = booking_engine.search(from_station, to_station, journey_date, coach_type, passenger_count)
    results = []
    for option in options:
        results.append(SearchResult(
            train_id=option.train_id,
            train_number=option.train_number,
            train_name=option.train_name,
            from_station=option.from_station.code,
            to_station=option.to_station.code,
            from_station_order=option.from_order,
            to_station_order=option.to_order,
            departure_time=option.from_station.departure_time,
            arrival_time=option.to_station.arrival_time,
            duration=format_duration(option.duration_minutes),
            available_coach_types=option.available_coach_types,
            coach_availabilities=[
                CoachAvailability(
                    coach_type=coach,
                    can_book=availability.total_available >= passenger_count,
                    availability_class=availability_class(availability),
                    **_availability_fields(availability),
                )
                for coach, availability in option.availability.items()
            ],
            best_coach_type=option.best_coach_type,
            can_book=option.can_book,
        ))
    return results

@app.post("/availability", response_model=AvailabilityResponse)
def check_availability(
    request: AvailabilityRequest,
    booking_engine: BookingEngine = Depends(get_booking_engine),
):
    """Seats bookable for the whole requested segment of one coach class"""
    availability = booking_engine.check_availability(
        request.train_id, request.journey_date, request.from_order, request.to_order, request.coach_type
    )
    return AvailabilityResponse(**_availability_fields(availability))

@app.get("/trains/{train_id}/utilization", response_model=UtilizationResponse)
def get_segment_utilization(
    train_id: str,
    journey_date: date = Query(..., alias="journeyDate"),
    coach_type: Optional[str] = Query(None, alias="coachType"),
    booking_engine: BookingEngine = Depends(get_booking_engine),
):
    """Occupancy of every leg of a run, per coach class"""
    utilization = booking_engine.segment_utilization(train_id, journey_date, coach_type)
    return UtilizationResponse(
        train_id=train_id,
        journey_date=journey_date,
        segments={
            coach: [
                SegmentUtilizationView(
                    from_order=leg.from_order,
                    to_order=leg.to_order,
                    from_station=leg.from_station,
                    to_station=leg.to_station,
                    total_seats=leg.total_seats,
                    occupied_seats=leg.occupied_seats,
                    available_seats=leg.available_seats,
                    confirmed_seats=leg.confirmed_seats,
                    held_seats=leg.held_seats,
                    waitlisted_seats=leg.waitlisted_seats,
                    occupancy_percentage=leg.occupancy_percentage,
                    utilization_class=utilization_class(leg.occupancy_percentage),
                )
                for leg in legs
            ]
            for coach, legs in utilization.items()
        },
    )

@app.post("/bookings", response_model=BookingResponse)
def create_booking(
    request: BookingRequest,
    booking_engine: BookingEngine = Depends(get_booking_engine),
):
    """Hold seats for the requested segment, or join the waitlist"""
    result = booking_engine.book(
        request.train_id, request.journey_date, request.from_order, request.to_order,
        request.coach_type, request.passenger_count,
    )
    return _booking_response(result)

@app.get("/bookings/{booking_id}", response_model=BookingDetail)
def get_booking(booking_id: str, booking_engine: BookingEngine = Depends(get_booking_engine)):
    booking, result = booking_engine.get_booking(booking_id)
    return BookingDetail(
        train_id=booking.key.train_id,
        journey_date=booking.key.journey_date,
        coach_type=booking.key.coach_class,
        from_order=booking.from_order,
        to_order=booking.to_order,
        passenger_count=booking.seat_count,
        created_at=booking.created_at,
        cancel_reason=booking.cancel_reason.value if booking.cancel_reason else None,
        **_booking_response(result).model_dump(),
    )

@app.post("/bookings/{booking_id}/confirm", response_model=BookingResponse)
def confirm_booking(booking_id: str, booking_engine: BookingEngine = Depends(get_booking_engine)):
    return _booking_response(booking_engine.confirm(booking_id))

@app.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(booking_id: str, booking_engine: BookingEngine = Depends(get_booking_engine)):
    return _booking_response(booking_engine.cancel(booking_id))

@app.get("/popular-routes", response_model=List[PopularRouteView])
def get_popular_routes(
    limit: int = Query(5, ge=1, le=50),
    booking_engine: BookingEngine = Depends(get_booking_engine),
):
    """Most booked station pairs, for prefilling a search"""
    return [
        PopularRouteView(
            from_code=route.from_station.code,
            from_name=route.from_station.name,
            to_code=route.to_station.code,
            to_name=route.to_station.name,
            booking_count=route.booking_count,
            passenger_count=route.passenger_count,
        )
        for route in booking_engine.popular_routes(limit)
    ]

@app.post("/holds/expire", response_model=ExpiryResponse)
def expire_holds(booking_engine: BookingEngine = Depends(get_booking_engine)):
    """Release every hold past its expiry; safe to call on a schedule"""
    released = booking_engine.release_expired()
    return ExpiryResponse(released=released, count=len(released))

@app.get("/status", response_model=StatusResponse)
def get_status(db: Session = Depends(get_db)):
    """Route, inventory and booking counts"""
    try:
        return crud.get_service_status(db)
    except SQLAlchemyError as e:
        logger.error(f"Error getting status: {str(e)}")
        raise StoreUnavailable("Could not read service status") from e

@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return get_metrics()

@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers"""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "service": "seat-inventory-service",
        "version": "1.0.0"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
