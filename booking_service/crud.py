from sqlalchemy.orm import Session
from sqlalchemy import func
from datetime import datetime
from typing import List

from seat_engine.models import RouteTemplate, Station

from .models import Route, RouteStop, RouteCoachClass, InventoryRecord, BookingRecord
from .schemas import RouteUpload, StatusResponse

def template_from_upload(route: RouteUpload) -> RouteTemplate:
    return RouteTemplate(
        train_id=route.train_id,
        train_number=route.train_number,
        train_name=route.train_name,
        stations=tuple(
            Station(
                code=stop.code,
                name=stop.name,
                order=stop.order,
                distance_km=stop.distance_km,
                arrival_time=stop.arrival_time,
                departure_time=stop.departure_time,
                day=stop.day,
                is_technical_stop=stop.is_technical_stop,
            )
            for stop in sorted(route.stations, key=lambda s: s.order)
        ),
        coach_classes=dict(route.coach_classes),
        operating_days=frozenset(route.operating_days),
    )

def template_from_record(route: Route) -> RouteTemplate:
    return RouteTemplate(
        train_id=route.train_id,
        train_number=route.train_number,
        train_name=route.train_name or "",
        stations=tuple(
            Station(
                code=stop.station_code,
                name=stop.station_name,
                order=stop.stop_order,
                distance_km=stop.distance_km or 0.0,
                arrival_time=stop.arrival_time,
                departure_time=stop.departure_time,
                day=stop.day or 1,
                is_technical_stop=bool(stop.is_technical_stop),
            )
            for stop in route.stops
        ),
        coach_classes={c.coach_class: c.capacity for c in route.coach_classes},
        operating_days=frozenset(int(d) for d in (route.operating_days or "0123456")),
    )

def create_route(db: Session, template: RouteTemplate) -> Route:
    """Persist a validated, newly published route template"""
    existing = db.query(Route).filter(Route.train_id == template.train_id).first()
    if existing:
        return existing

    route = Route(
        train_id=template.train_id,
        train_number=template.train_number,
        train_name=template.train_name,
        operating_days="".join(str(d) for d in sorted(template.operating_days)),
    )
    for station in template.stations:
        route.stops.append(RouteStop(
            station_code=station.code,
            station_name=station.name,
            stop_order=station.order,
            distance_km=station.distance_km,
            arrival_time=station.arrival_time,
            departure_time=station.departure_time,
            day=station.day,
            is_technical_stop=station.is_technical_stop,
        ))
    for coach_class, capacity in template.coach_classes.items():
        route.coach_classes.append(RouteCoachClass(coach_class=coach_class, capacity=capacity))

    db.add(route)
    db.commit()
    db.refresh(route)
    return route

def load_route_templates(db: Session) -> List[RouteTemplate]:
    return [template_from_record(route) for route in db.query(Route).order_by(Route.id).all()]

def get_service_status(db: Session) -> StatusResponse:
    total_routes = db.query(func.count(Route.id)).scalar()
    total_inventories = db.query(func.count(InventoryRecord.id)).scalar()
    bookings_by_status = dict(
        db.query(BookingRecord.status, func.count(BookingRecord.booking_id))
        .group_by(BookingRecord.status)
        .all()
    )

    return StatusResponse(
        status="healthy",
        total_routes=total_routes,
        total_inventories=total_inventories,
        bookings_by_status=bookings_by_status,
        last_updated=datetime.utcnow()
    )
