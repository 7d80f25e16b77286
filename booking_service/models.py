from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime, Time, Boolean, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime
from .database import Base

class Route(Base):
    __tablename__ = "routes"

    id = Column(Integer, primary_key=True, index=True)
    train_id = Column(String(20), unique=True, index=True, nullable=False)
    train_number = Column(String(10), nullable=False)
    train_name = Column(String(100))
    operating_days = Column(String(7), default="0123456")  # weekday digits, 0=Monday
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    stops = relationship("RouteStop", back_populates="route", order_by="RouteStop.stop_order",
                         cascade="all, delete-orphan")
    coach_classes = relationship("RouteCoachClass", back_populates="route",
                                 cascade="all, delete-orphan")

class RouteStop(Base):
    __tablename__ = "route_stops"
    __table_args__ = (UniqueConstraint("route_id", "stop_order", name="uq_route_stop_order"),)

    id = Column(Integer, primary_key=True, index=True)
    route_id = Column(Integer, ForeignKey("routes.id"), nullable=False)
    station_code = Column(String(10), index=True, nullable=False)
    station_name = Column(String(100), nullable=False)
    stop_order = Column(Integer, nullable=False)
    distance_km = Column(Float, default=0.0)
    arrival_time = Column(Time)
    departure_time = Column(Time)
    day = Column(Integer, default=1)
    is_technical_stop = Column(Boolean, default=False)

    route = relationship("Route", back_populates="stops")

class RouteCoachClass(Base):
    __tablename__ = "route_coach_classes"
    __table_args__ = (UniqueConstraint("route_id", "coach_class", name="uq_route_coach_class"),)

    id = Column(Integer, primary_key=True, index=True)
    route_id = Column(Integer, ForeignKey("routes.id"), nullable=False)
    coach_class = Column(String(10), nullable=False)
    capacity = Column(Integer, nullable=False)

    route = relationship("Route", back_populates="coach_classes")

class InventoryRecord(Base):
    __tablename__ = "coach_class_inventories"
    __table_args__ = (
        UniqueConstraint("train_id", "journey_date", "coach_class", name="uq_inventory_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    train_id = Column(String(20), index=True, nullable=False)
    journey_date = Column(Date, index=True, nullable=False)
    coach_class = Column(String(10), nullable=False)
    capacity = Column(Integer, nullable=False)
    next_ticket_seq = Column(Integer, default=1, nullable=False)
    version = Column(Integer, default=1, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow)

class IntervalRecord(Base):
    __tablename__ = "berth_intervals"

    id = Column(Integer, primary_key=True, index=True)
    inventory_id = Column(Integer, ForeignKey("coach_class_inventories.id"), index=True, nullable=False)
    seat = Column(Integer, nullable=False)
    from_order = Column(Integer, nullable=False)
    to_order = Column(Integer, nullable=False)
    booking_id = Column(String(36), nullable=False)
    status = Column(String(20), nullable=False)  # Held, Confirmed

class BookingRecord(Base):
    __tablename__ = "bookings"

    booking_id = Column(String(36), primary_key=True)
    inventory_id = Column(Integer, ForeignKey("coach_class_inventories.id"), index=True, nullable=False)
    from_order = Column(Integer, nullable=False)
    to_order = Column(Integer, nullable=False)
    seat_count = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False)  # Held, Confirmed, Waitlisted, Cancelled
    seats = Column(String(200), default="")  # comma separated seat numbers
    ticket_sequence = Column(Integer)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime)
    expires_at = Column(DateTime)
    cancel_reason = Column(String(20))  # Requested, HoldExpired

class TicketRecord(Base):
    __tablename__ = "waitlist_tickets"
    __table_args__ = (UniqueConstraint("inventory_id", "sequence", name="uq_ticket_sequence"),)

    id = Column(Integer, primary_key=True, index=True)
    inventory_id = Column(Integer, ForeignKey("coach_class_inventories.id"), index=True, nullable=False)
    sequence = Column(Integer, nullable=False)
    booking_id = Column(String(36), nullable=False)
    from_order = Column(Integer, nullable=False)
    to_order = Column(Integer, nullable=False)
    seat_count = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False)
