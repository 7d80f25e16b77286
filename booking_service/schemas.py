from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Optional, Dict
from datetime import date, datetime, time

class ApiModel(BaseModel):
    """Snake case in Python, camelCase on the wire"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class StationData(ApiModel):
    code: str
    name: str
    order: int
    distance_km: float = 0.0
    arrival_time: Optional[time] = None
    departure_time: Optional[time] = None
    day: int = 1
    is_technical_stop: bool = False

class RouteUpload(ApiModel):
    train_id: str
    train_number: str
    train_name: str = ""
    stations: List[StationData]
    coach_classes: Dict[str, int]
    operating_days: List[int] = Field(default_factory=lambda: list(range(7)))

class RouteResponse(ApiModel):
    message: str
    train_id: str
    stations_count: int
    created: bool

class RouteStopView(ApiModel):
    stop_number: int
    station_code: str
    station_name: str
    distance_from_origin: float
    distance_from_previous: float
    arrival_time: Optional[time]
    departure_time: Optional[time]
    day: int
    running_time: Optional[str]
    elapsed_time: Optional[str]
    average_speed: Optional[float]
    is_first: bool
    is_last: bool
    is_technical_stop: bool

class RouteView(ApiModel):
    train_id: str
    train_number: str
    train_name: str
    route_stations: List[RouteStopView]

class StationOption(ApiModel):
    value: str
    label: str
    trains: List[str]

class CoachTypeOption(ApiModel):
    value: str
    label: str
    description: str

class AvailabilityResponse(ApiModel):
    total_available: int
    partially_available: int
    confirmed_seats: int
    held_seats: int
    waitlisted_seats: int
    occupancy_percentage: float

class CoachAvailability(AvailabilityResponse):
    coach_type: str
    can_book: bool
    availability_class: str

class SearchResult(ApiModel):
    train_id: str
    train_number: str
    train_name: str
    from_station: str
    to_station: str
    from_station_order: int
    to_station_order: int
    departure_time: Optional[time]
    arrival_time: Optional[time]
    duration: Optional[str]
    available_coach_types: List[str]
    coach_availabilities: List[CoachAvailability]
    best_coach_type: Optional[str]
    can_book: bool

class AvailabilityRequest(ApiModel):
    train_id: str
    journey_date: date
    from_order: int
    to_order: int
    coach_type: str

class SegmentUtilizationView(ApiModel):
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
    utilization_class: str

class UtilizationResponse(ApiModel):
    train_id: str
    journey_date: date
    segments: Dict[str, List[SegmentUtilizationView]]

class BookingRequest(ApiModel):
    train_id: str
    journey_date: date
    from_order: int
    to_order: int
    coach_type: str
    passenger_count: int = 1

class BookingResponse(ApiModel):
    status: str
    booking_id: str
    waitlist_position: Optional[int] = None
    seats: List[int] = Field(default_factory=list)
    expires_at: Optional[datetime] = None

class BookingDetail(BookingResponse):
    train_id: str
    journey_date: date
    coach_type: str
    from_order: int
    to_order: int
    passenger_count: int
    created_at: datetime
    cancel_reason: Optional[str] = None

class PopularRouteView(ApiModel):
    from_code: str
    from_name: str
    to_code: str
    to_name: str
    booking_count: int
    passenger_count: int

class ExpiryResponse(ApiModel):
    released: List[str]
    count: int

class StatusResponse(ApiModel):
    status: str
    total_routes: int
    total_inventories: int
    bookings_by_status: Dict[str, int]
    last_updated: datetime
