from typing import Optional


class BookingError(Exception):
    """Base class for every error surfaced by the booking core.

    ``retryable`` tells the caller whether the same request may succeed if
    re-submitted (with backoff). Retrying is always the caller's job.
    """
    code = "booking_error"
    retryable = False

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class UnknownRoute(BookingError):
    code = "unknown_route"

    def __init__(self, train_id: str):
        super().__init__(f"No published route for train {train_id}", train_id=train_id)


class UnknownStation(BookingError):
    code = "unknown_station"

    def __init__(self, train_id: Optional[str], station_code: str):
        where = f"route {train_id}" if train_id else "any published route"
        super().__init__(
            f"Station {station_code} is not on {where}",
            train_id=train_id,
            station_code=station_code,
        )


class UnknownCoachClass(BookingError):
    code = "unknown_coach_class"

    def __init__(self, train_id: str, coach_class: str):
        super().__init__(
            f"Train {train_id} has no coach class {coach_class}",
            train_id=train_id,
            coach_class=coach_class,
        )


class UnknownBooking(BookingError):
    code = "unknown_booking"

    def __init__(self, booking_id: str):
        super().__init__(f"Booking {booking_id} not found", booking_id=booking_id)


class InvalidRequest(BookingError):
    code = "invalid_request"


class InvalidRange(InvalidRequest):
    code = "invalid_range"


class InvalidJourneyDate(InvalidRequest):
    code = "invalid_journey_date"


class InvalidRoute(InvalidRequest):
    code = "invalid_route"


class RouteAlreadyPublished(BookingError):
    code = "route_already_published"

    def __init__(self, train_id: str):
        super().__init__(
            f"Route for train {train_id} is already published and immutable",
            train_id=train_id,
        )


class InvalidBookingState(BookingError):
    code = "invalid_booking_state"


class HoldExpired(BookingError):
    code = "hold_expired"

    def __init__(self, booking_id: str):
        super().__init__(
            f"Hold {booking_id} expired before confirmation; seats were released",
            booking_id=booking_id,
        )


class ConcurrentModification(BookingError):
    code = "concurrent_modification"
    retryable = True


class StoreUnavailable(BookingError):
    code = "store_unavailable"
