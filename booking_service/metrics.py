from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

from seat_engine.allocator import InventoryChange
from seat_engine.errors import BookingError

# Metrics
REQUEST_COUNT = Counter('http_requests_total', 'Total HTTP requests', ['method', 'endpoint', 'status'])
REQUEST_DURATION = Histogram('http_request_duration_seconds', 'HTTP request duration')
INVENTORY_CHANGES = Counter('inventory_changes_total', 'Saved inventory mutations', ['action', 'coach_class'])
BOOKING_OUTCOMES = Counter('booking_outcomes_total', 'Booking requests by resulting status', ['status'])
WAITLIST_PROMOTIONS = Counter('waitlist_promotions_total', 'Waitlisted bookings promoted to confirmed')
HOLDS_EXPIRED = Counter('holds_expired_total', 'Held bookings released after expiry')
BOOKING_ERRORS = Counter('booking_errors_total', 'Booking core errors by code', ['code', 'retryable'])

def record_request_metrics(method: str, endpoint: str, status_code: int, duration: float):
    """Record request metrics"""
    REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=str(status_code)).inc()
    REQUEST_DURATION.observe(duration)

def record_inventory_change(change: InventoryChange):
    """Inventory listener: count mutations, promotions and expiries"""
    INVENTORY_CHANGES.labels(action=change.action, coach_class=change.key.coach_class).inc()
    if change.action == "reserve" and change.status is not None:
        BOOKING_OUTCOMES.labels(status=change.status.value).inc()
    if change.promoted:
        WAITLIST_PROMOTIONS.inc(len(change.promoted))
    if change.expired:
        HOLDS_EXPIRED.inc(len(change.expired))

def record_booking_error(error: BookingError):
    BOOKING_ERRORS.labels(code=error.code, retryable=str(error.retryable).lower()).inc()

def get_metrics():
    """Return Prometheus metrics"""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
