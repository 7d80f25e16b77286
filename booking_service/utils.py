from typing import Optional

from seat_engine.models import Availability

def format_duration(minutes: Optional[int]) -> Optional[str]:
    """Format a running time as "2h 30m" """
    if minutes is None:
        return None
    if minutes < 0:
        raise ValueError(f"Negative duration: {minutes}")
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}m"

def average_speed(distance_km: float, minutes: Optional[int]) -> Optional[float]:
    """Average speed in km/h over a leg, None when the running time is unknown"""
    if not minutes or minutes <= 0 or distance_km <= 0:
        return None
    return round(distance_km / (minutes / 60), 1)

def utilization_class(occupancy_percentage: float) -> str:
    """Occupancy band for a segment"""
    if occupancy_percentage >= 95:
        return "full"
    elif occupancy_percentage >= 80:
        return "high"
    elif occupancy_percentage >= 60:
        return "medium"
    elif occupancy_percentage >= 30:
        return "low"
    else:
        return "empty"

def availability_class(availability: Availability, low_threshold: int = 10) -> str:
    """Availability band shown next to a coach type in search results"""
    if availability.total_available == 0:
        return "none"
    elif availability.total_available < low_threshold:
        return "low"
    elif availability.partially_available > 0:
        return "smart"
    else:
        return "good"
