from dataclasses import dataclass
from datetime import timedelta
from typing import Dict

# Coach type code -> (label, description)
COACH_TYPES: Dict[str, tuple] = {
    "1A": ("First AC", "AC First Class with lockable cabins"),
    "2A": ("AC 2 Tier", "AC sleeper, two berths per bay side"),
    "3A": ("AC 3 Tier", "AC sleeper, three berths per bay side"),
    "CC": ("AC Chair Car", "AC seating coach"),
    "SL": ("Sleeper", "Non-AC sleeper class"),
    "2S": ("Second Sitting", "Non-AC reserved seating"),
}

DEFAULT_COACH_TYPE = "SL"


@dataclass
class EngineConfig:
    hold_ttl_minutes: int = 15
    max_advance_days: int = 120
    max_passengers: int = 6
    # Display availability entries kept per engine before the cache is reset
    availability_cache_size: int = 1024

    @property
    def hold_ttl(self) -> timedelta:
        return timedelta(minutes=self.hold_ttl_minutes)
