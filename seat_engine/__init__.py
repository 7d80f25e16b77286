from .allocator import BookingAllocator, InventoryChange
from .availability import AvailabilityEngine
from .config import EngineConfig
from .engine import BookingEngine
from .inventory import CoachClassInventory
from .models import (
    BookingResult, BookingStatus, CancelReason, InventoryKey, RouteTemplate, Station, TrainRun,
)
from .route_model import RouteModel
from .search_index import RouteSearchIndex
from .store import InventoryStore, MemoryInventoryStore

__all__ = [
    "AvailabilityEngine", "BookingAllocator", "BookingEngine", "BookingResult",
    "BookingStatus", "CancelReason", "CoachClassInventory", "EngineConfig", "InventoryChange",
    "InventoryKey", "InventoryStore", "MemoryInventoryStore", "RouteModel",
    "RouteSearchIndex", "RouteTemplate", "Station", "TrainRun",
]
