"""Persistence boundary for coach-class inventories.

The core only needs load/save of a single class's aggregate with an atomic
compare-and-swap on its version; any engine able to provide that can back it.
"""
import copy
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .errors import ConcurrentModification
from .inventory import CoachClassInventory
from .models import InventoryKey


class InventoryStore(ABC):

    @abstractmethod
    def load(self, key: InventoryKey) -> Optional[CoachClassInventory]:
        """Return a private copy of the stored inventory, or None"""

    @abstractmethod
    def save(self, inventory: CoachClassInventory) -> int:
        """Persist ``inventory`` if the stored version still equals ``inventory.version``.

        Returns the new version and raises ConcurrentModification otherwise.
        A never-saved inventory has version 0; every save bumps it by one.
        """

    @abstractmethod
    def locate_booking(self, booking_id: str) -> Optional[InventoryKey]:
        """Key of the inventory that owns a booking"""

    @abstractmethod
    def keys(self) -> List[InventoryKey]:
        """Every stored inventory key"""


class MemoryInventoryStore(InventoryStore):
    """Process-local store; loads and saves deep copies so callers work on snapshots"""

    def __init__(self):
        self._inventories: Dict[InventoryKey, CoachClassInventory] = {}
        self._booking_index: Dict[str, InventoryKey] = {}
        self._lock = threading.Lock()

    def load(self, key):
        with self._lock:
            stored = self._inventories.get(key)
            return copy.deepcopy(stored) if stored is not None else None

    def save(self, inventory):
        with self._lock:
            stored = self._inventories.get(inventory.key)
            current = stored.version if stored is not None else 0
            if current != inventory.version:
                raise ConcurrentModification(
                    f"Inventory {inventory.key} changed (expected version "
                    f"{inventory.version}, found {current})",
                    key=str(inventory.key),
                    expected=inventory.version,
                    found=current,
                )
            saved = copy.deepcopy(inventory)
            saved.version = current + 1
            self._inventories[inventory.key] = saved
            for booking_id in saved.bookings:
                self._booking_index[booking_id] = saved.key
            inventory.version = saved.version
            return saved.version

    def locate_booking(self, booking_id):
        with self._lock:
            return self._booking_index.get(booking_id)

    def keys(self):
        with self._lock:
            return list(self._inventories)
