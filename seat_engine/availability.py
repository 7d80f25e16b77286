from typing import List, Sequence

import numpy as np

from .inventory import CoachClassInventory, covered_length, peak_occupancy
from .models import Availability, BookingStatus, SegmentUtilization, Station


def _percentage(occupied, capacity) -> float:
    if capacity <= 0:
        return 0.0
    return round(float(occupied) / capacity * 100, 1)


class AvailabilityEngine:
    """Read-only occupancy queries over a CoachClassInventory"""

    def peak_occupancy(self, inventory: CoachClassInventory, from_order: int, to_order: int) -> int:
        return peak_occupancy(inventory.spans(), from_order, to_order)

    def available_count(self, inventory: CoachClassInventory, from_order: int, to_order: int) -> int:
        """Seats bookable for the whole range: capacity minus peak occupancy inside it"""
        return max(inventory.capacity - self.peak_occupancy(inventory, from_order, to_order), 0)

    def partially_available(self, inventory: CoachClassInventory, from_order: int, to_order: int) -> int:
        """Seats free for part of the range but not all of it"""
        length = to_order - from_order
        partial = 0
        for intervals in inventory.intervals_by_seat().values():
            covered = covered_length(
                ((i.from_order, i.to_order) for i in intervals), from_order, to_order
            )
            if 0 < covered < length:
                partial += 1
        return partial

    def snapshot(self, inventory: CoachClassInventory, from_order: int, to_order: int) -> Availability:
        peak = self.peak_occupancy(inventory, from_order, to_order)
        return Availability(
            total_available=max(inventory.capacity - peak, 0),
            partially_available=self.partially_available(inventory, from_order, to_order),
            confirmed_seats=inventory.seats_with_status(BookingStatus.CONFIRMED, from_order, to_order),
            held_seats=inventory.seats_with_status(BookingStatus.HELD, from_order, to_order),
            waitlisted_seats=inventory.waitlisted_seats(from_order, to_order),
            occupancy_percentage=_percentage(peak, inventory.capacity),
            capacity=inventory.capacity,
        )

    def segment_utilization(
        self, inventory: CoachClassInventory, stations: Sequence[Station]
    ) -> List[SegmentUtilization]:
        """Occupancy of every leg between adjacent stops"""
        legs = len(stations) - 1
        if legs < 1:
            return []

        confirmed = self._leg_profile(inventory.spans(BookingStatus.CONFIRMED), legs)
        held = self._leg_profile(inventory.spans(BookingStatus.HELD), legs)
        waitlisted = self._leg_profile(
            [(t.from_order, t.to_order, t.seat_count) for t in inventory.waitlist], legs
        )
        occupied = confirmed + held

        utilization = []
        for leg in range(legs):
            occupied_seats = int(occupied[leg])
            utilization.append(SegmentUtilization(
                from_order=leg + 1,
                to_order=leg + 2,
                from_station=stations[leg].code,
                to_station=stations[leg + 1].code,
                total_seats=inventory.capacity,
                occupied_seats=occupied_seats,
                available_seats=max(inventory.capacity - occupied_seats, 0),
                confirmed_seats=int(confirmed[leg]),
                held_seats=int(held[leg]),
                waitlisted_seats=int(waitlisted[leg]),
                occupancy_percentage=_percentage(occupied_seats, inventory.capacity),
            ))
        return utilization

    @staticmethod
    def _leg_profile(spans, legs: int) -> np.ndarray:
        """Weight covering each leg [k, k+1), k = 1..legs, via a difference array"""
        diff = np.zeros(legs + 2, dtype=np.int64)
        if spans:
            starts, ends, weights = (np.asarray(column, dtype=np.int64) for column in zip(*spans))
            np.add.at(diff, starts, weights)
            np.add.at(diff, ends, -weights)
        return np.cumsum(diff)[1:legs + 1]
