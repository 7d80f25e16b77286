import logging
import threading
from datetime import date
from typing import Dict, List, Tuple

from .errors import (
    InvalidJourneyDate, InvalidRange, InvalidRoute, RouteAlreadyPublished,
    UnknownCoachClass, UnknownRoute, UnknownStation,
)
from .models import RouteTemplate, Station

logger = logging.getLogger(__name__)


def validate_template(template: RouteTemplate):
    """Raise InvalidRoute if the template breaks a route invariant"""
    stations = template.stations
    if len(stations) < 2:
        raise InvalidRoute(
            f"Route {template.train_id} needs at least two stations",
            train_id=template.train_id,
        )

    orders = [s.order for s in stations]
    if orders != list(range(1, len(stations) + 1)):
        raise InvalidRoute(
            f"Route {template.train_id} station orders must be 1..{len(stations)} in sequence",
            train_id=template.train_id,
            orders=orders,
        )

    codes = [s.code for s in stations]
    if len(set(codes)) != len(codes):
        raise InvalidRoute(
            f"Route {template.train_id} lists a station more than once",
            train_id=template.train_id,
        )

    for previous, current in zip(stations, stations[1:]):
        if current.distance_km < previous.distance_km:
            raise InvalidRoute(
                f"Route {template.train_id}: distance decreases at {current.code}",
                train_id=template.train_id,
                station_code=current.code,
            )
        if current.day < previous.day:
            raise InvalidRoute(
                f"Route {template.train_id}: day offset decreases at {current.code}",
                train_id=template.train_id,
                station_code=current.code,
            )

    if not template.coach_classes:
        raise InvalidRoute(
            f"Route {template.train_id} has no coach classes",
            train_id=template.train_id,
        )
    for coach_class, capacity in template.coach_classes.items():
        if capacity <= 0:
            raise InvalidRoute(
                f"Route {template.train_id}: coach class {coach_class} needs a positive capacity",
                train_id=template.train_id,
                coach_class=coach_class,
            )

    if not template.operating_days or not set(template.operating_days) <= set(range(7)):
        raise InvalidRoute(
            f"Route {template.train_id}: operating days must be weekday numbers 0-6",
            train_id=template.train_id,
        )


class RouteModel:
    """Registry of published route templates. Templates never change once published."""

    def __init__(self):
        self._routes: Dict[str, RouteTemplate] = {}
        self._orders: Dict[str, Dict[str, int]] = {}
        self._lock = threading.Lock()

    def publish(self, template: RouteTemplate) -> bool:
        """Publish a template. Returns False if the identical template was already published."""
        validate_template(template)
        with self._lock:
            existing = self._routes.get(template.train_id)
            if existing is not None:
                if existing == template:
                    return False
                raise RouteAlreadyPublished(template.train_id)
            self._routes[template.train_id] = template
            self._orders[template.train_id] = {s.code: s.order for s in template.stations}

        logger.info(
            f"Published route {template.train_id} ({template.train_number}) "
            f"with {len(template.stations)} stations"
        )
        return True

    def template(self, train_id: str) -> RouteTemplate:
        try:
            return self._routes[train_id]
        except KeyError:
            raise UnknownRoute(train_id) from None

    def templates(self) -> List[RouteTemplate]:
        return list(self._routes.values())

    def train_ids(self) -> List[str]:
        return sorted(self._routes)

    def stations_for(self, train_id: str) -> Tuple[Station, ...]:
        return self.template(train_id).stations

    def order_of(self, train_id: str, station_code: str) -> int:
        self.template(train_id)
        try:
            return self._orders[train_id][station_code]
        except KeyError:
            raise UnknownStation(train_id, station_code) from None

    def capacity_of(self, train_id: str, coach_class: str) -> int:
        template = self.template(train_id)
        try:
            return template.coach_classes[coach_class]
        except KeyError:
            raise UnknownCoachClass(train_id, coach_class) from None

    def validate_range(self, train_id: str, from_order: int, to_order: int):
        last = len(self.stations_for(train_id))
        if from_order >= to_order:
            raise InvalidRange(
                f"From order {from_order} must be before to order {to_order}",
                from_order=from_order,
                to_order=to_order,
            )
        if from_order < 1 or to_order > last:
            raise InvalidRange(
                f"Range [{from_order}, {to_order}) is outside route {train_id} (1..{last})",
                from_order=from_order,
                to_order=to_order,
            )

    def validate_run(self, train_id: str, journey_date: date):
        template = self.template(train_id)
        if not template.runs_on(journey_date):
            raise InvalidJourneyDate(
                f"Train {train_id} does not run on {journey_date:%A %Y-%m-%d}",
                train_id=train_id,
                journey_date=journey_date.isoformat(),
            )

    def __contains__(self, train_id: str) -> bool:
        return train_id in self._routes

    def __len__(self):
        return len(self._routes)
