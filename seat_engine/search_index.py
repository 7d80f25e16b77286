import logging
from collections import defaultdict
from datetime import date, time
from typing import Dict, List, Set

from .models import RouteTemplate, SearchHit, TrainRun
from .route_model import RouteModel

logger = logging.getLogger(__name__)


class RouteSearchIndex:
    """Reverse map station code -> train ids, answering A->B on a date."""

    def __init__(self, route_model: RouteModel):
        self.route_model = route_model
        self._trains_by_station: Dict[str, Set[str]] = defaultdict(set)
        self.rebuild()

    def rebuild(self):
        self._trains_by_station = defaultdict(set)
        for template in self.route_model.templates():
            self.add(template)
        logger.info(
            f"Search index built: {len(self._trains_by_station)} stations, "
            f"{len(self.route_model)} routes"
        )

    def add(self, template: RouteTemplate):
        for station in template.stations:
            self._trains_by_station[station.code].add(template.train_id)

    def stations(self) -> List[str]:
        return sorted(self._trains_by_station)

    def trains_serving(self, station_code: str) -> List[str]:
        return sorted(self._trains_by_station.get(station_code, ()))

    def search(self, from_code: str, to_code: str, journey_date: date) -> List[SearchHit]:
        candidates = (
            self._trains_by_station.get(from_code, set())
            & self._trains_by_station.get(to_code, set())
        )

        hits = []
        for train_id in candidates:
            template = self.route_model.template(train_id)
            if not template.runs_on(journey_date):
                continue
            from_order = self.route_model.order_of(train_id, from_code)
            to_order = self.route_model.order_of(train_id, to_code)
            if from_order < to_order:
                hits.append(SearchHit(TrainRun(train_id, journey_date), from_order, to_order))

        def departure_key(hit: SearchHit):
            station = self.route_model.stations_for(hit.run.train_id)[hit.from_order - 1]
            return (station.day, station.departure_time or time.max, hit.run.train_id)

        hits.sort(key=departure_key)
        return hits
