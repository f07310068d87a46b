import logging
from pathlib import Path
from typing import Iterable, Optional, Tuple

from railvss.core.network import EdgeRef, Network, VertexRef
from railvss.core.route import RouteMap
from railvss.core.timetable import Schedule, Timetable
from railvss.core.trains import TrainList, TrainRef
from railvss.store.files import ensure_directory, require_directory

logger = logging.getLogger(__name__)

ROUTES_DIR = "routes"


class VSSGenerationTimetable:
    """Problem instance: network, timetable and (possibly empty) routes."""

    def __init__(self, network: Network, timetable: Optional[Timetable] = None, routes: Optional[RouteMap] = None) -> None:
        self.network = network
        self.timetable = timetable if timetable is not None else Timetable()
        self.routes = routes if routes is not None else RouteMap()

    @property
    def train_list(self) -> TrainList:
        return self.timetable.train_list

    def add_train(self, name: str, length: float, max_speed: float, acceleration: float, deceleration: float, t_0: int, v_0: float, entry: VertexRef, t_n: int, v_n: float, exit: VertexRef) -> int:
        return self.timetable.add_train(name, length, max_speed, acceleration, deceleration, t_0, v_0, entry, t_n, v_n, exit, self.network)

    def add_station(self, name: str, tracks: Optional[Iterable[EdgeRef]] = None) -> None:
        self.timetable.add_station(name, self.network, tracks)

    def add_track_to_station(self, name: str, track: EdgeRef) -> None:
        self.timetable.add_track_to_station(name, track, self.network)

    def add_stop(self, train: TrainRef, station: str, begin: int, end: int, sort: bool = True) -> None:
        self.timetable.add_stop(train, station, begin, end, sort=sort)

    def get_schedule(self, train: TrainRef) -> Schedule:
        return self.timetable.get_schedule(train)

    def time_index_interval(self, train: TrainRef, dt: int, tn_inclusive: bool = True) -> Tuple[int, int]:
        return self.timetable.time_index_interval(train, dt, tn_inclusive)

    def add_empty_route(self, train_name: str) -> None:
        self.routes.add_empty_route(train_name, self.train_list)

    def push_back_edge_to_route(self, train_name: str, edge: EdgeRef) -> None:
        self.routes.push_back_edge(train_name, edge, self.network)

    def push_front_edge_to_route(self, train_name: str, edge: EdgeRef) -> None:
        self.routes.push_front_edge(train_name, edge, self.network)

    def check_consistency(self, every_train_must_have_route: bool = True) -> bool:
        if not self.timetable.check_consistency(self.network):
            return False
        if not self.routes.check_consistency(self.train_list, self.network, every_train_must_have_route):
            return False
        for name in self.routes:
            route = self.routes.get_route(name)
            if len(route) == 0:
                continue
            schedule = self.get_schedule(name)
            if self.network.get_edge(route.get_edge(0)).source != schedule.entry:
                return False
            if self.network.get_edge(route.get_edge(len(route) - 1)).target != schedule.exit:
                return False
        return True

    def export_instance(self, path: Path) -> None:
        path = ensure_directory(Path(path))
        self.network.export_network(path)
        self.timetable.export_timetable(path, self.network)
        self.routes.export_routes(path / ROUTES_DIR, self.network)
        logger.info("Exported instance to %s", path)

    @classmethod
    def import_instance(cls, path: Path) -> "VSSGenerationTimetable":
        path = require_directory(Path(path))
        network = Network.import_network(path)
        timetable = Timetable.import_timetable(path, network)
        routes = RouteMap.import_routes(path / ROUTES_DIR, network)
        return cls(network, timetable, routes)
