import logging
from pathlib import Path
from typing import Dict, Iterator, List, Tuple

from railvss.core.exceptions import ConsistencyError, ImportExportError, InvalidTopologyError, NotFoundError, OutOfRangeError
from railvss.core.network import EdgeRef, Network
from railvss.core.trains import TrainList
from railvss.store.files import read_json, write_json

logger = logging.getLogger(__name__)

ROUTES_FILE = "routes.json"


class Route:
    """Ordered edges driven by one train.

    Every adjacent pair of edges is a valid successor pair of the network
    after every mutation; a rejected push leaves the route untouched.
    """

    def __init__(self) -> None:
        self._edges: List[int] = []

    def __len__(self) -> int:
        return len(self._edges)

    def __iter__(self) -> Iterator[int]:
        return iter(self._edges)

    @property
    def edges(self) -> Tuple[int, ...]:
        return tuple(self._edges)

    def _checked_edge(self, edge: EdgeRef, network: Network) -> int:
        if isinstance(edge, tuple):
            exists = network.has_edge(edge[0], edge[1])
        else:
            exists = network.has_edge(edge)
        if not exists:
            raise InvalidTopologyError(f"Edge {edge} does not exist")
        return network.resolve_edge(edge)

    def push_back_edge(self, edge: EdgeRef, network: Network) -> None:
        e = self._checked_edge(edge, network)
        if self._edges and not network.is_valid_successor(self._edges[-1], e):
            raise InvalidTopologyError(f"Edge {e} is not a valid successor of edge {self._edges[-1]}")
        self._edges.append(e)

    def push_front_edge(self, edge: EdgeRef, network: Network) -> None:
        e = self._checked_edge(edge, network)
        if self._edges and not network.is_valid_successor(e, self._edges[0]):
            raise InvalidTopologyError(f"Edge {e} is not a valid predecessor of edge {self._edges[0]}")
        self._edges.insert(0, e)

    def remove_first_edge(self) -> int:
        if not self._edges:
            raise OutOfRangeError("Route is empty")
        return self._edges.pop(0)

    def remove_last_edge(self) -> int:
        if not self._edges:
            raise OutOfRangeError("Route is empty")
        return self._edges.pop()

    def get_edge(self, route_index: int) -> int:
        if route_index < 0 or route_index >= len(self._edges):
            raise OutOfRangeError(f"Route index {route_index} out of range")
        return self._edges[route_index]

    def length(self, network: Network) -> float:
        return sum(network.get_edge(e).length for e in self._edges)

    def edge_pos(self, edge: EdgeRef, network: Network) -> Tuple[float, float]:
        """Start and end position of an edge measured along the route."""
        e = network.resolve_edge(edge)
        start = 0.0
        for route_edge in self._edges:
            length = network.get_edge(route_edge).length
            if route_edge == e:
                return start, start + length
            start += length
        raise NotFoundError(f"Edge {e} is not part of the route")

    def check_consistency(self, network: Network) -> bool:
        if any(not network.has_edge(e) for e in self._edges):
            return False
        return all(network.is_valid_successor(a, b) for a, b in zip(self._edges, self._edges[1:]))


class RouteMap:
    """Routes keyed by train name."""

    def __init__(self) -> None:
        self._routes: Dict[str, Route] = {}

    def __len__(self) -> int:
        return len(self._routes)

    def __iter__(self) -> Iterator[str]:
        return iter(self._routes)

    def reset(self) -> None:
        self._routes.clear()

    def has_route(self, train_name: str) -> bool:
        return train_name in self._routes

    def get_route(self, train_name: str) -> Route:
        if train_name not in self._routes:
            raise NotFoundError(f"Route for train {train_name} not found")
        return self._routes[train_name]

    def add_empty_route(self, train_name: str, train_list: TrainList) -> Route:
        if not train_list.has_train(train_name):
            raise NotFoundError(f"Train {train_name} not found")
        if train_name in self._routes:
            raise ConsistencyError(f"Route for train {train_name} already exists")
        self._routes[train_name] = Route()
        return self._routes[train_name]

    def push_back_edge(self, train_name: str, edge: EdgeRef, network: Network) -> None:
        self.get_route(train_name).push_back_edge(edge, network)

    def push_front_edge(self, train_name: str, edge: EdgeRef, network: Network) -> None:
        self.get_route(train_name).push_front_edge(edge, network)

    def remove_first_edge(self, train_name: str) -> int:
        return self.get_route(train_name).remove_first_edge()

    def remove_last_edge(self, train_name: str) -> int:
        return self.get_route(train_name).remove_last_edge()

    def check_consistency(self, train_list: TrainList, network: Network, every_train_must_have_route: bool = True) -> bool:
        for name, route in self._routes.items():
            if not train_list.has_train(name):
                return False
            if not route.check_consistency(network):
                return False
        if every_train_must_have_route:
            for train in train_list:
                if train.name not in self._routes or len(self._routes[train.name]) == 0:
                    return False
        return True

    def export_routes(self, path: Path, network: Network) -> None:
        payload = {name: [list(network.edge_name(e)) for e in route] for name, route in self._routes.items()}
        write_json(Path(path) / ROUTES_FILE, payload)

    @classmethod
    def import_routes(cls, path: Path, network: Network) -> "RouteMap":
        data = read_json(Path(path) / ROUTES_FILE)
        if not isinstance(data, dict):
            raise ImportExportError(f"Routes file in {path} must map train names to edge lists")
        routes = cls()
        for name, edges in data.items():
            route = Route()
            for source, target in edges:
                route.push_back_edge((source, target), network)
            routes._routes[name] = route
        logger.info("Imported %d routes from %s", len(routes), path)
        return routes
