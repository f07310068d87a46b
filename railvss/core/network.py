import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple, Union

import networkx as nx

from railvss.core.exceptions import ConsistencyError, InvalidTopologyError, NotFoundError
from railvss.store.files import read_model, write_model
from railvss.store.schemas import EdgeRecord, NetworkRecord, VertexRecord

logger = logging.getLogger(__name__)

VertexRef = Union[int, str]
# An edge is addressed by its index or by its (source, target) vertex pair
EdgeRef = Union[int, Tuple[VertexRef, VertexRef]]

NETWORK_FILE = "network.json"


@dataclass(frozen=True)
class Vertex:
    index: int
    name: str


@dataclass
class Edge:
    index: int
    source: int
    target: int
    length: float  # m
    breakable: bool = True
    # Shortest block a VSS boundary may create on this edge
    min_block_length: float = 1.0
    # Index of the edge running target -> source, if any
    reverse: Optional[int] = None


class Network:
    """Directed track graph.

    Vertices and edges are stored in insertion order and addressed by index
    internally; names are resolved once at the public boundary. Which edge
    may follow which is recorded explicitly with add_successor, and
    is_valid_successor is the only place that relation is evaluated.
    """

    def __init__(self) -> None:
        self.vertices: List[Vertex] = []
        self.edges: List[Edge] = []
        self._vertex_name_to_index: Dict[str, int] = {}
        self._edge_lookup: Dict[Tuple[int, int], int] = {}
        self._successors: Dict[int, Set[int]] = {}
        self.graph = nx.DiGraph()

    # --- construction ---------------------------------------------------

    def add_vertex(self, name: str) -> int:
        if name in self._vertex_name_to_index:
            raise ConsistencyError(f"Vertex {name} already exists")
        index = len(self.vertices)
        self.vertices.append(Vertex(index=index, name=name))
        self._vertex_name_to_index[name] = index
        self.graph.add_node(index, name=name)
        return index

    def add_edge(self, source: VertexRef, target: VertexRef, length: float, breakable: bool = True, min_block_length: float = 1.0) -> int:
        u = self.get_vertex_index(source)
        v = self.get_vertex_index(target)
        if u == v:
            raise ConsistencyError(f"Edge from {self.vertices[u].name} to itself is not allowed")
        if (u, v) in self._edge_lookup:
            raise ConsistencyError(f"Edge {self.vertices[u].name} -> {self.vertices[v].name} already exists")
        if length <= 0:
            raise ConsistencyError(f"Edge length must be positive, got {length}")
        if min_block_length <= 0:
            raise ConsistencyError(f"Minimal block length must be positive, got {min_block_length}")

        reverse = self._edge_lookup.get((v, u))
        if reverse is not None and self.edges[reverse].length != length:
            raise ConsistencyError(f"Edge {self.vertices[u].name} -> {self.vertices[v].name} must have the length {self.edges[reverse].length} of its reverse edge")

        index = len(self.edges)
        edge = Edge(index=index, source=u, target=v, length=length, breakable=breakable, min_block_length=min_block_length)
        if reverse is not None:
            edge.reverse = reverse
            self.edges[reverse].reverse = index
        self.edges.append(edge)
        self._edge_lookup[(u, v)] = index
        self._successors[index] = set()
        self.graph.add_edge(u, v, index=index, length=length)
        return index

    def add_successor(self, edge_in: EdgeRef, edge_out: EdgeRef) -> None:
        e_in = self.resolve_edge(edge_in)
        e_out = self.resolve_edge(edge_out)
        if self.edges[e_in].target != self.edges[e_out].source:
            raise InvalidTopologyError(f"Edge {e_out} does not start where edge {e_in} ends")
        self._successors[e_in].add(e_out)

    # --- vertices ---------------------------------------------------------

    def number_of_vertices(self) -> int:
        return len(self.vertices)

    def has_vertex(self, vertex: VertexRef) -> bool:
        if isinstance(vertex, str):
            return vertex in self._vertex_name_to_index
        return 0 <= vertex < len(self.vertices)

    def get_vertex_index(self, vertex: VertexRef) -> int:
        if isinstance(vertex, str):
            if vertex not in self._vertex_name_to_index:
                raise NotFoundError(f"Vertex {vertex} not found")
            return self._vertex_name_to_index[vertex]
        if not self.has_vertex(vertex):
            raise NotFoundError(f"Vertex with index {vertex} not found")
        return vertex

    def get_vertex(self, vertex: VertexRef) -> Vertex:
        return self.vertices[self.get_vertex_index(vertex)]

    def out_edges(self, vertex: VertexRef) -> List[int]:
        u = self.get_vertex_index(vertex)
        return [idx for _, _, idx in self.graph.out_edges(u, data="index")]

    def in_edges(self, vertex: VertexRef) -> List[int]:
        v = self.get_vertex_index(vertex)
        return [idx for _, _, idx in self.graph.in_edges(v, data="index")]

    def is_reachable(self, source: VertexRef, target: VertexRef) -> bool:
        return nx.has_path(self.graph, self.get_vertex_index(source), self.get_vertex_index(target))

    # --- edges ------------------------------------------------------------

    def number_of_edges(self) -> int:
        return len(self.edges)

    def has_edge(self, edge: Union[EdgeRef, VertexRef], target: Optional[VertexRef] = None) -> bool:
        if target is not None:
            if not (self.has_vertex(edge) and self.has_vertex(target)):
                return False
            return (self.get_vertex_index(edge), self.get_vertex_index(target)) in self._edge_lookup
        if isinstance(edge, tuple):
            return self.has_edge(edge[0], edge[1])
        if isinstance(edge, str):
            return False
        return 0 <= edge < len(self.edges)

    def get_edge_index(self, source: VertexRef, target: VertexRef) -> int:
        key = (self.get_vertex_index(source), self.get_vertex_index(target))
        if key not in self._edge_lookup:
            raise NotFoundError(f"Edge {self.vertices[key[0]].name} -> {self.vertices[key[1]].name} not found")
        return self._edge_lookup[key]

    def resolve_edge(self, edge: EdgeRef) -> int:
        if isinstance(edge, tuple):
            return self.get_edge_index(edge[0], edge[1])
        if not self.has_edge(edge):
            raise NotFoundError(f"Edge with index {edge} not found")
        return edge

    def get_edge(self, edge: EdgeRef) -> Edge:
        return self.edges[self.resolve_edge(edge)]

    def edge_name(self, edge: EdgeRef) -> Tuple[str, str]:
        e = self.get_edge(edge)
        return self.vertices[e.source].name, self.vertices[e.target].name

    def is_valid_successor(self, edge_in: EdgeRef, edge_out: EdgeRef) -> bool:
        e_in = self.resolve_edge(edge_in)
        e_out = self.resolve_edge(edge_out)
        if self.edges[e_in].target != self.edges[e_out].source:
            return False
        return e_out in self._successors[e_in]

    def get_successors(self, edge: EdgeRef) -> List[int]:
        return sorted(self._successors[self.resolve_edge(edge)])

    def get_reverse_edge_index(self, edge: EdgeRef) -> Optional[int]:
        return self.get_edge(edge).reverse

    def max_vss_on_edge(self, edge: EdgeRef) -> int:
        e = self.get_edge(edge)
        if not e.breakable:
            return 0
        # n blocks of at least min_block_length need n - 1 boundaries
        return max(0, int(math.floor(e.length / e.min_block_length)) - 1)

    def breakable_edges(self) -> List[int]:
        return [e.index for e in self.edges if e.breakable]

    def relevant_breakable_edges(self) -> List[int]:
        """Edges that can host at least one VSS.

        Of a pair of opposite edges only the lower index is returned, since a
        boundary placed on one is mirrored onto the other.
        """
        relevant = []
        for e in self.edges:
            if self.max_vss_on_edge(e.index) == 0:
                continue
            if e.reverse is not None and e.reverse < e.index and self.max_vss_on_edge(e.reverse) > 0:
                continue
            relevant.append(e.index)
        return relevant

    # --- persistence ------------------------------------------------------

    def to_record(self) -> NetworkRecord:
        successors = []
        for e_in, outs in self._successors.items():
            for e_out in sorted(outs):
                successors.append((self.edge_name(e_in), self.edge_name(e_out)))
        return NetworkRecord(
            vertices=[VertexRecord(name=v.name) for v in self.vertices],
            edges=[
                EdgeRecord(
                    source=self.vertices[e.source].name,
                    target=self.vertices[e.target].name,
                    length=e.length,
                    breakable=e.breakable,
                    min_block_length=e.min_block_length,
                )
                for e in self.edges
            ],
            successors=successors,
        )

    @classmethod
    def from_record(cls, record: NetworkRecord) -> "Network":
        network = cls()
        for v in record.vertices:
            network.add_vertex(v.name)
        for e in record.edges:
            network.add_edge(e.source, e.target, e.length, breakable=e.breakable, min_block_length=e.min_block_length)
        for e_in, e_out in record.successors:
            network.add_successor(e_in, e_out)
        return network

    def export_network(self, path: Path) -> None:
        write_model(Path(path) / NETWORK_FILE, self.to_record())

    @classmethod
    def import_network(cls, path: Path) -> "Network":
        network = cls.from_record(read_model(Path(path) / NETWORK_FILE, NetworkRecord))
        logger.info("Imported network with %d vertices and %d edges from %s", network.number_of_vertices(), network.number_of_edges(), path)
        return network
