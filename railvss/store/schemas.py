from typing import Dict, List, Tuple

from pydantic import BaseModel

# On-disk records. Vertices are referenced by name so files survive reindexing.

EdgeRef = Tuple[str, str]


class VertexRecord(BaseModel):
    name: str


class EdgeRecord(BaseModel):
    source: str
    target: str
    length: float
    breakable: bool = True
    min_block_length: float = 1.0


class NetworkRecord(BaseModel):
    vertices: List[VertexRecord]
    edges: List[EdgeRecord]
    successors: List[Tuple[EdgeRef, EdgeRef]] = []


class TrainRecord(BaseModel):
    name: str
    length: float
    max_speed: float
    acceleration: float
    deceleration: float


class StationRecord(BaseModel):
    name: str
    tracks: List[EdgeRef] = []


class StopRecord(BaseModel):
    begin: int
    end: int
    station: str


class ScheduleRecord(BaseModel):
    t_0: int
    v_0: float
    entry: str
    t_n: int
    v_n: float
    exit: str
    stops: List[StopRecord] = []


class TimetableRecord(BaseModel):
    stations: List[StationRecord] = []
    trains: List[TrainRecord] = []
    # Keyed by train name
    schedules: Dict[str, ScheduleRecord] = {}


class SolutionDataRecord(BaseModel):
    dt: int
    status: int
    obj: float
    mip_obj: float
    postprocessed: bool
