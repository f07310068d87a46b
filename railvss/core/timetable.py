import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from railvss.core.exceptions import ConsistencyError, NotFoundError
from railvss.core.network import EdgeRef, Network, VertexRef
from railvss.core.trains import TrainList, TrainRef
from railvss.store.files import read_model, write_model
from railvss.store.schemas import ScheduleRecord, StationRecord, StopRecord, TimetableRecord, TrainRecord

logger = logging.getLogger(__name__)

TIMETABLE_FILE = "timetable.json"


@dataclass
class Station:
    name: str
    tracks: Set[int] = field(default_factory=set)  # edge indices


class StationList:
    def __init__(self) -> None:
        self._stations: Dict[str, Station] = {}

    def __iter__(self) -> Iterator[Station]:
        return iter(self._stations.values())

    def __len__(self) -> int:
        return len(self._stations)

    def add_station(self, name: str, network: Network, tracks: Optional[Iterable[EdgeRef]] = None) -> None:
        if name in self._stations:
            raise ConsistencyError(f"Station {name} already exists")
        resolved = {network.resolve_edge(track) for track in (tracks or ())}
        self._stations[name] = Station(name=name, tracks=resolved)

    def has_station(self, name: str) -> bool:
        return name in self._stations

    def get_station(self, name: str) -> Station:
        if name not in self._stations:
            raise NotFoundError(f"Station {name} not found")
        return self._stations[name]

    def add_track_to_station(self, name: str, track: EdgeRef, network: Network) -> None:
        station = self.get_station(name)
        station.tracks.add(network.resolve_edge(track))


@dataclass(frozen=True, eq=False)
class ScheduledStop:
    """Occupation of a station during [begin, end].

    Ordering compares intervals: a stop is "less" than another when it ends
    no later than the other begins. Equality means an identical interval.
    """

    begin: int
    end: int
    station: str

    def __lt__(self, other: "ScheduledStop") -> bool:
        return self.end <= other.begin

    def __gt__(self, other: "ScheduledStop") -> bool:
        return self.begin >= other.end

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ScheduledStop):
            return NotImplemented
        return self.begin == other.begin and self.end == other.end

    def __le__(self, other: "ScheduledStop") -> bool:
        return self < other or self == other

    def __ge__(self, other: "ScheduledStop") -> bool:
        return self > other or self == other

    def __hash__(self) -> int:
        return hash((self.begin, self.end))

    def overlaps(self, other: "ScheduledStop") -> bool:
        return not (self < other or self > other)


@dataclass
class Schedule:
    t_0: int  # s
    v_0: float  # m/s
    entry: int  # vertex index
    t_n: int  # s
    v_n: float  # m/s
    exit: int  # vertex index
    stops: List[ScheduledStop] = field(default_factory=list)


class Timetable:
    """Trains, stations and one schedule per train."""

    def __init__(self) -> None:
        self.station_list = StationList()
        self.train_list = TrainList()
        self._schedules: List[Schedule] = []

    def add_train(
        self,
        name: str,
        length: float,
        max_speed: float,
        acceleration: float,
        deceleration: float,
        t_0: int,
        v_0: float,
        entry: VertexRef,
        t_n: int,
        v_n: float,
        exit: VertexRef,
        network: Network,
    ) -> int:
        # resolve vertices before touching the train list so a bad vertex adds nothing
        entry_index = network.get_vertex_index(entry)
        exit_index = network.get_vertex_index(exit)
        index = self.train_list.add_train(name, length, max_speed, acceleration, deceleration)
        self._schedules.append(Schedule(t_0=t_0, v_0=v_0, entry=entry_index, t_n=t_n, v_n=v_n, exit=exit_index))
        return index

    def add_station(self, name: str, network: Network, tracks: Optional[Iterable[EdgeRef]] = None) -> None:
        self.station_list.add_station(name, network, tracks)

    def add_track_to_station(self, name: str, track: EdgeRef, network: Network) -> None:
        self.station_list.add_track_to_station(name, track, network)

    def add_stop(self, train: TrainRef, station: str, begin: int, end: int, sort: bool = True) -> None:
        schedule = self.get_schedule(train)
        if not self.station_list.has_station(station):
            raise NotFoundError(f"Station {station} not found")
        if begin >= end:
            raise ConsistencyError(f"Stop at {station} must begin before it ends ({begin} >= {end})")
        schedule.stops.append(ScheduledStop(begin=begin, end=end, station=station))
        if sort:
            self._sort(schedule)

    @staticmethod
    def _sort(schedule: Schedule) -> None:
        # (begin, end) agrees with the stop ordering for non-overlapping stops and is total
        schedule.stops.sort(key=lambda s: (s.begin, s.end))

    def sort_stops(self) -> None:
        for schedule in self._schedules:
            self._sort(schedule)

    def get_schedule(self, train: TrainRef) -> Schedule:
        return self._schedules[self.train_list.resolve(train)]

    def time_interval(self, train: TrainRef) -> Tuple[int, int]:
        schedule = self.get_schedule(train)
        return schedule.t_0, schedule.t_n

    def time_index_interval(self, train: TrainRef, dt: int, tn_inclusive: bool = True) -> Tuple[int, int]:
        """Grid indices covering the schedule.

        The first index is floor(t_0 / dt). The last is ceil(t_n / dt), or one
        less when tn_inclusive is False (the train's nominal last step).
        """
        schedule = self.get_schedule(train)
        t_0 = schedule.t_0 // dt
        t_n = int(math.ceil(schedule.t_n / dt))
        return t_0, (t_n if tn_inclusive else t_n - 1)

    def max_t(self) -> int:
        return max((s.t_n for s in self._schedules), default=0)

    def check_consistency(self, network: Network) -> bool:
        for station in self.station_list:
            if any(not network.has_edge(track) for track in station.tracks):
                return False
        for train in self.train_list:
            schedule = self.get_schedule(train.name)
            if not (network.has_vertex(schedule.entry) and network.has_vertex(schedule.exit)):
                return False
            if schedule.t_0 < 0 or schedule.t_0 >= schedule.t_n:
                return False
            for v in (schedule.v_0, schedule.v_n):
                if v < 0 or v > train.max_speed:
                    return False
            for stop in schedule.stops:
                if not self.station_list.has_station(stop.station):
                    return False
                if stop.begin < schedule.t_0 or stop.end > schedule.t_n or stop.begin >= stop.end:
                    return False
                if not self._station_on_path(stop.station, schedule, network):
                    return False
            for i, a in enumerate(schedule.stops):
                for b in schedule.stops[i + 1:]:
                    if a.overlaps(b):
                        return False
        return True

    def _station_on_path(self, name: str, schedule: Schedule, network: Network) -> bool:
        station = self.station_list.get_station(name)
        for track in station.tracks:
            if not network.has_edge(track):
                return False
            edge = network.get_edge(track)
            if network.is_reachable(schedule.entry, edge.source) and network.is_reachable(edge.target, schedule.exit):
                return True
        return False

    # --- persistence ------------------------------------------------------

    def to_record(self, network: Network) -> TimetableRecord:
        stations = [
            StationRecord(name=s.name, tracks=[network.edge_name(t) for t in sorted(s.tracks)])
            for s in self.station_list
        ]
        schedules = {}
        for train in self.train_list:
            s = self.get_schedule(train.name)
            schedules[train.name] = ScheduleRecord(
                t_0=s.t_0,
                v_0=s.v_0,
                entry=network.get_vertex(s.entry).name,
                t_n=s.t_n,
                v_n=s.v_n,
                exit=network.get_vertex(s.exit).name,
                stops=[StopRecord(begin=st.begin, end=st.end, station=st.station) for st in s.stops],
            )
        return TimetableRecord(
            stations=stations,
            trains=[TrainRecord(**r) for r in self.train_list.to_records()],
            schedules=schedules,
        )

    @classmethod
    def from_record(cls, record: TimetableRecord, network: Network) -> "Timetable":
        timetable = cls()
        for st in record.stations:
            timetable.add_station(st.name, network)
            for source, target in st.tracks:
                timetable.add_track_to_station(st.name, (source, target), network)
        for tr in record.trains:
            if tr.name not in record.schedules:
                raise NotFoundError(f"Schedule for train {tr.name} not found")
            s = record.schedules[tr.name]
            timetable.add_train(tr.name, tr.length, tr.max_speed, tr.acceleration, tr.deceleration, s.t_0, s.v_0, s.entry, s.t_n, s.v_n, s.exit, network)
            for stop in s.stops:
                timetable.add_stop(tr.name, stop.station, stop.begin, stop.end, sort=False)
        timetable.sort_stops()
        return timetable

    def export_timetable(self, path: Path, network: Network) -> None:
        write_model(Path(path) / TIMETABLE_FILE, self.to_record(network))

    @classmethod
    def import_timetable(cls, path: Path, network: Network) -> "Timetable":
        timetable = cls.from_record(read_model(Path(path) / TIMETABLE_FILE, TimetableRecord), network)
        logger.info("Imported timetable with %d trains from %s", len(timetable.train_list), path)
        return timetable
