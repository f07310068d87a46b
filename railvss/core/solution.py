import copy
import logging
import math
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from railvss.config import VSSConfig
from railvss.core.exceptions import ConsistencyError, ImportExportError, OutOfRangeError
from railvss.core.instance import ROUTES_DIR, VSSGenerationTimetable
from railvss.core.network import EdgeRef
from railvss.core.route import RouteMap
from railvss.core.trains import TrainRef
from railvss.store.files import (
    edge_key,
    ensure_directory,
    parse_edge_key,
    read_json,
    read_model,
    require_directory,
    write_json,
    write_model,
)
from railvss.store.schemas import SolutionDataRecord

logger = logging.getLogger(__name__)

INSTANCE_DIR = "instance"
SOLUTION_DIR = "solution"

# Marks a trajectory sample the optimizer has not reported yet
UNSET = -1.0


class SolutionStatus(IntEnum):
    UNKNOWN = 0
    OPTIMAL = 1
    FEASIBLE = 2
    INFEASIBLE = 3
    TIMEOUT = 4


class VSSSolution:
    """Finalized VSS layout and train trajectories for one problem instance.

    The instance is deep-copied on construction so the solution stays valid
    and exportable after the optimizer session that produced it is gone.
    Trajectories are sampled on the grid t = k * dt for k in the train's
    time_index_interval (tn inclusive); positions and speeds in between are
    reconstructed assuming uniform acceleration over each step.
    """

    def __init__(self, instance: VSSGenerationTimetable, dt: Optional[int] = None, config: Optional[VSSConfig] = None) -> None:
        cfg = config or VSSConfig()
        if dt is None:
            dt = cfg.dt
        if dt <= 0:
            raise ConsistencyError(f"Time step dt must be positive, got {dt}")
        self.instance = copy.deepcopy(instance)
        self.dt = dt
        self.status = SolutionStatus.UNKNOWN
        self.obj: float = 0.0
        self.mip_obj: float = 0.0
        self.postprocessed = False
        self.tolerance = cfg.tolerance
        self._initialize_vectors()

    def _initialize_vectors(self) -> None:
        self._vss_pos: List[List[float]] = [[] for _ in range(self.instance.network.number_of_edges())]
        self._train_pos: List[List[float]] = []
        self._train_speed: List[List[float]] = []
        for tr in range(len(self.instance.train_list)):
            t_0, t_n = self.instance.time_index_interval(tr, self.dt, tn_inclusive=True)
            size = t_n - t_0 + 1
            self._train_pos.append([UNSET] * size)
            self._train_speed.append([UNSET] * size)

    # --- time grid --------------------------------------------------------

    def _scheduled_index(self, train: TrainRef, time: float) -> Tuple[int, int]:
        """Resolve the train and check that time lies in its discretized interval."""
        tr = self.instance.train_list.resolve(train)
        t_0, t_n = self.instance.time_index_interval(tr, self.dt, tn_inclusive=True)
        if time < t_0 * self.dt or time > t_n * self.dt:
            raise OutOfRangeError(f"Train {self.instance.train_list.get_train(tr).name} is not scheduled at time {time}")
        return tr, t_0

    def train_times(self, train: TrainRef) -> List[int]:
        t_0, t_n = self.instance.time_index_interval(train, self.dt, tn_inclusive=True)
        return [t * self.dt for t in range(t_0, t_n + 1)]

    def _grid_slot(self, train: TrainRef, time: float) -> Tuple[int, int]:
        tr, t_0 = self._scheduled_index(train, time)
        if time % self.dt != 0:
            raise ConsistencyError(f"Time {time} is not a multiple of dt = {self.dt}")
        return tr, int(time // self.dt) - t_0

    # --- kinematics -------------------------------------------------------

    def _kinematics(self, train: TrainRef, time: float) -> Tuple[float, float]:
        tr, t_0 = self._scheduled_index(train, time)
        pos = self._train_pos[tr]
        speed = self._train_speed[tr]

        if time % self.dt == 0:
            t_index = int(time // self.dt) - t_0
            return pos[t_index], speed[t_index]

        t_1 = int(time // self.dt) - t_0
        t_2 = t_1 + 1
        x_1, v_1, x_2, v_2 = pos[t_1], speed[t_1], pos[t_2], speed[t_2]
        name = self.instance.train_list.get_train(tr).name
        if min(x_1, v_1, x_2, v_2) < 0:
            raise ConsistencyError(f"Train {name} has no samples around time {time}")

        if not math.isclose(x_2 - x_1, 0.5 * self.dt * (v_1 + v_2), rel_tol=0.0, abs_tol=self.tolerance):
            raise ConsistencyError(f"Train {name} at time {time} cannot be interpolated assuming uniform acceleration")

        a = (v_2 - v_1) / self.dt
        tau = time - (t_0 + t_1) * self.dt
        return x_1 + v_1 * tau + 0.5 * a * tau * tau, v_1 + a * tau

    def get_train_pos(self, train: TrainRef, time: float) -> float:
        return self._kinematics(train, time)[0]

    def get_train_speed(self, train: TrainRef, time: float) -> float:
        return self._kinematics(train, time)[1]

    def add_train_pos(self, train: TrainRef, time: int, pos: float) -> None:
        if pos < 0:
            raise ConsistencyError(f"Train position {pos} is negative")
        tr, t_index = self._grid_slot(train, time)
        self._train_pos[tr][t_index] = pos

    def add_train_speed(self, train: TrainRef, time: int, speed: float) -> None:
        max_speed = self.instance.train_list.get_train(train).max_speed
        if speed < 0:
            raise ConsistencyError(f"Train speed {speed} is negative")
        if speed > max_speed:
            raise ConsistencyError(f"Train speed {speed} is greater than the maximum speed {max_speed} of train {train}")
        tr, t_index = self._grid_slot(train, time)
        self._train_speed[tr][t_index] = speed

    # --- VSS --------------------------------------------------------------

    def get_vss_pos(self, edge: EdgeRef) -> List[float]:
        return list(self._vss_pos[self.instance.network.resolve_edge(edge)])

    def add_vss_pos(self, edge: EdgeRef, pos: float, reverse_edge: bool = True) -> None:
        network = self.instance.network
        e = network.resolve_edge(edge)
        length = network.get_edge(e).length
        if pos <= 0 or pos >= length:
            raise ConsistencyError(f"VSS position {pos} is not strictly inside edge {e} of length {length}")

        self._vss_pos[e] = sorted(self._vss_pos[e] + [pos])
        if reverse_edge:
            reverse = network.get_reverse_edge_index(e)
            if reverse is not None:
                self._vss_pos[reverse] = sorted(self._vss_pos[reverse] + [length - pos])

    def set_vss_pos(self, edge: EdgeRef, positions: Sequence[float]) -> None:
        network = self.instance.network
        e = network.resolve_edge(edge)
        length = network.get_edge(e).length
        for p in positions:
            if p < 0 or p > length:
                raise ConsistencyError(f"VSS position {p} is not on edge {e} of length {length}")
        self._vss_pos[e] = sorted(positions)

    def reset_vss_pos(self, edge: EdgeRef) -> None:
        self._vss_pos[self.instance.network.resolve_edge(edge)] = []

    # --- routes -----------------------------------------------------------

    def reset_routes(self) -> None:
        self.instance.routes.reset()

    def add_empty_route(self, train: TrainRef) -> None:
        self.instance.add_empty_route(self.instance.train_list.get_train(train).name)

    def push_back_edge_to_route(self, train: TrainRef, edge: EdgeRef) -> None:
        self.instance.push_back_edge_to_route(self.instance.train_list.get_train(train).name, edge)

    # --- validation -------------------------------------------------------

    def check_consistency(self) -> bool:
        if self.status == SolutionStatus.UNKNOWN:
            return False
        if self.obj < 0 or self.dt < 0:
            return False
        if not self.instance.check_consistency(every_train_must_have_route=True):
            return False
        for samples in self._train_pos:
            if any(p < 0 for p in samples):
                return False
        for train, samples in zip(self.instance.train_list, self._train_speed):
            if any(v < 0 or v > train.max_speed for v in samples):
                return False
        for edge, positions in zip(self.instance.network.edges, self._vss_pos):
            if any(p < 0 or p > edge.length for p in positions):
                return False
        return True

    # --- persistence ------------------------------------------------------

    def export_solution(self, path: Path, export_instance: bool = True) -> None:
        """Write the solution (and the instance or just its routes) below path.

        Layout: instance/ (or instance/routes/), solution/data.json,
        solution/vss_pos.json, solution/train_pos.json, solution/train_speed.json.
        """
        if not self.check_consistency():
            raise ConsistencyError("Cannot export inconsistent solution")

        path = Path(path)
        solution_dir = ensure_directory(path / SOLUTION_DIR)
        network = self.instance.network

        if export_instance:
            self.instance.export_instance(path / INSTANCE_DIR)
        else:
            self.instance.routes.export_routes(path / INSTANCE_DIR / ROUTES_DIR, network)

        write_model(
            solution_dir / "data.json",
            SolutionDataRecord(
                dt=self.dt,
                status=int(self.status),
                obj=self.obj,
                mip_obj=self.mip_obj,
                postprocessed=self.postprocessed,
            ),
        )
        write_json(solution_dir / "vss_pos.json", {edge_key(*network.edge_name(e)): pos for e, pos in enumerate(self._vss_pos)})

        train_pos: Dict[str, Dict[str, float]] = {}
        train_speed: Dict[str, Dict[str, float]] = {}
        for tr, train in enumerate(self.instance.train_list):
            times = self.train_times(tr)
            train_pos[train.name] = {str(t): x for t, x in zip(times, self._train_pos[tr])}
            train_speed[train.name] = {str(t): v for t, v in zip(times, self._train_speed[tr])}
        write_json(solution_dir / "train_pos.json", train_pos)
        write_json(solution_dir / "train_speed.json", train_speed)
        logger.info("Exported solution to %s", path)

    @classmethod
    def import_solution(cls, path: Path, instance: Optional[VSSGenerationTimetable] = None) -> "VSSSolution":
        """Read a solution written by export_solution.

        When an instance is given only the routes are read from disk and
        combined with a copy of it.
        """
        path = require_directory(Path(path))
        data = read_model(path / SOLUTION_DIR / "data.json", SolutionDataRecord)
        try:
            status = SolutionStatus(data.status)
        except ValueError as exc:
            raise ImportExportError(f"Unknown solution status {data.status}") from exc

        import_routes = instance is not None
        if instance is None:
            instance = VSSGenerationTimetable.import_instance(path / INSTANCE_DIR)
        sol = cls(instance, data.dt)
        if import_routes:
            sol.instance.routes = RouteMap.import_routes(path / INSTANCE_DIR / ROUTES_DIR, sol.instance.network)
        if not sol.instance.check_consistency(every_train_must_have_route=True):
            raise ConsistencyError("Imported instance is not consistent")

        sol.status = status
        sol.obj = data.obj
        sol.mip_obj = data.mip_obj
        sol.postprocessed = data.postprocessed

        vss_file = path / SOLUTION_DIR / "vss_pos.json"
        for key, positions in _read_mapping(vss_file).items():
            sol.set_vss_pos(parse_edge_key(key), _parse_values(vss_file, positions))
        pos_file = path / SOLUTION_DIR / "train_pos.json"
        for name, samples in _read_mapping(pos_file).items():
            for t, x in _parse_samples(pos_file, samples):
                sol.add_train_pos(name, t, x)
        speed_file = path / SOLUTION_DIR / "train_speed.json"
        for name, samples in _read_mapping(speed_file).items():
            for t, v in _parse_samples(speed_file, samples):
                sol.add_train_speed(name, t, v)

        if not sol.check_consistency():
            raise ConsistencyError("Imported solution is not consistent")
        logger.info("Imported solution from %s", path)
        return sol


def _read_mapping(path: Path) -> Dict[str, Any]:
    data = read_json(path)
    if not isinstance(data, dict):
        raise ImportExportError(f"File {path} must contain a JSON object")
    return data


def _parse_values(path: Path, values: Any) -> List[float]:
    try:
        return [float(p) for p in values]
    except (TypeError, ValueError) as exc:
        raise ImportExportError(f"File {path} holds a non-numeric position: {exc}") from exc


def _parse_samples(path: Path, samples: Any) -> List[Tuple[int, float]]:
    """Time keys are whole seconds."""
    if not isinstance(samples, dict):
        raise ImportExportError(f"File {path} must map train names to time samples")
    try:
        return [(int(t), float(value)) for t, value in samples.items()]
    except (TypeError, ValueError) as exc:
        raise ImportExportError(f"File {path} holds a malformed sample: {exc}") from exc
