import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Hashable, List, Optional, Protocol, Tuple

from railvss.config import VSSConfig
from railvss.core.exceptions import ConsistencyError, NotFoundError
from railvss.core.instance import VSSGenerationTimetable
from railvss.core.solution import SolutionStatus, VSSSolution

logger = logging.getLogger(__name__)

# Binary decision variables count as set above this value
BINARY_THRESHOLD = 0.5


class OptimizerStatus(Enum):
    OPTIMAL = "optimal"
    INFEASIBLE = "infeasible"
    # time limit reached with at least one solution
    FEASIBLE = "feasible"
    # time limit reached without any solution
    TIMEOUT = "timeout"


_STATUS_MAP = {
    OptimizerStatus.OPTIMAL: SolutionStatus.OPTIMAL,
    OptimizerStatus.INFEASIBLE: SolutionStatus.INFEASIBLE,
    OptimizerStatus.FEASIBLE: SolutionStatus.FEASIBLE,
    OptimizerStatus.TIMEOUT: SolutionStatus.TIMEOUT,
}


class ExportOption(Enum):
    NO_EXPORT = "no_export"
    EXPORT_SOLUTION = "export_solution"
    EXPORT_SOLUTION_WITH_INSTANCE = "export_solution_with_instance"


class SlotUsageResolver(Protocol):
    def is_used(self, table: "DecisionTable", edge: int, slot: int) -> bool:
        ...


class BinarySlotResolver:
    """Slot usage encoded as one binary b_used[e, slot] per VSS slot."""

    def is_used(self, table: "DecisionTable", edge: int, slot: int) -> bool:
        return table.value("b_used", (edge, slot), default=0.0) > BINARY_THRESHOLD


class CountSlotResolver:
    """Slot usage inferred from the number of segments num_vss_segments[e].

    k segments use the first k - 1 slots, so slot s is used when the
    (integral) segment count exceeds s + 1.
    """

    def is_used(self, table: "DecisionTable", edge: int, slot: int) -> bool:
        return table.value("num_vss_segments", (edge,), default=0.0) > slot + 1.5


@dataclass
class DecisionTable:
    """Finalized optimizer output.

    values maps a variable family to its entries keyed by index tuples:
      b_used[e, slot], num_vss_segments[e,], b_pos[e, slot],
      b_front[tr, t, e, slot], b_rear[tr, t, e, slot],
      pos[tr, t], v[tr, t], x[tr, t, e]
    where t is a grid index (time = t * dt). Indicator families may be
    sparse; missing entries read as 0.
    """

    status: OptimizerStatus
    values: Dict[str, Dict[Tuple[Hashable, ...], float]] = field(default_factory=dict)
    objective: Optional[float] = None
    routes_fixed: bool = True
    resolver: SlotUsageResolver = field(default_factory=BinarySlotResolver)

    def has_solution(self) -> bool:
        return self.status in (OptimizerStatus.OPTIMAL, OptimizerStatus.FEASIBLE)

    def value(self, name: str, key: Tuple[Hashable, ...], default: Optional[float] = None) -> float:
        entries = self.values.get(name, {})
        if key in entries:
            return float(entries[key])
        if default is None:
            raise NotFoundError(f"No value for {name}{list(key)} in decision table")
        return default

    def vss_slot(self, edge: int, slot: int) -> Tuple[bool, Optional[float]]:
        if not self.resolver.is_used(self, edge, slot):
            return False, None
        return True, self.value("b_pos", (edge, slot))

    def boundary_used(self, train: int, t: int, edge: int, slot: int) -> bool:
        key = (train, t, edge, slot)
        return self.value("b_front", key, default=0.0) > BINARY_THRESHOLD or self.value("b_rear", key, default=0.0) > BINARY_THRESHOLD

    def occupies(self, train: int, t: int, edge: int) -> bool:
        return self.value("x", (train, t, edge), default=0.0) > BINARY_THRESHOLD

    def train_position(self, train: int, t: int) -> float:
        return self.value("pos", (train, t))

    def train_speed(self, train: int, t: int) -> float:
        return self.value("v", (train, t))


def map_status(status: object) -> SolutionStatus:
    if status not in _STATUS_MAP:
        raise ConsistencyError(f"Optimizer status {status} unknown")
    return _STATUS_MAP[status]


def extract_solution(
    table: DecisionTable,
    instance: VSSGenerationTimetable,
    dt: Optional[int] = None,
    postprocess: Optional[bool] = None,
    export_option: ExportOption = ExportOption.NO_EXPORT,
    path: Optional[Path] = None,
    old_instance: Optional[VSSGenerationTimetable] = None,
) -> VSSSolution:
    """Turn a finalized decision table into a VSSSolution.

    VSS slots are committed in ascending order per edge and mirrored to the
    reverse edge; with postprocessing a slot only counts if some train
    actually uses the boundary on the edge or its reverse. Routes are rebuilt
    from the occupation indicators when they were not fixed inputs.
    """
    cfg = VSSConfig()
    if dt is None:
        dt = cfg.dt
    if postprocess is None:
        postprocess = cfg.postprocess

    sol = VSSSolution(old_instance if old_instance is not None else instance, dt)
    sol.status = map_status(table.status)
    logger.info("Solution status: %s", sol.status.name)

    if not table.has_solution():
        return sol

    if table.objective is None:
        raise ConsistencyError("Optimizer reported a solution without an objective value")
    sol.mip_obj = round(table.objective)
    logger.debug("MIP objective: %s", sol.mip_obj)

    network = instance.network
    train_list = instance.train_list
    intervals = [instance.time_index_interval(tr, dt, tn_inclusive=False) for tr in range(len(train_list))]

    obj = 0
    for e in network.relevant_breakable_edges():
        reverse = network.get_reverse_edge_index(e)
        for slot in range(network.max_vss_on_edge(e)):
            used, pos = table.vss_slot(e, slot)
            if used and postprocess:
                used = _slot_exercised(table, intervals, e, reverse, slot)
                if not used:
                    logger.debug("Postprocessing removed slot %d on %s -> %s", slot, *network.edge_name(e))
            if not used:
                continue
            logger.debug("Add VSS at %s on %s -> %s", pos, *network.edge_name(e))
            sol.add_vss_pos(e, pos, reverse_edge=True)
            obj += 1
    sol.obj = obj
    sol.postprocessed = postprocess

    if not table.routes_fixed:
        _reconstruct_routes(sol, table, instance, intervals)

    for tr in range(len(train_list)):
        t_0, t_n = intervals[tr]
        # the optimizer reports one step past the nominal end
        for t in range(t_0, t_n + 2):
            sol.add_train_speed(tr, t * dt, table.train_speed(tr, t))
        for t in range(t_0, t_n + 2):
            sol.add_train_pos(tr, t * dt, table.train_position(tr, t))

    if export_option != ExportOption.NO_EXPORT:
        if path is None:
            raise ConsistencyError("An export path is required to export the solution")
        sol.export_solution(path, export_instance=(export_option == ExportOption.EXPORT_SOLUTION_WITH_INSTANCE))

    return sol


def _slot_exercised(table: DecisionTable, intervals: List[Tuple[int, int]], edge: int, reverse: Optional[int], slot: int) -> bool:
    for tr, (t_0, t_n) in enumerate(intervals):
        for t in range(t_0, t_n + 1):
            if table.boundary_used(tr, t, edge, slot):
                return True
            if reverse is not None and table.boundary_used(tr, t, reverse, slot):
                return True
    return False


def _reconstruct_routes(sol: VSSSolution, table: DecisionTable, instance: VSSGenerationTimetable, intervals: List[Tuple[int, int]]) -> None:
    """Greedy route rebuild from edge occupation.

    For each time step the train's route is extended from its current
    frontier vertex by occupied edges until no occupied edge starts there.
    Two candidates at the same frontier cannot be ordered, so they raise.
    """
    network = instance.network
    sol.reset_routes()
    logger.debug("Extracting routes")
    for tr, train in enumerate(instance.train_list):
        sol.add_empty_route(train.name)
        current_vertex = instance.get_schedule(tr).entry
        t_0, t_n = intervals[tr]
        for t in range(t_0, t_n + 1):
            pending = {e for e in range(network.number_of_edges()) if table.occupies(tr, t, e)}
            while pending:
                candidates = [e for e in network.out_edges(current_vertex) if e in pending]
                if not candidates:
                    break
                if len(candidates) > 1:
                    names = [network.edge_name(e) for e in candidates]
                    raise ConsistencyError(f"Ambiguous route for train {train.name} at step {t}: {names}")
                e = candidates[0]
                sol.push_back_edge_to_route(train.name, e)
                current_vertex = network.get_edge(e).target
                pending.discard(e)
