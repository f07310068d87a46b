import logging
from pathlib import Path
from typing import Dict, Hashable, Optional, Tuple

import pulp

from railvss.config import VSSConfig
from railvss.core.exceptions import ConsistencyError
from railvss.core.extraction import BinarySlotResolver, DecisionTable, OptimizerStatus, SlotUsageResolver

logger = logging.getLogger(__name__)

VariableTable = Dict[Hashable, pulp.LpVariable]


class PulpSession:
    """A pulp model together with the variable families extraction reads.

    variables maps a family name (see DecisionTable) to its LpVariables keyed
    by index tuples. Each session owns its model so several instances can be
    solved and extracted side by side.
    """

    def __init__(
        self,
        problem: pulp.LpProblem,
        variables: Dict[str, VariableTable],
        resolver: Optional[SlotUsageResolver] = None,
        routes_fixed: bool = True,
    ) -> None:
        self.problem = problem
        self.variables = variables
        self.resolver = resolver if resolver is not None else BinarySlotResolver()
        self.routes_fixed = routes_fixed
        self._solved = False

    def solve(self, config: Optional[VSSConfig] = None) -> OptimizerStatus:
        cfg = config or VSSConfig()
        self.problem.solve(pulp.PULP_CBC_CMD(msg=cfg.solver_msg, timeLimit=cfg.time_limit))
        self._solved = True
        status = self.status()
        logger.info("CBC finished %s with status %s", self.problem.name, status.value)
        return status

    def status(self) -> OptimizerStatus:
        if not self._solved:
            raise ConsistencyError(f"Model {self.problem.name} has not been solved")
        sol_status = self.problem.sol_status
        if sol_status == pulp.LpSolutionOptimal:
            return OptimizerStatus.OPTIMAL
        if sol_status == pulp.LpSolutionIntegerFeasible:
            return OptimizerStatus.FEASIBLE
        if self.problem.status == pulp.LpStatusInfeasible or sol_status == pulp.LpSolutionInfeasible:
            return OptimizerStatus.INFEASIBLE
        if self.problem.status == pulp.LpStatusNotSolved and sol_status == pulp.LpSolutionNoSolutionFound:
            return OptimizerStatus.TIMEOUT
        raise ConsistencyError(f"pulp status {pulp.LpStatus.get(self.problem.status, self.problem.status)} unknown")

    def decision_table(self) -> DecisionTable:
        status = self.status()
        values: Dict[str, Dict[Tuple[Hashable, ...], float]] = {}
        for name, table in self.variables.items():
            family = values.setdefault(name, {})
            for key, var in table.items():
                val = pulp.value(var)
                if val is None:
                    continue
                family[key if isinstance(key, tuple) else (key,)] = float(val)

        objective = None
        if status in (OptimizerStatus.OPTIMAL, OptimizerStatus.FEASIBLE):
            objective = pulp.value(self.problem.objective) if self.problem.objective is not None else None
            if objective is None:
                objective = 0.0
        return DecisionTable(status=status, values=values, objective=objective, routes_fixed=self.routes_fixed, resolver=self.resolver)

    def write_lp(self, path: Path) -> None:
        self.problem.writeLP(str(path))
