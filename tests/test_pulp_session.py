import pulp
import pytest

from railvss.config import VSSConfig
from railvss.core.exceptions import ConsistencyError
from railvss.core.extraction import CountSlotResolver, OptimizerStatus, extract_solution
from railvss.core.pulp_session import PulpSession
from railvss.core.solution import SolutionStatus

DT = 10
CONFIG = VSSConfig(postprocess=False, time_limit=None, solver_msg=False)


def _trajectory(prob):
    pos = {}
    v = {}
    for t in range(4):
        pos[(0, t)] = pulp.LpVariable(f"pos_{t}", lowBound=0)
        v[(0, t)] = pulp.LpVariable(f"v_{t}", lowBound=0)
        prob += pos[(0, t)] == 100 * t, f"fix_pos_{t}"
        prob += v[(0, t)] == 10, f"fix_v_{t}"
    return pos, v


def _binary_model():
    prob = pulp.LpProblem("vss_binary", pulp.LpMinimize)
    b_used = {(0, s): pulp.LpVariable(f"b_used_{s}", cat="Binary") for s in range(3)}
    b_pos = {(0, s): pulp.LpVariable(f"b_pos_{s}", lowBound=0, upBound=400) for s in range(3)}
    prob += pulp.lpSum(b_used.values())
    prob += b_used[(0, 0)] >= 1, "need_one_vss"
    for s in range(3):
        prob += b_pos[(0, s)] == 100 * (s + 1), f"fix_b_pos_{s}"
    pos, v = _trajectory(prob)
    return PulpSession(prob, {"b_used": b_used, "b_pos": b_pos, "pos": pos, "v": v})


def test_solve_and_extract(twin_instance):
    session = _binary_model()
    assert session.solve(CONFIG) == OptimizerStatus.OPTIMAL

    table = session.decision_table()
    assert table.objective == pytest.approx(1.0)
    assert table.value("b_used", (0, 0)) == pytest.approx(1.0)
    assert table.value("b_pos", (0, 2)) == pytest.approx(300.0)

    sol = extract_solution(table, twin_instance, DT, postprocess=False)
    assert sol.status == SolutionStatus.OPTIMAL
    assert sol.obj == 1
    assert sol.mip_obj == 1
    assert sol.get_vss_pos(0) == [pytest.approx(100.0)]
    assert sol.get_train_pos("T", 30) == pytest.approx(300.0)


def test_scalar_keys_become_tuples(twin_instance):
    prob = pulp.LpProblem("vss_count", pulp.LpMinimize)
    segments = {0: pulp.LpVariable("segments", lowBound=1, upBound=4, cat="Integer")}
    b_pos = {(0, s): pulp.LpVariable(f"b_pos_{s}", lowBound=0, upBound=400) for s in range(3)}
    prob += segments[0]
    prob += segments[0] >= 3, "need_two_vss"
    for s in range(3):
        prob += b_pos[(0, s)] == 100 * (s + 1), f"fix_b_pos_{s}"
    pos, v = _trajectory(prob)
    session = PulpSession(prob, {"num_vss_segments": segments, "b_pos": b_pos, "pos": pos, "v": v}, resolver=CountSlotResolver())
    session.solve(CONFIG)

    table = session.decision_table()
    assert table.value("num_vss_segments", (0,)) == pytest.approx(3.0)
    sol = extract_solution(table, twin_instance, DT, postprocess=False)
    assert sol.obj == 2
    assert sol.get_vss_pos(0) == [pytest.approx(100.0), pytest.approx(200.0)]


def test_infeasible_model(twin_instance):
    prob = pulp.LpProblem("infeasible", pulp.LpMinimize)
    x = pulp.LpVariable("x", lowBound=0, upBound=1)
    prob += x
    prob += x >= 2, "impossible"
    session = PulpSession(prob, {"x": {(0,): x}})

    assert session.solve(CONFIG) == OptimizerStatus.INFEASIBLE
    table = session.decision_table()
    assert table.objective is None
    sol = extract_solution(table, twin_instance, DT)
    assert sol.status == SolutionStatus.INFEASIBLE


def test_unsolved_model():
    session = _binary_model()
    with pytest.raises(ConsistencyError):
        session.status()
    with pytest.raises(ConsistencyError):
        session.decision_table()


def test_routes_fixed_flag_is_carried():
    session = _binary_model()
    session.routes_fixed = False
    session.solve(CONFIG)
    assert not session.decision_table().routes_fixed


def test_write_lp(tmp_path):
    session = _binary_model()
    target = tmp_path / "model.lp"
    session.write_lp(target)
    assert target.is_file()
    assert "need_one_vss" in target.read_text()
