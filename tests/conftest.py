import pytest

from railvss.core.instance import VSSGenerationTimetable
from railvss.core.network import Network


def _accel_then_brake(t: float):
    if t <= 50:
        return 0.15 * t * t, 0.3 * t
    tau = t - 50
    return 375.0 + 15.0 * tau - 0.15 * tau * tau, 15.0 - 0.3 * tau


@pytest.fixture
def accel_then_brake():
    """Position/speed of a train accelerating at 0.3 m/s^2 for 50 s, then braking at 0.3 m/s^2."""
    return _accel_then_brake


@pytest.fixture
def line_network() -> Network:
    # A --e1--> B --e2--> C
    network = Network()
    for name in ("A", "B", "C"):
        network.add_vertex(name)
    network.add_edge("A", "B", 500, breakable=True, min_block_length=250)
    network.add_edge("B", "C", 500, breakable=False)
    network.add_successor(("A", "B"), ("B", "C"))
    return network


@pytest.fixture
def line_instance(line_network) -> VSSGenerationTimetable:
    instance = VSSGenerationTimetable(line_network)
    instance.add_train("T", 100, 30, 0.3, 0.3, 0, 0, "A", 100, 0, "C")
    instance.add_empty_route("T")
    instance.push_back_edge_to_route("T", ("A", "B"))
    instance.push_back_edge_to_route("T", ("B", "C"))
    return instance


@pytest.fixture
def twin_network() -> Network:
    # A <-> B (400 m, up to 3 VSS), B -> C, B -> D
    network = Network()
    for name in ("A", "B", "C", "D"):
        network.add_vertex(name)
    network.add_edge("A", "B", 400, breakable=True, min_block_length=100)  # 0
    network.add_edge("B", "A", 400, breakable=True, min_block_length=100)  # 1
    network.add_edge("B", "C", 200, breakable=False)  # 2
    network.add_edge("B", "D", 200, breakable=False)  # 3
    network.add_successor(0, 2)
    network.add_successor(0, 3)
    return network


@pytest.fixture
def twin_instance(twin_network) -> VSSGenerationTimetable:
    instance = VSSGenerationTimetable(twin_network)
    instance.add_train("T", 50, 30, 1.0, 1.0, 0, 10, "A", 30, 10, "C")
    instance.add_empty_route("T")
    instance.push_back_edge_to_route("T", 0)
    instance.push_back_edge_to_route("T", 2)
    return instance
