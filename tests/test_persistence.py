import json

import pytest

from railvss.core.exceptions import ConsistencyError, ImportExportError, NotFoundError
from railvss.core.instance import VSSGenerationTimetable
from railvss.core.solution import SolutionStatus, VSSSolution


def _solved(instance, profile):
    sol = VSSSolution(instance, 10)
    for t in sol.train_times("T"):
        x, v = profile(t)
        sol.add_train_pos("T", t, x)
        sol.add_train_speed("T", t, v)
    sol.add_vss_pos(0, 250)
    sol.status = SolutionStatus.OPTIMAL
    sol.obj = 1
    sol.mip_obj = 1
    return sol


def test_export_writes_expected_layout(tmp_path, line_instance, accel_then_brake):
    sol = _solved(line_instance, accel_then_brake)
    sol.export_solution(tmp_path)

    data = json.loads((tmp_path / "solution" / "data.json").read_text())
    assert data == {"dt": 10, "status": int(SolutionStatus.OPTIMAL), "obj": 1.0, "mip_obj": 1.0, "postprocessed": False}
    vss = json.loads((tmp_path / "solution" / "vss_pos.json").read_text())
    assert vss == {"('A', 'B')": [250], "('B', 'C')": []}
    train_pos = json.loads((tmp_path / "solution" / "train_pos.json").read_text())
    assert train_pos["T"]["0"] == 0
    assert train_pos["T"]["100"] == pytest.approx(750)
    train_speed = json.loads((tmp_path / "solution" / "train_speed.json").read_text())
    assert train_speed["T"]["50"] == pytest.approx(15)
    assert (tmp_path / "instance" / "network.json").is_file()
    assert (tmp_path / "instance" / "routes" / "routes.json").is_file()


def test_export_without_instance_writes_only_routes(tmp_path, line_instance, accel_then_brake):
    sol = _solved(line_instance, accel_then_brake)
    sol.export_solution(tmp_path, export_instance=False)
    assert (tmp_path / "instance" / "routes" / "routes.json").is_file()
    assert not (tmp_path / "instance" / "network.json").exists()

    loaded = VSSSolution.import_solution(tmp_path, line_instance)
    assert loaded.instance.routes.get_route("T").edges == (0, 1)
    assert loaded.get_vss_pos(0) == [250]


def test_export_of_unknown_status_writes_nothing(tmp_path, line_instance, accel_then_brake):
    sol = _solved(line_instance, accel_then_brake)
    sol.status = SolutionStatus.UNKNOWN
    target = tmp_path / "out"
    with pytest.raises(ConsistencyError):
        sol.export_solution(target)
    assert not target.exists()


def test_round_trip(tmp_path, line_instance, accel_then_brake):
    sol = _solved(line_instance, accel_then_brake)
    sol.export_solution(tmp_path)

    loaded = VSSSolution.import_solution(tmp_path)
    assert loaded.status == SolutionStatus.OPTIMAL
    assert loaded.dt == 10
    assert loaded.obj == 1
    assert loaded.get_vss_pos(("A", "B")) == [250]
    assert loaded.get_train_pos("T", 25) == pytest.approx(accel_then_brake(25)[0], abs=1e-6)
    assert loaded.check_consistency()


def test_import_rejects_missing_or_non_directory(tmp_path):
    with pytest.raises(ImportExportError):
        VSSSolution.import_solution(tmp_path / "missing")
    file_path = tmp_path / "file.json"
    file_path.write_text("{}")
    with pytest.raises(ImportExportError):
        VSSSolution.import_solution(file_path)


def test_import_rejects_hand_edited_speed(tmp_path, line_instance, accel_then_brake):
    sol = _solved(line_instance, accel_then_brake)
    sol.export_solution(tmp_path)

    speed_file = tmp_path / "solution" / "train_speed.json"
    speeds = json.loads(speed_file.read_text())
    speeds["T"]["50"] = 99.0
    speed_file.write_text(json.dumps(speeds))
    with pytest.raises(ConsistencyError):
        VSSSolution.import_solution(tmp_path)


def test_import_rejects_missing_sample(tmp_path, line_instance, accel_then_brake):
    sol = _solved(line_instance, accel_then_brake)
    sol.export_solution(tmp_path)

    pos_file = tmp_path / "solution" / "train_pos.json"
    positions = json.loads(pos_file.read_text())
    del positions["T"]["60"]
    pos_file.write_text(json.dumps(positions))
    with pytest.raises(ConsistencyError):
        VSSSolution.import_solution(tmp_path)


def test_import_rejects_corrupt_data_file(tmp_path, line_instance, accel_then_brake):
    sol = _solved(line_instance, accel_then_brake)
    sol.export_solution(tmp_path)
    (tmp_path / "solution" / "data.json").write_text('{"dt": "ten"}')
    with pytest.raises(ImportExportError):
        VSSSolution.import_solution(tmp_path)


def test_instance_round_trip(tmp_path, line_instance):
    line_instance.export_instance(tmp_path)
    loaded = VSSGenerationTimetable.import_instance(tmp_path)
    assert loaded.check_consistency()
    assert loaded.routes.get_route("T").edges == (0, 1)
    assert loaded.get_schedule("T").t_n == 100


def test_station_with_unknown_track_blocks_export(tmp_path, line_instance, accel_then_brake):
    with pytest.raises(NotFoundError):
        line_instance.add_station("S", {0, 99})

    sol = _solved(line_instance, accel_then_brake)
    sol.instance.add_station("S", {0})
    sol.instance.timetable.station_list.get_station("S").tracks.add(99)
    target = tmp_path / "out"
    with pytest.raises(ConsistencyError):
        sol.export_solution(target)
    assert not target.exists()


@pytest.mark.parametrize(
    "filename, edit",
    [
        ("train_pos.json", lambda data: data["T"].update({"15.5": 100.0})),
        ("train_speed.json", lambda data: data["T"].update({"20": "fast"})),
        ("vss_pos.json", lambda data: data.update({"('A', 'B')": ["middle"]})),
    ],
)
def test_import_rejects_malformed_samples(tmp_path, line_instance, accel_then_brake, filename, edit):
    sol = _solved(line_instance, accel_then_brake)
    sol.export_solution(tmp_path)

    target = tmp_path / "solution" / filename
    data = json.loads(target.read_text())
    edit(data)
    target.write_text(json.dumps(data))
    with pytest.raises(ImportExportError):
        VSSSolution.import_solution(tmp_path)
