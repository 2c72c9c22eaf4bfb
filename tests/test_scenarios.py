"""Tests for built-in scenarios and the JSON / MovingAI instance loaders."""

import json

import pytest

from grid_system import Cell, GridError
from scenarios import (
    BUILTIN_SCENARIOS, AgentSpec, agent_label, get_builtin_scenario, instance_from_dict,
    instance_to_dict, load_instance_json, load_map_file, load_scenario_file, load_movingai_instance
)


@pytest.mark.parametrize("name", sorted(BUILTIN_SCENARIOS))
def test_builtin_scenarios_are_valid_instances(name):
    instance = get_builtin_scenario(name)
    instance.validate()
    assert instance.name == name
    assert instance.num_agents >= 2


def test_reference_maps_have_expected_sizes():
    assert get_builtin_scenario('semispaceful').grid.shape == (9, 9)
    assert get_builtin_scenario('semispaceful').num_agents == 5
    assert get_builtin_scenario('semicrowded').grid.shape == (7, 7)
    assert get_builtin_scenario('semicrowded').num_agents == 7


def test_unknown_scenario():
    with pytest.raises(KeyError, match="available"):
        get_builtin_scenario('nope')


def test_create_agents_returns_fresh_agents():
    instance = get_builtin_scenario('head_on')
    first = instance.create_agents()
    first[0].assign_path([Cell(1, 1)])
    second = instance.create_agents()

    assert [a.id for a in second] == ["A", "B"]
    assert second[0].path == []


def test_agent_labels():
    assert [agent_label(i) for i in range(3)] == ["A", "B", "C"]
    assert agent_label(25) == "Z"
    assert agent_label(26) == "A26"


def test_load_instance_json(tmp_path):
    data = {
        "name": "tiny",
        "map": ["...", ".#."],
        "agents": [
            {"id": "R1", "start": [0, 0], "goal": [1, 2]},
            {"start": [1, 2], "goal": [0, 0]},
        ],
    }
    path = tmp_path / "tiny.json"
    path.write_text(json.dumps(data))

    instance = load_instance_json(str(path))

    assert instance.name == "tiny"
    assert instance.grid.to_rows() == ["...", ".#."]
    assert instance.agent_specs == [
        AgentSpec("R1", Cell(0, 0), Cell(1, 2)),
        AgentSpec("B", Cell(1, 2), Cell(0, 0)),
    ]
    assert instance_to_dict(instance)["agents"][0] == {"id": "R1", "start": [0, 0], "goal": [1, 2]}


@pytest.mark.parametrize("data", [
    {"map": ["..."]},
    {"map": ["..", "."], "agents": []},
    {"map": ["..."], "agents": [{"start": [0, 0]}]},
    {"map": [".#."], "agents": [{"start": [0, 1], "goal": [0, 0]}]},
    {"map": ["..."], "agents": [{"id": "A", "start": [0, 0], "goal": [0, 1]},
                                {"id": "A", "start": [0, 2], "goal": [0, 0]}]},
])
def test_invalid_instances_raise_grid_error(data):
    with pytest.raises(GridError):
        instance_from_dict(data)


def test_invalid_json_file(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    with pytest.raises(GridError, match="invalid JSON"):
        load_instance_json(str(path))


MAP_TEXT = """type octile
height 3
width 4
map
..@.
.T..
....
"""

SCEN_TEXT = """version 1
0\ttiny.map\t4\t3\t0\t0\t3\t2\t5.00000000
0\ttiny.map\t4\t3\t3\t0\t0\t2\t5.00000000
0\ttiny.map\t4\t3\t0\t2\t3\t1\t4.00000000
"""


def test_load_map_file(tmp_path):
    path = tmp_path / "tiny.map"
    path.write_text(MAP_TEXT)

    grid = load_map_file(str(path))

    assert grid.shape == (3, 4)
    assert not grid.passable(Cell(0, 2))
    assert not grid.passable(Cell(1, 1))
    assert grid.count_free_cells() == 10


def test_load_map_file_without_header(tmp_path):
    path = tmp_path / "bad.map"
    path.write_text("....\n....\n")
    with pytest.raises(GridError):
        load_map_file(str(path))


def test_load_scenario_file_swaps_x_and_y(tmp_path):
    path = tmp_path / "tiny.scen"
    path.write_text(SCEN_TEXT)

    specs = load_scenario_file(str(path), num_agents=2)

    assert specs == [
        AgentSpec("A", Cell(0, 0), Cell(2, 3)),
        AgentSpec("B", Cell(0, 3), Cell(2, 0)),
    ]
    assert len(load_scenario_file(str(path))) == 3


def test_load_movingai_instance(tmp_path):
    map_path = tmp_path / "tiny.map"
    scen_path = tmp_path / "tiny.scen"
    map_path.write_text(MAP_TEXT)
    scen_path.write_text(SCEN_TEXT)

    instance = load_movingai_instance(str(map_path), str(scen_path))

    assert instance.num_agents == 3
    assert instance.grid.shape == (3, 4)
