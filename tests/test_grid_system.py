"""Tests for the grid map, cells and agent records."""

import numpy as np
import pytest

from grid_system import Cell, Agent, Grid, GridError, PathStatus, settle_time, validate_agents


def test_from_rows_marks_walls():
    grid = Grid.from_rows(["..#", "#.."])
    assert grid.shape == (2, 3)
    assert grid.passable(Cell(0, 0))
    assert not grid.passable(Cell(0, 2))
    assert not grid.passable(Cell(1, 0))
    assert grid.count_free_cells() == 4
    assert grid.to_rows() == ["..#", "#.."]


@pytest.mark.parametrize("rows", [[], [""], ["...", ".."], ["..x"]])
def test_from_rows_rejects_malformed_maps(rows):
    with pytest.raises(GridError):
        Grid.from_rows(rows)


def test_passability_array_is_read_only():
    grid = Grid.open_grid(2, 2)
    with pytest.raises(ValueError):
        grid.as_array()[0, 0] = False


def test_out_of_bounds_cells_are_not_passable():
    grid = Grid.open_grid(3, 3)
    assert not grid.passable(Cell(-1, 0))
    assert not grid.passable(Cell(0, 3))
    assert not grid.in_bounds(Cell(3, 0))


def test_neighbors_order_wait_then_up_down_left_right():
    grid = Grid.open_grid(3, 3)
    assert grid.get_neighbors(Cell(1, 1)) == [
        Cell(1, 1), Cell(0, 1), Cell(2, 1), Cell(1, 0), Cell(1, 2)
    ]


def test_neighbors_skip_walls_and_edges():
    grid = Grid.from_rows([".#", ".."])
    assert grid.get_neighbors(Cell(0, 0), include_wait=False) == [Cell(1, 0)]


def test_reachability_uses_connected_components():
    grid = Grid.from_rows([".#.", ".#.", ".#."])
    assert grid.is_reachable(Cell(0, 0), Cell(2, 0))
    assert not grid.is_reachable(Cell(0, 0), Cell(0, 2))


def test_path_continuity():
    grid = Grid.from_rows(["...", ".#."])
    assert grid.validate_path_continuity([Cell(0, 0), Cell(0, 1), Cell(0, 1), Cell(0, 2)])
    assert not grid.validate_path_continuity([Cell(0, 0), Cell(0, 2)])
    assert not grid.validate_path_continuity([Cell(0, 1), Cell(1, 1)])


def test_grid_equality_compares_passability():
    assert Grid.from_rows([".#"]) == Grid(np.array([[True, False]]))
    assert Grid.from_rows([".#"]) != Grid.from_rows([".."])


def test_cells_order_by_row_then_column():
    assert sorted([Cell(1, 0), Cell(0, 2), Cell(0, 1)]) == [Cell(0, 1), Cell(0, 2), Cell(1, 0)]


def test_agent_coerces_tuples_and_parks_after_path():
    agent = Agent("a1", (0, 0), (0, 2))
    assert agent.start == Cell(0, 0)
    assert agent.symbol == "A"
    assert agent.position_at(5) == Cell(0, 0)

    agent.assign_path([Cell(0, 0), Cell(0, 1), Cell(0, 2)])
    assert agent.has_path()
    assert agent.path_status == PathStatus.ASSIGNED
    assert agent.position_at(10) == Cell(0, 2)
    assert agent.goal_time() == 2

    agent.clear_path()
    assert not agent.has_path()


def test_settle_time_is_first_step_of_final_stay():
    goal = Cell(0, 1)
    # Passes through the goal, leaves, and comes back
    path = [Cell(0, 0), goal, Cell(0, 2), goal, goal]
    assert settle_time(path, goal) == 3
    assert settle_time([goal], goal) == 0
    assert settle_time([Cell(0, 0)], goal) is None


def test_validate_agents_rejects_bad_instances():
    grid = Grid.from_rows(["..#", "..."])
    validate_agents(grid, [Agent("A", (0, 0), (1, 2)), Agent("B", (1, 0), (0, 0))])

    with pytest.raises(GridError, match="Duplicate agent id"):
        validate_agents(grid, [Agent("A", (0, 0), (1, 2)), Agent("A", (1, 0), (0, 1))])
    with pytest.raises(GridError, match="start"):
        validate_agents(grid, [Agent("A", (0, 2), (1, 2))])
    with pytest.raises(GridError, match="goal"):
        validate_agents(grid, [Agent("A", (0, 0), (5, 5))])
    with pytest.raises(GridError, match="share start"):
        validate_agents(grid, [Agent("A", (0, 0), (1, 2)), Agent("B", (0, 0), (1, 1))])
