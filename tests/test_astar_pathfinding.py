"""Tests for the time-expanded A* search."""

from grid_system import Cell, Agent, Grid
from constraint_store import Constraint, ConstraintStore
from astar_pathfinding import AStarPathfinder, PathfindingConfig, create_fast_config


def _store_with(*constraints, goal=()):
    store = ConstraintStore()
    for constraint in constraints:
        store.add(constraint)
    store.replace_goal_constraints(goal)
    return store


def test_unconstrained_path_is_shortest():
    grid = Grid.open_grid(5, 5)
    pathfinder = AStarPathfinder(grid)
    agent = Agent("A", (0, 0), (3, 4))

    result = pathfinder.find_path(agent)

    assert result.success
    assert result.path[0] == agent.start
    assert result.path[-1] == agent.goal
    assert result.cost == 7
    assert len(result.path) == 8
    assert grid.validate_path_continuity(result.path)


def test_start_equal_to_goal():
    pathfinder = AStarPathfinder(Grid.open_grid(3, 3))
    result = pathfinder.find_path(Agent("A", (1, 1), (1, 1)))
    assert result.success
    assert result.path == [Cell(1, 1)]


def test_search_is_deterministic():
    grid = Grid.from_rows([".....", ".#.#.", "....."])
    agent = Agent("A", (0, 0), (2, 4))
    first = AStarPathfinder(grid).find_path(agent).path
    second = AStarPathfinder(grid).find_path(agent).path
    assert first == second


def test_vertex_constraint_forces_wait_or_detour():
    grid = Grid.from_rows(["...."])
    agent = Agent("A", (0, 0), (0, 3))
    store = _store_with(Constraint.vertex("A", 1, Cell(0, 1)))

    result = AStarPathfinder(grid).find_path(agent, store.snapshot("A"))

    assert result.success
    assert result.path[1] != Cell(0, 1)
    assert result.cost == 4


def test_edge_constraint_forbids_only_that_move():
    grid = Grid.from_rows(["..."])
    agent = Agent("A", (0, 0), (0, 2))
    store = _store_with(Constraint.edge("A", 1, Cell(0, 0), Cell(0, 1)))

    result = AStarPathfinder(grid).find_path(agent, store.snapshot("A"))

    assert result.success
    assert result.path == [Cell(0, 0), Cell(0, 0), Cell(0, 1), Cell(0, 2)]


def test_goal_is_not_accepted_while_later_constraints_cover_it():
    grid = Grid.from_rows(["..."])
    agent = Agent("A", (0, 0), (0, 2))
    store = _store_with(Constraint.vertex("A", 4, Cell(0, 2)))

    result = AStarPathfinder(grid).find_path(agent, store.snapshot("A"))

    assert result.success
    assert result.path[-1] == agent.goal
    # Arrival only after the last constraint on the goal
    assert len(result.path) - 1 >= 5


def test_goal_occupation_blocks_cell_permanently():
    grid = Grid.from_rows(["...", "..."])
    agent = Agent("A", (0, 0), (0, 2))
    store = _store_with(goal=[Constraint.occupied_from("A", 1, Cell(0, 1))])

    result = AStarPathfinder(grid).find_path(agent, store.snapshot("A"))

    assert result.success
    assert Cell(0, 1) not in result.path[1:]
    assert result.cost == 4


def test_unreachable_goal_short_circuits():
    grid = Grid.from_rows([".#."])
    pathfinder = AStarPathfinder(grid)

    result = pathfinder.find_path(Agent("A", (0, 0), (0, 2)))

    assert not result.success
    assert result.nodes_expanded == 0
    assert "not reachable" in result.failure_reason
    assert pathfinder.stats['unreachable_shortcuts'] == 1


def test_without_reachability_check_the_horizon_bounds_the_search():
    grid = Grid.from_rows([".#."])
    config = PathfindingConfig(max_timestep=10, reachability_check=False)

    result = AStarPathfinder(grid, config).find_path(Agent("A", (0, 0), (0, 2)))

    assert not result.success
    assert "10 timesteps" in result.failure_reason


def test_paths_stay_below_max_timestep():
    grid = Grid.open_grid(1, 10)
    agent = Agent("A", (0, 0), (0, 9))

    assert not AStarPathfinder(grid, PathfindingConfig(max_timestep=9)).find_path(agent).success
    assert AStarPathfinder(grid, PathfindingConfig(max_timestep=10)).find_path(agent).success


def test_node_limit():
    grid = Grid.open_grid(10, 10)
    config = PathfindingConfig(max_nodes_expanded=3)

    result = AStarPathfinder(grid, config).find_path(Agent("A", (0, 0), (9, 9)))

    assert not result.success
    assert result.failure_reason == "Node expansion limit reached"


def test_constraints_never_shorten_a_path():
    grid = Grid.from_rows(["......", ".##...", "......"])
    agent = Agent("A", (0, 0), (2, 5))
    pathfinder = AStarPathfinder(grid)

    base = pathfinder.find_path(agent)
    store = _store_with(*(Constraint.vertex("A", t, cell) for t, cell in enumerate(base.path) if t > 0))
    constrained = pathfinder.find_path(agent, store.snapshot("A"))

    assert constrained.success
    assert constrained.cost >= base.cost


def test_validate_path_reports_violations():
    grid = Grid.from_rows(["..."])
    agent = Agent("A", (0, 0), (0, 2))
    pathfinder = AStarPathfinder(grid)
    store = _store_with(Constraint.vertex("A", 1, Cell(0, 1)))

    ok, issues = pathfinder.validate_path(agent, [Cell(0, 0), Cell(0, 1), Cell(0, 2)])
    assert ok and not issues

    ok, issues = pathfinder.validate_path(agent, [Cell(0, 0), Cell(0, 1), Cell(0, 2)], store.snapshot("A"))
    assert not ok
    assert any("t=1" in issue for issue in issues)


def test_statistics_accumulate_and_reset():
    pathfinder = AStarPathfinder(Grid.open_grid(3, 3), create_fast_config())
    pathfinder.find_path(Agent("A", (0, 0), (2, 2)))
    pathfinder.find_path(Agent("B", (2, 2), (0, 0)))

    stats = pathfinder.get_statistics()
    assert stats['total_searches'] == 2
    assert stats['success_rate'] == 1.0
    assert stats['total_nodes_expanded'] > 0

    pathfinder.reset_statistics()
    assert pathfinder.get_statistics()['total_searches'] == 0
