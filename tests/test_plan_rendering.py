"""Tests for text rendering, narration, DataFrame export and plotting of plans."""

import pandas as pd

from grid_system import Cell, Agent, Grid
from cbs_module import Plan, solve_agents
from plan_rendering import (
    PlanNarrator, render_map, render_plan, plan_to_frame, export_plan_csv, plot_plan
)
from scenarios import get_builtin_scenario


def make_plan(paths, goals, conflict_free=True):
    return Plan(
        paths={agent_id: [Cell(*c) for c in path] for agent_id, path in paths.items()},
        goals={agent_id: Cell(*goal) for agent_id, goal in goals.items()},
        conflict_free=conflict_free
    )


def test_render_map_marks_starts_and_goals():
    grid = Grid.from_rows(["...", ".#."])
    agents = [Agent("A", (0, 0), (1, 2)), Agent("b", (1, 0), (0, 2))]

    assert render_map(grid, agents) == "A.+\nB#+"


def test_narrator_reports_goal_arrival():
    grid = Grid.from_rows(["...", "..."])
    plan = make_plan(
        {"A": [(0, 0), (0, 1), (0, 2)], "B": [(1, 0), (1, 1)]},
        {"A": (0, 2), "B": (1, 1)}
    )
    narrator = PlanNarrator(grid, plan)

    frame = narrator.render_timestep(1)
    assert frame.board == ".A.\n.B."
    assert frame.events == ["Agent B reached its goal at timestep 1"]
    assert frame.warnings == []

    assert narrator.render_timestep(2).events == ["Agent A reached its goal at timestep 2"]
    assert len(narrator.frames()) == 3


def test_narrator_warns_about_shared_cells_and_finished_goals():
    grid = Grid.from_rows(["...."])
    plan = make_plan(
        {"A": [(0, 0), (0, 1)], "B": [(0, 3), (0, 2), (0, 1), (0, 0)]},
        {"A": (0, 1), "B": (0, 0)},
        conflict_free=False
    )
    frame = PlanNarrator(grid, plan).render_timestep(2)

    assert frame.board == ".*.."
    assert "Agent B moves onto Agent A's finished goal at timestep 2" in frame.warnings
    assert "Agent A and Agent B occupy the same cell (0, 1) at timestep 2" in frame.warnings
    assert "WARNING: Agent A and Agent B occupy the same cell (0, 1) at timestep 2" in frame.render()


def test_render_plan_covers_every_timestep_to_last_arrival():
    grid = Grid.from_rows(["..."])
    plan = make_plan({"A": [(0, 0), (0, 1), (0, 2)]}, {"A": (0, 2)})

    text = render_plan(grid, plan)

    assert text.startswith("Timestep 0:\nA..")
    assert "Timestep 2:\n..A" in text
    assert "Timestep 3" not in text


def test_plan_to_frame_pads_parked_agents():
    plan = make_plan(
        {"A": [(0, 0), (0, 1), (0, 2)], "B": [(1, 0), (1, 1)]},
        {"A": (0, 2), "B": (1, 1)}
    )
    df = plan_to_frame(plan)

    assert list(df.columns) == ['agent', 'timestep', 'row', 'col', 'at_goal']
    assert len(df) == 6
    b_rows = df[df['agent'] == 'B']
    assert list(b_rows['col']) == [0, 1, 1]
    assert list(b_rows['at_goal']) == [False, True, True]


def test_export_and_plot_solved_plan(tmp_path):
    instance = get_builtin_scenario('head_on')
    result = solve_agents(instance.grid, instance.create_agents())
    assert result.success

    csv_path = tmp_path / "plan.csv"
    df = export_plan_csv(result.plan, str(csv_path))
    reloaded = pd.read_csv(csv_path)
    assert len(reloaded) == len(df)
    assert set(reloaded['agent']) == {"A", "B"}

    png_path = tmp_path / "plan.png"
    assert plot_plan(instance.grid, result.plan, str(png_path)) == str(png_path)
    assert png_path.stat().st_size > 0
