"""
Plan Rendering Module for GridCBS
Text frames with narration, tabular export and plots for solved plans
"""

import logging
from typing import List, Dict, Optional
from dataclasses import dataclass, field

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd

from grid_system import Cell, Agent, Grid
from cbs_module import Plan

logger = logging.getLogger(__name__)

GOAL_CHAR = '+'
CROWDED_CHAR = '*'  # More than one agent on a cell


def agent_symbol(agent_id: str) -> str:
    return agent_id[0].upper() if agent_id else '?'


def _base_rows(grid: Grid) -> List[List[str]]:
    return [list(row) for row in grid.to_rows()]


def render_map(grid: Grid, agents: List[Agent]) -> str:
    """
    Draw the map with agent starts (their symbol) and goals ('+')

    Args:
        grid: Passability map
        agents: Agents whose start and goal cells are marked

    Returns:
        Multi-line string, one character per cell
    """
    rows = _base_rows(grid)
    for agent in agents:
        rows[agent.goal.row][agent.goal.col] = GOAL_CHAR
    for agent in agents:
        rows[agent.start.row][agent.start.col] = agent.symbol
    return "\n".join("".join(row) for row in rows)


@dataclass
class TimestepFrame:
    """One rendered timestep: board, narration and warnings"""
    timestep: int
    board: str
    events: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def render(self) -> str:
        lines = [f"Timestep {self.timestep}:", self.board]
        lines.extend(self.events)
        lines.extend(f"WARNING: {warning}" for warning in self.warnings)
        return "\n".join(lines)


class PlanNarrator:
    """Renders a plan timestep by timestep, narrating arrivals and flagging collisions"""

    def __init__(self, grid: Grid, plan: Plan):
        self.grid = grid
        self.plan = plan
        self.goal_times: Dict[str, Optional[int]] = {
            agent_id: plan.goal_time(agent_id) for agent_id in plan.agent_ids
        }

    def render_timestep(self, t: int) -> TimestepFrame:
        """
        Board and narration for timestep t

        Events name agents that settle on their goal at t. Warnings cover two agents on
        one cell and an agent standing on the goal of an agent that has already finished.
        """
        positions = self.plan.positions_at(t)
        rows = _base_rows(self.grid)
        frame = TimestepFrame(timestep=t, board="")

        occupants: Dict[Cell, List[str]] = {}
        for agent_id, cell in positions.items():
            occupants.setdefault(cell, []).append(agent_id)

        for cell, agent_ids in occupants.items():
            rows[cell.row][cell.col] = agent_symbol(agent_ids[0]) if len(agent_ids) == 1 else CROWDED_CHAR
        frame.board = "\n".join("".join(row) for row in rows)

        for agent_id in self.plan.agent_ids:
            if self.goal_times[agent_id] == t:
                frame.events.append(f"Agent {agent_id} reached its goal at timestep {t}")

        for agent_id, cell in positions.items():
            for other_id in self.plan.agent_ids:
                if other_id == agent_id:
                    continue
                finished_at = self.goal_times[other_id]
                if finished_at is not None and finished_at < t and cell == self.plan.goals[other_id]:
                    frame.warnings.append(f"Agent {agent_id} moves onto Agent {other_id}'s "
                                          f"finished goal at timestep {t}")

        for cell, agent_ids in occupants.items():
            for i in range(len(agent_ids)):
                for j in range(i + 1, len(agent_ids)):
                    frame.warnings.append(f"Agent {agent_ids[i]} and Agent {agent_ids[j]} occupy "
                                          f"the same cell ({cell.row}, {cell.col}) at timestep {t}")

        return frame

    def frames(self) -> List[TimestepFrame]:
        """Frames from timestep 0 to the last goal arrival"""
        last = max(self.plan.last_goal_time(), 0)
        return [self.render_timestep(t) for t in range(last + 1)]


def render_plan(grid: Grid, plan: Plan) -> str:
    """Every frame of a plan, separated by blank lines"""
    return "\n\n".join(frame.render() for frame in PlanNarrator(grid, plan).frames())


def plan_to_frame(plan: Plan) -> pd.DataFrame:
    """
    Long-format table of a plan, one row per agent per timestep

    Columns: agent, timestep, row, col, at_goal. Every agent is listed up to the makespan,
    parked on its last cell once its path ends.
    """
    records = []
    makespan = plan.makespan
    for agent_id in plan.agent_ids:
        goal_time = plan.goal_time(agent_id)
        for t in range(makespan + 1):
            cell = plan.position_at(agent_id, t)
            records.append({
                'agent': agent_id,
                'timestep': t,
                'row': cell.row,
                'col': cell.col,
                'at_goal': goal_time is not None and t >= goal_time
            })

    return pd.DataFrame(records, columns=['agent', 'timestep', 'row', 'col', 'at_goal'])


def export_plan_csv(plan: Plan, filename: str) -> pd.DataFrame:
    df = plan_to_frame(plan)
    df.to_csv(filename, index=False)
    logger.info(f"Plan exported to {filename} ({len(df)} rows)")
    return df


def plot_plan(grid: Grid, plan: Plan, filename: str, title: Optional[str] = None) -> str:
    """
    Save a PNG of the map with every agent's path drawn over it

    Args:
        grid: Passability map
        plan: Plan to draw
        filename: Output image path
        title: Optional figure title

    Returns:
        The filename written
    """
    fig, ax = plt.subplots(figsize=(max(4, grid.cols * 0.6), max(4, grid.rows * 0.6)))

    # Walls dark, free cells light
    ax.imshow((~grid.as_array()).astype(float), cmap='Greys', vmin=0, vmax=1.5, origin='upper')

    cmap = matplotlib.colormaps['tab10']
    for index, agent_id in enumerate(plan.agent_ids):
        path = plan.paths[agent_id]
        color = cmap(index % 10)
        rows = [cell.row for cell in path]
        cols = [cell.col for cell in path]

        ax.plot(cols, rows, '-', color=color, linewidth=2, alpha=0.8, label=agent_id)
        ax.plot(cols[0], rows[0], 'o', color=color, markersize=10)
        goal = plan.goals[agent_id]
        ax.plot(goal.col, goal.row, '*', color=color, markersize=14, markeredgecolor='black')

    ax.set_xticks(range(grid.cols))
    ax.set_yticks(range(grid.rows))
    ax.set_xlim(-0.5, grid.cols - 0.5)
    ax.set_ylim(grid.rows - 0.5, -0.5)
    ax.grid(True, linewidth=0.3, alpha=0.5)
    ax.set_title(title or f"Plan: {len(plan.agent_ids)} agents, makespan {plan.makespan}")
    ax.legend(bbox_to_anchor=(1.05, 1), loc='upper left')

    plt.tight_layout()
    fig.savefig(filename, dpi=150, bbox_inches='tight')
    plt.close(fig)

    logger.info(f"Plan plot saved to {filename}")
    return filename
