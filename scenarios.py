"""
Scenario Module for GridCBS
Problem instances: built-in reference maps, JSON instances and MovingAI map/scenario files
"""

import json
import logging
from typing import List, Tuple, Dict, Optional
from dataclasses import dataclass, field

import numpy as np

from grid_system import Cell, Agent, Grid, GridError, as_cell, validate_agents

logger = logging.getLogger(__name__)

# MovingAI map characters that block movement
MOVINGAI_OBSTACLES = {'@', 'O', 'T', 'W'}


@dataclass(frozen=True)
class AgentSpec:
    """Start/goal provisioning for one agent"""
    id: str
    start: Cell
    goal: Cell


@dataclass
class ProblemInstance:
    """A grid plus an ordered list of agent start/goal pairs"""
    name: str
    grid: Grid
    agent_specs: List[AgentSpec] = field(default_factory=list)
    description: str = ""

    def create_agents(self) -> List[Agent]:
        """Fresh Agent objects, in provider order"""
        return [Agent(id=spec.id, start=spec.start, goal=spec.goal) for spec in self.agent_specs]

    def validate(self):
        """Raise GridError if the agents do not fit the grid"""
        validate_agents(self.grid, self.create_agents())

    @property
    def num_agents(self) -> int:
        return len(self.agent_specs)


def agent_label(index: int) -> str:
    """A, B, ... Z, then A26, A27, ..."""
    if index < 26:
        return chr(ord('A') + index)
    return f"A{index}"


def make_instance(name: str, rows: List[str], agents: List[Tuple[Tuple[int, int], Tuple[int, int]]],
                  description: str = "") -> ProblemInstance:
    """Build an instance from map rows and (start, goal) pairs labelled A, B, C, ..."""
    specs = [AgentSpec(agent_label(i), as_cell(start), as_cell(goal))
             for i, (start, goal) in enumerate(agents)]
    return ProblemInstance(name, Grid.from_rows(rows), specs, description)


PILLARS_9 = [
    ".........",
    ".#.#.#.#.",
    ".........",
    ".#.#.#.#.",
    ".........",
    ".#.#.#.#.",
    ".........",
    ".#.#.#.#.",
    ".........",
]

PILLARS_7 = [
    ".......",
    ".#.#.#.",
    ".......",
    ".#.#.#.",
    ".......",
    ".#.#.#.",
    ".......",
]

GOAL_BLOCKING_MAP = [
    "####...#",
    "######.#",
    ".#####.#",
    ".#####.#",
    ".#####.#",
    ".#####.#",
    "........",
    "........",
]


def _builtin_scenarios() -> Dict[str, ProblemInstance]:
    return {
        'semispaceful': make_instance(
            'semispaceful', PILLARS_9,
            [((0, 1), (8, 5)), ((6, 1), (0, 4)), ((0, 7), (8, 4)), ((6, 7), (8, 3)), ((6, 3), (8, 7))],
            "9x9 pillar map, five agents heading for the top and bottom rows"
        ),
        'semicrowded': make_instance(
            'semicrowded', PILLARS_7,
            [((0, 1), (6, 6)), ((4, 1), (0, 6)), ((0, 3), (3, 0)), ((2, 3), (0, 3)),
             ((4, 3), (3, 6)), ((0, 5), (6, 0)), ((4, 5), (0, 0))],
            "7x7 pillar map, seven agents crossing to opposite sides"
        ),
        'head_on': make_instance(
            'head_on', ["......."] * 7,
            [((1, 1), (1, 5)), ((1, 5), (1, 1))],
            "Two agents swapping ends of the same row on an open 7x7 grid"
        ),
        'goal_blocking': make_instance(
            'goal_blocking', GOAL_BLOCKING_MAP,
            [((0, 4), (6, 6)), ((2, 0), (6, 7))],
            "A parks on (6,6) at t=8 on the cell B would cross at t=10"
        ),
        'enclosed_start': make_instance(
            'enclosed_start', [".#...", "##...", "....."],
            [((2, 0), (0, 4)), ((0, 0), (2, 4))],
            "Agent B starts in a walled-in corner"
        ),
        'corridor_swap': make_instance(
            'corridor_swap', ["####", "#..#", "####"],
            [((1, 1), (1, 2)), ((1, 2), (1, 1))],
            "Two agents swapping cells in a corridor with no room to pass or wait"
        ),
    }


BUILTIN_SCENARIOS: Dict[str, ProblemInstance] = _builtin_scenarios()


def get_builtin_scenario(name: str) -> ProblemInstance:
    if name not in BUILTIN_SCENARIOS:
        raise KeyError(f"Unknown scenario {name!r}; available: {', '.join(sorted(BUILTIN_SCENARIOS))}")
    return BUILTIN_SCENARIOS[name]


def _parse_cell(value, context: str) -> Cell:
    try:
        row, col = value
        return Cell(int(row), int(col))
    except (TypeError, ValueError) as e:
        raise GridError(f"Invalid cell {value!r} for {context}") from e


def instance_from_dict(data: Dict, default_name: str = "instance") -> ProblemInstance:
    """
    Build an instance from a JSON-style dictionary

    Expected layout::

        {"name": "...", "map": ["....", ".##."],
         "agents": [{"id": "A", "start": [0, 0], "goal": [1, 3]}, ...]}

    Agent ids are optional and default to A, B, C, ...
    """
    if 'map' not in data or 'agents' not in data:
        raise GridError("Instance needs 'map' and 'agents' entries")

    grid = Grid.from_rows(data['map'])
    specs = []
    for index, entry in enumerate(data['agents']):
        agent_id = str(entry.get('id', agent_label(index)))
        specs.append(AgentSpec(
            agent_id,
            _parse_cell(entry.get('start'), f"agent {agent_id} start"),
            _parse_cell(entry.get('goal'), f"agent {agent_id} goal")
        ))

    instance = ProblemInstance(str(data.get('name', default_name)), grid, specs,
                               str(data.get('description', '')))
    instance.validate()
    return instance


def load_instance_json(path: str) -> ProblemInstance:
    """Load and validate a JSON instance file"""
    with open(path, 'r') as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise GridError(f"{path}: invalid JSON ({e})") from e

    instance = instance_from_dict(data, default_name=path)
    logger.info(f"Loaded instance {instance.name}: {instance.grid.rows}x{instance.grid.cols}, "
                f"{instance.num_agents} agents")
    return instance


def instance_to_dict(instance: ProblemInstance) -> Dict:
    return {
        'name': instance.name,
        'description': instance.description,
        'map': instance.grid.to_rows(),
        'agents': [{'id': spec.id, 'start': list(spec.start.to_tuple()), 'goal': list(spec.goal.to_tuple())}
                   for spec in instance.agent_specs]
    }


def load_map_file(map_path: str) -> Grid:
    """
    Load a MovingAI .map file

    Args:
        map_path: Path to the map file (header lines, then 'map', then rows)

    Returns:
        Grid where '@', 'O', 'T' and 'W' are walls
    """
    with open(map_path, 'r') as f:
        lines = f.readlines()

    header = {}
    map_start_idx = None
    for i, line in enumerate(lines):
        line = line.strip()
        if line.startswith('height') or line.startswith('width'):
            key, _, value = line.partition(' ')
            try:
                header[key] = int(value)
            except ValueError as e:
                raise GridError(f"{map_path}: bad {key} line {line!r}") from e
        elif line.startswith('map'):
            map_start_idx = i + 1
            break

    if map_start_idx is None or 'height' not in header or 'width' not in header:
        raise GridError(f"{map_path}: missing height/width/map header")

    height, width = header['height'], header['width']
    if len(lines) < map_start_idx + height:
        raise GridError(f"{map_path}: expected {height} map rows")

    passable = np.ones((height, width), dtype=bool)
    for r in range(height):
        line = lines[map_start_idx + r].strip()
        if len(line) < width:
            raise GridError(f"{map_path}: row {r} is shorter than width {width}")
        for c, char in enumerate(line[:width]):
            if char in MOVINGAI_OBSTACLES:
                passable[r, c] = False

    return Grid(passable)


def load_scenario_file(scen_path: str, num_agents: Optional[int] = None) -> List[AgentSpec]:
    """
    Load agents from a MovingAI .scen file

    Columns: bucket, map, width, height, start_x, start_y, goal_x, goal_y, optimal_length
    (x is the column, y the row).
    """
    with open(scen_path, 'r') as f:
        lines = f.readlines()

    specs = []
    for line in lines[1:]:
        parts = line.strip().split()
        if len(parts) < 9:
            continue

        try:
            start_col, start_row, goal_col, goal_row = (int(p) for p in parts[4:8])
        except ValueError as e:
            raise GridError(f"{scen_path}: malformed scenario line {line.strip()!r}") from e
        specs.append(AgentSpec(agent_label(len(specs)), Cell(start_row, start_col), Cell(goal_row, goal_col)))

        if num_agents is not None and len(specs) >= num_agents:
            break

    if num_agents is not None and len(specs) < num_agents:
        logger.warning(f"{scen_path}: requested {num_agents} agents, found {len(specs)}")

    return specs


def load_movingai_instance(map_path: str, scen_path: str, num_agents: Optional[int] = None) -> ProblemInstance:
    """Combine a MovingAI map and scenario into a validated instance"""
    instance = ProblemInstance(
        name=scen_path,
        grid=load_map_file(map_path),
        agent_specs=load_scenario_file(scen_path, num_agents)
    )
    instance.validate()
    return instance
