"""
Grid System Module for GridCBS
Handles the static passability map, grid cells and agent records shared by all solver modules
"""

from typing import List, Tuple, Set, Dict, Optional, Iterable
from dataclasses import dataclass, field
from enum import Enum
from collections import deque
import numpy as np

FREE_CHAR = '.'
WALL_CHAR = '#'

# Movement directions: up, down, left, right
DIRECTIONS = [(-1, 0), (1, 0), (0, -1), (0, 1)]


class PathStatus(Enum):
    """Status of agent paths"""
    NONE = "none"
    ASSIGNED = "assigned"  # Path found under the current constraints
    FAILED = "failed"      # Last search returned no path


@dataclass(frozen=True, order=True)
class Cell:
    """Represents a grid cell (row, col). Cells order by row, then column."""
    row: int
    col: int

    def to_tuple(self) -> Tuple[int, int]:
        """Convert to tuple format (row, col)"""
        return (self.row, self.col)

    def manhattan_distance_to(self, other: 'Cell') -> int:
        """Calculate Manhattan distance to another cell"""
        return abs(self.row - other.row) + abs(self.col - other.col)

    def is_adjacent_to(self, other: 'Cell') -> bool:
        """Check if this cell is a cardinal neighbour of (or equal to) another"""
        return self.manhattan_distance_to(other) <= 1

    def __str__(self):
        return f"({self.row}, {self.col})"

    def __repr__(self):
        return f"Cell({self.row}, {self.col})"


def as_cell(value) -> Cell:
    """Coerce a Cell or a (row, col) pair into a Cell"""
    if isinstance(value, Cell):
        return value
    row, col = value
    return Cell(int(row), int(col))


class GridError(Exception):
    """Raised for malformed maps and invalid problem instances"""
    pass


class Grid:
    """
    Immutable passability map.

    Cells are addressed by (row, col) with row 0 at the top. The passability
    array is a read-only numpy boolean array of shape (rows, cols).
    """

    def __init__(self, passable: np.ndarray):
        passable = np.asarray(passable, dtype=bool)
        if passable.ndim != 2 or passable.shape[0] <= 0 or passable.shape[1] <= 0:
            raise GridError("Grid dimensions must be positive")

        self._passable = passable.copy()
        self._passable.setflags(write=False)
        self.rows, self.cols = self._passable.shape

        # Connected-component labels, computed lazily for reachability checks
        self._components: Optional[np.ndarray] = None

    @classmethod
    def from_rows(cls, rows: Iterable[str]) -> 'Grid':
        """
        Build a grid from text rows of '.' (free) and '#' (wall)

        Args:
            rows: Equal-length strings, one per grid row

        Returns:
            Grid instance
        """
        rows = [row.rstrip('\n') for row in rows]
        if not rows or not rows[0]:
            raise GridError("Map must contain at least one non-empty row")

        width = len(rows[0])
        passable = np.zeros((len(rows), width), dtype=bool)

        for r, line in enumerate(rows):
            if len(line) != width:
                raise GridError(f"Row {r} has length {len(line)}, expected {width}")
            for c, char in enumerate(line):
                if char == FREE_CHAR:
                    passable[r, c] = True
                elif char != WALL_CHAR:
                    raise GridError(f"Unknown map character {char!r} at ({r}, {c})")

        return cls(passable)

    @classmethod
    def open_grid(cls, rows: int, cols: int) -> 'Grid':
        """Create an obstacle-free grid"""
        if rows <= 0 or cols <= 0:
            raise GridError("Grid dimensions must be positive")
        return cls(np.ones((rows, cols), dtype=bool))

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.rows, self.cols)

    def in_bounds(self, cell: Cell) -> bool:
        """Check if cell is within grid bounds"""
        return 0 <= cell.row < self.rows and 0 <= cell.col < self.cols

    def passable(self, cell: Cell) -> bool:
        """Check if cell is within bounds and not a wall"""
        return self.in_bounds(cell) and bool(self._passable[cell.row, cell.col])

    def get_neighbors(self, cell: Cell, include_wait: bool = True) -> List[Cell]:
        """
        Get passable cells reachable in one timestep

        Args:
            cell: Current cell
            include_wait: Whether to include waiting in place as an option

        Returns:
            List of passable cells, wait first, then up, down, left, right
        """
        neighbors = []

        if include_wait and self.passable(cell):
            neighbors.append(cell)

        for dr, dc in DIRECTIONS:
            candidate = Cell(cell.row + dr, cell.col + dc)
            if self.passable(candidate):
                neighbors.append(candidate)

        return neighbors

    def free_cells(self) -> List[Cell]:
        """All passable cells in row-major order"""
        return [Cell(int(r), int(c)) for r, c in zip(*np.nonzero(self._passable))]

    def count_free_cells(self) -> int:
        return int(self._passable.sum())

    def _label_components(self) -> np.ndarray:
        """Flood-fill 4-connected components of passable cells"""
        labels = np.full(self.shape, -1, dtype=int)
        label = 0

        for start in self.free_cells():
            if labels[start.row, start.col] != -1:
                continue

            labels[start.row, start.col] = label
            queue = deque([start])
            while queue:
                current = queue.popleft()
                for neighbor in self.get_neighbors(current, include_wait=False):
                    if labels[neighbor.row, neighbor.col] == -1:
                        labels[neighbor.row, neighbor.col] = label
                        queue.append(neighbor)
            label += 1

        return labels

    def is_reachable(self, start: Cell, goal: Cell) -> bool:
        """Check whether goal can be reached from start ignoring time and other agents"""
        if not (self.passable(start) and self.passable(goal)):
            return False
        if self._components is None:
            self._components = self._label_components()
        return self._components[start.row, start.col] == self._components[goal.row, goal.col]

    def validate_path_continuity(self, path: List[Cell]) -> bool:
        """
        Validate that a path only uses passable cells and moves at most one cell per timestep

        Args:
            path: Path indexed by timestep

        Returns:
            True if path is valid
        """
        if any(not self.passable(cell) for cell in path):
            return False

        for prev_cell, curr_cell in zip(path, path[1:]):
            if not prev_cell.is_adjacent_to(curr_cell):
                return False

        return True

    def to_rows(self) -> List[str]:
        """Render the grid back into '.'/'#' rows"""
        return [''.join(FREE_CHAR if free else WALL_CHAR for free in row)
                for row in self._passable]

    def as_array(self) -> np.ndarray:
        """Read-only boolean passability array"""
        return self._passable

    def __eq__(self, other):
        return isinstance(other, Grid) and np.array_equal(self._passable, other._passable)

    def __repr__(self):
        return f"Grid(rows={self.rows}, cols={self.cols}, free={self.count_free_cells()})"


@dataclass
class Agent:
    """Represents an agent with its start, goal and most recently computed path"""
    id: str
    start: Cell
    goal: Cell
    path: List[Cell] = field(default_factory=list)
    path_status: PathStatus = PathStatus.NONE

    def __post_init__(self):
        self.id = str(self.id)
        self.start = as_cell(self.start)
        self.goal = as_cell(self.goal)

    @property
    def symbol(self) -> str:
        """Single character used when drawing the agent on a map"""
        return self.id[0].upper() if self.id else '?'

    def has_path(self) -> bool:
        """Check if agent has an assigned path"""
        return bool(self.path) and self.path_status == PathStatus.ASSIGNED

    def position_at(self, t: int) -> Cell:
        """Effective position at timestep t; parked at the last cell after the path ends"""
        if not self.path:
            return self.start
        if t < len(self.path):
            return self.path[t]
        return self.path[-1]

    def goal_time(self) -> Optional[int]:
        """First timestep from which the agent stays on its goal, None if the path never parks"""
        return settle_time(self.path, self.goal)

    def assign_path(self, path: List[Cell]):
        self.path = list(path)
        self.path_status = PathStatus.ASSIGNED

    def clear_path(self):
        self.path = []
        self.path_status = PathStatus.NONE


def settle_time(path: List[Cell], goal: Cell) -> Optional[int]:
    """
    Timestep from which a path stays on its goal for the rest of the path

    Args:
        path: Path indexed by timestep
        goal: Goal cell

    Returns:
        Settle timestep, or None if the path does not end on the goal
    """
    if not path or path[-1] != goal:
        return None

    t = len(path) - 1
    while t > 0 and path[t - 1] == goal:
        t -= 1
    return t


def validate_agents(grid: Grid, agents: List[Agent]):
    """
    Check that agents form a valid instance on the grid

    Raises:
        GridError: on duplicate ids, duplicate starts, or impassable start/goal cells
    """
    seen_ids: Set[str] = set()
    seen_starts: Dict[Cell, str] = {}

    for agent in agents:
        if agent.id in seen_ids:
            raise GridError(f"Duplicate agent id {agent.id!r}")
        seen_ids.add(agent.id)

        if not grid.passable(agent.start):
            raise GridError(f"Agent {agent.id} start {agent.start} is outside the grid or a wall")
        if not grid.passable(agent.goal):
            raise GridError(f"Agent {agent.id} goal {agent.goal} is outside the grid or a wall")

        if agent.start in seen_starts:
            raise GridError(f"Agents {seen_starts[agent.start]} and {agent.id} share start {agent.start}")
        seen_starts[agent.start] = agent.id
