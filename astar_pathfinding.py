"""
A* Pathfinding Module for GridCBS
Single-agent search over the space-time graph with vertex, edge and goal-occupation constraints
"""

import heapq
import logging
import time
from typing import List, Tuple, Set, Dict, Optional
from dataclasses import dataclass, field

from grid_system import Cell, Agent, Grid
from constraint_store import AgentConstraints

logger = logging.getLogger(__name__)


@dataclass
class SearchNode:
    """Arena entry for the space-time search. parent is an index into the same arena."""
    cell: Cell
    g_cost: int       # Steps taken, equal to the timestep
    h_cost: int       # Manhattan distance to goal
    timestep: int
    parent: int = -1

    @property
    def f_cost(self) -> int:
        return self.g_cost + self.h_cost


@dataclass
class PathfindingConfig:
    """Configuration for pathfinding behavior"""
    # Search limits
    max_timestep: int = 100  # Paths never reach this timestep
    max_nodes_expanded: Optional[int] = None

    # Move settings
    allow_wait: bool = True

    # Skip the space-time search when the goal is in another connected component
    reachability_check: bool = True

    # Debug settings
    track_search_stats: bool = False


@dataclass
class PathfindingResult:
    """Result of pathfinding operation; success=False is the NotFound outcome"""
    success: bool
    path: List[Cell]
    cost: int
    nodes_expanded: int
    computation_time: float

    failure_reason: str = ""
    search_stats: Dict = field(default_factory=dict)


class AStarPathfinder:
    """
    Time-expanded A* over (cell, timestep) nodes.

    Every action (four cardinal moves and wait) costs one step and advances the
    timestep by one, so g == timestep and the Manhattan heuristic is consistent.
    """

    def __init__(self, grid: Grid, config: PathfindingConfig = None):
        """
        Initialize pathfinder with grid and configuration

        Args:
            grid: The passability map
            config: Pathfinding configuration (uses defaults if None)
        """
        self.grid = grid
        self.config = config or PathfindingConfig()

        self._reachability_cache: Dict[Tuple[Cell, Cell], bool] = {}

        self.stats = {
            'total_searches': 0,
            'successful_searches': 0,
            'total_nodes_expanded': 0,
            'total_computation_time': 0.0,
            'unreachable_shortcuts': 0
        }

    def _is_reachable(self, start: Cell, goal: Cell) -> bool:
        key = (start, goal)
        if key not in self._reachability_cache:
            self._reachability_cache[key] = self.grid.is_reachable(start, goal)
        return self._reachability_cache[key]

    def _failure(self, reason: str, nodes_expanded: int, started: float) -> PathfindingResult:
        computation_time = time.time() - started
        self.stats['total_nodes_expanded'] += nodes_expanded
        self.stats['total_computation_time'] += computation_time
        return PathfindingResult(
            success=False,
            path=[],
            cost=-1,
            nodes_expanded=nodes_expanded,
            computation_time=computation_time,
            failure_reason=reason
        )

    @staticmethod
    def _reconstruct_path(arena: List[SearchNode], index: int) -> List[Cell]:
        """Walk parent indices from the goal node back to the start"""
        path = []
        while index != -1:
            node = arena[index]
            path.append(node.cell)
            index = node.parent
        path.reverse()
        return path

    def find_path(self, agent: Agent, constraints: Optional[AgentConstraints] = None) -> PathfindingResult:
        """
        Find a minimum-timestep path for an agent under its constraints

        Args:
            agent: Agent to find path for
            constraints: Snapshot of the agent's constraints (unconstrained if None)

        Returns:
            PathfindingResult with path and metadata
        """
        started = time.time()
        self.stats['total_searches'] += 1

        if constraints is None:
            constraints = AgentConstraints.empty(agent.id)

        start, goal = agent.start, agent.goal
        max_timestep = self.config.max_timestep
        max_nodes = self.config.max_nodes_expanded

        if not self.grid.passable(start):
            return self._failure("Start position is blocked", 0, started)

        if self.config.reachability_check and not self._is_reachable(start, goal):
            self.stats['unreachable_shortcuts'] += 1
            return self._failure("Goal is not reachable from start", 0, started)

        # Node arena, discarded when this call returns
        arena: List[SearchNode] = [SearchNode(start, 0, start.manhattan_distance_to(goal), 0)]
        generated: Set[Tuple[Cell, int]] = {(start, 0)}

        # Heap entries: (f, h, row, col, arena index); lower h first on equal f
        open_set = [(arena[0].f_cost, arena[0].h_cost, start.row, start.col, 0)]

        nodes_expanded = 0

        while open_set:
            if max_nodes is not None and nodes_expanded >= max_nodes:
                return self._failure("Node expansion limit reached", nodes_expanded, started)

            _, _, _, _, index = heapq.heappop(open_set)
            current = arena[index]
            nodes_expanded += 1

            # The agent parks on its goal, so no later constraint may cover it
            if current.cell == goal and not constraints.blocks_after(goal, current.timestep):
                path = self._reconstruct_path(arena, index)
                computation_time = time.time() - started

                self.stats['successful_searches'] += 1
                self.stats['total_nodes_expanded'] += nodes_expanded
                self.stats['total_computation_time'] += computation_time

                logger.debug(f"Agent {agent.id}: path of {len(path) - 1} steps, "
                             f"{nodes_expanded} nodes expanded, {len(constraints)} constraints")

                return PathfindingResult(
                    success=True,
                    path=path,
                    cost=current.g_cost,
                    nodes_expanded=nodes_expanded,
                    computation_time=computation_time,
                    search_stats={
                        'arena_size': len(arena),
                        'open_set_size': len(open_set),
                        'constraints': len(constraints)
                    } if self.config.track_search_stats else {}
                )

            next_t = current.timestep + 1
            if next_t >= max_timestep:
                continue

            for neighbor in self.grid.get_neighbors(current.cell, include_wait=self.config.allow_wait):
                if (neighbor, next_t) in generated:
                    continue
                if constraints.forbids_move(current.cell, neighbor, next_t):
                    continue

                generated.add((neighbor, next_t))
                successor = SearchNode(
                    cell=neighbor,
                    g_cost=current.g_cost + 1,
                    h_cost=neighbor.manhattan_distance_to(goal),
                    timestep=next_t,
                    parent=index
                )
                arena.append(successor)
                heapq.heappush(open_set, (successor.f_cost, successor.h_cost,
                                          neighbor.row, neighbor.col, len(arena) - 1))

        return self._failure(f"No path within {max_timestep} timesteps", nodes_expanded, started)

    def validate_path(self, agent: Agent, path: List[Cell],
                      constraints: Optional[AgentConstraints] = None) -> Tuple[bool, List[str]]:
        """
        Validate a path for continuity and constraint compliance

        Args:
            agent: Agent owning the path
            path: Path to validate
            constraints: Constraints the path must respect

        Returns:
            Tuple of (is_valid, list_of_issues)
        """
        if not path:
            return False, ["Empty path"]

        issues = []

        if path[0] != agent.start:
            issues.append(f"Path starts at {path[0]}, expected {agent.start}")
        if path[-1] != agent.goal:
            issues.append(f"Path ends at {path[-1]}, expected {agent.goal}")
        if not self.grid.validate_path_continuity(path):
            issues.append("Path is not continuous")

        if constraints is not None:
            for t in range(1, len(path)):
                if constraints.forbids_move(path[t - 1], path[t], t):
                    issues.append(f"Constraint violation at t={t} entering {path[t]}")
            if path[-1] == agent.goal and constraints.blocks_after(agent.goal, len(path) - 1):
                issues.append(f"Goal {agent.goal} is constrained after arrival")

        return len(issues) == 0, issues

    def get_statistics(self) -> Dict:
        """Get pathfinding statistics"""
        searches = max(self.stats['total_searches'], 1)
        return {
            'total_searches': self.stats['total_searches'],
            'successful_searches': self.stats['successful_searches'],
            'success_rate': self.stats['successful_searches'] / searches,
            'total_nodes_expanded': self.stats['total_nodes_expanded'],
            'average_nodes_per_search': self.stats['total_nodes_expanded'] / searches,
            'total_computation_time': self.stats['total_computation_time'],
            'average_time_per_search': self.stats['total_computation_time'] / searches,
            'unreachable_shortcuts': self.stats['unreachable_shortcuts']
        }

    def reset_statistics(self):
        """Reset pathfinding statistics"""
        for key in self.stats:
            self.stats[key] = 0.0 if key == 'total_computation_time' else 0


def create_default_config() -> PathfindingConfig:
    """Default search horizon used by the reference scenarios"""
    return PathfindingConfig()


def create_fast_config() -> PathfindingConfig:
    """Short horizon and bounded expansions for quick feasibility probes"""
    return PathfindingConfig(
        max_timestep=50,
        max_nodes_expanded=20000,
        track_search_stats=False
    )
