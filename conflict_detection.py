"""
Conflict Detection Module for GridCBS
Finds vertex and swap conflicts between timestep-indexed paths, and blocking cycles for diagnostics
"""

from typing import List, Tuple, Dict, Optional, Mapping
from dataclasses import dataclass
from enum import Enum

from grid_system import Cell

Paths = Mapping[str, List[Cell]]


class ConflictType(Enum):
    """Types of conflicts between agents"""
    VERTEX = "vertex"  # Same cell at same timestep
    EDGE = "edge"      # Agents swap cells in one timestep


@dataclass(frozen=True)
class Conflict:
    """Represents a conflict between two agents at a timestep"""
    conflict_type: ConflictType
    agent1_id: str
    agent2_id: str
    timestep: int

    # Cells at `timestep`; equal for vertex conflicts
    agent1_cell: Cell
    agent2_cell: Cell

    # Cells at `timestep - 1`; used for edge conflicts
    agent1_prev_cell: Optional[Cell] = None
    agent2_prev_cell: Optional[Cell] = None

    def get_involved_agents(self) -> Tuple[str, str]:
        return (self.agent1_id, self.agent2_id)

    def involves_agent(self, agent_id: str) -> bool:
        """Check if conflict involves specific agent"""
        return agent_id in (self.agent1_id, self.agent2_id)

    def other_agent(self, agent_id: str) -> str:
        return self.agent2_id if agent_id == self.agent1_id else self.agent1_id

    def cell_for(self, agent_id: str) -> Cell:
        """Cell the agent occupies at the conflict timestep"""
        return self.agent1_cell if agent_id == self.agent1_id else self.agent2_cell

    def move_for(self, agent_id: str) -> Tuple[Optional[Cell], Cell]:
        """(from, to) move the agent makes into the conflict timestep"""
        if agent_id == self.agent1_id:
            return self.agent1_prev_cell, self.agent1_cell
        return self.agent2_prev_cell, self.agent2_cell

    def describe(self) -> str:
        if self.conflict_type == ConflictType.EDGE:
            return (f"swap between {self.agent1_id} {self.agent1_prev_cell}->{self.agent1_cell} and "
                    f"{self.agent2_id} {self.agent2_prev_cell}->{self.agent2_cell} at t={self.timestep}")
        return f"{self.agent1_id} and {self.agent2_id} both at {self.agent1_cell} at t={self.timestep}"


@dataclass(frozen=True)
class WaitCycle:
    """A cycle in the wait-for graph: each agent wants the next one's cell"""
    agent_ids: Tuple[str, ...]
    timestep: int

    def __len__(self):
        return len(self.agent_ids)

    def describe(self) -> str:
        chain = " -> ".join(self.agent_ids + self.agent_ids[:1])
        return f"{chain} at t={self.timestep}"


def position_at(path: List[Cell], t: int) -> Cell:
    """Cell occupied at timestep t, holding the last cell once the path has ended"""
    if t < len(path):
        return path[t]
    return path[-1]


def plan_horizon(paths: Paths) -> int:
    """Last timestep at which any agent can still move"""
    lengths = [len(path) for path in paths.values() if path]
    return max(lengths, default=1) - 1


class ConflictDetector:
    """Scans paths timestep by timestep, in agent order, for vertex and edge conflicts"""

    def __init__(self, detect_edge_conflicts: bool = True):
        self.detect_edge_conflicts = detect_edge_conflicts
        self.stats = {
            'scans': 0,
            'conflicts_found': 0
        }

    def _conflict_between(self, id1: str, path1: List[Cell], id2: str, path2: List[Cell],
                          t: int) -> Optional[Conflict]:
        curr1 = position_at(path1, t)
        curr2 = position_at(path2, t)

        if curr1 == curr2:
            return Conflict(ConflictType.VERTEX, id1, id2, t, curr1, curr2)

        if self.detect_edge_conflicts:
            prev1 = position_at(path1, t - 1)
            prev2 = position_at(path2, t - 1)
            if prev1 == curr2 and prev2 == curr1:
                return Conflict(ConflictType.EDGE, id1, id2, t, curr1, curr2,
                                agent1_prev_cell=prev1, agent2_prev_cell=prev2)

        return None

    def _scan(self, paths: Paths, horizon: Optional[int], first_only: bool) -> List[Conflict]:
        self.stats['scans'] += 1
        entries = [(agent_id, path) for agent_id, path in paths.items() if path]
        if horizon is None:
            horizon = plan_horizon(paths)

        conflicts = []
        for t in range(1, horizon + 1):
            for i in range(len(entries)):
                id1, path1 = entries[i]
                for j in range(i + 1, len(entries)):
                    id2, path2 = entries[j]
                    conflict = self._conflict_between(id1, path1, id2, path2, t)
                    if conflict is None:
                        continue
                    conflicts.append(conflict)
                    if first_only:
                        self.stats['conflicts_found'] += 1
                        return conflicts

        self.stats['conflicts_found'] += len(conflicts)
        return conflicts

    def find_first_conflict(self, paths: Paths, horizon: Optional[int] = None) -> Optional[Conflict]:
        """
        Earliest conflict in (timestep, agent pair) order

        Args:
            paths: Mapping agent id -> path, in agent order
            horizon: Last timestep to check (defaults to the longest path)

        Returns:
            First conflict, or None if the paths are conflict-free
        """
        conflicts = self._scan(paths, horizon, first_only=True)
        return conflicts[0] if conflicts else None

    def detect_conflicts(self, paths: Paths, horizon: Optional[int] = None) -> List[Conflict]:
        """All conflicts, sorted by timestep then agent pair"""
        return self._scan(paths, horizon, first_only=False)

    def is_conflict_free(self, paths: Paths) -> bool:
        return self.find_first_conflict(paths) is None


def build_wait_for_graph(paths: Paths, timestep: int) -> Dict[str, str]:
    """
    Directed wait-for graph at a timestep

    An agent that moves between timestep and timestep + 1 waits for the agent
    currently standing on the cell it is about to enter.

    Args:
        paths: Mapping agent id -> path
        timestep: Timestep of the current positions

    Returns:
        Mapping agent id -> id of the agent it waits for
    """
    occupant: Dict[Cell, str] = {}
    for agent_id, path in paths.items():
        if path:
            occupant.setdefault(position_at(path, timestep), agent_id)

    graph = {}
    for agent_id, path in paths.items():
        if not path:
            continue
        current = position_at(path, timestep)
        target = position_at(path, timestep + 1)
        if target == current:
            continue
        blocker = occupant.get(target)
        if blocker is not None and blocker != agent_id:
            graph[agent_id] = blocker

    return graph


def find_wait_cycle(graph: Mapping[str, str], timestep: int = 0) -> Optional[WaitCycle]:
    """
    Find a cycle in a wait-for graph where every agent waits for at most one other

    Args:
        graph: Mapping agent id -> agent it waits for
        timestep: Timestep recorded on the returned cycle

    Returns:
        WaitCycle starting from the earliest agent on the cycle, or None
    """
    visited = set()

    for origin in graph:
        if origin in visited:
            continue

        chain: List[str] = []
        on_chain: Dict[str, int] = {}
        current = origin
        while current is not None and current not in visited:
            visited.add(current)
            on_chain[current] = len(chain)
            chain.append(current)
            current = graph.get(current)

        if current is not None and current in on_chain:
            return WaitCycle(tuple(chain[on_chain[current]:]), timestep)

    return None
