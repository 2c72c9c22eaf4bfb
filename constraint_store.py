"""
Constraint Store Module for GridCBS
Per-agent vertex, edge and goal-occupation constraints used by the temporal A* search
"""

from typing import List, Tuple, Set, Dict, Optional, Iterable, FrozenSet, Mapping
from dataclasses import dataclass, field
from collections import defaultdict
from enum import Enum
from types import MappingProxyType

from grid_system import Cell, Agent, settle_time


class ConstraintType(Enum):
    """Types of constraints for pathfinding"""
    VERTEX = "vertex"      # Cannot occupy a cell at a specific timestep
    EDGE = "edge"          # Cannot make a specific move arriving at a specific timestep
    TEMPORAL = "temporal"  # Cannot occupy a cell at any timestep from `timestep` onwards


@dataclass(frozen=True)
class Constraint:
    """Represents a pathfinding constraint owned by one agent"""
    constraint_type: ConstraintType
    agent_id: str
    timestep: int
    cell: Cell

    # For edge constraints: the cell the forbidden move starts from
    prev_cell: Optional[Cell] = None

    @classmethod
    def vertex(cls, agent_id: str, timestep: int, cell: Cell) -> 'Constraint':
        return cls(ConstraintType.VERTEX, agent_id, timestep, cell)

    @classmethod
    def edge(cls, agent_id: str, timestep: int, from_cell: Cell, to_cell: Cell) -> 'Constraint':
        return cls(ConstraintType.EDGE, agent_id, timestep, to_cell, prev_cell=from_cell)

    @classmethod
    def occupied_from(cls, agent_id: str, timestep: int, cell: Cell) -> 'Constraint':
        return cls(ConstraintType.TEMPORAL, agent_id, timestep, cell)

    def applies_to_transition(self, from_cell: Cell, to_cell: Cell, t: int) -> bool:
        """Check if this constraint forbids moving from from_cell to to_cell, arriving at t"""
        if self.constraint_type == ConstraintType.VERTEX:
            return t == self.timestep and to_cell == self.cell

        elif self.constraint_type == ConstraintType.EDGE:
            return t == self.timestep and from_cell == self.prev_cell and to_cell == self.cell

        elif self.constraint_type == ConstraintType.TEMPORAL:
            return t >= self.timestep and to_cell == self.cell

        return False

    def __str__(self):
        if self.constraint_type == ConstraintType.EDGE:
            return f"{self.agent_id}: no {self.prev_cell}->{self.cell} at t={self.timestep}"
        if self.constraint_type == ConstraintType.TEMPORAL:
            return f"{self.agent_id}: no {self.cell} for t>={self.timestep}"
        return f"{self.agent_id}: no {self.cell} at t={self.timestep}"


@dataclass(frozen=True)
class AgentConstraints:
    """
    Immutable snapshot of one agent's constraints, indexed for constant-time lookups.

    The search only ever reads a snapshot, so a snapshot can be handed to a
    worker thread while the store keeps changing.
    """
    agent_id: str
    vertex: FrozenSet[Tuple[int, Cell]] = frozenset()
    edges: FrozenSet[Tuple[int, Cell, Cell]] = frozenset()
    occupied_from: Mapping[Cell, int] = field(default_factory=lambda: MappingProxyType({}))
    last_vertex_time: Mapping[Cell, int] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def empty(cls, agent_id: str) -> 'AgentConstraints':
        return cls(agent_id)

    def forbids_vertex(self, cell: Cell, t: int) -> bool:
        if (t, cell) in self.vertex:
            return True
        blocked_from = self.occupied_from.get(cell)
        return blocked_from is not None and t >= blocked_from

    def forbids_move(self, from_cell: Cell, to_cell: Cell, t: int) -> bool:
        """Check a move arriving at timestep t against vertex and edge constraints"""
        if self.forbids_vertex(to_cell, t):
            return True
        return (t, from_cell, to_cell) in self.edges

    def blocks_after(self, cell: Cell, t: int) -> bool:
        """True if the agent could not stay on cell for every timestep after t"""
        if self.last_vertex_time.get(cell, -1) > t:
            return True
        blocked_from = self.occupied_from.get(cell)
        return blocked_from is not None and blocked_from > t

    def latest_timestep(self) -> int:
        """Largest timestep mentioned by any constraint, -1 when unconstrained"""
        times = [t for t, _ in self.vertex]
        times.extend(t for t, _, _ in self.edges)
        times.extend(self.occupied_from.values())
        return max(times, default=-1)

    def __len__(self):
        return len(self.vertex) + len(self.edges) + len(self.occupied_from)


class ConstraintStore:
    """
    Sparse per-agent constraint storage.

    Conflict constraints are added one at a time by the resolution loop and can be
    rolled back with discard(). Goal-occupation constraints live in a separate layer
    that is replaced wholesale each round.
    """

    def __init__(self):
        self._vertex: Dict[str, Set[Tuple[int, Cell]]] = defaultdict(set)
        self._edges: Dict[str, Set[Tuple[int, Cell, Cell]]] = defaultdict(set)
        self._goal: Dict[str, Dict[Cell, int]] = defaultdict(dict)
        self._snapshots: Dict[str, AgentConstraints] = {}

    def add(self, constraint: Constraint) -> bool:
        """
        Add a vertex or edge constraint

        Args:
            constraint: Constraint to add

        Returns:
            True if the constraint was not already present
        """
        agent_id = constraint.agent_id

        if constraint.constraint_type == ConstraintType.VERTEX:
            key = (constraint.timestep, constraint.cell)
            table = self._vertex[agent_id]
        elif constraint.constraint_type == ConstraintType.EDGE:
            key = (constraint.timestep, constraint.prev_cell, constraint.cell)
            table = self._edges[agent_id]
        else:
            raise ValueError("Temporal constraints are managed by replace_goal_constraints()")

        if key in table:
            return False

        table.add(key)
        self._snapshots.pop(agent_id, None)
        return True

    def discard(self, constraint: Constraint):
        """Roll back a previously added vertex or edge constraint"""
        agent_id = constraint.agent_id

        if constraint.constraint_type == ConstraintType.VERTEX:
            self._vertex[agent_id].discard((constraint.timestep, constraint.cell))
        elif constraint.constraint_type == ConstraintType.EDGE:
            self._edges[agent_id].discard((constraint.timestep, constraint.prev_cell, constraint.cell))
        else:
            raise ValueError("Temporal constraints are managed by replace_goal_constraints()")

        self._snapshots.pop(agent_id, None)

    def replace_goal_constraints(self, constraints: Iterable[Constraint]):
        """Drop every goal-occupation constraint and install a freshly derived set"""
        self._goal.clear()

        for constraint in constraints:
            if constraint.constraint_type != ConstraintType.TEMPORAL:
                raise ValueError(f"Expected a temporal constraint, got {constraint.constraint_type.value}")
            blocked = self._goal[constraint.agent_id]
            # Two goals on one cell keep the earliest start
            current = blocked.get(constraint.cell)
            if current is None or constraint.timestep < current:
                blocked[constraint.cell] = constraint.timestep

        self._snapshots.clear()

    def snapshot(self, agent_id: str) -> AgentConstraints:
        """Immutable view of all constraints for one agent"""
        cached = self._snapshots.get(agent_id)
        if cached is not None:
            return cached

        vertex = frozenset(self._vertex.get(agent_id, ()))
        last_vertex_time: Dict[Cell, int] = {}
        for t, cell in vertex:
            if t > last_vertex_time.get(cell, -1):
                last_vertex_time[cell] = t

        snapshot = AgentConstraints(
            agent_id=agent_id,
            vertex=vertex,
            edges=frozenset(self._edges.get(agent_id, ())),
            occupied_from=MappingProxyType(dict(self._goal.get(agent_id, {}))),
            last_vertex_time=MappingProxyType(last_vertex_time)
        )
        self._snapshots[agent_id] = snapshot
        return snapshot

    def constraints_for(self, agent_id: str) -> List[Constraint]:
        """All constraints for an agent as Constraint records, sorted by timestep"""
        constraints = [Constraint.vertex(agent_id, t, cell)
                       for t, cell in self._vertex.get(agent_id, ())]
        constraints.extend(Constraint.edge(agent_id, t, from_cell, to_cell)
                           for t, from_cell, to_cell in self._edges.get(agent_id, ()))
        constraints.extend(Constraint.occupied_from(agent_id, t, cell)
                           for cell, t in self._goal.get(agent_id, {}).items())
        constraints.sort(key=lambda c: (c.timestep, c.cell, c.constraint_type.value))
        return constraints

    def conflict_constraint_count(self, agent_id: Optional[str] = None) -> int:
        """Number of vertex and edge constraints, for one agent or all"""
        if agent_id is not None:
            return len(self._vertex.get(agent_id, ())) + len(self._edges.get(agent_id, ()))
        return (sum(len(v) for v in self._vertex.values()) +
                sum(len(e) for e in self._edges.values()))

    def goal_constraint_count(self) -> int:
        return sum(len(blocked) for blocked in self._goal.values())

    def clear(self):
        self._vertex.clear()
        self._edges.clear()
        self._goal.clear()
        self._snapshots.clear()


def derive_goal_constraints(agents: List[Agent]) -> List[Constraint]:
    """
    Forbid every other agent from a parked agent's goal from its settle time onwards

    Args:
        agents: Agents with their current paths

    Returns:
        Temporal constraints, one per (parked agent, other agent) pair
    """
    constraints = []

    for parked in agents:
        t_goal = settle_time(parked.path, parked.goal)
        if t_goal is None:
            continue

        for other in agents:
            if other.id == parked.id:
                continue
            constraints.append(Constraint.occupied_from(other.id, t_goal, parked.goal))

    return constraints
