"""
Conflict-Based Search (CBS) Module for GridCBS
High-level resolution loop: goal occupation, earliest-conflict detection and constraint splitting
"""

import logging
import time
from typing import List, Tuple, Dict, Optional
from dataclasses import dataclass, field
from concurrent.futures import ThreadPoolExecutor
from enum import Enum

from grid_system import Cell, Agent, Grid, validate_agents, settle_time
from astar_pathfinding import AStarPathfinder, PathfindingConfig, PathfindingResult
from constraint_store import Constraint, ConstraintStore, derive_goal_constraints
from conflict_detection import (
    Conflict, ConflictType, ConflictDetector, WaitCycle,
    build_wait_for_graph, find_wait_cycle, position_at, plan_horizon
)


class FailureKind(Enum):
    """Terminal failure kinds of the resolution loop"""
    NO_INITIAL_PATH = "no_initial_path"
    NO_PATH_AFTER_GOAL_OCCUPATION = "no_path_after_goal_occupation"
    UNRESOLVABLE_CONFLICT = "unresolvable_conflict"
    REPLAN_BUDGET_EXCEEDED = "replan_budget_exceeded"


@dataclass
class ResolutionFailure:
    """Why a solve did not produce a conflict-free plan"""
    kind: FailureKind
    message: str
    agent_ids: Tuple[str, ...] = ()
    timestep: Optional[int] = None
    conflict_type: Optional[ConflictType] = None
    blocking_cycle: Optional[WaitCycle] = None

    def __str__(self):
        return f"{self.kind.value}: {self.message}"


class ResolutionError(Exception):
    """Raised by ResolutionResult.raise_for_failure()"""

    def __init__(self, failure: ResolutionFailure):
        super().__init__(str(failure))
        self.failure = failure


@dataclass
class Plan:
    """Joint mapping agent id -> timestep-indexed path"""
    paths: Dict[str, List[Cell]]
    goals: Dict[str, Cell]
    conflict_free: bool = True

    @property
    def agent_ids(self) -> List[str]:
        return list(self.paths.keys())

    @property
    def makespan(self) -> int:
        """Last timestep at which any agent moves"""
        return plan_horizon(self.paths)

    @property
    def sum_of_costs(self) -> int:
        return sum(len(path) - 1 for path in self.paths.values())

    def position_at(self, agent_id: str, t: int) -> Cell:
        return position_at(self.paths[agent_id], t)

    def positions_at(self, t: int) -> Dict[str, Cell]:
        return {agent_id: position_at(path, t) for agent_id, path in self.paths.items()}

    def goal_time(self, agent_id: str) -> Optional[int]:
        return settle_time(self.paths[agent_id], self.goals[agent_id])

    def last_goal_time(self) -> int:
        times = [self.goal_time(agent_id) for agent_id in self.paths]
        return max((t for t in times if t is not None), default=0)


class ResolutionResult:
    """Result of a CBS solve with the plan or detailed failure information"""

    def __init__(self):
        # Core results
        self.success: bool = False
        self.plan: Optional[Plan] = None
        self.failure: Optional[ResolutionFailure] = None

        # Best-effort paths when the replan budget runs out (not conflict-free)
        self.partial_solution: Optional[Plan] = None

        # Search statistics
        self.replans: int = 0
        self.rollbacks: int = 0
        self.pathfinding_calls: int = 0
        self.goal_passes: int = 0
        self.constraints_generated: int = 0
        self.conflicts_resolved: List[Conflict] = []
        self.computation_time: float = 0.0

    @property
    def failure_reason(self) -> str:
        return str(self.failure) if self.failure else ""

    def raise_for_failure(self) -> Plan:
        """Return the plan, or raise ResolutionError describing the failure"""
        if not self.success:
            raise ResolutionError(self.failure)
        return self.plan


@dataclass
class CBSConfig:
    """Configuration for the high-level resolution loop"""
    replan_limit: int = 10000
    max_computation_time: Optional[float] = None  # Seconds; None disables the wall-clock budget

    # Branch order: constrain the agent with the shorter path first
    prefer_shorter_path: bool = True

    detect_edge_conflicts: bool = True

    # Threads used to re-search the fleet after each goal-occupation pass (<= 1: sequential)
    parallel_workers: int = 0

    debug_mode: bool = False


@dataclass
class SolverContext:
    """Everything one solve call owns; nothing is shared between solves"""
    grid: Grid
    agents: List[Agent]
    store: ConstraintStore
    pathfinder: AStarPathfinder
    detector: ConflictDetector
    result: ResolutionResult
    started: float = field(default_factory=time.time)

    def paths(self) -> Dict[str, List[Cell]]:
        return {agent.id: agent.path for agent in self.agents}

    def agent(self, agent_id: str) -> Agent:
        return next(a for a in self.agents if a.id == agent_id)


class ConflictBasedSearch:
    """
    Incremental conflict-based search.

    Unlike tree-search CBS this keeps a single joint plan: each earliest conflict is
    resolved by constraining one agent (falling back to the other), goal-occupation
    constraints are re-derived, the fleet is replanned and the scan restarts at t=1.
    """

    def __init__(self, grid: Grid, pathfinder: AStarPathfinder = None, config: CBSConfig = None):
        """
        Initialize CBS with grid and pathfinder

        Args:
            grid: The passability map
            pathfinder: Temporal A* pathfinder (default configuration if None)
            config: Resolution loop configuration (defaults if None)
        """
        self.grid = grid
        self.pathfinder = pathfinder or AStarPathfinder(grid)
        self.config = config or CBSConfig()

        self.logger = logging.getLogger(__name__)
        if self.config.debug_mode:
            self.logger.setLevel(logging.DEBUG)

        self.stats = {
            'total_runs': 0,
            'successful_runs': 0,
            'total_replans': 0,
            'total_rollbacks': 0,
            'total_conflicts_resolved': 0,
            'total_computation_time': 0.0
        }

    def _search(self, ctx: SolverContext, agent: Agent) -> PathfindingResult:
        """Search one agent under its current constraints; the path is only replaced on success"""
        ctx.result.pathfinding_calls += 1
        path_result = self.pathfinder.find_path(agent, ctx.store.snapshot(agent.id))
        if path_result.success:
            agent.assign_path(path_result.path)
        return path_result

    def _search_fleet(self, ctx: SolverContext) -> Optional[Agent]:
        """
        Re-search every agent; returns the first agent (in agent order) without a path

        Parallel workers only read immutable constraint snapshots; paths are assigned
        afterwards in agent order, so the outcome matches a sequential run.
        """
        workers = self.config.parallel_workers
        if workers <= 1:
            for agent in ctx.agents:
                if not self._search(ctx, agent).success:
                    return agent
            return None

        snapshots = [ctx.store.snapshot(agent.id) for agent in ctx.agents]
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(self.pathfinder.find_path, ctx.agents, snapshots))

        ctx.result.pathfinding_calls += len(results)
        for agent, path_result in zip(ctx.agents, results):
            if not path_result.success:
                return agent
        for agent, path_result in zip(ctx.agents, results):
            agent.assign_path(path_result.path)
        return None

    def _goal_occupation_pass(self, ctx: SolverContext) -> Optional[ResolutionFailure]:
        """Replace goal-occupation constraints from the current paths and replan everyone"""
        ctx.result.goal_passes += 1
        ctx.store.replace_goal_constraints(derive_goal_constraints(ctx.agents))

        blocked = self._search_fleet(ctx)
        if blocked is None:
            return None

        self.logger.warning(f"Agent {blocked.id} has no path once parked goals are enforced")
        return ResolutionFailure(
            kind=FailureKind.NO_PATH_AFTER_GOAL_OCCUPATION,
            message=f"Agent {blocked.id} cannot find a path after adding goal occupation constraints",
            agent_ids=(blocked.id,)
        )

    def _constraint_for(self, conflict: Conflict, agent_id: str) -> Constraint:
        """Constraint that removes this agent's side of the conflict"""
        if conflict.conflict_type == ConflictType.EDGE:
            from_cell, to_cell = conflict.move_for(agent_id)
            return Constraint.edge(agent_id, conflict.timestep, from_cell, to_cell)
        return Constraint.vertex(agent_id, conflict.timestep, conflict.cell_for(agent_id))

    def _branch_order(self, ctx: SolverContext, conflict: Conflict) -> Tuple[Agent, Agent]:
        first = ctx.agent(conflict.agent1_id)
        second = ctx.agent(conflict.agent2_id)
        if self.config.prefer_shorter_path and len(second.path) < len(first.path):
            first, second = second, first
        return first, second

    def _try_branch(self, ctx: SolverContext, conflict: Conflict, agent: Agent) -> bool:
        """Constrain one agent and replan it; roll the constraint back if no path exists"""
        constraint = self._constraint_for(conflict, agent.id)
        added = ctx.store.add(constraint)
        ctx.result.constraints_generated += 1

        if self._search(ctx, agent).success:
            self.logger.debug(f"Constrained {constraint}; new path has {len(agent.path) - 1} steps")
            return True

        if added:
            ctx.store.discard(constraint)
        ctx.result.rollbacks += 1
        self.logger.debug(f"Rolled back {constraint}: agent {agent.id} has no alternative")
        return False

    def _blocking_cycle(self, ctx: SolverContext, timestep: int) -> Optional[WaitCycle]:
        previous = max(timestep - 1, 0)
        return find_wait_cycle(build_wait_for_graph(ctx.paths(), previous), previous)

    def _out_of_budget(self, ctx: SolverContext) -> Optional[str]:
        if ctx.result.replans > self.config.replan_limit:
            return f"Too many replans ({self.config.replan_limit}), problem may be unsolvable with current constraints"

        limit = self.config.max_computation_time
        if limit is not None and time.time() - ctx.started > limit:
            return f"Time limit ({limit}s) exceeded, problem may be unsolvable with current constraints"

        return None

    def _finish(self, ctx: SolverContext) -> ResolutionResult:
        result = ctx.result
        result.computation_time = time.time() - ctx.started

        self.stats['total_replans'] += result.replans
        self.stats['total_rollbacks'] += result.rollbacks
        self.stats['total_conflicts_resolved'] += len(result.conflicts_resolved)
        self.stats['total_computation_time'] += result.computation_time
        if result.success:
            self.stats['successful_runs'] += 1
            self.logger.info(f"CBS: conflict-free plan for {len(ctx.agents)} agents after "
                             f"{result.replans} replans (makespan {result.plan.makespan})")
        else:
            self.logger.info(f"CBS: failed - {result.failure}")

        return result

    def _make_plan(self, ctx: SolverContext, conflict_free: bool) -> Plan:
        return Plan(
            paths={agent.id: list(agent.path) for agent in ctx.agents},
            goals={agent.id: agent.goal for agent in ctx.agents},
            conflict_free=conflict_free
        )

    def solve(self, agents: List[Agent]) -> ResolutionResult:
        """
        Main CBS solving method

        Args:
            agents: Agents in provider order; their paths are overwritten

        Returns:
            ResolutionResult with a conflict-free plan or failure information

        Raises:
            GridError: if the agents do not form a valid instance on the grid
        """
        validate_agents(self.grid, agents)
        self.stats['total_runs'] += 1

        ctx = SolverContext(
            grid=self.grid,
            agents=list(agents),
            store=ConstraintStore(),
            pathfinder=self.pathfinder,
            detector=ConflictDetector(self.config.detect_edge_conflicts),
            result=ResolutionResult()
        )
        result = ctx.result

        for agent in ctx.agents:
            agent.clear_path()

        self.logger.info(f"CBS: initial search for {len(ctx.agents)} agents")

        # Initial unconstrained paths
        for agent in ctx.agents:
            path_result = self._search(ctx, agent)
            if not path_result.success:
                result.failure = ResolutionFailure(
                    kind=FailureKind.NO_INITIAL_PATH,
                    message=f"Agent {agent.id} cannot find initial path ({path_result.failure_reason})",
                    agent_ids=(agent.id,)
                )
                return self._finish(ctx)
            self.logger.debug(f"Agent {agent.id} initial path: {len(agent.path) - 1} steps")

        failure = self._goal_occupation_pass(ctx)
        if failure is not None:
            result.failure = failure
            return self._finish(ctx)

        while True:
            conflict = ctx.detector.find_first_conflict(ctx.paths())
            if conflict is None:
                result.success = True
                result.plan = self._make_plan(ctx, conflict_free=True)
                return self._finish(ctx)

            self.logger.debug(f"Conflict: {conflict.describe()}")

            first, second = self._branch_order(ctx, conflict)
            if not self._try_branch(ctx, conflict, first):
                if not self._try_branch(ctx, conflict, second):
                    self.logger.warning(f"Both agent {first.id} and agent {second.id} failed to "
                                        f"replan at step {conflict.timestep}")
                    result.failure = ResolutionFailure(
                        kind=FailureKind.UNRESOLVABLE_CONFLICT,
                        message=f"Both agent {conflict.agent1_id} and agent {conflict.agent2_id} "
                                f"failed to replan around a {conflict.conflict_type.value} conflict "
                                f"at step {conflict.timestep}",
                        agent_ids=conflict.get_involved_agents(),
                        timestep=conflict.timestep,
                        conflict_type=conflict.conflict_type,
                        blocking_cycle=self._blocking_cycle(ctx, conflict.timestep)
                    )
                    return self._finish(ctx)

            result.replans += 1
            result.conflicts_resolved.append(conflict)

            failure = self._goal_occupation_pass(ctx)
            if failure is not None:
                result.failure = failure
                return self._finish(ctx)

            budget_message = self._out_of_budget(ctx)
            if budget_message is not None:
                self.logger.warning(budget_message)
                result.failure = ResolutionFailure(
                    kind=FailureKind.REPLAN_BUDGET_EXCEEDED,
                    message=budget_message,
                    agent_ids=conflict.get_involved_agents(),
                    timestep=conflict.timestep,
                    conflict_type=conflict.conflict_type,
                    blocking_cycle=self._blocking_cycle(ctx, conflict.timestep)
                )
                result.partial_solution = self._make_plan(ctx, conflict_free=False)
                return self._finish(ctx)

    def get_statistics(self) -> Dict:
        """Get CBS and pathfinder statistics"""
        runs = max(self.stats['total_runs'], 1)
        return {
            'total_runs': self.stats['total_runs'],
            'successful_runs': self.stats['successful_runs'],
            'success_rate': self.stats['successful_runs'] / runs,
            'average_replans': self.stats['total_replans'] / runs,
            'total_rollbacks': self.stats['total_rollbacks'],
            'total_conflicts_resolved': self.stats['total_conflicts_resolved'],
            'average_computation_time': self.stats['total_computation_time'] / runs,
            'replan_limit': self.config.replan_limit,
            'pathfinder': self.pathfinder.get_statistics()
        }

    def reset_statistics(self):
        """Reset CBS and pathfinder statistics"""
        for key in self.stats:
            self.stats[key] = 0.0 if key == 'total_computation_time' else 0
        self.pathfinder.reset_statistics()

    def set_debug_mode(self, enabled: bool):
        """Enable or disable debug logging"""
        self.config.debug_mode = enabled
        self.logger.setLevel(logging.DEBUG if enabled else logging.NOTSET)


def create_default_cbs_config() -> CBSConfig:
    return CBSConfig()


def create_fast_cbs_config() -> CBSConfig:
    """Small replan budget and a wall-clock limit for quick feasibility probes"""
    return CBSConfig(
        replan_limit=500,
        max_computation_time=10.0
    )


def create_cbs_solver(grid: Grid, pathfinding_config: PathfindingConfig = None,
                      config: CBSConfig = None) -> ConflictBasedSearch:
    """
    Create CBS solver with its own pathfinder

    Args:
        grid: Passability map
        pathfinding_config: Low-level search configuration (defaults if None)
        config: Resolution loop configuration (defaults if None)

    Returns:
        Configured CBS solver
    """
    pathfinder = AStarPathfinder(grid, pathfinding_config)
    return ConflictBasedSearch(grid, pathfinder, config)


def solve_agents(grid: Grid, agents: List[Agent], **config_overrides) -> ResolutionResult:
    """One-shot helper: build a solver with CBSConfig overrides and solve"""
    return create_cbs_solver(grid, config=CBSConfig(**config_overrides)).solve(agents)
