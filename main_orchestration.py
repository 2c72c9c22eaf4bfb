"""
Main Orchestration Module for GridCBS
Command-line entry point: load an instance, run CBS and report the plan
"""

import argparse
import logging
import sys
from typing import List, Optional

from grid_system import GridError
from astar_pathfinding import PathfindingConfig
from cbs_module import CBSConfig, ResolutionResult, create_cbs_solver
from scenarios import (
    ProblemInstance, BUILTIN_SCENARIOS, get_builtin_scenario,
    load_instance_json, load_movingai_instance
)
from plan_rendering import render_map, render_plan, export_plan_csv, plot_plan

logger = logging.getLogger(__name__)

DEFAULT_SCENARIO = 'semispaceful'

EXIT_SUCCESS = 0
EXIT_RESOLUTION_FAILED = 1
EXIT_INVALID_INPUT = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='gridcbs',
        description='GridCBS - Conflict-Based Search for multi-agent grid pathfinding',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run a built-in scenario and print every timestep
  gridcbs --scenario semicrowded --render

  # Solve a JSON instance and export the plan
  gridcbs --instance warehouse.json --csv plan.csv --plot plan.png

  # MovingAI benchmark with 10 agents
  gridcbs --map maze-32-32-4.map --scen maze-32-32-4-random-1.scen --agents 10
        """
    )

    source = parser.add_mutually_exclusive_group()
    source.add_argument('--scenario',
                        choices=sorted(BUILTIN_SCENARIOS),
                        help=f'Built-in scenario (default: {DEFAULT_SCENARIO})')
    source.add_argument('--instance',
                        help='Path to a JSON instance file')
    source.add_argument('--map',
                        help='Path to a MovingAI .map file (requires --scen)')

    parser.add_argument('--scen',
                        help='Path to a MovingAI .scen file')
    parser.add_argument('--agents',
                        type=int,
                        default=None,
                        help='Number of agents to take from the .scen file (default: all)')

    parser.add_argument('--max-timestep',
                        type=int,
                        default=PathfindingConfig.max_timestep,
                        help=f'Search horizon in timesteps (default: {PathfindingConfig.max_timestep})')
    parser.add_argument('--replan-limit',
                        type=int,
                        default=CBSConfig.replan_limit,
                        help=f'Maximum number of replans (default: {CBSConfig.replan_limit})')
    parser.add_argument('--time-limit',
                        type=float,
                        default=None,
                        help='Wall-clock limit in seconds (default: none)')
    parser.add_argument('--workers',
                        type=int,
                        default=0,
                        help='Threads for fleet re-search (default: sequential)')

    parser.add_argument('--render',
                        action='store_true',
                        help='Print every timestep of the plan')
    parser.add_argument('--csv',
                        help='Export the plan to a CSV file')
    parser.add_argument('--plot',
                        help='Save a PNG plot of the plan')
    parser.add_argument('--list-scenarios',
                        action='store_true',
                        help='List built-in scenarios and exit')

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    verbosity.add_argument('-q', '--quiet', action='store_true', help='Only log warnings')

    return parser


def configure_logging(verbose: bool = False, quiet: bool = False):
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(level=level, format='%(asctime)s - %(levelname)s - %(message)s')


def load_instance(args: argparse.Namespace) -> ProblemInstance:
    """
    Resolve the instance named on the command line

    Raises:
        GridError: malformed map or agents
        OSError: unreadable file
    """
    if args.instance:
        return load_instance_json(args.instance)

    if args.map or args.scen:
        if not (args.map and args.scen):
            raise GridError("--map and --scen must be given together")
        return load_movingai_instance(args.map, args.scen, args.agents)

    return get_builtin_scenario(args.scenario or DEFAULT_SCENARIO)


def print_report(result: ResolutionResult):
    if result.success:
        plan = result.plan
        print(f"SUCCESS: conflict-free plan after {result.replans} replans "
              f"({result.pathfinding_calls} searches, {result.computation_time:.3f}s)")
        print(f"  makespan: {plan.makespan}, sum of costs: {plan.sum_of_costs}")
        for agent_id in plan.agent_ids:
            path = plan.paths[agent_id]
            steps = " -> ".join(str(cell) for cell in path)
            print(f"Agent {agent_id} (goal at t={plan.goal_time(agent_id)}): {steps}")
        return

    failure = result.failure
    print(f"FAILED: {failure}")
    if failure.agent_ids:
        print(f"  agents: {', '.join(failure.agent_ids)}")
    if failure.timestep is not None:
        print(f"  timestep: {failure.timestep}")
    if failure.blocking_cycle is not None:
        print(f"  blocking cycle: {failure.blocking_cycle.describe()}")
    if result.partial_solution is not None:
        print(f"  partial solution kept for {len(result.partial_solution.agent_ids)} agents "
              f"(not conflict-free)")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose, args.quiet)

    if args.list_scenarios:
        for name in sorted(BUILTIN_SCENARIOS):
            instance = BUILTIN_SCENARIOS[name]
            print(f"{name:<16} {instance.grid.rows}x{instance.grid.cols}, "
                  f"{instance.num_agents} agents - {instance.description}")
        return EXIT_SUCCESS

    try:
        instance = load_instance(args)
    except (GridError, OSError) as e:
        print(f"Invalid input: {e}", file=sys.stderr)
        return EXIT_INVALID_INPUT

    print("=" * 60)
    print(f"GridCBS: {instance.name} ({instance.grid.rows}x{instance.grid.cols}, "
          f"{instance.num_agents} agents)")
    print("=" * 60)
    print(render_map(instance.grid, instance.create_agents()))
    print()

    solver = create_cbs_solver(
        instance.grid,
        pathfinding_config=PathfindingConfig(max_timestep=args.max_timestep),
        config=CBSConfig(
            replan_limit=args.replan_limit,
            max_computation_time=args.time_limit,
            parallel_workers=args.workers,
            debug_mode=args.verbose
        )
    )

    logger.info(f"Solving {instance.name}: horizon {args.max_timestep}, replan limit {args.replan_limit}")
    try:
        result = solver.solve(instance.create_agents())
    except GridError as e:
        print(f"Invalid input: {e}", file=sys.stderr)
        return EXIT_INVALID_INPUT

    print_report(result)

    if not result.success:
        return EXIT_RESOLUTION_FAILED

    if args.render:
        print()
        print(render_plan(instance.grid, result.plan))
    if args.csv:
        export_plan_csv(result.plan, args.csv)
    if args.plot:
        plot_plan(instance.grid, result.plan, args.plot, title=instance.name)

    return EXIT_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
