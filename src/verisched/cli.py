"""CLI entry points for verisched.

Commands:
  verisched init <project-dir>              Scaffold units.yaml + verisched.yaml
  verisched check <project-dir>             Validate the unit graph (ids, cycles)
  verisched status <project-dir>            Show every unit with its status
  verisched ready <project-dir>             Show ready/blocked units and ranking
  verisched next <project-dir>              Print the top-ranked ready unit
  verisched run <project-dir> [unit-id]     Run the attempt loop (one unit or --all)
  verisched skip <project-dir> <unit-id>    Defer a unit
  verisched reset <project-dir> <unit-id>   Regenerate a unit (back to unspecified)
  verisched history <project-dir> <unit-id> Show a unit's attempt history
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError

from verisched.config import RunConfig, load_global_config, resolve_run_config
from verisched.errors import SchedulerError
from verisched.graph import GraphStore
from verisched.repair import make_repairer
from verisched.report import (
    render_history,
    render_ranking,
    render_readiness,
    render_results,
    render_status_table,
)
from verisched.scheduler import Scheduler
from verisched.session import SessionManager
from verisched.status import StatusStore

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="verisched",
        description="Dependency-aware verification task scheduler",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable verbose logging",
    )
    subparsers = parser.add_subparsers(dest="command")

    # init
    p_init = subparsers.add_parser("init", help="Initialize a new project")
    p_init.add_argument("project_dir", help="Project directory path")
    p_init.add_argument("--worker", default="", help="Worker command template, e.g. 'lean {unit}.lean'")

    # check
    p_check = subparsers.add_parser("check", help="Validate the unit graph")
    p_check.add_argument("project_dir", help="Project directory path")

    # status
    p_status = subparsers.add_parser("status", help="Show unit statuses")
    p_status.add_argument("project_dir", help="Project directory path")
    p_status.add_argument("--json", action="store_true", dest="json_output", help="Output as JSON")

    # ready
    p_ready = subparsers.add_parser("ready", help="Show ready and blocked units")
    p_ready.add_argument("project_dir", help="Project directory path")

    # next
    p_next = subparsers.add_parser("next", help="Print the top-ranked ready unit")
    p_next.add_argument("project_dir", help="Project directory path")

    # run
    p_run = subparsers.add_parser("run", help="Run attempt loops")
    p_run.add_argument("project_dir", help="Project directory path")
    p_run.add_argument("unit_id", nargs="?", default="", help="Unit to run (default: top-ranked)")
    p_run.add_argument("--all", action="store_true", help="Keep going until no units are ready")
    p_run.add_argument("--max-attempts", type=int, default=None, help="Attempt budget per unit")
    p_run.add_argument("--max-units", type=int, default=None, help="Stop after this many units")
    p_run.add_argument("--force", action="store_true", help="Run the unit even if it is blocked")
    p_run.add_argument(
        "--unattended", action="store_true",
        help="No prompts: anything short of verified is skipped",
    )

    # skip
    p_skip = subparsers.add_parser("skip", help="Defer a unit")
    p_skip.add_argument("project_dir", help="Project directory path")
    p_skip.add_argument("unit_id", help="Unit ID")

    # reset
    p_reset = subparsers.add_parser("reset", help="Regenerate a unit")
    p_reset.add_argument("project_dir", help="Project directory path")
    p_reset.add_argument("unit_id", help="Unit ID")

    # history
    p_history = subparsers.add_parser("history", help="Show attempt history")
    p_history.add_argument("project_dir", help="Project directory path")
    p_history.add_argument("unit_id", help="Unit ID")

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.INFO, format="%(message)s")

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "init": cmd_init,
        "check": cmd_check,
        "status": cmd_status,
        "ready": cmd_ready,
        "next": cmd_next,
        "run": cmd_run,
        "skip": cmd_skip,
        "reset": cmd_reset,
        "history": cmd_history,
    }
    try:
        commands[args.command](args)
    except (SchedulerError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValidationError as e:
        print(f"Error: saved session state is unreadable: {e}", file=sys.stderr)
        sys.exit(1)
    except EOFError:
        print("Error: input closed while waiting for a decision", file=sys.stderr)
        sys.exit(1)


def _open_session(project_dir: str) -> tuple[SessionManager, GraphStore, StatusStore]:
    """Rebuild the graph from the inventory and merge saved status."""
    session = SessionManager(project_dir)
    graph = session.load_graph()
    store = session.load_status(graph)
    return session, graph, store


def _resolve(session: SessionManager, max_attempts: int | None = None) -> RunConfig:
    return resolve_run_config(session.load_config(), load_global_config(), max_attempts)


def _read_only_scheduler(graph: GraphStore, store: StatusStore) -> Scheduler:
    scheduler = Scheduler(graph, store)
    scheduler.start()
    return scheduler


def cmd_init(args: argparse.Namespace) -> None:
    """Initialize a new project."""
    session = SessionManager(args.project_dir)
    session.init(worker_command=args.worker)
    print(f"Initialized project: {session.project_dir}")
    print(f"  Edit {session.inventory_path} to list your units")
    print(f"  Edit {session.config_path} to set the worker command")
    print(f"  Then run: verisched run {args.project_dir}")


def cmd_check(args: argparse.Namespace) -> None:
    """Validate the graph; structural errors exit non-zero via main()."""
    session = SessionManager(args.project_dir)
    graph = session.load_graph()
    leaves = graph.leaves()
    print(f"OK: {len(graph)} units, {graph.edge_count()} dependencies, {len(leaves)} leaves")


def cmd_status(args: argparse.Namespace) -> None:
    """Show project status."""
    _, graph, store = _open_session(args.project_dir)
    snapshot = _read_only_scheduler(graph, store).snapshot()

    if args.json_output:
        print(snapshot.model_dump_json(indent=2))
        return

    print(render_status_table(snapshot))


def cmd_ready(args: argparse.Namespace) -> None:
    _, graph, store = _open_session(args.project_dir)
    snapshot = _read_only_scheduler(graph, store).snapshot()
    print(render_readiness(snapshot))
    print()
    print(render_ranking(snapshot.ranked))


def cmd_next(args: argparse.Namespace) -> None:
    _, graph, store = _open_session(args.project_dir)
    unit_id = _read_only_scheduler(graph, store).next()
    if unit_id is None:
        print("No ready units.")
        sys.exit(1)
    print(unit_id)


def cmd_run(args: argparse.Namespace) -> None:
    """Run one unit, the top-ranked unit, or everything that becomes ready."""
    from verisched.workers import create_worker

    session, graph, store = _open_session(args.project_dir)
    config = _resolve(session, args.max_attempts)

    try:
        worker = create_worker(config, cwd=session.project_dir)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.unattended:
        from verisched.human.unattended import UnattendedHuman
        human = UnattendedHuman()
    else:
        from verisched.human.console import ConsoleHuman
        human = ConsoleHuman()

    scheduler = Scheduler(
        graph,
        store,
        worker,
        human,
        max_attempts=config.max_attempts,
        repairer=make_repairer(config.repair),
        concurrent=config.concurrent,
        max_concurrent=config.max_concurrent,
        on_result=lambda result: session.record_result(result, store),
    )
    scheduler.start()
    session.append_audit("session_start", f"{len(graph)} units", mode="all" if args.all else "one")

    try:
        if args.all:
            summary = asyncio.run(scheduler.run_until_exhausted(max_units=args.max_units))
            results = summary.results
        else:
            unit_id = args.unit_id or scheduler.next()
            if not unit_id:
                print("No ready units.")
                return
            results = [asyncio.run(scheduler.run_one(unit_id, force=args.force))]
    except KeyboardInterrupt:
        session.save_status(store)
        session.append_audit("interrupted", "run interrupted by user")
        print("\nInterrupted. Progress saved.")
        sys.exit(130)
    except EOFError:
        session.save_status(store)
        session.append_audit("interrupted", "input closed")
        raise

    print()
    print(render_results(results))
    remaining = scheduler.snapshot()
    print(f"\n{len(remaining.ready)} ready, {len(remaining.blocked)} blocked")


def cmd_skip(args: argparse.Namespace) -> None:
    session, graph, store = _open_session(args.project_dir)
    _read_only_scheduler(graph, store).skip(args.unit_id)
    session.save_status(store)
    session.append_audit("skip", args.unit_id, unit_id=args.unit_id)
    print(f"Skipped {args.unit_id}")


def cmd_reset(args: argparse.Namespace) -> None:
    session, graph, store = _open_session(args.project_dir)
    previous = _read_only_scheduler(graph, store).reset(args.unit_id)
    session.save_status(store)
    session.append_audit("reset", f"{args.unit_id}: {previous.value} -> unspecified", unit_id=args.unit_id)
    print(f"Reset {args.unit_id} ({previous.value} -> unspecified)")


def cmd_history(args: argparse.Namespace) -> None:
    _, graph, store = _open_session(args.project_dir)
    graph.get(args.unit_id)
    print(render_history(
        args.unit_id,
        store.get(args.unit_id),
        store.history(args.unit_id),
        store.decisions(args.unit_id),
    ))


if __name__ == "__main__":
    main()
