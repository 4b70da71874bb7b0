"""
Command-line interface for flowrun.

Usage:
    flowrun run workflow.json --workflow-id wf-1
    flowrun order workflow.json
    flowrun serve --port 8080
    flowrun schedule nightly.json hourly.json
    flowrun runs list --workflow-id wf-1
    flowrun runs show <run_id>
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from flowrun.config import EngineConfig, ServerConfig, WorkerConfig, get_storage_path
from flowrun.graph.model import GraphStructureError, normalize
from flowrun.graph.scheduler import order
from flowrun.observability import configure_logging
from flowrun.runtime.engine import WorkflowEngine
from flowrun.runtime.schedule import ScheduledWorkflow, trigger_due
from flowrun.runtime.worker import RunWorker
from flowrun.schemas.run import Run, RunStatus, WorkflowVersion
from flowrun.storage.run_store import FileRunStore, InMemoryRunStore, RunStore


def _load_graph(path: str) -> dict[str, Any]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    # Accept either a bare graph or a version document {"graph": {...}}
    if isinstance(data, dict) and isinstance(data.get("graph"), dict):
        return data["graph"]
    return data


def _store(args: argparse.Namespace) -> RunStore:
    if getattr(args, "memory", False):
        return InMemoryRunStore()
    return FileRunStore(Path(args.storage) if args.storage else get_storage_path())


def _print_run(run: Run, as_json: bool) -> None:
    if as_json:
        print(run.model_dump_json(indent=2))
        return
    print(f"Run {run.id} [{run.status}] workflow={run.workflow_id} ({run.duration_ms} ms)")
    if run.error:
        print(f"  error: {run.error}")
    for node_id, result in run.node_results.items():
        suffix = f" error={result.error}" if result.error else ""
        print(f"  {node_id:<24} {result.status:<8} {result.execution_time_ms or 0:>6} ms{suffix}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_run(args: argparse.Namespace) -> int:
    config = EngineConfig.from_env()
    if args.fail_on_node_error:
        config.fail_on_node_error = True
    if args.node_delay_ms is not None:
        config.node_delay_ms = args.node_delay_ms

    try:
        graph = _load_graph(args.graph)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Could not read graph: {e}", file=sys.stderr)
        return 2

    engine = WorkflowEngine(store=_store(args), config=config)
    version = WorkflowVersion(workflow_id=args.workflow_id, graph=graph)
    try:
        run = asyncio.run(engine.execute(version))
    except GraphStructureError as e:
        print(f"Invalid graph: {e}", file=sys.stderr)
        return 2

    _print_run(run, args.json)
    return 0 if run.status == RunStatus.SUCCESS else 1


def cmd_order(args: argparse.Namespace) -> int:
    try:
        graph = normalize(_load_graph(args.graph))
    except (OSError, json.JSONDecodeError, GraphStructureError) as e:
        print(f"Invalid graph: {e}", file=sys.stderr)
        return 2
    for index, node in enumerate(order(graph.nodes, graph.edges), start=1):
        print(f"{index:>3}. {node.id} ({node.resolved_type})")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    from flowrun.server.api import RunApiServer

    server_config = ServerConfig.from_env()
    if args.host:
        server_config.host = args.host
    if args.port is not None:
        server_config.port = args.port

    async def _serve() -> None:
        store = _store(args)
        engine = WorkflowEngine(store=store, config=EngineConfig.from_env())
        worker = RunWorker(engine, store, WorkerConfig.from_env())
        server = RunApiServer(worker, store, server_config)
        await server.start()
        print(f"Serving on http://{server_config.host}:{server.port} (Ctrl+C to stop)")
        try:
            await asyncio.Event().wait()
        finally:
            await server.stop()
            await worker.stop()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        pass
    return 0


def _load_scheduled(paths: list[str]) -> list[ScheduledWorkflow]:
    scheduled = []
    for path in paths:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        workflow_id = data.get("workflow_id") if isinstance(data, dict) else None
        graph = data["graph"] if isinstance(data, dict) and isinstance(data.get("graph"), dict) else data
        version = WorkflowVersion(workflow_id=workflow_id or Path(path).stem, graph=graph)
        item = ScheduledWorkflow.from_version(version)
        if item is None:
            print(f"Skipping {path}: no enabled Schedule node", file=sys.stderr)
            continue
        scheduled.append(item)
    return scheduled


def cmd_schedule(args: argparse.Namespace) -> int:
    try:
        scheduled = _load_scheduled(args.graphs)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Could not read graph: {e}", file=sys.stderr)
        return 2
    if not scheduled:
        print("No scheduled workflows", file=sys.stderr)
        return 2

    async def _tick_loop() -> int:
        store = _store(args)
        engine = WorkflowEngine(store=store, config=EngineConfig.from_env())
        worker = RunWorker(engine, store, WorkerConfig.from_env())
        await worker.start()
        try:
            while True:
                run_ids = await trigger_due(scheduled, worker)
                if args.once:
                    runs = [await worker.wait_for_completion(run_id) for run_id in run_ids]
                    for run in runs:
                        _print_run(run, False)
                    return 0 if all(run.status == RunStatus.SUCCESS for run in runs) else 1
                await asyncio.sleep(args.tick_seconds)
        finally:
            await worker.stop()

    try:
        return asyncio.run(_tick_loop())
    except KeyboardInterrupt:
        return 0


def cmd_runs_list(args: argparse.Namespace) -> int:
    runs = asyncio.run(_store(args).list_runs(workflow_id=args.workflow_id, limit=args.limit))
    if args.json:
        print(json.dumps([run.model_dump(mode="json") for run in runs], indent=2))
        return 0
    if not runs:
        print("No runs found")
        return 0
    for run in runs:
        print(f"{run.id}  {run.status:<8} {run.workflow_id:<20} {run.started_at.isoformat()}")
    return 0


def cmd_runs_show(args: argparse.Namespace) -> int:
    run = asyncio.run(_store(args).get_run(args.run_id))
    if run is None:
        print(f"Run {args.run_id} not found", file=sys.stderr)
        return 1
    _print_run(run, args.json)
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flowrun",
        description="flowrun - Execute node-graph workflows",
    )
    parser.add_argument("--log-level", default="INFO", help="Log level (DEBUG, INFO, ...)")
    parser.add_argument("--log-format", default="auto", choices=["auto", "json", "human"])
    parser.add_argument("--storage", default=None, help="Run storage directory")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Execute a workflow graph once")
    run_parser.add_argument("graph", help="Path to a graph JSON file")
    run_parser.add_argument("--workflow-id", default="local", help="Workflow id recorded on the run")
    run_parser.add_argument("--fail-on-node-error", action="store_true", help="Stop at the first failing node")
    run_parser.add_argument("--node-delay-ms", type=int, default=None, help="Artificial per-node delay")
    run_parser.add_argument("--memory", action="store_true", help="Keep the run in memory only")
    run_parser.add_argument("--json", action="store_true", help="Print the run as JSON")
    run_parser.set_defaults(func=cmd_run)

    order_parser = subparsers.add_parser("order", help="Print the execution order of a graph")
    order_parser.add_argument("graph", help="Path to a graph JSON file")
    order_parser.set_defaults(func=cmd_order)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API and worker")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.set_defaults(func=cmd_serve)

    schedule_parser = subparsers.add_parser("schedule", help="Trigger workflows on their Schedule node interval")
    schedule_parser.add_argument("graphs", nargs="+", help="Graph JSON files with a Schedule node")
    schedule_parser.add_argument("--tick-seconds", type=float, default=60.0, help="Seconds between due checks")
    schedule_parser.add_argument("--once", action="store_true", help="Trigger due workflows once, wait, and exit")
    schedule_parser.add_argument("--memory", action="store_true", help="Keep runs in memory only")
    schedule_parser.set_defaults(func=cmd_schedule)

    runs_parser = subparsers.add_parser("runs", help="Inspect stored runs")
    runs_sub = runs_parser.add_subparsers(dest="runs_command", required=True)

    list_parser = runs_sub.add_parser("list", help="List recent runs")
    list_parser.add_argument("--workflow-id", default=None)
    list_parser.add_argument("--limit", type=int, default=25)
    list_parser.add_argument("--json", action="store_true")
    list_parser.set_defaults(func=cmd_runs_list)

    show_parser = runs_sub.add_parser("show", help="Show one run with its node results")
    show_parser.add_argument("run_id")
    show_parser.add_argument("--json", action="store_true")
    show_parser.set_defaults(func=cmd_runs_show)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level, format=args.log_format)

    if hasattr(args, "func"):
        sys.exit(args.func(args))


if __name__ == "__main__":
    main()
