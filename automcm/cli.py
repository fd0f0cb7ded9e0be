"""Command-line entrypoint: run workflows and inspect workspaces."""

import argparse
import asyncio
import json
import sys
import textwrap
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import __version__
from .core.config import configure_logging, settings
from .errors import AutoMCMError
from .llm_providers import LLMConfig, list_available_providers
from .memory.event_bus import EventBus
from .models import ArtifactKind, ProblemMeta
from .services.agent_service import AgentService
from .storage import ArtifactStore
from .tools.problem_source import ProblemExtractor, save_problem_metadata
from .workflows.checkpoint import load_workflow_state, state_path

_LOG_PREFIX = {
    "info": "  ",
    "success": "OK",
    "warning": "!!",
    "error": "XX",
}


def _print_event(event: Dict[str, Any]) -> None:
    payload = event["payload"] or {}
    if event["event_type"] == "log":
        print(f"[{_LOG_PREFIX.get(payload.get('type'), '  ')}] {payload.get('message', '')}", flush=True)
    elif event["event_type"] == "phase-change":
        print(f"==> phase: {payload.get('phase')}", flush=True)
    elif event["event_type"] == "artifact-created":
        print(f"  + {payload.get('name')} v{payload.get('version')} ({payload.get('kind')})", flush=True)


def _streaming_service(args: argparse.Namespace) -> AgentService:
    bus = EventBus()
    for event_type in ("log", "phase-change", "artifact-created"):
        bus.on(event_type, _print_event)
    return AgentService(bus=bus, planning_retries=getattr(args, "retries", None))


def _problem_meta(args: argparse.Namespace) -> ProblemMeta:
    return ProblemMeta(
        title=args.title or Path(args.problem).stem,
        problem_id=args.problem_id,
        year=args.year,
        source_path=str(Path(args.problem).resolve()),
    )


async def _cmd_run(args: argparse.Namespace) -> int:
    source = await ProblemExtractor().extract(args.problem)
    await save_problem_metadata(args.workspace, source)
    service = _streaming_service(args)
    result = await service.run_complete_workflow(args.workspace, _problem_meta(args), source.text)
    print()
    print(f"Paper: {Path(args.workspace) / 'paper.tex'} (PDF compiled: {'yes' if result.paper.compiled else 'no'})")
    return 0


async def _cmd_plan(args: argparse.Namespace) -> int:
    source = await ProblemExtractor().extract(args.problem)
    service = _streaming_service(args)
    await service.initialize_workspace(args.workspace, _problem_meta(args))
    await save_problem_metadata(args.workspace, source)
    result = await service.execute_planning_phase(source.text)
    print()
    print(result.plan)
    return 0


async def _cmd_artifacts(args: argparse.Namespace) -> int:
    store = ArtifactStore(args.workspace)
    if not store.index_path.exists():
        print(f"No artifact index in {store.artifacts_path}")
        return 0
    await store.initialize()

    if args.search:
        records = store.search(args.search)
    elif args.kind:
        records = store.get_by_kind(args.kind)
    else:
        records = store.list_artifacts()

    if args.json:
        print(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return 0
    for record in records:
        print(f"{record.name:<32} v{record.version:<3} {record.kind.value:<15} {record.timestamp}  {record.description}")
    stats = store.get_stats()
    print(f"\n{stats['total']} artifacts: " + ", ".join(f"{k}={v}" for k, v in sorted(stats["by_kind"].items())))
    return 0


async def _cmd_status(args: argparse.Namespace) -> int:
    if not state_path(args.workspace).exists():
        print(f"No workflow checkpoint in {args.workspace}")
        return 0
    state = await load_workflow_state(args.workspace)
    if args.json:
        print(state.model_dump_json(indent=2))
        return 0
    print(f"Problem:  {state.problem_title or '-'}")
    print(f"Phase:    {state.phase.value}")
    print(f"Planning: {'complete' if state.planning_complete else 'pending'}")
    print(f"Modeling: {'complete' if state.modeling_complete else 'pending'}")
    print(f"Writing:  {'complete' if state.writing_complete else 'pending'}")
    print(f"Updated:  {state.updated_at or '-'}")
    return 0


async def _cmd_providers(args: argparse.Namespace) -> int:
    providers = list_available_providers(LLMConfig.from_settings())
    if args.json:
        print(json.dumps(providers, indent=2))
        return 0
    for name, info in providers.items():
        marker = "*" if info["selected"] else " "
        configured = "configured" if info["configured"] else "not configured"
        aliases = ", ".join(info["aliases"]) or "-"
        print(f"{marker} {name:<10} {configured:<15} model={info['default_model']}  aliases={aliases}")
    return 0


def _add_workspace(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-w", "--workspace", default=str(Path(settings.WORKSPACE_ROOT) / "default"),
        help="Workspace directory. Default: $WORKSPACE_ROOT/default",
    )


def _add_problem(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("problem", help="Problem statement file (.md, .txt or .pdf)")
    parser.add_argument("--title", help="Problem title (default: file name)")
    parser.add_argument("--problem-id", help="Contest problem letter, e.g. A")
    parser.add_argument("--year", type=int, help="Contest year")
    parser.add_argument("--retries", type=int, help="Planning retries (default: PLANNING_RETRIES)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="automcm",
        description="AutoMCM: planning, modeling and paper writing for modeling contests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              automcm run problem.md -w workspace/2024-A --problem-id A --year 2024
              automcm plan problem.md -w workspace/2024-A
              automcm artifacts -w workspace/2024-A --kind code
              automcm status -w workspace/2024-A
        """),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", default="WARNING", help="Log level for library logs. Default: WARNING")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run planning, modeling and writing")
    _add_problem(run)
    _add_workspace(run)
    run.set_defaults(handler=_cmd_run)

    plan = sub.add_parser("plan", help="Run the planning phase only")
    _add_problem(plan)
    _add_workspace(plan)
    plan.set_defaults(handler=_cmd_plan)

    artifacts = sub.add_parser("artifacts", help="List artifacts of a workspace")
    _add_workspace(artifacts)
    artifacts.add_argument("--kind", choices=[k.value for k in ArtifactKind], help="Only this artifact kind")
    artifacts.add_argument("--search", help="Case-insensitive search on name, description and kind")
    artifacts.add_argument("--json", action="store_true", help="Print JSON records")
    artifacts.set_defaults(handler=_cmd_artifacts)

    status = sub.add_parser("status", help="Show the workflow checkpoint of a workspace")
    _add_workspace(status)
    status.add_argument("--json", action="store_true", help="Print the raw checkpoint")
    status.set_defaults(handler=_cmd_status)

    providers = sub.add_parser("providers", help="Show LLM provider configuration")
    providers.add_argument("--json", action="store_true", help="Print JSON")
    providers.set_defaults(handler=_cmd_providers)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    try:
        return asyncio.run(args.handler(args))
    except AutoMCMError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
