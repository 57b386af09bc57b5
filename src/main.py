# src/main.py - v1
"""CLI entry point: init, start, generate, work, submit, status commands.

Usage:
    dialectica init "<initial prompt>" [--name NAME] [--domain DOMAIN]
    dialectica start <project_id> --models a,b,c [--stage thesis]
    dialectica generate <session_id> <stage> [--iteration N]
    dialectica work [--max-jobs N]
    dialectica submit <session_id> <stage> [--iteration N] [--feedback-file F]
    dialectica status <session_id> <stage> [--iteration N]

Commands that span invocations need a durable backend
(STATE_STORE_BACKEND=sqlite).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from dialectica.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    from dialectica.config.settings import load_settings
    from dialectica.logging.logger import setup_logging

    settings = load_settings()
    setup_logging(
        level="DEBUG" if args.verbose else settings.log_level,
        log_format="text" if args.verbose else settings.log_format,
        log_file=settings.log_file,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )

    try:
        return asyncio.run(_run(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


async def _run(args: argparse.Namespace, settings: object) -> int:
    from dialectica.api.facade import DialecticService

    service = DialecticService.from_settings(settings)  # type: ignore[arg-type]
    try:
        return await args.func(service, args)
    finally:
        await service.close()


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="dialectica",
        description=f"dialectica v{__version__} - multi-model dialectic orchestration",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--user", default=os.environ.get("DIALECTICA_USER", "local"),
        help="Acting user id (default: $DIALECTICA_USER or 'local')",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- init ---
    p_init = subparsers.add_parser("init", help="Create a project")
    p_init.add_argument("prompt", help="Initial prompt, or @path to read it from a file")
    p_init.add_argument("--name", default="", help="Project name")
    p_init.add_argument("--domain", default=None, help="Domain overlay to apply")
    p_init.set_defaults(func=_cmd_init)

    # --- start ---
    p_start = subparsers.add_parser("start", help="Start a session on a project")
    p_start.add_argument("project_id")
    p_start.add_argument(
        "--models", default=None,
        help="Comma-separated model ids (default: every active model)",
    )
    p_start.add_argument("--stage", default=None, help="Starting stage slug")
    p_start.set_defaults(func=_cmd_start)

    # --- generate ---
    p_generate = subparsers.add_parser("generate", help="Plan the jobs of a stage")
    p_generate.add_argument("session_id")
    p_generate.add_argument("stage")
    p_generate.add_argument("--iteration", type=int, default=1)
    p_generate.add_argument(
        "--work", action="store_true", help="Process jobs until the queue is idle",
    )
    p_generate.set_defaults(func=_cmd_generate)

    # --- work ---
    p_work = subparsers.add_parser("work", help="Process queued jobs until idle")
    p_work.add_argument("--max-jobs", type=int, default=None)
    p_work.set_defaults(func=_cmd_work)

    # --- submit ---
    p_submit = subparsers.add_parser("submit", help="Submit a completed stage")
    p_submit.add_argument("session_id")
    p_submit.add_argument("stage")
    p_submit.add_argument("--iteration", type=int, default=1)
    p_submit.add_argument(
        "--feedback-file", type=Path, default=None,
        help="JSON list of {model_id, document_key, content} responses",
    )
    p_submit.add_argument("--notes", default=None, help="Free-form stage feedback")
    p_submit.set_defaults(func=_cmd_submit)

    # --- status ---
    p_status = subparsers.add_parser("status", help="Show stage progress")
    p_status.add_argument("session_id")
    p_status.add_argument("stage")
    p_status.add_argument("--iteration", type=int, default=1)
    p_status.set_defaults(func=_cmd_status)

    # --- clone ---
    p_clone = subparsers.add_parser("clone", help="Copy a project with its sessions")
    p_clone.add_argument("project_id")
    p_clone.add_argument("--name", default=None, help="Name of the copy")
    p_clone.set_defaults(func=_cmd_clone)

    # --- export ---
    p_export = subparsers.add_parser("export", help="Write a project zip archive")
    p_export.add_argument("project_id")
    p_export.add_argument(
        "--output", type=Path, default=None,
        help="Archive path (default: project_export_<id>.zip)",
    )
    p_export.set_defaults(func=_cmd_export)

    return parser


async def _cmd_init(service, args: argparse.Namespace) -> int:
    prompt: str = args.prompt
    if prompt.startswith("@"):
        path = Path(prompt[1:])
        if not path.is_file():
            logger.error("Prompt file not found: %s", path)
            return 1
        prompt = path.read_text(encoding="utf-8")
    project = await service.create_project(
        args.user, prompt, name=args.name, domain=args.domain
    )
    print(project.id)
    return 0


async def _cmd_start(service, args: argparse.Namespace) -> int:
    if args.models:
        model_ids = [m.strip() for m in args.models.split(",") if m.strip()]
    else:
        model_ids = [m.id for m in service.catalog.active_models()]
    session = await service.start_session(
        args.project_id, args.user, model_ids, stage_slug=args.stage
    )
    print(session.id)
    print(f"  Status: {session.status}")
    print(f"  Models: {', '.join(session.selected_model_ids)}")
    return 0


async def _cmd_generate(service, args: argparse.Namespace) -> int:
    result = await service.generate_contributions(
        args.session_id, args.user, args.stage, args.iteration
    )
    print(f"Stage {args.stage}: {len(result.jobs)} PLAN jobs ({result.session.status})")
    if args.work:
        processed = await service.run_until_idle()
        print(f"Processed {processed} jobs")
        _print_progress(
            await service.get_stage_progress(
                args.session_id, args.user, args.stage, args.iteration
            )
        )
    return 0


async def _cmd_work(service, args: argparse.Namespace) -> int:
    processed = await service.run_until_idle(max_jobs=args.max_jobs)
    print(f"Processed {processed} jobs")
    usage = service.call_logger.usage_by_model()
    for model_id, stats in sorted(usage.items()):
        print(
            f"  {model_id}: {stats.total_calls} calls, "
            f"{stats.total_input_tokens + stats.total_output_tokens} tokens"
        )
    return 0


async def _cmd_submit(service, args: argparse.Namespace) -> int:
    from dialectica.stages.models import DocumentResponse

    responses: list[DocumentResponse] = []
    if args.feedback_file is not None:
        if not args.feedback_file.is_file():
            logger.error("Feedback file not found: %s", args.feedback_file)
            return 1
        raw = json.loads(args.feedback_file.read_text(encoding="utf-8"))
        responses = [DocumentResponse.model_validate(item) for item in raw]
    session = await service.submit_stage_responses(
        args.session_id,
        args.user,
        args.stage,
        args.iteration,
        responses,
        stage_feedback=args.notes,
    )
    print(f"Session {session.id}: {session.status}")
    return 0


async def _cmd_status(service, args: argparse.Namespace) -> int:
    progress = await service.get_stage_progress(
        args.session_id, args.user, args.stage, args.iteration
    )
    _print_progress(progress)
    return 0


async def _cmd_clone(service, args: argparse.Namespace) -> int:
    project = await service.clone_project(args.project_id, args.user, name=args.name)
    print(project.id)
    return 0


async def _cmd_export(service, args: argparse.Namespace) -> int:
    archive = await service.export_project(args.project_id, args.user)
    output = args.output or Path(f"project_export_{args.project_id}.zip")
    output.write_bytes(archive)
    print(f"Exported {len(archive)} bytes to {output}")
    return 0


def _print_progress(progress) -> None:
    """Print a human-readable summary of StageProgress."""
    print(f"\nStage {progress.stage_slug} (iteration {progress.iteration}):")
    print(f"  Session:    {progress.session_status}")
    print(f"  Jobs:       {progress.terminal_jobs}/{progress.total_jobs} terminal")
    for status, count in sorted(progress.by_status.items()):
        print(f"    {status:<22} {count}")
    print(f"  Documents:  {progress.documents}")
    if progress.failed_job_ids:
        print(f"  Failed:     {', '.join(progress.failed_job_ids)}")


if __name__ == "__main__":
    sys.exit(main())
