"""Command line interface for docuploader package."""
from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from rich.logging import RichHandler

from .cli_progress import (
    BatchUploadProgressDisplay,
    ProcessingStatusDisplay,
    console,
    render_configuration_summary,
    render_queue,
)
from .models import DEFAULT_STATE_DIR, UploadConfig


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Configure logging.

    Default behavior is silent unless --debug or --log-level is provided.
    Returns a string describing effective mode.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    logging.disable(logging.NOTSET)

    if silent or (not debug and not log_level):
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    if debug:
        level = logging.DEBUG
    else:
        level = getattr(logging, log_level.upper(), logging.INFO)

    handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        markup=False,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    return logging.getLevelName(level)


def _strip_optional_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def _load_env_file(path: Path, override: bool = False) -> None:
    if not path.exists():
        raise CLIError(f"env file not found: {path}")
    if not path.is_file():
        raise CLIError(f"env path is not a file: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"could not read env file {path}: {exc}") from exc

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        value = _strip_optional_quotes(value.strip())
        if override or key not in os.environ:
            os.environ[key] = value


def _resolve_default_env_file() -> Optional[Path]:
    default_env = Path(".env")
    return default_env if default_env.exists() and default_env.is_file() else None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise CLIError(f"{name} must be a number, got {raw!r}") from exc


def _build_config(args: argparse.Namespace) -> UploadConfig:
    max_parallel = args.max_parallel
    if max_parallel is None and os.getenv("DOCUP_MAX_PARALLEL"):
        max_parallel = int(_env_float("DOCUP_MAX_PARALLEL", 0)) or None
    if max_parallel is not None and max_parallel < 1:
        raise CLIError("--max-parallel must be at least 1")

    state_dir = args.state_dir or Path(os.getenv("DOCUP_STATE_DIR") or DEFAULT_STATE_DIR)
    return UploadConfig(
        poll_interval=_env_float("DOCUP_POLL_INTERVAL", 7.0),
        max_parallel=max_parallel,
        state_dir=Path(state_dir).expanduser(),
    )


def _collect_files(sources: Sequence[Path]) -> List[Path]:
    files: List[Path] = []
    for source in sources:
        path = Path(source).expanduser()
        if not path.exists():
            raise CLIError(f"source does not exist: {path}")
        if path.is_dir():
            files.extend(sorted(p for p in path.iterdir() if p.is_file()))
        else:
            files.append(path)
    return files


async def _run(
    api_url: str,
    user: str,
    config: UploadConfig,
    files: List[Path],
    parent_id: Optional[str],
    event_id: Optional[int],
    analyze: bool,
    wait: bool,
    context: Optional[str],
    resume: bool = False,
) -> int:
    from .orchestrator import UploadOrchestrator

    exit_code = 0
    async with UploadOrchestrator(api_url, user=user, config=config) as session:
        status_display = ProcessingStatusDisplay()
        session.on("change", status_display.on_change)
        session.on("batch_complete", status_display.on_batch_complete)
        resumed = session.reconciler.processing
        if resume and not resumed:
            console.print("Nothing to resume.")

        if files:
            await session.add_files(files)
            render_queue(session.queue.items)

            display = BatchUploadProgressDisplay()
            session.on("item_start", display.on_item_start)
            session.on("item_progress", display.on_item_progress)
            session.on("item_complete", display.on_item_complete)
            session.on("item_fail", display.on_item_fail)
            session.on("finish", display.on_finish)

            result = await session.upload_pending(parent_id=parent_id, event_id=event_id)
            exit_code = 0 if result.all_success else 1

            if analyze:
                if not await session.analyze(context=context):
                    console.print("[red]Could not start processing[/red]")
                    exit_code = 1
            session.discard()

        if (wait or (resume and resumed)) and session.reconciler.processing:
            console.print(
                f"Waiting for {len(session.reconciler.processing)} document(s) to finish processing..."
            )
            await session.reconciler.wait()
        elif wait:
            console.print("Nothing is being processed.")

    return exit_code


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docup",
        description="Upload documents and track their server-side processing.",
    )
    parser.add_argument("sources", nargs="*", type=Path, help="Files or folders to upload")
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--parent-id", default=None, help="Folder to upload into")
    target.add_argument("--event-id", type=int, default=None, help="Event to attach uploads to")
    parser.add_argument(
        "-a",
        "--analyze",
        action="store_true",
        help="Submit uploaded documents for analysis",
    )
    parser.add_argument(
        "-w",
        "--wait",
        action="store_true",
        help="Wait until every document being processed is done",
    )
    parser.add_argument(
        "--resume",
        action="store_true",
        help="Pick up documents still processing from an earlier run and wait for them",
    )
    parser.add_argument("--context", default=None, help="Section to refresh when processing completes")
    parser.add_argument("--api-url", default=None, help="Document API URL (default from DOCUP_API_URL)")
    parser.add_argument("--user", default=None, help="Identity for saved state (default from DOCUP_USER)")
    parser.add_argument("--state-dir", type=Path, default=None, help="Where processing state is saved")
    parser.add_argument("--max-parallel", type=int, default=None, help="Cap simultaneous uploads")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this .env file",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument("--version", action="version", version="docup (from docuploader)")
    return parser


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    used_env_file = args.env_file or _resolve_default_env_file()
    if used_env_file is not None:
        try:
            _load_env_file(Path(used_env_file))
        except CLIError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1

    effective_log_mode = _setup_logging(
        debug=args.debug,
        silent=args.silent,
        log_level=args.log_level,
    )

    if not args.sources and not args.wait and not args.resume:
        parser.print_help()
        return 0

    try:
        api_url = args.api_url or os.getenv("DOCUP_API_URL")
        if not api_url:
            raise CLIError("DOCUP_API_URL environment variable is not set")
        user = args.user or os.getenv("DOCUP_USER") or getpass.getuser()
        config = _build_config(args)
        files = _collect_files(args.sources)
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    render_configuration_summary(
        {
            "Files": len(files),
            "Target": (
                f"folder {args.parent_id}" if args.parent_id
                else f"event {args.event_id}" if args.event_id is not None
                else "(root)"
            ),
            "API": api_url,
            "User": user,
            "State": str(config.state_path),
            "Concurrency": config.max_parallel or "all at once",
            "Analyze": "yes" if args.analyze else "no",
            "Env File": str(used_env_file) if used_env_file else "-",
            "Logging": effective_log_mode,
        }
    )

    try:
        return asyncio.run(
            _run(
                api_url=api_url,
                user=user,
                config=config,
                files=files,
                parent_id=args.parent_id,
                event_id=args.event_id,
                analyze=args.analyze,
                wait=args.wait,
                resume=args.resume,
                context=args.context,
            )
        )
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 130


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
