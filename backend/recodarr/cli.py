"""
Recodarr CLI - thin entrypoint for operator commands.

Commands:
- serve:    Run the HTTP service
- add:      Enqueue one job and process the queue in the foreground
- list:     Print the persisted queue
- log:      Print a job's log
- finalize: Commit a temp output left behind by an earlier run

Design Principles:
==================
- CLI is a dispatcher only
- No queue or execution logic inside CLI
- Surface errors verbatim from the layer that raised them
- Exit non-zero on failure

Exit Codes:
===========
- 0: Success
- 1: Validation error
- 2: Execution error
- 4: System error (file not found, unreadable queue file, etc.)
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .execution.finalize import finalize
from .execution.retry import RetryPolicy
from .jobs.errors import AdmissionError
from .jobs.models import EncodingOptions, JobSpec, JobStatus
from .observability import read_job_log
from .persistence import JobStore, PersistenceError
from .settings import configure_logging, load_settings

EXIT_OK = 0
EXIT_VALIDATION = 1
EXIT_EXECUTION = 2
EXIT_SYSTEM = 4


def _load_options(path: Optional[str]) -> EncodingOptions:
    if not path:
        return EncodingOptions()
    options_path = Path(path)
    if not options_path.exists():
        print(f"ERROR: Options file not found: {options_path}", file=sys.stderr)
        sys.exit(EXIT_SYSTEM)
    try:
        with open(options_path, "r") as f:
            return EncodingOptions.model_validate(json.load(f))
    except json.JSONDecodeError as e:
        print(f"ERROR: Invalid JSON in {options_path}: {e}", file=sys.stderr)
        sys.exit(EXIT_SYSTEM)
    except ValidationError as e:
        print(f"ERROR: Invalid encoding options in {options_path}: {e}", file=sys.stderr)
        sys.exit(EXIT_VALIDATION)


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(
        "recodarr.main:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
    )
    return EXIT_OK


def cmd_add(args: argparse.Namespace) -> int:
    """
    Enqueue a job and run the queue until it is idle.

    Exit codes:
        0: Every job processed in this session completed
        1: Job rejected at admission
        2: At least one job failed
        4: Queue file unreadable
    """
    from .main import build_queue_manager

    settings = load_settings()
    manager = build_queue_manager(settings)
    try:
        manager.load()
    except PersistenceError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_SYSTEM

    spec = JobSpec(
        input_path=str(Path(args.input).resolve()),
        output_path=str(Path(args.output).resolve()) if args.output else str(Path(args.input).resolve()),
        overwrite_input=args.overwrite or not args.output,
        options=_load_options(args.options),
    )

    try:
        job = manager.add_job(spec, priority=args.priority)
    except AdmissionError as e:
        print(f"✗ {e}", file=sys.stderr)
        manager.shutdown()
        return EXIT_VALIDATION

    print(f"Queued {job.id}: {job.input_path} -> {job.final_target_path}")
    manager.start_processing()

    try:
        manager.wait_until_idle()
    except KeyboardInterrupt:
        print("\nStopping, cancelling running jobs.", file=sys.stderr)
        manager.shutdown(cancel_running=True)
        return EXIT_EXECUTION

    manager.shutdown()

    finished = manager.get_job(job.id)
    if finished is None or finished.status != JobStatus.COMPLETED:
        error = finished.error if finished else "job disappeared"
        print(f"✗ {job.id} failed: {error}", file=sys.stderr)
        if finished and finished.log_path:
            print(f"  Log: {finished.log_path}", file=sys.stderr)
        return EXIT_EXECUTION

    result = finished.result
    print(f"✓ {job.id} completed: {result.final_path if result else job.final_target_path}")
    if result and result.reduction_percent is not None:
        print(f"  {result.initial_size_mb} MB -> {result.final_size_mb} MB ({result.reduction_percent}% smaller)")
    return EXIT_OK


def cmd_list(args: argparse.Namespace) -> int:
    settings = load_settings()
    try:
        document = JobStore(settings.queue_path).load()
    except PersistenceError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_SYSTEM

    if args.json:
        print(document.model_dump_json(indent=2))
        return EXIT_OK

    print(f"max_parallel_jobs={document.config.max_parallel_jobs} auto_start={document.config.auto_start}")
    for job in document.jobs:
        line = f"{job.id}  {job.status.value:<10} {job.progress:5.1f}%  p={job.priority}  {job.input_path}"
        if job.error:
            line += f"  ({job.error})"
        print(line)
    return EXIT_OK


def cmd_log(args: argparse.Namespace) -> int:
    settings = load_settings()
    text = read_job_log(settings.job_log_dir, args.job_id)
    if text is None:
        print(f"ERROR: No log for job {args.job_id}", file=sys.stderr)
        return EXIT_SYSTEM
    sys.stdout.write(text)
    return EXIT_OK


def cmd_finalize(args: argparse.Namespace) -> int:
    settings = load_settings()
    result = finalize(
        args.temp,
        args.final,
        args.job_id,
        is_overwrite=args.overwrite,
        original_path=args.original,
        retry=RetryPolicy(attempts=settings.retry_attempts, delay=settings.retry_delay),
    )
    print(result.model_dump_json(indent=2))
    return EXIT_OK if result.success else EXIT_EXECUTION


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="recodarr",
        description="Recodarr - encoding job queue",
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: RECODARR_LOG_LEVEL or INFO)")

    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to execute")

    parser_serve = subparsers.add_parser("serve", help="Run the HTTP service")
    parser_serve.add_argument("--host", default="127.0.0.1")
    parser_serve.add_argument("--port", type=int, default=8085)
    parser_serve.set_defaults(func=cmd_serve)

    parser_add = subparsers.add_parser("add", help="Enqueue a job and process the queue")
    parser_add.add_argument("input", help="Source media file")
    parser_add.add_argument("output", nargs="?", default=None, help="Output file (omit to overwrite the input)")
    parser_add.add_argument("--overwrite", action="store_true", help="Replace the input with the encoded file")
    parser_add.add_argument("--priority", type=int, default=0)
    parser_add.add_argument("--options", default=None, help="Path to EncodingOptions JSON")
    parser_add.set_defaults(func=cmd_add)

    parser_list = subparsers.add_parser("list", help="Print the persisted queue")
    parser_list.add_argument("--json", action="store_true", help="Print the raw queue document")
    parser_list.set_defaults(func=cmd_list)

    parser_log = subparsers.add_parser("log", help="Print a job's log")
    parser_log.add_argument("job_id")
    parser_log.set_defaults(func=cmd_log)

    parser_finalize = subparsers.add_parser("finalize", help="Commit a temp output to its final path")
    parser_finalize.add_argument("temp", help="Temporary encoder output")
    parser_finalize.add_argument("final", help="Final destination")
    parser_finalize.add_argument("--job-id", default="manual")
    parser_finalize.add_argument("--overwrite", action="store_true", help="Back up and replace an existing final file")
    parser_finalize.add_argument("--original", default=None, help="Source file the output was encoded from")
    parser_finalize.set_defaults(func=cmd_finalize)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    level = args.log_level or load_settings().log_level
    args.log_level = level
    configure_logging(level)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
