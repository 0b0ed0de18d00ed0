"""CLI entrypoint for the pipeline orchestrator.

Exit codes are designed to be CI-friendly:
- 0: run succeeded / definition valid / replay reproduced
- 2: configuration or usage error
- 3: invalid workflow definition (the run never started)
- 4: run failed / replay diverged
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from pipeline_orchestrator import __version__
from pipeline_orchestrator.orchestrator.config import OrchestratorSettings
from pipeline_orchestrator.orchestrator.logging import configure_logging
from pipeline_orchestrator.orchestrator.service import PipelineService, resolve_definition
from pipeline_orchestrator.orchestrator.workflow.errors import DefinitionError
from pipeline_orchestrator.orchestrator.workflow.executor import Failed
from pipeline_orchestrator.orchestrator.workflow.loader import definition_to_dict

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 2
EXIT_DEFINITION_ERROR = 3
EXIT_RUN_FAILED = 4


def _add_definition_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--definition",
        type=Path,
        default=None,
        help=(
            "Path to a JSON workflow definition "
            "(defaults to PIPELINE_DEFINITION_PATH, then the built-in ETL pipeline)"
        ),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pipeline-orchestrator",
        description="Run declarative extract/transform/load pipelines with failure routing",
    )
    parser.add_argument(
        "--version", action="version", version=f"pipeline-orchestrator {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Execute one pipeline run")
    _add_definition_arg(run)
    run.add_argument("--bucket", default=None, help="Source bucket for the initial payload")
    run.add_argument("--key", default=None, help="Source object key for the initial payload")
    run.add_argument(
        "--payload",
        default=None,
        help="Initial payload as a JSON document (alternative to --bucket/--key)",
    )
    run.add_argument(
        "--timeout-seconds",
        type=float,
        default=None,
        help="Timeout for each task invocation (defaults to PIPELINE_TASK_TIMEOUT_SECONDS)",
    )
    run.add_argument(
        "--no-record",
        action="store_true",
        help="Do not persist the run record under PIPELINE_RUNS_PATH",
    )

    validate = subparsers.add_parser("validate", help="Validate a workflow definition")
    _add_definition_arg(validate)

    show = subparsers.add_parser("show", help="Print the effective workflow definition as JSON")
    _add_definition_arg(show)

    replay = subparsers.add_parser(
        "replay",
        help="Re-drive a persisted run's recorded outcomes and check the result is reproduced",
    )
    _add_definition_arg(replay)
    replay.add_argument("--run-id", required=True, help="Identifier of a persisted run")

    return parser


def _initial_payload(args: argparse.Namespace) -> Any:
    if args.payload is not None:
        if args.bucket is not None or args.key is not None:
            raise ValueError("--payload cannot be combined with --bucket/--key")
        try:
            return json.loads(args.payload)
        except json.JSONDecodeError as e:
            raise ValueError(f"--payload is not valid JSON: {e}") from e
    if args.bucket is None or args.key is None:
        raise ValueError("either --payload or both --bucket and --key are required")
    return {"bucket": args.bucket, "key": args.key}


def _print_json(obj: object) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False, default=str))


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = OrchestratorSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_CONFIG_ERROR

    configure_logging(settings.log_level)

    try:
        if args.command == "validate":
            definition = resolve_definition(settings, path=args.definition)
            result = definition.validate()
            for warning in result.warnings:
                print(f"warning: {warning.message}")
            print(
                f"Definition is valid: {len(definition.states)} states, "
                f"start state {definition.start_state!r}"
            )
            return EXIT_OK

        if args.command == "show":
            definition = resolve_definition(settings, path=args.definition)
            _print_json(definition_to_dict(definition))
            return EXIT_OK

        if args.command == "run":
            try:
                payload = _initial_payload(args)
            except ValueError as e:
                print(f"error: {e}", file=sys.stderr)
                return EXIT_CONFIG_ERROR

            service = PipelineService.from_settings(
                settings, definition_path=args.definition, record=not args.no_record
            )
            result = service.run(payload, timeout_seconds=args.timeout_seconds)
            _print_json(result.to_json())

            if isinstance(result.outcome, Failed):
                return EXIT_RUN_FAILED
            return EXIT_OK

        if args.command == "replay":
            service = PipelineService.from_settings(settings, definition_path=args.definition)
            try:
                report = service.replay(args.run_id)
            except KeyError:
                print(f"error: unknown run id {args.run_id!r}", file=sys.stderr)
                return EXIT_CONFIG_ERROR
            except ValidationError as e:
                print(f"error: run record {args.run_id!r} is corrupt:", file=sys.stderr)
                print(e, file=sys.stderr)
                return EXIT_CONFIG_ERROR

            print(
                f"Run {report.run_id}: recorded={report.recorded_status} "
                f"replayed={report.replayed.status.value} reproduced={report.reproduced}"
            )
            return EXIT_OK if report.reproduced else EXIT_RUN_FAILED

    except DefinitionError as e:
        logger.error("Invalid workflow definition", extra={"error": str(e)})
        print(f"Definition error: {e}", file=sys.stderr)
        if e.result is not None:
            for issue in e.result.errors:
                print(f"  - [{issue.code}] {issue.message}", file=sys.stderr)
        return EXIT_DEFINITION_ERROR

    parser.error(f"Unknown command: {args.command}")
    return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
