"""
nvengine CLI - Thin entrypoint for plan inspection.

Commands:
- validate: Check that a media chain JSON compiles
- plan: Compile a media chain JSON and print the FFmpegPlan

Design Principles:
==================
- CLI is a dispatcher only
- No compilation logic inside CLI
- Surface errors verbatim from the compiler
- Exit non-zero on failure

Exit Codes:
===========
- 0: Success
- 1: Validation error (chain does not compile)
- 4: System error (file not found, invalid JSON)
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, NoReturn, Optional

from .ffmpeg import FFmpegPlan, PlanValidationError, build_ffmpeg_plan
from .logging_setup import configure_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_VALIDATION = 1
EXIT_SYSTEM = 4


def _load_chain(chain_path: Path) -> Any:
    """
    Load media chain JSON from file.

    Raises:
        SystemExit(4): File not found or invalid JSON
    """
    if not chain_path.exists():
        print(f"ERROR: Chain file not found: {chain_path}", file=sys.stderr)
        sys.exit(EXIT_SYSTEM)

    try:
        with open(chain_path, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        print(f"ERROR: Invalid JSON in {chain_path}: {e}", file=sys.stderr)
        sys.exit(EXIT_SYSTEM)


def _compile(args: argparse.Namespace) -> FFmpegPlan:
    chain_path = Path(args.chain).resolve()
    chain = _load_chain(chain_path)

    preview = {
        key: value
        for key, value in (
            ("width", getattr(args, "preview_width", None)),
            ("height", getattr(args, "preview_height", None)),
            ("max_fps", getattr(args, "preview_max_fps", None)),
        )
        if value is not None
    }
    options = {"preview": preview} if preview else None

    try:
        return build_ffmpeg_plan(chain, options)
    except PlanValidationError as e:
        print(f"✗ Chain does not compile: {e}", file=sys.stderr)
        sys.exit(EXIT_VALIDATION)


def cmd_validate(args: argparse.Namespace) -> NoReturn:
    """
    Validate a media chain JSON file.

    Exit codes:
        0: Chain compiles
        1: Validation error
        4: File not found or JSON parse error
    """
    plan = _compile(args)
    print(f"✓ Chain compiles: {Path(args.chain).resolve()}")
    print(f"  Stages: {len(plan.stages)}")
    print(f"  Strict cut: {plan.metadata.strict_cut}")
    print(f"  Estimated duration: {plan.metadata.estimated_duration_ms} ms")
    sys.exit(EXIT_OK)


def cmd_plan(args: argparse.Namespace) -> NoReturn:
    """
    Compile a media chain JSON file and write the plan JSON to stdout.

    Exit codes:
        0: Success
        1: Validation error
        4: File not found or JSON parse error
    """
    plan = _compile(args)
    print(plan.to_json(indent=args.indent))
    sys.exit(EXIT_OK)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nvengine",
        description="NodeVision engine - media chain to FFmpeg plan compiler",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Logging level (default: WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to execute")

    # Validate command
    parser_validate = subparsers.add_parser(
        "validate",
        help="Check that a media chain JSON file compiles",
    )
    parser_validate.add_argument("chain", help="Path to media chain JSON file")
    parser_validate.set_defaults(func=cmd_validate)

    # Plan command
    parser_plan = subparsers.add_parser(
        "plan",
        help="Compile a media chain JSON file and print the FFmpeg plan",
    )
    parser_plan.add_argument("chain", help="Path to media chain JSON file")
    parser_plan.add_argument("--preview-width", type=int, default=None)
    parser_plan.add_argument("--preview-height", type=int, default=None)
    parser_plan.add_argument("--preview-max-fps", type=float, default=None)
    parser_plan.add_argument(
        "--indent",
        type=int,
        default=2,
        help="JSON indentation level (default: 2)",
    )
    parser_plan.set_defaults(func=cmd_plan)

    return parser


def main(argv: Optional[List[str]] = None) -> NoReturn:
    """Parse arguments and dispatch to subcommands."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    args.func(args)


if __name__ == "__main__":
    main()
