"""
CLI for stepgraph: extract state machine step graphs from Go sources.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import sys
from pathlib import Path

from tqdm import tqdm

from stepgraph.config import SETTINGS
from stepgraph.logging_utils import console, get_logger, setup_logging
from stepgraph.model import StepGraphError

logger = get_logger(__name__)


def _path(p: str) -> Path:
    """Convert string to Path."""
    return Path(p).expanduser().resolve()


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="stepgraph",
        description="Extract step transition graphs from Go state machine sources",
    )

    parser.add_argument(
        "--path",
        required=True,
        type=_path,
        help="Go file or directory to analyze",
    )

    parser.add_argument(
        "--out",
        type=_path,
        default=None,
        help="Output path for the JSON graph (default: stdout)",
    )

    parser.add_argument(
        "--max-cond-len",
        type=int,
        default=SETTINGS.max_cond_len,
        help=f"Length budget for guard condition text (default: {SETTINGS.max_cond_len})",
    )

    parser.add_argument(
        "--max-arg-len",
        type=int,
        default=SETTINGS.max_arg_len,
        help=f"Length budget for condensed call arguments (default: {SETTINGS.max_arg_len})",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Only log warnings and errors",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose, quiet=args.quiet)

    from stepgraph.frontend import GoFrontend, iter_go_files

    if not args.path.exists():
        console.print(f"[bold red]Error:[/bold red] Path does not exist: {args.path}")
        return 1

    settings = dataclasses.replace(
        SETTINGS, max_cond_len=args.max_cond_len, max_arg_len=args.max_arg_len
    )
    frontend = GoFrontend(settings)
    files = list(iter_go_files(args.path, settings))
    if not files:
        logger.warning(f"No Go files found in {args.path}")

    graphs = []
    failed = 0
    for path in tqdm(files, desc="Tracing", disable=len(files) < 2):
        try:
            graph = frontend.extract_file(path)
        except StepGraphError as e:
            logger.error(f"{path}: {e}")
            failed += 1
            continue
        if graph.decls:
            graphs.append(graph)

    payload = json.dumps({"files": [g.to_dict() for g in graphs]}, indent=2)
    if args.out is None:
        sys.stdout.write(payload + "\n")
    else:
        args.out.parent.mkdir(parents=True, exist_ok=True)
        args.out.write_text(payload + "\n", encoding="utf-8")

    steps = sum(1 for g in graphs for _ in g.iter_steps())
    machines = sum(len(g.state_machines()) for g in graphs)
    console.print(
        f"[bold green]✓[/bold green] {len(files)} files, {machines} state machines, {steps} steps"
    )
    if args.out is not None:
        console.print(f"[green]  Output:[/green] {args.out}")
    if failed:
        console.print(f"[bold red]{failed} file(s) could not be traced[/bold red]")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
