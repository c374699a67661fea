from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="build_pipeline", add_help=True)
    parser.add_argument("--config", dest="config_path", default=None, help="Load this config file only")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run all tracks concurrently")
    run.add_argument(
        "--track",
        dest="tracks",
        action="append",
        default=[],
        help="Run only this track (repeatable)",
    )
    run.add_argument("--dry-run", action="store_true", help="Print the plan without running it")

    sub.add_parser("list-tracks", help="List configured tracks and their stages")
    sub.add_parser("history", help="Summarize past runs from the run index")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)

    if args.command == "run":
        from .app.run import main as run_main

        return int(run_main(only=tuple(args.tracks), dry_run=args.dry_run, config_path=args.config_path))

    if args.command == "list-tracks":
        from .app.run import main as run_main

        return int(run_main(dry_run=True, config_path=args.config_path))

    if args.command == "history":
        from .app.history import main as history_main

        return int(history_main(config_path=args.config_path))

    raise AssertionError(f"Unhandled command: {args.command}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
