"""CLI entry point for unspool."""
from __future__ import annotations

import argparse
import logging
import sys

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from unspool.session import FixtureError, log_level, output_format

KNOWN_COMMANDS = {"read", "stats", "shapes"}


def _build_parser() -> argparse.ArgumentParser:
    # Shared global options, inherited by every subcommand
    global_opts = argparse.ArgumentParser(add_help=False)
    global_opts.add_argument("--format", "-f", choices=["human", "json"],
                             default=None, help="Output format (default: auto-detect)")
    global_opts.add_argument("--ascii", action="store_true",
                             help="Force ASCII output (no Unicode box drawing)")
    global_opts.add_argument("--color", action="store_true",
                             help="Force color output (for piping to less -R)")
    global_opts.add_argument("--verbose", "-v", action="count", default=0,
                             help="More log output (-vv for debug)")

    parser = argparse.ArgumentParser(
        prog="unspool",
        description="Rebuild an agent session timeline from raw payload rows",
        parents=[global_opts],
    )
    parser.add_argument("--version", action="version", version="unspool 0.1.0")

    sub = parser.add_subparsers(dest="command")

    # read
    p_read = sub.add_parser("read", parents=[global_opts], help="Render the merged timeline")
    p_read.add_argument("file", help="Row file (.jsonl, .json list, or session fixture)")
    p_read.add_argument("--expected-count", type=int, metavar="N",
                        help="Expected message count reported back as-is")
    p_read.add_argument("--flat", action="store_true",
                        help="Render blocks one by one, without display grouping")

    # stats
    p_stats = sub.add_parser("stats", parents=[global_opts], help="Timeline statistics")
    p_stats.add_argument("file", help="Row file")

    # shapes
    p_shapes = sub.add_parser("shapes", parents=[global_opts], help="Envelope shape inventory")
    p_shapes.add_argument("file", help="Row file")
    p_shapes.add_argument("--deep", action="store_true", help="Deep nested shape walk")
    p_shapes.add_argument("--verify", metavar="FILE", help="Coverage comparison file")

    return parser


def _get_format(args) -> str:
    """Determine output format from args, environment, and TTY detection."""
    if args.format:
        return args.format
    env_fmt = output_format()
    if env_fmt:
        return env_fmt
    if not sys.stdout.isatty():
        return "json"
    return "human"


def _setup_logging(verbose: int) -> None:
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = log_level()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def main(argv: list[str] | None = None):
    parser = _build_parser()

    # Handle bare `unspool <file>` (no subcommand)
    argv = sys.argv[1:] if argv is None else list(argv)
    if argv and argv[0] not in KNOWN_COMMANDS and not argv[0].startswith("-"):
        argv = ["read"] + argv

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return

    _setup_logging(args.verbose)

    # Init human formatter
    from unspool.formatters.human import init as init_human, detect_ascii
    init_human(ascii_mode=args.ascii or detect_ascii(), force_color=args.color)
    from unspool.formatters.human import console

    fmt = _get_format(args)

    try:
        if args.command == "read":
            from unspool.commands.read import cmd_read
            data = cmd_read(args.file, expected_count=args.expected_count)
            if fmt == "json":
                from unspool.formatters.json import format_json
                format_json(data)
            else:
                from unspool.formatters.human import format_read
                format_read(data, flat=args.flat)
            return

        if args.command == "stats":
            from unspool.commands.stats import cmd_stats
            data = cmd_stats(args.file)
            if fmt == "json":
                from unspool.formatters.json import format_json
                format_json(data)
            else:
                from unspool.formatters.human import format_stats
                format_stats(data)
            return

        if args.command == "shapes":
            from unspool.commands.shapes import cmd_shapes
            data = cmd_shapes(args.file, deep=args.deep, verify_file=args.verify)
            if fmt == "json":
                from unspool.formatters.json import format_json
                format_json(data)
            else:
                from unspool.formatters.human import format_shapes
                format_shapes(data)
            return
    except FixtureError as e:
        console.print(f"[red]{escape(str(e))}[/]")
        sys.exit(1)


if __name__ == "__main__":
    main()
