"""Command-line entry point: ``gapcheck INFILE [options]``."""
from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from gapcheck import __version__, program_name
from gapcheck.config import MODES, Settings, set_debug
from gapcheck.engine import EngineContext, GapChecker
from gapcheck.errors import ResourceError
from gapcheck.records import DEFAULT_MAX_GAP, Selection

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


# ─────────────────────────────────────────────────────────────────────────────
# Command-line interface
# ─────────────────────────────────────────────────────────────────────────────
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=program_name,
        description="Verify claimed maximal/first-occurrence prime gaps.",
        epilog="Modes: x = endpoints only (BPSW), m = endpoints only (MR2), "
               "M = full check with MR2, z = list selected gaps without checking, "
               "b = full check with BPSW everywhere.",
    )
    parser.add_argument("infile", help="Gap listing to check ('-' for stdin)")
    parser.add_argument("--mode", choices=MODES, default="full", help="Run mode (default: full)")
    parser.add_argument("--min-gap", type=int, default=0, help="Smallest gap to check")
    parser.add_argument("--max-gap", type=int, default=DEFAULT_MAX_GAP,
                        help="Largest gap to check; 0 means same as --min-gap")
    parser.add_argument("--min-digits", type=int, default=0, help="Smallest P1 to check, in digits")
    parser.add_argument("--max-digits", type=int, default=None,
                        help="Largest P1 to check, in digits")
    parser.add_argument("-n", "--quiet", action="store_true",
                        help="Suppress progress and OK lines on screen")
    parser.add_argument("--workdir", default=".", help="Directory for checkpoint files")
    parser.add_argument("--output", default=None, help="Report file (default: WORKDIR/gapcheck.out)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def settings_from_args(args: argparse.Namespace, base: Optional[Settings] = None) -> Settings:
    settings = (base or Settings.from_environ()).with_mode(args.mode)
    max_digits = settings.max_digits if args.max_digits is None else min(args.max_digits, settings.max_digits)
    settings.selection = Selection(
        min_gap=max(args.min_gap, 0),
        max_gap=max(args.max_gap, 0),
        min_digits=max(args.min_digits, 0),
        max_digits=max(max_digits, 0),
    )
    settings.quiet = args.quiet
    return settings


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    args = build_parser().parse_args(argv)
    settings = settings_from_args(args)
    set_debug(settings.debug)
    command_line = " ".join([program_name, *argv])

    try:
        ctx = EngineContext.create(settings, workdir=args.workdir, report_path=args.output)
        checker = GapChecker(ctx)
        if args.infile == "-":
            checker.run(sys.stdin, "stdin", command_line)
        else:
            try:
                stream = open(args.infile)
            except OSError as exc:
                raise ResourceError(f"Unable to open input file {args.infile}: {exc}") from exc
            with stream:
                checker.run(stream, args.infile, command_line)
    except ResourceError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("\n ...interrupted; checkpoint files left in place.", file=sys.stderr)
        return EXIT_INTERRUPTED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
