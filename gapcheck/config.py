"""Run settings, read from the environment and overlaid by the command line.

Environment switches (any non-empty value turns a flag on)::

    MRREPS                  Miller-Rabin/Lucas repetitions (1..999, default 1)
    GAPCHECK_BUI            seconds between checkpoints (default 60, floor 5)
    INTERIOR                test only the interiors, not P1
    CHECK_SIEVE             cross-check every sieve elimination
    GAPCHECK_BACKUP         checkpoint every gap, not just the large ones
    GAPCHECK_KEEP           keep g*.siv / g*.div after a gap is finished
    GAPCHECK_HELPER_DIGITS  digits from which the external helper is used
    NOPFGW                  never use the external helper
    GAPCHECK_DEBUG          print [DEBUG] lines
"""
from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional

from gapcheck.arith import MAX_DIGITS
from gapcheck.records import Selection

DEFAULT_REPS = 1
MAX_REPS = 999
BACKUP_DIGITS = 2000
BACKUP_GAP = 100_000
HELPER_DIGITS = 1000

MODES = ("full", "x", "m", "M", "z", "b")

DEBUG = False


def debug(msg, *args):
    """
    Helper function to print debug.
    """
    if DEBUG:
        print("[DEBUG]", msg, *args, file=sys.stderr)


def _flag(environ: Mapping[str, str], name: str) -> bool:
    return bool(environ.get(name))


def _number(environ: Mapping[str, str], name: str, default, kind=int):
    raw = environ.get(name)
    if not raw:
        return default
    try:
        return kind(raw)
    except ValueError:
        print(f" WARNING: ignoring {name}={raw!r}", file=sys.stderr)
        return default


@dataclass
class Settings:
    repetitions: int = DEFAULT_REPS
    checkpoint_interval: float = 60.0
    interior_only: bool = False
    validate_sieve: bool = False
    backup_all: bool = False
    keep_files: bool = False
    use_helper: bool = True
    helper_digits: int = HELPER_DIGITS
    debug: bool = False

    mode: str = "full"
    endpoints_only: bool = False
    mr2_only: bool = False
    collect_only: bool = False
    quiet: bool = False
    reps_from_env: bool = False

    selection: Selection = field(default_factory=Selection)
    backup_digits: int = BACKUP_DIGITS
    backup_gap: int = BACKUP_GAP
    max_digits: int = MAX_DIGITS

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        environ = os.environ if environ is None else environ
        reps = _number(environ, "MRREPS", 0)
        return cls(
            repetitions=min(reps, MAX_REPS) if reps > 0 else DEFAULT_REPS,
            reps_from_env=reps > 0,
            checkpoint_interval=max(_number(environ, "GAPCHECK_BUI", 60.0, float), 5.0),
            interior_only=_flag(environ, "INTERIOR"),
            validate_sieve=_flag(environ, "CHECK_SIEVE"),
            backup_all=_flag(environ, "GAPCHECK_BACKUP"),
            keep_files=_flag(environ, "GAPCHECK_KEEP"),
            use_helper="NOPFGW" not in environ,
            helper_digits=_number(environ, "GAPCHECK_HELPER_DIGITS", HELPER_DIGITS),
            debug=_flag(environ, "GAPCHECK_DEBUG"),
        )

    def with_mode(self, mode: str) -> "Settings":
        """Apply one of the single-letter run modes.

        x  endpoints only, BPSW          m  endpoints only, base-2 MR
        M  full check, base-2 MR         z  list selected gaps, no checking
        b  full check, BPSW everywhere
        """
        if mode not in MODES:
            raise ValueError(f"unknown mode {mode!r}")
        updated = replace(
            self,
            mode=mode,
            endpoints_only=mode in ("x", "m", "z"),
            mr2_only=mode in ("m", "M"),
            collect_only=mode == "z",
        )
        if mode in ("x", "m", "z") and not self.reps_from_env:
            updated.repetitions = 1
        updated.interior_only = self.interior_only and not updated.endpoints_only
        return updated

    @property
    def retain_files(self) -> bool:
        return self.keep_files or self.validate_sieve

    def wants_backup(self, digits: int, gap: int) -> bool:
        return self.backup_all or digits >= self.backup_digits or gap >= self.backup_gap

    def strength_tag(self) -> str:
        return "MR2" if self.mr2_only else f"BPSW*{self.repetitions}"


def set_debug(enabled: bool) -> None:
    global DEBUG
    DEBUG = enabled
