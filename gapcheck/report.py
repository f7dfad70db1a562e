"""Screen and report-file output.

Every outcome line goes to the screen and is appended to the report file;
error lines go to stderr so they survive ``-n`` (quiet) runs.  Lines are
written with ``tqdm.write`` so a live progress bar is not torn apart.
"""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, TextIO, Union

from tqdm import tqdm

from gapcheck.arith import abbreviate
from gapcheck.errors import ResourceError
from gapcheck.records import GapCandidate, Skip

RULE = "=" * 77
ERROR_WIDTH = 20
SCREEN_WIDTH = 39
REPORT_WIDTH = 54
STATUS_WIDTH = 62


def format_error(gap: Optional[int], p1_display: str, message: str) -> str:
    if gap is None:
        return f"ERROR: {message}"
    return f"G={gap:7d} P1={p1_display:<{ERROR_WIDTH}} ERROR: {message}"


def format_ok(candidate: GapCandidate, tag: str, width: int) -> str:
    return f"G={candidate.gap:7d} P1={candidate.display(width):<{width}} OK {tag}"


class Reporter:
    """Writes outcome lines to the screen and the append-only report."""

    def __init__(self, report_path: Union[str, Path], quiet: bool = False,
                 status: Optional[TextIO] = None, errors: Optional[TextIO] = None):
        self.report_path = Path(report_path)
        self.quiet = quiet
        self._status = status
        self._errors = errors

    @property
    def status(self) -> TextIO:
        return self._status or sys.stdout

    @property
    def errors(self) -> TextIO:
        return self._errors or sys.stderr

    def append(self, text: str) -> None:
        try:
            with open(self.report_path, "a") as f:
                f.write(text if text.endswith("\n") else text + "\n")
        except OSError as exc:
            raise ResourceError(f"Unable to open output file {self.report_path}: {exc}") from exc

    def begin(self) -> None:
        self.append(RULE)

    def progress(self, text: str, elapsed: float) -> None:
        if not self.quiet:
            tqdm.write(f"{text:<{STATUS_WIDTH}} ({elapsed:.3f}s)", file=self.status)

    def note(self, text: str) -> None:
        tqdm.write(f" {text}", file=self.errors)

    def ok(self, candidate: GapCandidate, tag: str, elapsed: float) -> None:
        if not self.quiet:
            screen = format_ok(candidate, tag, SCREEN_WIDTH)
            tqdm.write(f"{screen:<{STATUS_WIDTH}} ({elapsed:.3f}s)", file=self.status)
        self.append(format_ok(candidate, tag, REPORT_WIDTH))

    def error(self, gap: Optional[int], p1_display: str, message: str) -> None:
        line = format_error(gap, p1_display, message)
        tqdm.write(line, file=self.errors)
        self.append(line)

    def candidate_error(self, candidate: GapCandidate, message: str) -> None:
        self.error(candidate.gap, candidate.display(ERROR_WIDTH), message)

    def skip_error(self, skip: Skip) -> None:
        self.error(skip.gap, abbreviate(skip.p1_text, len(skip.p1_text), ERROR_WIDTH), skip.message)

    def summary(self, errors: int, confirmed: int, elapsed: float,
                input_name: str, command_line: str) -> None:
        totals = f" Errors={errors}.  OK={confirmed}.  T={elapsed:.3f} seconds."
        self.append("\n".join([
            RULE,
            totals,
            f" Input={input_name}.  CL==>{command_line}<==.",
            RULE,
        ]))
        tqdm.write(f"\n{totals}", file=self.errors)
        tqdm.write(f" Input={input_name}.  Output={self.report_path}.", file=self.errors)
        tqdm.write(f" CL==>{command_line}<==.", file=self.errors)

    def remove_report(self) -> None:
        try:
            self.report_path.unlink()
        except FileNotFoundError:
            pass


class CollectionSink:
    """Side file for collection-only runs: verbatim copies of selected records."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.count = 0
        try:
            self._f = open(self.path, "w")
        except OSError as exc:
            raise ResourceError(f"Unable to open nocheck file {self.path}: {exc}") from exc

    def add(self, raw_line: str) -> None:
        self._f.write(raw_line.rstrip("\n") + "\n")
        self.count += 1

    def close(self) -> None:
        self._f.close()
        if not self.count:
            self.path.unlink()
