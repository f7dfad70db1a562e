"""Gap record parsing and validation.

Three layouts are recognised::

       618  CFC RP.Brent 1980  21.27    13  4165633395149     (gap6)
         618  CFC ...                  13  4165633395149        (gap9)
    618  4165633395149                                          (free-form)

gap6: gap in columns 1-6, digit count in 33-40, P1 from column 41.
gap9: gap in columns 1-9, digit count in 38-47, P1 from column 48.
In the standard layouts a prime field ending in ``\\``, ``_`` or ``~``
continues on the next line, whose gap columns are blank.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from gapcheck.arith import (
    GAP_CEILING,
    MAX_DIGITS,
    abbreviate,
    decimal_length,
    fingerprint,
    parse_prime_field,
)
from gapcheck.errors import ExpressionError

CONTINUATION_MARKS = ("\\", "_", "~")
ELLIPSIS = ".."
DEFAULT_MAX_GAP = 10 * MAX_DIGITS

_INT_RE = re.compile(r"\d+")
_SIGNED_RE = re.compile(r"[+-]?\d+")


class Layout(Enum):
    GAP6 = 6
    GAP9 = 9
    FREE = 1


@dataclass
class GapCandidate:
    """One claimed gap: P1 and the distance G to the next prime."""

    gap: int
    p1: int
    p1_digit_count: int
    raw_line: str
    p1_text: str = ""
    layout: Layout = Layout.FREE

    @property
    def p2(self):
        return self.p1 + self.gap

    @property
    def fingerprint(self) -> int:
        return fingerprint(self.p1)

    def display(self, width: int) -> str:
        return abbreviate(self.p1_text or str(self.p1), self.p1_digit_count, width)


class SkipKind(Enum):
    NOT_A_RECORD = "not a record"
    INVALID = "invalid"
    OUT_OF_RANGE = "out of range"
    FILTERED = "filtered"
    BEYOND_MAX_GAP = "beyond max gap"
    ELLIPSIS = "ellipsed prime"
    PARSE_ERROR = "parse error"


@dataclass
class Skip:
    """A record that will not be checked, and why."""

    kind: SkipKind
    raw_line: str = ""
    gap: Optional[int] = None
    p1_text: str = ""
    message: str = ""

    @property
    def counted(self) -> bool:
        return self.kind is SkipKind.INVALID

    @property
    def reported(self) -> bool:
        return self.kind in (SkipKind.INVALID, SkipKind.PARSE_ERROR, SkipKind.OUT_OF_RANGE)


class _EndOfStream:
    def __repr__(self):
        return "END_OF_STREAM"


END_OF_STREAM = _EndOfStream()

ParseResult = Union[GapCandidate, Skip, _EndOfStream]


@dataclass
class Selection:
    """Which records the run should look at."""

    min_gap: int = 0
    max_gap: int = DEFAULT_MAX_GAP
    min_digits: int = 0
    max_digits: int = MAX_DIGITS

    def __post_init__(self):
        if self.max_gap == 0:
            self.max_gap = self.min_gap
        self.min_gap = min(self.min_gap, self.max_gap)
        self.min_digits = min(self.min_digits, self.max_digits)

    def wants_digits(self, digits: int) -> bool:
        return self.min_digits <= digits <= self.max_digits


@dataclass
class _Fields:
    layout: Layout
    gap_text: str
    digits_text: str
    prime_text: str
    lines: List[str] = field(default_factory=list)


def _standard_fields(line: str, width: int, digits_col: int, prime_col: int) -> Optional[Tuple[str, str, str]]:
    if len(line) <= prime_col or not line[:width].strip().isdigit():
        return None
    if not line[width].isspace() or not line[prime_col - 1].isspace() or line[prime_col].isspace():
        return None
    digits_text = line[digits_col:prime_col].strip()
    if not _INT_RE.fullmatch(digits_text):
        return None
    return line[:width], digits_text, line[prime_col:]


def split_fields(line: str) -> Optional[_Fields]:
    """Identify the layout of one physical line and cut it into fields."""
    fields = _standard_fields(line, 6, 32, 40)
    if fields:
        return _Fields(Layout.GAP6, *fields, lines=[line])
    fields = _standard_fields(line, 9, 37, 47)
    if fields:
        return _Fields(Layout.GAP9, *fields, lines=[line])
    stripped = line.strip()
    tokens = stripped.split(None, 1)
    if not tokens or not _SIGNED_RE.fullmatch(tokens[0]):
        return None
    rest = tokens[1] if len(tokens) > 1 else ""
    return _Fields(Layout.FREE, tokens[0], "", rest.split("  ", 1)[0], lines=[line])


class RecordParser:
    """Pulls validated ``GapCandidate`` objects off a stream of text lines."""

    def __init__(self, stream: Iterable[str], selection: Optional[Selection] = None,
                 max_digits: int = MAX_DIGITS):
        self._lines = iter(stream)
        self._pushback: Optional[str] = None
        self.selection = selection or Selection()
        self.max_digits = max_digits

    def __iter__(self) -> Iterator[ParseResult]:
        while True:
            item = self.parse_next()
            if item is END_OF_STREAM:
                return
            yield item

    def _readline(self) -> Optional[str]:
        if self._pushback is not None:
            line, self._pushback = self._pushback, None
            return line
        line = next(self._lines, None)
        if line is None:
            return None
        return line.rstrip("\r\n")

    def _read_record(self) -> Optional[_Fields]:
        while True:
            line = self._readline()
            if line is None:
                return None
            if not line.strip():
                continue
            rec = split_fields(line)
            if rec is None:
                continue
            if rec.layout is not Layout.FREE:
                width = rec.layout.value
                prime = rec.prime_text.rstrip()
                while prime.endswith(CONTINUATION_MARKS):
                    prime = prime[:-1].rstrip()
                    more = self._readline()
                    if more is None:
                        break
                    if more[:width].strip():
                        # not a continuation: the next record starts here
                        self._pushback = more
                        break
                    rec.lines.append(more)
                    prime += more.strip()
                rec.prime_text = prime
            return rec

    def parse_next(self) -> ParseResult:
        rec = self._read_record()
        if rec is None:
            return END_OF_STREAM
        return self.decode(rec)

    def decode(self, rec: _Fields) -> Union[GapCandidate, Skip]:
        raw = "\n".join(rec.lines)
        prime_text = rec.prime_text.strip()
        gap_text = rec.gap_text.strip()

        if not _INT_RE.fullmatch(gap_text):
            return Skip(SkipKind.NOT_A_RECORD, raw)
        gap = int(gap_text)
        if gap == 0:
            return Skip(SkipKind.NOT_A_RECORD, raw, gap)

        def skip(kind: SkipKind, message: str = "") -> Skip:
            return Skip(kind, raw, gap, prime_text, message)

        if gap > GAP_CEILING:
            return skip(SkipKind.OUT_OF_RANGE, f"G exceeds {GAP_CEILING}")
        if gap < self.selection.min_gap:
            return skip(SkipKind.FILTERED)
        if gap > self.selection.max_gap:
            return skip(SkipKind.BEYOND_MAX_GAP)
        if gap & 1 and gap != 1:
            return skip(SkipKind.INVALID, "G odd and G != 1")

        stated = int(rec.digits_text) if rec.digits_text else None
        if stated is not None and not self.selection.wants_digits(stated):
            return skip(SkipKind.FILTERED)
        if ELLIPSIS in prime_text:
            return skip(SkipKind.ELLIPSIS)

        try:
            p1 = parse_prime_field(prime_text, self.max_digits)
        except ExpressionError:
            return skip(SkipKind.PARSE_ERROR, "Unable to parse P1.")

        actual = decimal_length(p1)
        if stated is None:
            if not self.selection.wants_digits(actual):
                return skip(SkipKind.FILTERED)
            stated = actual
        if p1 < 2:
            return skip(SkipKind.OUT_OF_RANGE, "P1 < 2")
        if actual != stated:
            return skip(SkipKind.INVALID,
                        f"Conflicting digit counts (stated={stated} actual={actual})")

        return GapCandidate(gap=gap, p1=p1, p1_digit_count=actual, raw_line=raw,
                            p1_text=prime_text, layout=rec.layout)
