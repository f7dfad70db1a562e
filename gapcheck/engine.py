"""Run orchestration.

``GapChecker`` pulls records off the input one at a time and drives each
candidate through a small state machine::

    PARSING ─► VALIDATING_ENDPOINTS ─► SIEVING ─► SEARCHING_INTERIOR ─► REPORTING
                       │                                                  ▲
                       └──────────── (endpoint failure, epo, gap 1) ──────┘

REPORTING hands control back to PARSING; PARSING ends the run at end of
input or at the first record beyond the maximum gap.  All mutable run
state (buffers, counters, timers) lives in ``EngineContext``.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Mapping, Optional, TextIO, Union

from gapcheck.checkpoint import Checkpoint, CheckpointManager
from gapcheck.config import Settings, debug
from gapcheck.errors import HelperUnavailable
from gapcheck.primality import BpswOracle, HelperOracle, PrimalityOracle, detect_helper
from gapcheck.records import END_OF_STREAM, GapCandidate, RecordParser, Skip, SkipKind
from gapcheck.report import CollectionSink, Reporter
from gapcheck.search import GapSearch, diagnose_composite
from gapcheck.sieve import SieveEngine, SieveState

REPORT_FILE = "gapcheck.out"
NOCHECK_FILE = "nocheck.dat"
PROGRESS_DIGITS = 300  # progress bars only for walks this large


class CandidateState(Enum):
    PARSING = "parsing"
    VALIDATING_ENDPOINTS = "validating endpoints"
    SIEVING = "sieving"
    SEARCHING_INTERIOR = "searching interior"
    REPORTING = "reporting"
    DONE = "done"


class Verdict(Enum):
    OK = "ok"
    COMPOSITE_ENDPOINT = "composite endpoint"
    GAP_MISMATCH = "gap mismatch"
    COLLECTED = "collected"


@dataclass
class Outcome:
    verdict: Verdict
    message: str = ""
    observed_gap: Optional[int] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.verdict is Verdict.OK


@dataclass
class RunSummary:
    confirmed: int
    errors: int
    unchecked: int
    elapsed: float


class RunClock:
    """Two stopwatches: one for the whole run, one for the current gap."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.run_start = clock()
        self.gap_start = self.run_start

    def start_gap(self) -> None:
        self.gap_start = self.clock()

    def gap_elapsed(self) -> float:
        return self.clock() - self.gap_start

    def total_elapsed(self) -> float:
        return max(self.clock() - self.run_start, self.gap_elapsed())

    def rewind(self, elapsed_gap: float, elapsed_total: float) -> None:
        """Move both baselines back by the time a resumed run already spent."""
        self.gap_start = self.clock() - elapsed_gap
        self.run_start -= elapsed_total


@dataclass
class EngineContext:
    settings: Settings
    reporter: Reporter
    checkpoints: CheckpointManager
    sieve_engine: SieveEngine
    oracle: PrimalityOracle
    workdir: Path = Path(".")
    helper: Optional[str] = None
    clock: RunClock = field(default_factory=RunClock)
    collection: Optional[CollectionSink] = None
    confirmed: int = 0
    errors: int = 0
    unchecked: int = 0

    @classmethod
    def create(cls, settings: Settings, workdir: Union[str, Path] = ".",
               report_path: Union[str, Path, None] = None,
               environ: Optional[Mapping[str, str]] = None,
               clock: Callable[[], float] = time.monotonic,
               status: Optional[TextIO] = None, errors: Optional[TextIO] = None) -> "EngineContext":
        workdir = Path(workdir)
        checkpoints = CheckpointManager(workdir, settings.checkpoint_interval,
                                        settings.retain_files, clock)
        return cls(
            settings=settings,
            reporter=Reporter(report_path or workdir / REPORT_FILE, settings.quiet, status, errors),
            checkpoints=checkpoints,
            sieve_engine=SieveEngine(checkpoints, settings.validate_sieve, settings.retain_files),
            oracle=BpswOracle(),
            workdir=workdir,
            helper=detect_helper(environ) if settings.use_helper else None,
            clock=RunClock(clock),
        )

    def oracle_for(self, candidate: GapCandidate) -> PrimalityOracle:
        if self.helper and candidate.p1_digit_count >= self.settings.helper_digits:
            return HelperOracle(self.helper, self.workdir / f"N{candidate.gap}.dat",
                                confirm=self.oracle)
        return self.oracle


@dataclass
class _Job:
    candidate: GapCandidate
    backup: bool = False
    resume: Optional[Checkpoint] = None
    sieve: Optional[SieveState] = None
    outcome: Optional[Outcome] = None


class GapChecker:
    """Checks a stream of gap records against ``EngineContext``."""

    def __init__(self, ctx: EngineContext):
        self.ctx = ctx
        self._parser: Optional[RecordParser] = None
        self._job: Optional[_Job] = None
        self._handlers = {
            CandidateState.PARSING: self._parse,
            CandidateState.VALIDATING_ENDPOINTS: self._validate_endpoints,
            CandidateState.SIEVING: self._sieve,
            CandidateState.SEARCHING_INTERIOR: self._search,
            CandidateState.REPORTING: self._report,
        }

    # ─────────────────────────────────────────────────────────────────────────
    # Entry points
    # ─────────────────────────────────────────────────────────────────────────
    def run(self, stream: Iterable[str], input_name: str = "-",
            command_line: str = "") -> RunSummary:
        ctx = self.ctx
        ctx.reporter.begin()
        if ctx.settings.collect_only:
            ctx.collection = CollectionSink(ctx.workdir / NOCHECK_FILE)
        self._parser = RecordParser(stream, ctx.settings.selection, ctx.settings.max_digits)
        state = CandidateState.PARSING
        while state is not CandidateState.DONE:
            state = self._handlers[state]()
        return self.finish(input_name, command_line)

    def check(self, candidate: GapCandidate) -> Outcome:
        """Run one already-parsed candidate through the machine."""
        self._job = _Job(candidate)
        state = CandidateState.VALIDATING_ENDPOINTS
        while state not in (CandidateState.PARSING, CandidateState.DONE):
            state = self._handlers[state]()
        return self._job.outcome

    def finish(self, input_name: str, command_line: str) -> RunSummary:
        ctx = self.ctx
        elapsed = ctx.clock.total_elapsed()
        if ctx.collection is not None:
            ctx.collection.close()
            ctx.reporter.remove_report()
            if ctx.unchecked:
                ctx.reporter.note(f"...See {ctx.collection.path} for the "
                                  f"{ctx.unchecked} selected gaps.")
            else:
                ctx.reporter.note("...No such gaps were found.")
        else:
            ctx.reporter.summary(ctx.errors, ctx.confirmed, elapsed, input_name, command_line)
        return RunSummary(ctx.confirmed, ctx.errors, ctx.unchecked, elapsed)

    # ─────────────────────────────────────────────────────────────────────────
    # States
    # ─────────────────────────────────────────────────────────────────────────
    def _parse(self) -> CandidateState:
        item = self._parser.parse_next()
        if item is END_OF_STREAM:
            return CandidateState.DONE
        if isinstance(item, Skip):
            if item.kind is SkipKind.BEYOND_MAX_GAP:
                return CandidateState.DONE
            self._skip(item)
            return CandidateState.PARSING
        self._job = _Job(item)
        return CandidateState.VALIDATING_ENDPOINTS

    def _skip(self, skip: Skip) -> None:
        if skip.reported:
            self.ctx.reporter.skip_error(skip)
        else:
            debug(f"skipped ({skip.kind.value}): {skip.raw_line[:60]}")
        if skip.counted:
            self.ctx.errors += 1

    def _validate_endpoints(self) -> CandidateState:
        ctx, job = self.ctx, self._job
        c, s = job.candidate, ctx.settings
        ctx.clock.start_gap()

        if s.collect_only:
            ctx.collection.add(c.raw_line)
            job.outcome = Outcome(Verdict.COLLECTED)
            return CandidateState.REPORTING
        if c.gap == 1 and c.p1 == 2:
            job.outcome = Outcome(Verdict.OK, "certfd", observed_gap=1)
            return CandidateState.REPORTING
        if c.gap == 1 and c.p1 & 1:
            job.outcome = Outcome(Verdict.COMPOSITE_ENDPOINT, "P2 composite (2|P2) Gtrue=??")
            return CandidateState.REPORTING
        if c.p1 == 2:
            job.outcome = Outcome(Verdict.GAP_MISMATCH, "Intermediate prime at P1 + 1",
                                  observed_gap=1)
            return CandidateState.REPORTING
        if c.p1 % 2 == 0:
            job.outcome = Outcome(Verdict.COMPOSITE_ENDPOINT, "P1 composite (2|P1) Gtrue=0")
            return CandidateState.REPORTING

        if s.endpoints_only:
            job.outcome = self._endpoints_only(c)
            return CandidateState.REPORTING

        job.backup = s.wants_backup(c.p1_digit_count, c.gap)
        job.resume = ctx.checkpoints.try_resume(c)
        if job.resume is not None:
            ctx.clock.rewind(job.resume.elapsed_gap, job.resume.elapsed_total)
            ctx.reporter.progress(
                f"G={c.gap:7d} ...resuming at P1 ({c.p1_digit_count}D) + {job.resume.resume_offset}...",
                ctx.clock.gap_elapsed())
            return CandidateState.SIEVING
        if s.interior_only:
            return CandidateState.SIEVING

        ctx.reporter.progress(f"G={c.gap:7d} ...Checking P1 ({c.p1_digit_count}D)...",
                              ctx.clock.gap_elapsed())
        if not self._confirm(c.p1):
            witness = diagnose_composite(c.p1, "P1", ctx.oracle)
            job.outcome = Outcome(Verdict.COMPOSITE_ENDPOINT, f"P1 composite ({witness}) Gtrue=0")
            return CandidateState.REPORTING
        return CandidateState.SIEVING

    def _sieve(self) -> CandidateState:
        ctx, job = self.ctx, self._job
        c = job.candidate
        start = job.resume.resume_offset if job.resume else 2
        ctx.reporter.progress(
            f"G={c.gap:7d} ...Checking P1 ({c.p1_digit_count}D) + {start}...sieving...",
            ctx.clock.gap_elapsed())
        job.sieve = ctx.sieve_engine.sieve(c, backup=job.backup)
        for offset, d in job.sieve.mismatches:
            ctx.reporter.note(f"SIEVING ERROR: P1 + {offset} not divisible by {d}.")
        debug(f"G={c.gap} sieve: {job.sieve.survivor_count} survivors, "
              f"max divisor {job.sieve.max_divisor}, restored={job.sieve.restored}")
        return CandidateState.SEARCHING_INTERIOR

    def _search(self) -> CandidateState:
        ctx, job = self.ctx, self._job
        c = job.candidate
        start = job.resume.resume_offset if job.resume else 2
        oracle = ctx.oracle_for(c)
        try:
            observed = self._walk(oracle, start)
        except HelperUnavailable as exc:
            ctx.reporter.note(f"{exc}; using the internal BPSW test.")
            ctx.helper = None
            observed = self._walk(ctx.oracle, start)
        finally:
            if isinstance(oracle, HelperOracle):
                oracle.cleanup()
        ctx.checkpoints.discard(c)
        job.outcome = self._judge(c, observed)
        return CandidateState.REPORTING

    def _report(self) -> CandidateState:
        ctx, job = self.ctx, self._job
        outcome = job.outcome
        outcome.elapsed = ctx.clock.gap_elapsed()
        if outcome.verdict is Verdict.OK:
            ctx.confirmed += 1
            ctx.reporter.ok(job.candidate, outcome.message, outcome.elapsed)
        elif outcome.verdict is Verdict.COLLECTED:
            ctx.unchecked += 1
        else:
            ctx.errors += 1
            ctx.reporter.candidate_error(job.candidate, outcome.message)
        return CandidateState.PARSING

    # ─────────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────────
    def _confirm(self, n) -> bool:
        s = self.ctx.settings
        if s.mr2_only:
            return self.ctx.oracle.miller_rabin2(n)
        return self.ctx.oracle.is_probable_prime(n, s.repetitions, trial_limit=1000)

    def _endpoints_only(self, c: GapCandidate) -> Outcome:
        s, oracle = self.ctx.settings, self.ctx.oracle
        if not self._confirm(c.p1):
            witness = diagnose_composite(c.p1, "P1", oracle)
            return Outcome(Verdict.COMPOSITE_ENDPOINT, f"P1 composite ({witness}) Gtrue=0")
        if not self._confirm(c.p2):
            witness = diagnose_composite(c.p2, "P2", oracle)
            return Outcome(Verdict.COMPOSITE_ENDPOINT, f"P2 composite ({witness}) Gtrue=??")
        tag = "MR2" if s.mr2_only else f"B*{s.repetitions}"
        return Outcome(Verdict.OK, f"epo{tag}")

    def _walk(self, oracle: PrimalityOracle, start: int) -> int:
        ctx, job = self.ctx, self._job
        c, s = job.candidate, ctx.settings
        search = GapSearch(oracle, s.repetitions, s.mr2_only,
                           show_progress=not s.quiet and c.p1_digit_count >= PROGRESS_DIGITS)

        def on_step(offset: int) -> None:
            if job.backup:
                ctx.checkpoints.maybe_snapshot(c, offset, ctx.clock.gap_elapsed(),
                                               ctx.clock.total_elapsed())

        ctx.checkpoints.arm()
        observed = search.find_next_prime(c, job.sieve, start, on_step)
        debug(f"G={c.gap} walk: {search.tests} points tested with {oracle.name}")
        return observed

    def _judge(self, c: GapCandidate, observed: int) -> Outcome:
        s = self.ctx.settings
        if observed == c.gap:
            tag = ("int" if s.interior_only else "") + s.strength_tag()
            return Outcome(Verdict.OK, tag, observed_gap=observed)
        if observed < c.gap:
            return Outcome(Verdict.GAP_MISMATCH, f"Intermediate prime at P1 + {observed}",
                           observed_gap=observed)
        witness = diagnose_composite(c.p2, "P2", self.ctx.oracle)
        return Outcome(Verdict.COMPOSITE_ENDPOINT, f"P2 composite ({witness}) Gtrue={observed}",
                       observed_gap=observed)
