"""Interior walk: find the true successor of P1.

Starting at offset 2 (or a checkpointed offset), every point that survived
the sieve, and every point beyond the sieved span, gets a base-2 Fermat
screen and then the full probable-prime test.  The first pass ends the
walk; its offset is the observed gap.
"""
from __future__ import annotations

from typing import Callable, Optional

from tqdm import tqdm

from gapcheck.arith import least_prime_divisor
from gapcheck.primality import PrimalityOracle
from gapcheck.records import GapCandidate
from gapcheck.sieve import SieveState

StepHook = Callable[[int], None]


class GapSearch:
    """Walks the survivors of one candidate's sieve with ``oracle``."""

    def __init__(self, oracle: PrimalityOracle, repetitions: int = 1,
                 mr2_only: bool = False, show_progress: bool = True):
        self.oracle = oracle
        self.repetitions = repetitions
        self.mr2_only = mr2_only
        self.show_progress = show_progress
        self.tests = 0

    def passes(self, n) -> bool:
        """Full-strength decision on one point of the walk."""
        self.tests += 1
        if self.oracle.prescreen and not self.oracle.fermat2(n):
            return False
        if self.mr2_only:
            return self.oracle.miller_rabin2(n)
        return self.oracle.is_probable_prime(n, self.repetitions, trial_limit=2)

    def find_next_prime(self, candidate: GapCandidate, sieve: SieveState,
                        resume_offset: int = 2, on_step: Optional[StepHook] = None) -> int:
        """Return the distance from P1 to the next probable prime."""
        if candidate.p1 == 2:
            return 1
        span = 2 * candidate.gap
        offset = max(resume_offset + (resume_offset & 1), 2)

        survivors = sieve.survivor_offsets(offset) if offset < span else []
        if len(survivors):
            survivors = survivors[survivors < span]
        with tqdm(total=len(survivors), desc=f"G={candidate.gap} interior", unit="pt",
                  leave=False, disable=not self.show_progress) as bar:
            for g in survivors:
                g = int(g)
                if on_step is not None:
                    on_step(g)
                bar.update(1)
                if self.passes(candidate.p1 + g):
                    return g

        # The claimed gap was at least twice too short; keep walking unsieved.
        g = max(offset, span)
        while True:
            if on_step is not None:
                on_step(g)
            if self.passes(candidate.p1 + g):
                return g
            g += 2


def diagnose_composite(n, label: str, oracle: PrimalityOracle) -> str:
    """Explain why ``n`` was rejected: ``7|P2``, ``xMR2`` or ``xBPSW``."""
    factor = least_prime_divisor(n)
    if factor is not None:
        return f"{factor}|{label}"
    if not oracle.miller_rabin2(n):
        return "xMR2"
    return "xBPSW"
