"""Small-prime sieve over the interior of a gap.

The survivor array has one entry per odd point of the doubled interval:
index ``i`` stands for ``P1 + 2i + 2``, so index 0 is ``P1 + 2``, index
``(G - 2)/2`` is P2 and index ``G - 1`` is ``P1 + 2G``.  The interval is
twice the claimed gap so that a claimed P2 which turns out composite still
leaves sieved ground to walk on.  ``True`` means no small divisor found.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

import numpy as np

from gapcheck.arith import PRIME16_LIMIT, primes16, wheel30_primes
from gapcheck.records import GapCandidate

DEFAULT_SIEVE_CEILING = 65_519
# (minimum digits in P1, largest trial divisor); empirical
SIEVE_CEILINGS = (
    (18_000, 4_294_967_291),
    (10_000, 100_000_000),
    (5_000, 20_000_000),
    (1_500, 5_000_000),
    (500, 1_000_000),
)
SQRT_CAP_DIGITS = 21
MIN_SIEVE_DIGITS = 3


def sieve_ceiling(digits: int, p1, gap: int) -> int:
    """Largest trial divisor worth applying to a gap of this size."""
    ceiling = DEFAULT_SIEVE_CEILING
    for min_digits, value in SIEVE_CEILINGS:
        if digits >= min_digits:
            ceiling = value
            break
    if digits < SQRT_CAP_DIGITS:
        ceiling = min(ceiling, math.isqrt(int(p1) + 2 * gap) + 1)
    return ceiling


def trial_divisors(ceiling: int) -> Iterator[int]:
    """Odd primes up to ``ceiling``: the 16-bit table, then the 30k wheel."""
    for d in primes16()[1:]:
        d = int(d)
        if d > ceiling:
            return
        yield d
    yield from wheel30_primes(PRIME16_LIMIT, ceiling)


@dataclass
class SieveState:
    gap: int
    survivors: np.ndarray
    least_divisor: Optional[np.ndarray] = None
    max_divisor: int = 0
    restored: bool = False
    mismatches: List[Tuple[int, int]] = field(default_factory=list)

    def survivor_offsets(self, start: int = 2) -> np.ndarray:
        """Offsets from P1 of the surviving points at or beyond ``start``."""
        first = max((start - 1) // 2, 0)
        return 2 * (np.flatnonzero(self.survivors[first:]) + first) + 2

    def is_survivor(self, offset: int) -> bool:
        if offset >= 2 * self.gap:
            return True
        return bool(self.survivors[(offset - 2) // 2])

    @property
    def survivor_count(self) -> int:
        return int(np.count_nonzero(self.survivors))

    @property
    def checksum(self) -> int:
        return int(self.survivor_offsets().sum(dtype=np.int64))


class SieveEngine:
    """Builds ``SieveState`` objects; owns the reusable buffers.

    ``store`` (usually the checkpoint manager) provides ``load_sieve``,
    ``save_sieve`` and ``save_divisors``.  With ``validate`` on, the least
    divisor of every struck point is recorded and checked afterwards.
    """

    def __init__(self, store=None, validate: bool = False, retain: bool = False):
        self.store = store
        self.validate = validate
        self.retain = retain
        self._survivors = np.zeros(0, dtype=bool)
        self._divisors = np.zeros(0, dtype=np.uint32)

    def _survivor_buffer(self, n: int) -> np.ndarray:
        if self._survivors.size < n:
            self._survivors = np.zeros(n, dtype=bool)
        return self._survivors[:n]

    def _divisor_buffer(self, n: int) -> np.ndarray:
        if self._divisors.size < n:
            self._divisors = np.zeros(n, dtype=np.uint32)
        return self._divisors[:n]

    def sieve(self, candidate: GapCandidate, backup: bool = False) -> SieveState:
        gap = candidate.gap
        survivors = self._survivor_buffer(gap)

        if self.store is not None:
            offsets = self.store.load_sieve(candidate)
            if offsets is not None:
                survivors[:] = False
                survivors[(offsets - 2) // 2] = True
                return SieveState(gap, survivors, restored=True)

        survivors[:] = True
        least = None
        if self.validate:
            least = self._divisor_buffer(2 * gap + 1)
            least[:] = 0
            least[1::2] = 2
        state = SieveState(gap, survivors, least)

        if candidate.p1_digit_count >= MIN_SIEVE_DIGITS:
            ceiling = sieve_ceiling(candidate.p1_digit_count, candidate.p1, gap)
            base = candidate.p1 + 2
            for d in trial_divisors(ceiling):
                self._strike(survivors, least, base, d)
                state.max_divisor = d

        if least is not None:
            state.mismatches = cross_check(candidate, state)
            if self.retain and self.store is not None:
                self.store.save_divisors(candidate, least)
        if backup and self.store is not None:
            self.store.save_sieve(candidate, state)
        return state

    @staticmethod
    def _strike(survivors: np.ndarray, least: Optional[np.ndarray], base, d: int) -> None:
        rem = int(base % d)
        if rem == 0:
            start = 0
        elif rem & 1:
            start = (d - rem) // 2
        else:
            start = d - rem // 2
        if base + 2 * start == d:  # the point is d itself
            start += d
        if start >= survivors.size:
            return
        if least is not None:
            idx = np.arange(start, survivors.size, d)
            fresh = idx[survivors[idx]]
            least[2 * fresh + 2] = d
        survivors[start::d] = False


def cross_check(candidate: GapCandidate, state: SieveState) -> List[Tuple[int, int]]:
    """Return ``(offset, divisor)`` pairs where the divisor does not divide."""
    bad = []
    if state.least_divisor is None:
        return bad
    for offset in np.flatnonzero(state.least_divisor):
        d = int(state.least_divisor[offset])
        if (candidate.p1 + int(offset)) % d:
            bad.append((int(offset), d))
    return bad
