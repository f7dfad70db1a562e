import numpy as np
import pytest
from sympy import isprime, nextprime, primepi

from gapcheck.checkpoint import CheckpointManager
from gapcheck.sieve import (
    DEFAULT_SIEVE_CEILING,
    SieveEngine,
    cross_check,
    sieve_ceiling,
    trial_divisors,
)

from conftest import candidate, true_gap

P1 = int(nextprime(10 ** 30))


def test_sieve_ceiling():
    assert sieve_ceiling(30, 10 ** 29, 100) == DEFAULT_SIEVE_CEILING
    assert sieve_ceiling(600, 10 ** 599, 100) == 1_000_000
    assert sieve_ceiling(20_000, 10 ** 19_999, 100) == 4_294_967_291
    assert sieve_ceiling(4, 1327, 34) == 38  # isqrt(1395) + 1


def test_trial_divisors_are_odd_primes():
    divisors = list(trial_divisors(70_000))
    assert divisors[0] == 3
    assert all(isprime(d) for d in divisors)
    assert len(divisors) == len(set(divisors))
    assert len(divisors) == primepi(70_000) - 1
    assert 65521 in divisors and 65537 in divisors


def test_struck_points_are_composite():
    gap = 200
    state = SieveEngine(validate=True).sieve(candidate(P1, gap))
    assert state.mismatches == []
    for i, alive in enumerate(state.survivors):
        if not alive:
            assert not isprime(P1 + 2 * i + 2)


def test_true_successor_survives():
    gap = true_gap(P1)
    state = SieveEngine().sieve(candidate(P1, gap))
    assert state.is_survivor(gap)
    assert gap in state.survivor_offsets()
    assert state.is_survivor(2 * gap + 2)


def test_sieve_is_idempotent():
    engine = SieveEngine()
    c = candidate(P1, 120)
    first = engine.sieve(c).survivors.copy()
    engine.sieve(candidate(P1 + 2000, 500))
    second = engine.sieve(c).survivors.copy()
    assert np.array_equal(first, second)


def test_small_p1_keeps_its_primes():
    c = candidate(113, 14)
    state = SieveEngine().sieve(c)
    for offset in range(2, 28, 2):
        if isprime(113 + offset):
            assert state.is_survivor(offset), offset


def test_cross_check_reports_bad_divisors():
    engine = SieveEngine(validate=True)
    c = candidate(P1, 50)
    state = engine.sieve(c)
    index = int(np.flatnonzero(state.least_divisor)[0])
    state.least_divisor[index] = 4_294_967_291
    assert cross_check(c, state) == [(index, 4_294_967_291)]


def test_snapshot_restore_and_tamper(tmp_path):
    store = CheckpointManager(tmp_path)
    c = candidate(P1, 300)
    original = SieveEngine(store).sieve(c, backup=True)
    expected = original.survivors.copy()
    assert (tmp_path / "g300.siv").exists()

    restored = SieveEngine(store).sieve(c)
    assert restored.restored
    assert np.array_equal(restored.survivors, expected)

    path = tmp_path / "g300.siv"
    lines = path.read_text().splitlines()
    gap, fp, checksum = lines[0].split()
    lines[0] = f"{gap}  {fp}  {int(checksum) + 2}"
    path.write_text("\n".join(lines) + "\n")
    resieved = SieveEngine(store).sieve(c)
    assert not resieved.restored
    assert np.array_equal(resieved.survivors, expected)


@pytest.mark.parametrize("corrupt", [
    lambda line: line[:-1] + str((int(line[-1]) + 2) % 10),
    lambda line: line[:-1] + "x",
])
def test_corrupted_survivor_line_forces_resieve(tmp_path, corrupt):
    store = CheckpointManager(tmp_path)
    c = candidate(P1, 300)
    expected = SieveEngine(store).sieve(c, backup=True).survivors.copy()

    path = tmp_path / "g300.siv"
    lines = path.read_text().splitlines()
    assert len(lines) > 2
    lines[-1] = corrupt(lines[-1])
    path.write_text("\n".join(lines) + "\n")

    resieved = SieveEngine(store).sieve(c)
    assert not resieved.restored
    assert np.array_equal(resieved.survivors, expected)


def test_snapshot_for_another_p1_is_ignored(tmp_path):
    store = CheckpointManager(tmp_path)
    SieveEngine(store).sieve(candidate(P1, 300), backup=True)
    other = SieveEngine(store).sieve(candidate(P1 + 2, 300))
    assert not other.restored


def test_divisor_file_written_when_retained(tmp_path):
    store = CheckpointManager(tmp_path, keep_files=True)
    SieveEngine(store, validate=True, retain=True).sieve(candidate(P1, 40))
    rows = (tmp_path / "g40.div").read_text().split("\n")
    assert len([r for r in rows if r.strip()]) == 20
    for row in rows:
        if row.strip():
            offset, d = map(int, row.split())
            if d:
                assert (P1 + offset) % d == 0


@pytest.mark.parametrize("p1", [1327, 31397, 370261])
def test_sieve_matches_sympy_on_small_gaps(p1):
    gap = true_gap(p1)
    state = SieveEngine().sieve(candidate(p1, gap))
    primes = [o for o in range(2, 2 * gap, 2) if isprime(p1 + o)]
    assert set(primes) <= set(int(o) for o in state.survivor_offsets())
