"""Probable-prime oracles.

``BpswOracle`` is the in-process strong Baillie-PSW test (base-2 strong
Miller-Rabin plus a strong Lucas test), optionally followed by extra
random-base Miller-Rabin rounds.  ``HelperOracle`` hands the screening of
very large integers to an external PFGW-style executable and confirms its
"maybe prime" answers with the in-process test.  Callers only see the
``PrimalityOracle`` interface.
"""
from __future__ import annotations

import os
import random
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Mapping, Optional

from sympy.ntheory.primetest import mr, is_strong_lucas_prp

from gapcheck.arith import HAVE_GMPY2, decimal_string, powmod, primes_below
from gapcheck.errors import HelperUnavailable

if HAVE_GMPY2:
    import gmpy2  # type: ignore


SMALL_PRIMES = (2, 3, 5, 7, 11, 13, 17, 19, 23, 29, 31, 37, 41, 43, 47, 53)


# ─────────────────────────────────────────────────────────────────────────────
# Miller–Rabin building blocks
# ─────────────────────────────────────────────────────────────────────────────
def miller_rabin(n: int, rounds: int = 7) -> bool:
    """Strong probable-prime test with ``rounds`` random bases."""
    if n < 2:
        return False
    if n in (2, 3):
        return True
    if n % 2 == 0 or n % 3 == 0:
        return False
    d, s = n - 1, 0
    while not (d & 1):
        d >>= 1
        s += 1
    for _ in range(rounds):
        a = random.randrange(2, int(n) - 1)
        x = powmod(a, d, n)
        if x == 1 or x == n - 1:
            continue
        for _ in range(s - 1):
            x = powmod(x, 2, n)
            if x == n - 1:
                break
        else:
            return False
    return True


def miller_rabin2(n) -> bool:
    """Single strong test to base 2."""
    if n < 2:
        return False
    if n in (2, 3):
        return True
    if n % 2 == 0:
        return False
    if HAVE_GMPY2:
        return bool(gmpy2.is_strong_prp(n, 2))
    return mr(int(n), [2])


def fermat2(n) -> bool:
    """Cheap screen: ``2^n ≡ 2 (mod n)`` for odd ``n > 2``."""
    return powmod(2, n, n) == 2


# ─────────────────────────────────────────────────────────────────────────────
# Oracle interface
# ─────────────────────────────────────────────────────────────────────────────
class PrimalityOracle:
    """Decides probable primality; subclasses pick the machinery."""

    name = "oracle"
    prescreen = True  # whether the search should run fermat2 first

    def is_probable_prime(self, n, reps: int = 1, trial_limit: int = 1000) -> bool:
        raise NotImplementedError

    def fermat2(self, n) -> bool:
        return fermat2(n)

    def miller_rabin2(self, n) -> bool:
        return miller_rabin2(n)


class BpswOracle(PrimalityOracle):
    """Strong Baillie–PSW, plus ``reps - 1`` extra Miller–Rabin rounds."""

    name = "BPSW"

    def is_probable_prime(self, n, reps: int = 1, trial_limit: int = 1000) -> bool:
        if n < 2:
            return False
        if n in SMALL_PRIMES:
            return True
        for p in SMALL_PRIMES:
            if n % p == 0:
                return False
        if trial_limit > SMALL_PRIMES[-1]:
            for p in primes_below(trial_limit + 1)[len(SMALL_PRIMES):]:
                p = int(p)
                if p * p > n:
                    return True
                if n % p == 0:
                    return False

        if HAVE_GMPY2:
            if not gmpy2.is_strong_bpsw_prp(n):
                return False
        else:
            if not mr(int(n), [2]):  # Part of Baillie-PSW
                return False
            if not is_strong_lucas_prp(int(n)):
                return False

        if reps > 1:
            return miller_rabin(n, rounds=reps - 1)
        return True


# ─────────────────────────────────────────────────────────────────────────────
# External helper (PFGW or compatible)
# ─────────────────────────────────────────────────────────────────────────────
HELPER_NAMES = ("pfgw64", "pfgw", "pfgw32")
HELPER_PATHS = (
    "/usr/local/bin/pfgw64",
    "/opt/pfgw/pfgw64",
    r"c:\pfgw\pfgw64.exe",
    r"c:\pfgw\pfgw32.exe",
)
HELPER_ARGS = ("-k", "-f0", "-e1", "-u0", "-Cquiet")
HELPER_LITTER = ("pfgw.ini", "pfgw.log")


def detect_helper(environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Locate the helper executable, unless ``NOPFGW`` is set."""
    environ = os.environ if environ is None else environ
    if "NOPFGW" in environ:
        return None
    for name in HELPER_NAMES:
        found = shutil.which(name)
        if found:
            return found
    for path in HELPER_PATHS:
        if os.path.isfile(path) and os.access(path, os.X_OK):
            return path
    return None


class HelperOracle(PrimalityOracle):
    """Screens with an external executable, confirms with ``confirm``.

    The value under test is written in decimal to ``interchange``; an exit
    status of 1 means composite, anything else is re-checked in process.
    """

    name = "PFGW"
    prescreen = False

    def __init__(self, executable: str, interchange: Path,
                 confirm: Optional[PrimalityOracle] = None,
                 runner: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self.executable = executable
        self.interchange = Path(interchange)
        self.confirm = confirm or BpswOracle()
        self.runner = runner

    def screen(self, n) -> bool:
        try:
            self.interchange.write_text(decimal_string(n) + "\n")
            result = self.runner(
                [self.executable, *HELPER_ARGS, str(self.interchange)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                cwd=str(self.interchange.parent),
            )
        except OSError as exc:
            raise HelperUnavailable(f"{self.executable}: {exc}") from exc
        return result.returncode != 1

    def is_probable_prime(self, n, reps: int = 1, trial_limit: int = 1000) -> bool:
        if not self.screen(n):
            return False
        return self.confirm.is_probable_prime(n, reps, trial_limit)

    def cleanup(self) -> None:
        workdir = self.interchange.parent
        for path in (self.interchange, *(workdir / name for name in HELPER_LITTER)):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
