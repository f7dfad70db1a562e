"""Big-integer arithmetic used by the gap checker.

Everything here works on plain Python ints; when gmpy2 is installed the
hot paths (string conversion, powmod, remainders) run on ``mpz`` instead.
The closed-form evaluator accepts the BASIC/FORTRAN style formulas used in
gap listings, e.g. ``293#/30030 - 12``, ``2^127-1`` or ``1e100+267``.
"""
from __future__ import annotations

import ast
import math
import operator
import re
from functools import lru_cache
from typing import Iterator, List, Optional, Tuple

import numpy as np
from sympy import isprime, primerange, primorial

from gapcheck.errors import ExpressionError

try:
    import gmpy2  # type: ignore
    HAVE_GMPY2 = True
except Exception:
    HAVE_GMPY2 = False


MAX_DIGITS = 300_000            # largest P1 accepted, in decimal digits
GAP_CEILING = 999_999_999       # anything larger is corrupt input
FINGERPRINT_MODULUS = 10_000_000
WITNESS_LIMIT = 1_000_000       # trial divisors tried when diagnosing composites
PRIME16_LIMIT = 65_536
WHEEL30 = (1, 7, 11, 13, 17, 19, 23, 29)


# ─────────────────────────────────────────────────────────────────────────────
# 1) Big-integer primitives
# ─────────────────────────────────────────────────────────────────────────────
def to_big(n):
    """Return ``n`` as the fastest available big-integer type."""
    if HAVE_GMPY2:
        return gmpy2.mpz(n)
    return int(n)


def powmod(base, exp, mod):
    if HAVE_GMPY2:
        return gmpy2.powmod(base, exp, mod)
    return pow(base, exp, mod)


def decimal_string(n) -> str:
    if HAVE_GMPY2:
        return gmpy2.mpz(n).digits(10)
    return str(n)


def decimal_length(n) -> int:
    """Exact number of decimal digits in ``|n|``."""
    s = decimal_string(n)
    return len(s) - 1 if s.startswith("-") else len(s)


def fingerprint(n) -> int:
    """Cheap reduction of ``n`` used to tell checkpoints apart."""
    return int(n % FINGERPRINT_MODULUS)


# ─────────────────────────────────────────────────────────────────────────────
# 2) Scientific notation and closed-form expressions → exact int
# ─────────────────────────────────────────────────────────────────────────────
def parse_sci(s: str, max_digits: int = MAX_DIGITS) -> int:
    """Parse ``1e+100``, ``2.5e3`` or a plain integer into an exact int."""
    s = s.strip().lower().replace('+', '')
    if 'e' in s:
        coeff_str, exp_str = s.split('e', 1)
        exp = int(exp_str)
        if '.' in coeff_str:
            a, b = coeff_str.split('.', 1)
            coeff = int(a + b)
            exp -= len(b)
        else:
            coeff = int(coeff_str)
        if exp > max_digits:
            raise ExpressionError(f"10^{exp} exceeds {max_digits} digits")
        if exp >= 0:
            return coeff * (10 ** exp)
        q, r = divmod(coeff, 10 ** -exp)
        if r:
            raise ExpressionError(f"{s} is not an integer")
        return q
    return int(s)


_SCI_RE = re.compile(r"(?<![\w.])(\d+(?:\.\d+)?[eE]\+?\d+)")
_POSTFIX_RE = re.compile(r"(\d+)\s*([#!])")
_LITERAL_RE = re.compile(r"\+?\d+")


def _rewrite(text: str, max_digits: int) -> str:
    s = text.strip().replace("^", "**")
    s = _SCI_RE.sub(lambda m: str(parse_sci(m.group(1), max_digits)), s)
    return _POSTFIX_RE.sub(
        lambda m: f"{'_primorial' if m.group(2) == '#' else '_factorial'}({m.group(1)})", s)


class _Evaluator:
    """Walks a restricted Python AST; only integer arithmetic is allowed."""

    _binops = {
        ast.Add: operator.add,
        ast.Sub: operator.sub,
        ast.Mult: operator.mul,
        ast.Mod: operator.mod,
    }

    def __init__(self, max_digits: int):
        self.max_digits = max_digits
        self.max_bits = int(max_digits * math.log2(10)) + 64

    def _check(self, value):
        if value.bit_length() > self.max_bits:
            raise ExpressionError(f"intermediate value exceeds {self.max_digits} digits")
        return value

    def visit(self, node):
        if isinstance(node, ast.Expression):
            return self.visit(node.body)
        if isinstance(node, ast.Constant) and type(node.value) is int:
            return to_big(node.value)
        if isinstance(node, ast.UnaryOp) and isinstance(node.op, (ast.UAdd, ast.USub)):
            value = self.visit(node.operand)
            return -value if isinstance(node.op, ast.USub) else value
        if isinstance(node, ast.BinOp):
            return self._binop(node)
        if (isinstance(node, ast.Call) and isinstance(node.func, ast.Name)
                and node.func.id in ("_primorial", "_factorial")
                and len(node.args) == 1 and not node.keywords):
            arg = self.visit(node.args[0])
            if node.func.id == "_primorial":
                return self._primorial(int(arg))
            return self._factorial(int(arg))
        raise ExpressionError(f"unsupported syntax: {type(node).__name__}")

    def _binop(self, node):
        left = self.visit(node.left)
        right = self.visit(node.right)
        op = type(node.op)
        if op in self._binops:
            if op is ast.Mod and right == 0:
                raise ExpressionError("modulo by zero")
            if op is ast.Mult and left.bit_length() + right.bit_length() > self.max_bits + 1:
                raise ExpressionError(f"product exceeds {self.max_digits} digits")
            return self._check(self._binops[op](left, right))
        if op in (ast.Div, ast.FloorDiv):
            if right == 0:
                raise ExpressionError("division by zero")
            q, r = divmod(left, right)
            if r and op is ast.Div:
                raise ExpressionError("inexact division")
            return q
        if op is ast.Pow:
            if right < 0:
                raise ExpressionError("negative exponent")
            if abs(left) > 1 and right * (abs(left).bit_length() - 1) > self.max_bits:
                raise ExpressionError(f"power exceeds {self.max_digits} digits")
            return self._check(left ** int(right))
        raise ExpressionError(f"unsupported operator: {op.__name__}")

    def _primorial(self, n: int):
        if n < 2:
            return to_big(1)
        if n / math.log(10) > self.max_digits * 1.1:
            raise ExpressionError(f"{n}# exceeds {self.max_digits} digits")
        return self._check(to_big(int(primorial(n, nth=False))))

    def _factorial(self, n: int):
        if n < 0:
            raise ExpressionError("factorial of a negative number")
        if n > 1 and math.lgamma(n + 1) / math.log(10) > self.max_digits:
            raise ExpressionError(f"{n}! exceeds {self.max_digits} digits")
        return to_big(math.factorial(n))


def evaluate_expression(text: str, max_digits: int = MAX_DIGITS):
    """Evaluate a closed-form prime expression exactly.

    Raises ExpressionError for anything that is not plain integer
    arithmetic or that would grow past ``max_digits`` digits.
    """
    if not text or not text.strip():
        raise ExpressionError("empty expression")
    try:
        source = _rewrite(text, max_digits)
        tree = ast.parse(source, mode="eval")
        return _Evaluator(max_digits).visit(tree)
    except (SyntaxError, ValueError) as exc:
        raise ExpressionError(f"cannot parse {text[:40]!r}") from exc
    except (RecursionError, MemoryError) as exc:
        raise ExpressionError(f"expression too deeply nested: {text[:40]!r}") from exc


def parse_prime_field(text: str, max_digits: int = MAX_DIGITS):
    """Decode a prime field: decimal literal first, formula second."""
    s = "".join(text.split())
    if _LITERAL_RE.fullmatch(s):
        if len(s.lstrip("+")) > max_digits:
            raise ExpressionError(f"literal exceeds {max_digits} digits")
        return to_big(s.lstrip("+"))
    return evaluate_expression(s, max_digits)


def abbreviate(text: str, digits: int, width: int) -> str:
    """Shorten a long prime for reports: ``4165633..(300D)..``."""
    if len(text) <= width:
        return text
    tag = f"..({digits}D).."
    return text[: max(width - len(tag), 0)] + tag


# ─────────────────────────────────────────────────────────────────────────────
# 3) Small primes and trial division
# ─────────────────────────────────────────────────────────────────────────────
@lru_cache(maxsize=None)
def primes_below(limit: int) -> np.ndarray:
    return np.fromiter(primerange(2, limit), dtype=np.int64)


def primes16() -> np.ndarray:
    """All primes below 2^16 (6542 of them, 2 through 65521)."""
    return primes_below(PRIME16_LIMIT)


def wheel30_primes(start: int, limit: int) -> Iterator[int]:
    """Yield primes in ``[start, limit]`` drawn from the residues 30k + WHEEL30."""
    base = start - start % 30
    while True:
        for r in WHEEL30:
            d = base + r
            if d > limit:
                return
            if d >= start and isprime(d):
                yield d
        base += 30


@lru_cache(maxsize=None)
def _prime_blocks(limit: int, block: int = 64) -> List[Tuple[int, Tuple[int, ...]]]:
    primes = [int(p) for p in primes_below(limit)]
    out = []
    for i in range(0, len(primes), block):
        chunk = tuple(primes[i:i + block])
        out.append((math.prod(chunk), chunk))
    return out


def least_prime_divisor(n, limit: int = WITNESS_LIMIT) -> Optional[int]:
    """Smallest prime ``p < limit`` with ``p | n`` and ``p < n``, else None.

    Reduces ``n`` once per block of 64 primes, then works on the small
    remainder, so huge ``n`` costs only a few thousand big divisions.
    """
    if n < 4:
        return None
    for prod, chunk in _prime_blocks(limit):
        r = int(n % prod)
        for p in chunk:
            if r % p == 0:
                return p if p < n else None
    return None
