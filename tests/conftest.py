import io

import pytest
from sympy import nextprime

from gapcheck.config import Settings
from gapcheck.engine import EngineContext, GapChecker
from gapcheck.records import GapCandidate


class FakeClock:
    """Manually advanced stand-in for time.monotonic."""

    def __init__(self, start=1000.0, step=0.0):
        self.now = start
        self.step = step

    def __call__(self):
        value = self.now
        self.now += self.step
        return value

    def advance(self, seconds):
        self.now += seconds


def candidate(p1, gap, raw=None):
    p1 = int(p1)
    return GapCandidate(gap=gap, p1=p1, p1_digit_count=len(str(p1)),
                        raw_line=raw or f"{gap:6d}  {p1}", p1_text=str(p1))


def true_gap(p1):
    return int(nextprime(p1)) - int(p1)


@pytest.fixture
def settings():
    return Settings.from_environ({"NOPFGW": "1"})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_context(tmp_path, settings, clock):
    """Build an EngineContext in a temp dir with captured output streams."""

    def _make(settings=settings, clock=clock, **overrides):
        status, errors = io.StringIO(), io.StringIO()
        ctx = EngineContext.create(settings, workdir=tmp_path, environ={"NOPFGW": "1"},
                                   clock=clock, status=status, errors=errors)
        for name, value in overrides.items():
            setattr(ctx, name, value)
        ctx.status_stream, ctx.error_stream = status, errors
        return ctx

    return _make


@pytest.fixture
def checker(make_context):
    return GapChecker(make_context())
