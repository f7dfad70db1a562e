"""Checkpoint and sieve snapshot files for long interior searches.

Per gap ``G`` the work directory may hold::

    gG.bak   G  P1%10^7  next-offset  seconds-this-gap  seconds-total
    gG.siv   G  P1%10^7  checksum        (header)
             one surviving offset per line
    gG.div   offset  least-divisor       (diagnostics only)

A checkpoint or snapshot whose header does not match the candidate, or
whose checksum does not add up, is ignored.
"""
from __future__ import annotations

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

import numpy as np

from gapcheck.config import debug
from gapcheck.errors import CheckpointIntegrityError, ResourceError
from gapcheck.records import GapCandidate

DEFAULT_INTERVAL = 60.0
MIN_INTERVAL = 5.0


@dataclass
class Checkpoint:
    gap: int
    fingerprint: int
    resume_offset: int
    elapsed_gap: float
    elapsed_total: float

    def to_line(self) -> str:
        return (f"{self.gap}  {self.fingerprint}  {self.resume_offset}  "
                f"{self.elapsed_gap:.3f}  {self.elapsed_total:.3f}\n")

    @classmethod
    def from_line(cls, line: str) -> "Checkpoint":
        parts = line.split()
        if len(parts) != 5:
            raise CheckpointIntegrityError(f"expected 5 fields, got {len(parts)}")
        try:
            gap, fp, offset = (int(p) for p in parts[:3])
            elapsed_gap, elapsed_total = float(parts[3]), float(parts[4])
        except ValueError as exc:
            raise CheckpointIntegrityError(str(exc)) from exc
        if offset < 2 or offset & 1 or elapsed_gap < 0:
            raise CheckpointIntegrityError(f"bad resume offset {offset}")
        return cls(gap, fp, offset, elapsed_gap, max(elapsed_total, elapsed_gap))

    def matches(self, candidate: GapCandidate) -> bool:
        return self.gap == candidate.gap and self.fingerprint == candidate.fingerprint


def atomic_write(path: Path, text: str) -> None:
    """Write-then-flush-then-rename, so a crash leaves the old file intact."""
    tmp = path.with_name(path.name + ".tmp")
    try:
        with open(tmp, "w") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except OSError as exc:
        raise ResourceError(f"Unable to write {path}: {exc}") from exc


def _remove(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


class CheckpointManager:
    """Owns the per-gap checkpoint and sieve files in ``workdir``."""

    def __init__(self, workdir: Union[str, Path] = ".", interval: float = DEFAULT_INTERVAL,
                 keep_files: bool = False, clock: Callable[[], float] = time.monotonic):
        self.workdir = Path(workdir)
        self.interval = max(float(interval), MIN_INTERVAL)
        self.keep_files = keep_files
        self.clock = clock
        self._last_snapshot = clock()

    # ── paths ────────────────────────────────────────────────────────────────
    def checkpoint_path(self, gap: int) -> Path:
        return self.workdir / f"g{gap}.bak"

    def sieve_path(self, gap: int) -> Path:
        return self.workdir / f"g{gap}.siv"

    def divisor_path(self, gap: int) -> Path:
        return self.workdir / f"g{gap}.div"

    # ── resume state ─────────────────────────────────────────────────────────
    def try_resume(self, candidate: GapCandidate) -> Optional[Checkpoint]:
        """Checkpoint for this exact candidate, or None to start from scratch."""
        path = self.checkpoint_path(candidate.gap)
        try:
            with open(path) as f:
                line = f.readline()
        except FileNotFoundError:
            return None
        except OSError as exc:
            debug(f"cannot read {path}: {exc}")
            return None
        try:
            checkpoint = Checkpoint.from_line(line)
        except CheckpointIntegrityError as exc:
            debug(f"ignoring {path}: {exc}")
            return None
        if not checkpoint.matches(candidate):
            debug(f"ignoring {path}: belongs to another P1")
            return None
        return checkpoint

    def arm(self) -> None:
        """Restart the snapshot interval (called when a walk begins)."""
        self._last_snapshot = self.clock()

    def snapshot(self, candidate: GapCandidate, offset: int,
                 elapsed_gap: float, elapsed_total: float) -> Checkpoint:
        checkpoint = Checkpoint(candidate.gap, candidate.fingerprint, offset,
                                elapsed_gap, max(elapsed_total, elapsed_gap))
        atomic_write(self.checkpoint_path(candidate.gap), checkpoint.to_line())
        self._last_snapshot = self.clock()
        return checkpoint

    def maybe_snapshot(self, candidate: GapCandidate, offset: int,
                       elapsed_gap: float, elapsed_total: float) -> Optional[Checkpoint]:
        if self.clock() - self._last_snapshot < self.interval:
            return None
        return self.snapshot(candidate, offset, elapsed_gap, elapsed_total)

    def discard(self, candidate: GapCandidate) -> None:
        """Remove the candidate's files once its search has concluded."""
        _remove(self.checkpoint_path(candidate.gap))
        if not self.keep_files:
            _remove(self.sieve_path(candidate.gap))
            _remove(self.divisor_path(candidate.gap))

    # ── sieve snapshots ──────────────────────────────────────────────────────
    def save_sieve(self, candidate: GapCandidate, state) -> None:
        offsets = state.survivor_offsets()
        lines = [f"{candidate.gap}  {candidate.fingerprint}  {state.checksum}"]
        lines.extend(str(int(o)) for o in offsets)
        atomic_write(self.sieve_path(candidate.gap), "\n".join(lines) + "\n")

    def load_sieve(self, candidate: GapCandidate) -> Optional[np.ndarray]:
        """Surviving offsets from a verified snapshot, else None."""
        path = self.sieve_path(candidate.gap)
        try:
            offsets = self._read_sieve(path, candidate)
        except FileNotFoundError:
            return None
        except (OSError, CheckpointIntegrityError) as exc:
            debug(f"resieving G={candidate.gap}: {exc}")
            return None
        return offsets

    @staticmethod
    def _read_sieve(path: Path, candidate: GapCandidate) -> Optional[np.ndarray]:
        with open(path) as f:
            header = f.readline().split()
            try:
                gap, fp, checksum = (int(h) for h in header)
            except ValueError as exc:
                raise CheckpointIntegrityError(f"bad header in {path}") from exc
            if gap != candidate.gap or fp != candidate.fingerprint:
                raise CheckpointIntegrityError(f"{path} belongs to another P1")
            try:
                offsets = np.array([int(line) for line in f if line.strip()], dtype=np.int64)
            except ValueError as exc:
                raise CheckpointIntegrityError(f"unreadable offset in {path}") from exc
        if offsets.size and (np.any(offsets < 2) or np.any(offsets > 2 * gap) or np.any(offsets & 1)):
            raise CheckpointIntegrityError(f"offset out of range in {path}")
        if int(offsets.sum(dtype=np.int64)) != checksum:
            raise CheckpointIntegrityError(f"checksum mismatch in {path}")
        return offsets

    def save_divisors(self, candidate: GapCandidate, least_divisor: np.ndarray) -> None:
        rows = (f"{offset:10d} {int(least_divisor[offset]):10d}"
                for offset in range(2, min(candidate.gap, least_divisor.size - 1) + 1, 2))
        atomic_write(self.divisor_path(candidate.gap), "\n".join(rows) + "\n")
