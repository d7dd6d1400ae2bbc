# host.py  •  batch driver: dispatch waves, verify group bests, keep the global best

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from . import alphabet
from .digest import Digest, less_than, to_hex, worst_digest
from .search import TAILS_PER_LANE, Candidate, SearchBackend, candidates
from .sha256 import compress_reference

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 4


def hash_rate(waves: int, groups: int, lanes_per_group: int, elapsed: float) -> float:
    """Hashes per second for a batch; 0.0 when no time was measured."""
    if elapsed <= 0:
        return 0.0
    return waves * groups * lanes_per_group * TAILS_PER_LANE / elapsed


@dataclass
class BatchReport:
    first_wave: int
    last_wave: int
    elapsed: float          # seconds
    rate: float             # hashes / second
    inspected: int = 0
    improved: int = 0


class Orchestrator:
    """Runs batches of waves on a backend and folds verified results into one best.

    Every wave of a batch is launched back-to-back; the host blocks once per
    batch on ``backend.wait()`` and only then reads the result buffer. With
    ``last_wave_only`` only the final wave of each batch is read back.
    """

    def __init__(
        self,
        backend: SearchBackend,
        start_wave: int = 0,
        batch_size: int = DEFAULT_BATCH_SIZE,
        last_wave_only: bool = False,
        on_new_best: Optional[Callable[[Candidate], None]] = None,
        on_batch: Optional[Callable[[BatchReport], None]] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        if not 1 <= batch_size <= backend.slots:
            raise ValueError(f"batch size must be in [1, {backend.slots}], got {batch_size}")
        if not 0 <= start_wave < alphabet.CODE_SPACE:
            raise ValueError(f"start wave {start_wave} outside [0, {alphabet.CODE_SPACE})")
        self.backend = backend
        self.batch_size = batch_size
        self.last_wave_only = last_wave_only
        self.on_new_best = on_new_best
        self.on_batch = on_batch
        self.clock = clock

        self.best: Optional[Candidate] = None
        self.next_wave = start_wave
        self.batches = 0
        self.mismatches = 0
        self._stop = False

    @property
    def best_digest(self) -> Digest:
        return worst_digest() if self.best is None else self.best.digest

    @property
    def exhausted(self) -> bool:
        return self.next_wave >= alphabet.CODE_SPACE

    def stop(self) -> None:
        """Ask run() to return at the next batch boundary."""
        self._stop = True

    # ---------- verification ----------
    def verify(self, cand: Candidate) -> Candidate:
        """Recompute the digest from the nonce; the reported digest is never trusted."""
        digest = compress_reference(*cand.nonce)
        if digest != cand.digest:
            self.mismatches += 1
            logger.warning(
                "digest mismatch for wave %d lane %d tail %08x: reported %s, recomputed %s",
                cand.wave_id, cand.lane_id, cand.tail, to_hex(cand.digest), to_hex(digest),
            )
            cand = dataclasses.replace(cand, digest=digest)
        return cand

    def fold(self, rows: np.ndarray) -> int:
        improved = 0
        for cand in candidates(rows):
            cand = self.verify(cand)
            if less_than(cand.digest, self.best_digest):
                self.best = cand
                improved += 1
                if self.on_new_best is not None:
                    self.on_new_best(cand)
        return improved

    # ---------- batches ----------
    def run_batch(self, waves: Optional[int] = None) -> BatchReport:
        """Run one batch of *waves* waves (default: the batch size)."""
        waves = self.batch_size if waves is None else waves
        if not 1 <= waves <= self.batch_size:
            raise ValueError(f"waves per batch must be in [1, {self.batch_size}], got {waves}")
        first = self.next_wave
        last = first + waves - 1
        if last >= alphabet.CODE_SPACE:
            raise ValueError(f"wave id {last} outside [0, {alphabet.CODE_SPACE})")

        start = self.clock()
        for slot in range(waves):
            self.backend.launch(first + slot, slot)
        self.backend.wait()
        elapsed = self.clock() - start
        rate = hash_rate(waves, self.backend.groups, self.backend.lanes_per_group, elapsed)

        slots = [waves - 1] if self.last_wave_only else list(range(waves))
        rows = self.backend.fetch(slots)
        improved = self.fold(rows)

        self.next_wave = last + 1
        self.batches += 1
        report = BatchReport(first, last, elapsed, rate,
                             inspected=len(slots) * self.backend.groups, improved=improved)
        if self.on_batch is not None:
            self.on_batch(report)
        return report

    def run(self, batches: Optional[int] = None) -> Optional[Candidate]:
        """Run until *batches* are done (forever when None) or stop() is called."""
        done = 0
        while not self._stop and (batches is None or done < batches):
            if self.exhausted:
                logger.warning("wave id space exhausted at wave %d", self.next_wave)
                break
            # the final batch shrinks to the ids left in the code space
            self.run_batch(min(self.batch_size, alphabet.CODE_SPACE - self.next_wave))
            done += 1
        if self._stop:
            logger.info("stopped after %d batches", self.batches)
        return self.best
