"""Shared helpers: a cheap in-process backend with real, verifiable digests."""

from __future__ import annotations

from typing import Callable, List, Optional, Tuple

import pytest

from lowhash import alphabet, sha256
from lowhash.search import Candidate, DispatchError, SearchBackend, reduce_group

FIRST_TAIL = sha256.tail_word(0, 0, 0)


def real_candidate(wave_id: int, lane_id: int, tail: int = FIRST_TAIL) -> Candidate:
    digest = sha256.compress_reference(
        alphabet.encode_word(wave_id), alphabet.encode_word(lane_id), tail
    )
    return Candidate(wave_id, lane_id, tail, digest)


class StubSearch(SearchBackend):
    """Backend whose lanes evaluate one tail each instead of 62**3."""

    name = "stub"

    def __init__(
        self,
        lane_fn: Callable[[int, int], Candidate] = real_candidate,
        groups: int = 2,
        lanes_per_group: int = 2,
        slots: int = 4,
        fail_at: Optional[int] = None,
    ):
        super().__init__(groups, lanes_per_group, slots)
        self.lane_fn = lane_fn
        self.fail_at = fail_at
        self.launched: List[Tuple[int, int]] = []
        self.fetched: List[List[int]] = []
        self.waits = 0
        self.closed = False

    def launch(self, wave_id: int, slot: int = 0) -> None:
        if wave_id == self.fail_at:
            raise DispatchError("clEnqueueNDRangeKernel", "CL_OUT_OF_RESOURCES", wave_id)
        self.launched.append((wave_id, slot))
        n = self.lanes_per_group
        for g in range(self.groups):
            best = reduce_group(self.lane_fn(wave_id, g * n + i) for i in range(n))
            self.host_buf[slot, g] = best.to_slot()

    def wait(self) -> None:
        self.waits += 1

    def fetch(self, slots):
        self.fetched.append(list(slots))
        return super().fetch(slots)

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def stub() -> StubSearch:
    return StubSearch()
