# search.py  •  parallel search stage: lanes, group reduction, backends
#
# A backend owns one group-best buffer of shape (slots, groups, SLOT_WORDS).
# While a wave runs the backend is its only writer; the host reads it only
# after wait() returns.

from __future__ import annotations

import contextlib
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pyopencl as cl

from . import alphabet, digest, sha256
from .digest import Digest
from .kernel import SLOT_WORDS, render_kernel

logger = logging.getLogger(__name__)

TAILS_PER_LANE = alphabet.BASE ** 3
MAX_FAN_OUT = alphabet.CODE_SPACE
NUMPY_GROUPS = 2
NUMPY_LANES = 4

# every tail word in sweep order: outer, middle, inner symbol
_SYM = np.frombuffer(alphabet.SYMBOLS.encode("ascii"), dtype=np.uint8).astype(np.uint32)
TAIL_WORDS = (
    (_SYM[:, None, None] << np.uint32(24))
    | (_SYM[None, :, None] << np.uint32(16))
    | (_SYM[None, None, :] << np.uint32(8))
    | np.uint32(sha256.PAD_BYTE)
).reshape(-1)


class DispatchError(RuntimeError):
    """Raised when the parallel stage or its buffers/sync calls fail."""

    def __init__(self, operation: str, detail: str, wave_id: Optional[int] = None):
        where = "" if wave_id is None else f" (wave {wave_id})"
        super().__init__(f"{operation} failed{where}: {detail}")
        self.operation = operation
        self.wave_id = wave_id


# ---------- candidates ----------
@dataclass(frozen=True)
class Candidate:
    wave_id: int
    lane_id: int
    tail: int
    digest: Digest

    @property
    def nonce(self):
        """(tag, lane code, tail) words as they sit in the message."""
        return (alphabet.encode_word(self.wave_id), alphabet.encode_word(self.lane_id), self.tail)

    @property
    def message(self) -> bytes:
        return sha256.message_bytes(*self.nonce)

    @classmethod
    def from_slot(cls, row: Sequence[int]) -> "Candidate":
        wave_id, lane_id, tail, *words = (int(x) for x in row)
        return cls(wave_id, lane_id, tail, tuple(words))

    def to_slot(self) -> np.ndarray:
        return np.array((self.wave_id, self.lane_id, self.tail) + tuple(self.digest), dtype=np.uint32)


def lower(a: Candidate, b: Candidate) -> Candidate:
    # ties keep a
    return b if digest.less_than(b.digest, a.digest) else a


def reduce_group(candidates: Iterable[Candidate]) -> Candidate:
    return functools.reduce(lower, candidates)


def search_lane(wave_id: int, lane_id: int) -> Candidate:
    """Sweep every tail for one (wave, lane) pair and keep the smallest digest."""
    m_a = alphabet.encode_word(wave_id)
    m_b = alphabet.encode_word(lane_id)
    words = sha256.compress_many(m_a, m_b, TAIL_WORDS)
    i = digest.argmin(words)
    return Candidate(wave_id, lane_id, int(TAIL_WORDS[i]), tuple(int(x) for x in words[:, i]))


def check_fan_out(groups: int, lanes_per_group: int) -> None:
    if groups < 1 or lanes_per_group < 1:
        raise ValueError("groups and lanes per group must be at least 1")
    if groups * lanes_per_group > MAX_FAN_OUT:
        raise ValueError(
            f"fan-out {groups} x {lanes_per_group} exceeds the lane id space of {MAX_FAN_OUT}"
        )


# ---------- backends ----------
class SearchBackend:
    """Common shape of the parallel stage; subclasses fill in launch/wait/fetch."""

    name = "base"

    def __init__(self, groups: int, lanes_per_group: int, slots: int = 1):
        check_fan_out(groups, lanes_per_group)
        if slots < 1:
            raise ValueError("a backend needs at least one result slot")
        self.groups = groups
        self.lanes_per_group = lanes_per_group
        self.slots = slots
        self.host_buf = np.zeros((slots, groups, SLOT_WORDS), dtype=np.uint32)

    @property
    def fan_out(self) -> int:
        return self.groups * self.lanes_per_group

    def launch(self, wave_id: int, slot: int = 0) -> None:
        raise NotImplementedError

    def wait(self) -> None:
        pass

    def fetch(self, slots: Sequence[int]) -> np.ndarray:
        return self.host_buf[list(slots)].copy()

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class NumpySearch(SearchBackend):
    """Lanes as vectorized numpy sweeps on a thread pool."""

    name = "numpy"

    def __init__(self, groups: int, lanes_per_group: int, slots: int = 1,
                 workers: Optional[int] = None):
        super().__init__(groups, lanes_per_group, slots)
        self.pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="lane")

    def launch(self, wave_id: int, slot: int = 0) -> None:
        n = self.lanes_per_group
        lanes = list(self.pool.map(functools.partial(search_lane, wave_id), range(self.fan_out)))
        for g in range(self.groups):
            best = reduce_group(lanes[g * n:(g + 1) * n])
            self.host_buf[slot, g] = best.to_slot()

    def close(self) -> None:
        self.pool.shutdown(wait=True)


@dataclass
class DeviceParams:
    groups: int
    lanes_per_group: int


def pick_device_params(device) -> DeviceParams:
    vendor = device.vendor.lower()
    cu = device.max_compute_units or 1

    if "nvidia" in vendor or "advanced micro devices" in vendor or "amd" in vendor:
        groups, local = cu * 8, 256
    elif "apple" in vendor:
        groups, local = cu * 4, 256
    else:  # intel / others / cpu
        groups, local = cu * 4, 64

    local = min(local, device.max_work_group_size)
    groups = max(1, min(groups, MAX_FAN_OUT // local))
    return DeviceParams(groups=groups, lanes_per_group=local)


class CLSearch(SearchBackend):
    """Lanes as OpenCL work items, one work group per group."""

    name = "opencl"

    def __init__(self, groups: Optional[int] = None, lanes_per_group: Optional[int] = None,
                 slots: int = 1, device=None):
        self.out_dev = None
        self.device = device or find_device()
        if self.device is None:
            raise DispatchError("clGetDeviceIDs", "no OpenCL devices found")
        params = pick_device_params(self.device)
        super().__init__(groups if groups is not None else params.groups,
                         lanes_per_group if lanes_per_group is not None else params.lanes_per_group,
                         slots)

        with self._dispatch("clCreateContext"):
            self.ctx = cl.Context(devices=[self.device])
            self.q = cl.CommandQueue(self.ctx, device=self.device)
        src, options = render_kernel(self.lanes_per_group)
        with self._dispatch("clBuildProgram"):
            self.prg = cl.Program(self.ctx, src).build(options=options)
            self.kernel = cl.Kernel(self.prg, "search_wave")
        with self._dispatch("clCreateBuffer"):
            self.out_dev = cl.Buffer(self.ctx, cl.mem_flags.WRITE_ONLY, size=self.host_buf.nbytes)
        logger.info("Using device: %s (%d groups x %d lanes)",
                    self.device.name, self.groups, self.lanes_per_group)

    @contextlib.contextmanager
    def _dispatch(self, operation: str, wave_id: Optional[int] = None):
        try:
            yield
        except cl.Error as exc:
            raise DispatchError(_cl_call(exc, operation), str(exc), wave_id) from exc

    def launch(self, wave_id: int, slot: int = 0) -> None:
        # no wait: waves queue back-to-back until wait()
        with self._dispatch("clEnqueueNDRangeKernel", wave_id):
            self.kernel(self.q, (self.fan_out,), (self.lanes_per_group,),
                        np.uint32(wave_id), np.uint32(slot), self.out_dev)

    def wait(self) -> None:
        with self._dispatch("clFinish"):
            self.q.finish()

    def fetch(self, slots: Sequence[int]) -> np.ndarray:
        lo, hi = min(slots), max(slots) + 1
        row_bytes = self.host_buf[0].nbytes
        with self._dispatch("clEnqueueReadBuffer"):
            cl.enqueue_copy(self.q, self.host_buf[lo:hi], self.out_dev,
                            src_offset=lo * row_bytes).wait()
        return super().fetch(slots)

    def close(self) -> None:
        if self.out_dev is not None:
            self.out_dev.release()
            self.out_dev = None


def _cl_call(exc, fallback: str) -> str:
    # pyopencl errors carry the failing API routine
    routine = getattr(exc, "routine", None)
    if callable(routine):
        routine = routine()
    return routine or fallback


def find_device():
    """First GPU device on any platform, else any OpenCL device, else None."""
    try:
        platforms = cl.get_platforms()
    except cl.Error as exc:
        logger.info("OpenCL unavailable: %s", exc)
        return None

    for kind in (cl.device_type.GPU, cl.device_type.ALL):
        for platform in platforms:
            try:
                devices = platform.get_devices(kind)
            except cl.Error:
                continue
            if devices:
                return devices[0]
    return None


BACKENDS = ("auto", "opencl", "numpy")


def open_backend(name: str = "auto", groups: Optional[int] = None,
                 lanes_per_group: Optional[int] = None, slots: int = 1,
                 workers: Optional[int] = None) -> SearchBackend:
    if name not in BACKENDS:
        raise ValueError(f"unknown backend {name!r}, expected one of {', '.join(BACKENDS)}")

    if name in ("auto", "opencl"):
        device = find_device()
        if device is not None:
            return CLSearch(groups, lanes_per_group, slots, device=device)
        if name == "opencl":
            raise DispatchError("clGetDeviceIDs", "no OpenCL devices found")
        logger.info("No OpenCL device, falling back to numpy lanes")

    return NumpySearch(groups if groups is not None else NUMPY_GROUPS,
                       lanes_per_group if lanes_per_group is not None else NUMPY_LANES,
                       slots, workers=workers)


def candidates(rows: np.ndarray) -> List[Candidate]:
    """Flatten fetched slot rows into candidates."""
    return [Candidate.from_slot(row) for row in rows.reshape(-1, SLOT_WORDS)]
