"""Command line entry point: ``lowhash [START]``.

Searches for the tail giving the smallest SHA-256 digest, starting at wave
id START (default 0) so a campaign can be resumed or split across hosts.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from dataclasses import dataclass
from typing import Optional, Sequence

from . import alphabet
from .digest import to_hex
from .host import DEFAULT_BATCH_SIZE, BatchReport, Orchestrator
from .search import BACKENDS, Candidate, DispatchError, open_backend

logger = logging.getLogger(__name__)

FINAL_MARKER = "=== final ==="


@dataclass
class SearchConfig:
    start: int
    batches: Optional[int]
    batch_size: int
    groups: Optional[int]
    lanes: Optional[int]
    backend: str
    workers: Optional[int]
    last_wave_only: bool
    verbose: int


def die(msg: str, status: int = 1):
    print(msg, file=sys.stderr, flush=True)
    sys.exit(status)


def parse_args(argv: Optional[Sequence[str]] = None) -> SearchConfig:
    parser = argparse.ArgumentParser(prog="lowhash", description=__doc__.splitlines()[0])
    parser.add_argument("start", nargs="?", type=int, default=0,
                        help="starting wave id (default: 0)")
    parser.add_argument("--batches", type=int, default=None,
                        help="stop after this many batches (default: run until interrupted)")
    parser.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE,
                        help=f"waves per batch (default: {DEFAULT_BATCH_SIZE})")
    parser.add_argument("--groups", type=int, default=None,
                        help="groups per wave (default: picked per device)")
    parser.add_argument("--lanes", type=int, default=None,
                        help="lanes per group (default: picked per device)")
    parser.add_argument("--backend", choices=BACKENDS, default="auto")
    parser.add_argument("--workers", type=int, default=None,
                        help="threads for the numpy backend")
    parser.add_argument("--last-wave-only", action="store_true",
                        help="read back only the final wave of each batch")
    parser.add_argument("-v", "--verbose", action="count", default=0)
    args = parser.parse_args(argv)

    if not 0 <= args.start < alphabet.CODE_SPACE:
        parser.error(f"start must be in [0, {alphabet.CODE_SPACE})")
    if args.batch_size < 1:
        parser.error("--batch-size must be at least 1")
    if args.batches is not None and args.batches < 0:
        parser.error("--batches must not be negative")

    return SearchConfig(
        start=args.start,
        batches=args.batches,
        batch_size=args.batch_size,
        groups=args.groups,
        lanes=args.lanes,
        backend=args.backend,
        workers=args.workers,
        last_wave_only=args.last_wave_only,
        verbose=args.verbose,
    )


# ---------- output ----------
def format_progress(report: BatchReport) -> str:
    return (f"waves {report.first_wave}-{report.last_wave}: "
            f"{report.rate / 1e9:.3f} GH/s, {report.elapsed * 1000:.0f} ms")


def format_best(cand: Candidate) -> str:
    return f"{cand.message.decode('ascii')}\n{to_hex(cand.digest)}"


def print_best(cand: Candidate) -> None:
    print(format_best(cand), flush=True)


def print_progress(report: BatchReport) -> None:
    print(format_progress(report), flush=True)


def print_final(best: Optional[Candidate]) -> None:
    print(FINAL_MARKER, flush=True)
    if best is None:
        print("no candidate found", flush=True)
    else:
        print_best(best)


# ---------- main ----------
def main(argv: Optional[Sequence[str]] = None) -> int:
    cfg = parse_args(argv)
    if cfg.verbose and not logging.getLogger().handlers:
        logging.basicConfig(level=logging.DEBUG if cfg.verbose > 1 else logging.INFO)

    try:
        backend = open_backend(cfg.backend, cfg.groups, cfg.lanes,
                               slots=cfg.batch_size, workers=cfg.workers)
    except DispatchError as exc:
        die(f"lowhash: {exc}")
    except ValueError as exc:
        die(f"lowhash: {exc}", 2)

    try:
        orch = Orchestrator(backend, start_wave=cfg.start, batch_size=cfg.batch_size,
                            last_wave_only=cfg.last_wave_only,
                            on_new_best=print_best, on_batch=print_progress)
    except ValueError as exc:
        backend.close()
        die(f"lowhash: {exc}", 2)

    def request_stop(signum, frame):
        # a second interrupt falls through to KeyboardInterrupt
        logger.info("interrupt received, stopping after this batch")
        orch.stop()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    previous = signal.signal(signal.SIGINT, request_stop)
    try:
        orch.run(cfg.batches)
    except KeyboardInterrupt:
        logger.info("interrupted mid-batch")
    except DispatchError as exc:
        die(f"lowhash: {exc}")
    except ValueError as exc:
        die(f"lowhash: {exc}", 2)
    finally:
        signal.signal(signal.SIGINT, previous)
        backend.close()
        print_final(orch.best)
    return 0


if __name__ == "__main__":
    sys.exit(main())
