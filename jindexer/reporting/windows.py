"""
Proof Window Report

Tiles [start, end) into consecutive 12-hour windows and checks, for each
window, which requested merkles received at least one proof inside it.

Tiling:
- first window starts at `start`, each next one where the previous ended
- the last window is clamped to `end` (it may be shorter than 12h)
- start == end produces no windows

Membership is half-open: windowStart <= t < windowEnd. Proofs are fetched with
an inclusive range [start, end], so a proof stamped exactly at `end` is read
but falls in no window. `close_final_window=True` makes the last window
[windowStart, end] instead.

A window counts as fully proven only when no merkle is missing.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Sequence

from jindexer.persistence.base import ProofStore
from jindexer.timeutil import format_rfc3339

WINDOW_DURATION = timedelta(hours=12)


@dataclass(frozen=True)
class ProofWindow:
    start: datetime
    end: datetime
    proven_merkles: List[str]
    missed_merkles: List[str]

    @property
    def all_proven(self) -> bool:
        return not self.missed_merkles

    def to_dict(self) -> Dict:
        return {
            "start": format_rfc3339(self.start),
            "end": format_rfc3339(self.end),
            "all_proven": self.all_proven,
            "proven_merkles": list(self.proven_merkles),
            "missed_merkles": list(self.missed_merkles),
        }


@dataclass(frozen=True)
class ReportSummary:
    total_windows: int
    fully_proven_windows: int
    missed_windows: int

    def to_dict(self) -> Dict:
        return {
            "total_windows": self.total_windows,
            "fully_proven_windows": self.fully_proven_windows,
            "missed_windows": self.missed_windows,
        }


@dataclass(frozen=True)
class ProofReport:
    merkles: List[str]
    windows: List[ProofWindow]
    summary: ReportSummary

    def to_dict(self) -> Dict:
        return {
            "merkles": list(self.merkles),
            "windows": [w.to_dict() for w in self.windows],
            "summary": self.summary.to_dict(),
        }


def tile_windows(start: datetime, end: datetime, duration: timedelta = WINDOW_DURATION):
    """Consecutive (window_start, window_end) pairs covering [start, end)."""
    if duration <= timedelta(0):
        raise ValueError("window duration must be positive")

    bounds = []
    window_start = start
    while window_start < end:
        window_end = min(window_start + duration, end)
        bounds.append((window_start, window_end))
        window_start = window_end
    return bounds


class ReportEngine:
    """
    Builds compliance reports from the proof store.

    Usage:
        engine = ReportEngine(store)
        report = engine.generate(["ab12...", "cd34..."], start, end)
    """

    def __init__(
        self,
        store: ProofStore,
        window_duration: timedelta = WINDOW_DURATION,
        close_final_window: bool = False
    ):
        self._store = store
        self.window_duration = window_duration
        self.close_final_window = close_final_window
        self._logger = logging.getLogger("ReportEngine")

    def generate(self, merkles: Sequence[str], start: datetime, end: datetime) -> ProofReport:
        """Build the report.

        Raises:
            ValueError: if end is before start
            StoreError: if proof times cannot be read
        """
        if end < start:
            raise ValueError("end_time must be after start_time")

        merkles = list(merkles)
        proof_times = self._store.list_proof_times_by_merkles(merkles, start, end)

        bounds = tile_windows(start, end, self.window_duration)
        windows = []
        for i, (window_start, window_end) in enumerate(bounds):
            closed = self.close_final_window and i == len(bounds) - 1
            windows.append(self._analyze_window(merkles, proof_times, window_start, window_end, closed))

        fully_proven = sum(1 for w in windows if w.all_proven)
        summary = ReportSummary(
            total_windows=len(windows),
            fully_proven_windows=fully_proven,
            missed_windows=len(windows) - fully_proven,
        )

        self._logger.debug(
            f"Report for {len(merkles)} merkles: {summary.total_windows} windows, "
            f"{summary.fully_proven_windows} fully proven"
        )
        return ProofReport(merkles=merkles, windows=windows, summary=summary)

    @staticmethod
    def _analyze_window(
        merkles: List[str],
        proof_times: Dict[str, List[datetime]],
        window_start: datetime,
        window_end: datetime,
        closed: bool
    ) -> ProofWindow:
        proven = []
        missed = []
        for merkle in merkles:
            times = proof_times.get(merkle, [])
            if closed:
                hit = any(window_start <= t <= window_end for t in times)
            else:
                hit = any(window_start <= t < window_end for t in times)

            if hit:
                proven.append(merkle)
            else:
                missed.append(merkle)

        return ProofWindow(
            start=window_start,
            end=window_end,
            proven_merkles=proven,
            missed_merkles=missed,
        )
