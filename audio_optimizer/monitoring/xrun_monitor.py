"""
XrunMonitor: sliding-window xrun counts over pluggable log sources.

Windows are recomputed from raw samples on every call. There are no
incremental counters. Samples older than the largest window are pruned
before counting, so they can never appear in any total.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timedelta, timezone
from typing import Deque, Dict, Iterable, List, Mapping, Optional

from ..config.settings import XrunSettings
from ..exceptions import LogSourceError
from .data_models import Severity, XrunReport, XrunSample
from .sources import LogSourceAdapter, to_utc

logger = logging.getLogger(__name__)


def classify_severity(
    window_counts: Mapping[int, int],
    hardware_errors: int = 0,
    threshold: int = 5,
    window_seconds: int = 60,
    recent_system: int = 0,
) -> Severity:
    """Perfect when the window total and ``recent_system`` are both zero.

    ``recent_system`` is the system-journal count over the longer hardware
    window, so problems from a few minutes ago still rule out Perfect.
    Mild below ``threshold`` with no hardware errors, else Severe.
    """
    total = window_counts.get(window_seconds, 0)
    if total == 0 and recent_system == 0:
        return Severity.PERFECT
    if total < threshold and hardware_errors == 0:
        return Severity.MILD
    return Severity.SEVERE


class XrunMonitor:
    """Rolling per-source sample buffers with concurrent adapter polling."""

    def __init__(
        self,
        adapters: Iterable[LogSourceAdapter],
        settings: Optional[XrunSettings] = None,
        severe_sources: Iterable[str] = (),
    ):
        self.adapters = list(adapters)
        self.settings = settings or XrunSettings()
        self._samples: Dict[str, Deque[XrunSample]] = {a.name: deque() for a in self.adapters}
        self._cursors: Dict[str, datetime] = {}
        self._severe_sources = {a.name for a in self.adapters if a.severe} | set(severe_sources)
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._ingested: Dict[str, int] = {}

    @property
    def windows(self) -> List[int]:
        return list(self.settings.windows_seconds)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def poll(self, now: Optional[datetime] = None) -> List[LogSourceError]:
        """Query every adapter concurrently, each bounded by the adapter timeout.

        A timed-out or failing adapter contributes nothing for this poll.
        """
        if not self.adapters:
            return []

        now = to_utc(now or datetime.now(timezone.utc))
        horizon = now - timedelta(seconds=self.settings.max_window_seconds)

        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=len(self.adapters), thread_name_prefix="xrun_source"
            )

        futures = {}
        for adapter in self.adapters:
            since = max(self._cursors.get(adapter.name, horizon), horizon)
            futures[self._executor.submit(adapter.query, since)] = adapter

        done, pending = wait(futures, timeout=self.settings.adapter_timeout_seconds)

        errors: List[LogSourceError] = []
        for future in pending:
            adapter = futures[future]
            future.cancel()
            errors.append(LogSourceError(f"{adapter.name} query timed out", source=adapter.name))

        for future in done:
            adapter = futures[future]
            try:
                samples = future.result()
            except Exception as e:
                errors.append(
                    LogSourceError(f"{adapter.name} query failed: {e}", source=adapter.name, original_exception=e)
                )
                continue
            self.ingest(samples)

        for error in errors:
            logger.debug(error.message)
        return errors

    def ingest(self, samples: Iterable[XrunSample]) -> int:
        """Add samples not already seen. Returns the number added.

        Journal queries have one-second ``--since`` resolution, so a re-query
        returns events at the cursor again. Those are matched against what
        the buffer already holds at the cursor timestamp.
        """
        added = 0
        with self._lock:
            boundary = dict(self._cursors)
            known = {
                source: {s for s in buffer if to_utc(s.timestamp) == boundary[source]}
                for source, buffer in self._samples.items()
                if source in boundary
            }
            for sample in sorted(samples, key=lambda s: to_utc(s.timestamp)):
                stamp = to_utc(sample.timestamp)
                cursor = boundary.get(sample.source)
                if cursor is not None:
                    if stamp < cursor:
                        continue
                    if stamp == cursor and sample in known.get(sample.source, ()):
                        continue
                self._samples.setdefault(sample.source, deque()).append(sample)
                self._cursors[sample.source] = max(stamp, self._cursors.get(sample.source, stamp))
                self._ingested[sample.source] = self._ingested.get(sample.source, 0) + sample.count
                added += 1
        return added

    def prune(self, now: datetime) -> None:
        """Drop samples older than the largest window."""
        horizon = to_utc(now) - timedelta(seconds=self.settings.max_window_seconds)
        with self._lock:
            for buffer in self._samples.values():
                while buffer and to_utc(buffer[0].timestamp) < horizon:
                    buffer.popleft()

    # ------------------------------------------------------------------
    # Counting
    # ------------------------------------------------------------------

    def _count(self, now: datetime, window_seconds: int, severe: bool) -> int:
        start = now - timedelta(seconds=window_seconds)
        total = 0
        for source, buffer in self._samples.items():
            if (source in self._severe_sources) != severe:
                continue
            total += sum(s.count for s in buffer if start <= to_utc(s.timestamp) <= now)
        return total

    def window_counts(self, now: Optional[datetime] = None) -> Dict[int, int]:
        """Per-window xrun totals from buffered samples, without polling."""
        now = to_utc(now or datetime.now(timezone.utc))
        self.prune(now)
        with self._lock:
            return {w: self._count(now, w, severe=False) for w in self.windows}

    def hardware_errors(self, now: Optional[datetime] = None) -> int:
        now = to_utc(now or datetime.now(timezone.utc))
        with self._lock:
            return self._count(now, self.settings.hardware_window_seconds, severe=True)

    def recent_system(self, now: Optional[datetime] = None) -> int:
        """Journal audio problems over the hardware window.

        Engine and tunnel lines are claimed away from the system adapter, so
        all non-severe sources are summed to still see them.
        """
        now = to_utc(now or datetime.now(timezone.utc))
        with self._lock:
            return self._count(now, self.settings.hardware_window_seconds, severe=False)

    def xrun_total(self) -> int:
        """Xruns ingested since this monitor was created (pruning does not reduce it)."""
        with self._lock:
            return sum(n for source, n in self._ingested.items() if source not in self._severe_sources)

    def sample(self, now: Optional[datetime] = None) -> Dict[int, int]:
        """Poll all sources then return per-window totals."""
        now = to_utc(now or datetime.now(timezone.utc))
        self.poll(now)
        return self.window_counts(now)

    def report(self, now: Optional[datetime] = None, poll: bool = True) -> XrunReport:
        """Window totals, per-source totals over the largest window and hardware errors."""
        now = to_utc(now or datetime.now(timezone.utc))
        errors = self.poll(now) if poll else []
        windows = self.window_counts(now)

        start = now - timedelta(seconds=self.settings.max_window_seconds)
        with self._lock:
            by_source = {
                source: sum(s.count for s in buffer if start <= to_utc(s.timestamp) <= now)
                for source, buffer in self._samples.items()
            }

        return XrunReport(
            windows=windows,
            by_source=by_source,
            hardware_errors=self.hardware_errors(now),
            recent_system=self.recent_system(now),
            sampled_at=now,
            errors=[e.message for e in errors],
        )

    def classify_severity(
        self, window_counts: Mapping[int, int], hardware_errors: int = 0, recent_system: int = 0
    ) -> Severity:
        return classify_severity(
            window_counts,
            hardware_errors,
            recent_system=recent_system,
            threshold=self.settings.severity_threshold,
            window_seconds=self.settings.severity_window_seconds,
        )

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
