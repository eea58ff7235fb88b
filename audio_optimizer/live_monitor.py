"""
Live xrun monitor: a cancellable, read-only display loop.

Samples the XrunMonitor at a fast cadence and reports each frame to a
callback. It never touches tunables or processes. Cancelling the event
stops the loop before the next frame.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from .monitoring.data_models import Severity
from .monitoring.engine_probe import AudioEngineProbe
from .monitoring.xrun_monitor import XrunMonitor

logger = logging.getLogger(__name__)

RATE_WINDOW_SECONDS = 30


@dataclass
class LiveFrame:
    """One refresh of the live monitor"""

    timestamp: datetime
    elapsed_seconds: float
    new_xruns: int
    session_total: int
    rate_30s: int
    max_per_interval: int
    severity: Severity
    window_counts: Dict[int, int] = field(default_factory=dict)
    engine: str = "inactive"

    @property
    def elapsed_label(self) -> str:
        minutes, seconds = divmod(int(self.elapsed_seconds), 60)
        return f"{minutes:02d}:{seconds:02d}"


class LiveMonitor:
    """Fast-cadence sampling loop for display purposes only."""

    def __init__(
        self,
        monitor: XrunMonitor,
        interval: float = 2.0,
        probe: Optional[AudioEngineProbe] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.monitor = monitor
        self.interval = interval
        self.probe = probe
        self.clock = clock

    def run(
        self,
        cancel: threading.Event,
        on_update: Callable[[LiveFrame], None],
        max_frames: Optional[int] = None,
    ) -> int:
        """Loop until ``cancel`` is set (or ``max_frames`` frames). Returns frames emitted."""
        started = self.clock()
        # Pull in the pre-session history first so it never counts as new
        self.monitor.poll()
        baseline = self.monitor.xrun_total()
        previous = baseline
        max_per_interval = 0
        frames = 0

        while not cancel.is_set():
            now = datetime.now(timezone.utc)
            counts = self.monitor.sample(now)
            total = self.monitor.xrun_total()
            new = total - previous
            previous = total
            max_per_interval = max(max_per_interval, new)

            frame = LiveFrame(
                timestamp=now,
                elapsed_seconds=self.clock() - started,
                new_xruns=new,
                session_total=total - baseline,
                rate_30s=counts.get(RATE_WINDOW_SECONDS, new),
                max_per_interval=max_per_interval,
                severity=self.monitor.classify_severity(
                    counts, self.monitor.hardware_errors(now), self.monitor.recent_system(now)
                ),
                window_counts=counts,
                engine=self.probe.compact() if self.probe else "inactive",
            )
            on_update(frame)
            frames += 1

            if max_frames is not None and frames >= max_frames:
                break
            if cancel.wait(self.interval):
                break

        logger.debug("Live monitor stopped after %d frames", frames)
        return frames


_SEVERITY_LABEL = {
    Severity.PERFECT: "[green]no xruns[/green]",
    Severity.MILD: "[yellow]occasional xruns[/yellow]",
    Severity.SEVERE: "[red]frequent xruns[/red]",
}


def render_frame(frame: LiveFrame) -> Panel:
    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Time")
    table.add_column("Engine")
    table.add_column("New", justify="right")
    table.add_column("Last 30s", justify="right")
    table.add_column("Session", justify="right")
    table.add_column("Max/interval", justify="right")
    table.add_column("Status")
    table.add_row(
        frame.timestamp.astimezone().strftime("%H:%M:%S"),
        frame.engine,
        str(frame.new_xruns),
        str(frame.rate_30s),
        str(frame.session_total),
        str(frame.max_per_interval),
        _SEVERITY_LABEL[frame.severity],
    )
    return Panel(table, title=f"Live xrun monitor ({frame.elapsed_label})", border_style="blue")


def run_in_terminal(
    live_monitor: LiveMonitor,
    cancel: threading.Event,
    console: Optional[Console] = None,
) -> int:
    """Drive ``live_monitor`` with a rich Live display until cancelled."""
    console = console or Console()
    with Live(console=console, refresh_per_second=4) as live:
        return live_monitor.run(cancel, lambda frame: live.update(render_frame(frame)))
