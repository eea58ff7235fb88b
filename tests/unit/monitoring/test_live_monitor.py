"""
Tests for the cancellable live xrun monitor loop.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest
from rich.console import Console

from audio_optimizer.config import XrunSettings
from audio_optimizer.live_monitor import LiveFrame, LiveMonitor, render_frame
from audio_optimizer.monitoring import Severity, XrunMonitor, XrunSample
from audio_optimizer.monitoring.sources import LogSourceAdapter


@pytest.fixture
def monitor():
    m = XrunMonitor([], XrunSettings())
    yield m
    m.close()


class HistoryAdapter(LogSourceAdapter):
    """Reports the same samples on every query, filtered by ``since``."""

    name = "engine"

    def __init__(self, samples):
        super().__init__(runner=lambda argv, timeout: None)
        self.samples = samples

    def query(self, since):
        return [s for s in self.samples if s.timestamp >= since]


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        self.now += 2.0
        return self.now


class TestLiveMonitor:

    @pytest.mark.fast
    def test_frames_track_new_and_session_xruns(self, monitor):
        frames = []

        def on_update(frame):
            frames.append(frame)
            if len(frames) == 1:
                monitor.ingest([XrunSample("engine", datetime.now(timezone.utc), count=3)])

        emitted = LiveMonitor(monitor, interval=0.001, clock=FakeClock()).run(
            threading.Event(), on_update, max_frames=3
        )

        assert emitted == 3
        assert [f.new_xruns for f in frames] == [0, 3, 0]
        assert [f.session_total for f in frames] == [0, 3, 3]
        assert [f.max_per_interval for f in frames] == [0, 3, 3]
        assert frames[0].severity is Severity.PERFECT
        assert frames[1].severity is Severity.MILD
        assert frames[1].rate_30s == 3
        assert frames[1].engine == "inactive"

    @pytest.mark.fast
    def test_session_total_excludes_earlier_xruns(self):
        earlier = XrunSample("engine", datetime.now(timezone.utc) - timedelta(seconds=120), count=9)
        monitor = XrunMonitor([HistoryAdapter([earlier])], XrunSettings())
        frames = []

        try:
            LiveMonitor(monitor, interval=0.001).run(threading.Event(), frames.append, max_frames=2)
        finally:
            monitor.close()

        assert [f.new_xruns for f in frames] == [0, 0]
        assert [f.session_total for f in frames] == [0, 0]
        assert [f.max_per_interval for f in frames] == [0, 0]
        assert frames[0].window_counts[300] == 9
        assert frames[0].window_counts[60] == 0
        assert frames[0].severity is Severity.MILD

    @pytest.mark.fast
    def test_cancel_stops_loop(self, monitor):
        cancel = threading.Event()

        def on_update(frame):
            cancel.set()

        assert LiveMonitor(monitor, interval=10.0).run(cancel, on_update) == 1

    @pytest.mark.fast
    def test_already_cancelled(self, monitor):
        cancel = threading.Event()
        cancel.set()
        assert LiveMonitor(monitor, interval=10.0).run(cancel, lambda frame: None) == 0

    @pytest.mark.fast
    def test_cancel_from_another_thread(self, monitor):
        cancel = threading.Event()
        frames = []
        live = LiveMonitor(monitor, interval=0.01)
        worker = threading.Thread(target=live.run, args=(cancel, frames.append), daemon=True)

        worker.start()
        while not frames:
            cancel.wait(0.01)
        cancel.set()
        worker.join(timeout=2)

        assert not worker.is_alive()


class TestRenderFrame:

    @pytest.mark.fast
    def test_elapsed_label(self):
        frame = LiveFrame(
            timestamp=datetime.now(timezone.utc),
            elapsed_seconds=75.4,
            new_xruns=1,
            session_total=4,
            rate_30s=2,
            max_per_interval=3,
            severity=Severity.SEVERE,
            engine="256@48000Hz",
        )
        console = Console(width=120, record=True)
        console.print(render_frame(frame))
        text = console.export_text()

        assert frame.elapsed_label == "01:15"
        assert "Live xrun monitor (01:15)" in text
        assert "256@48000Hz" in text
        assert "frequent xruns" in text
