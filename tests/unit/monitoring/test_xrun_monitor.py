"""
Tests for XrunMonitor windows, pruning, deduplication and severity.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from audio_optimizer.config import XrunSettings
from audio_optimizer.exceptions import LogSourceError
from audio_optimizer.monitoring import Severity, XrunMonitor, XrunSample, classify_severity
from audio_optimizer.monitoring.sources import LogSourceAdapter

NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _at(seconds_ago: float, source: str = "engine", count: int = 1) -> XrunSample:
    return XrunSample(source=source, timestamp=NOW - timedelta(seconds=seconds_ago), count=count)


class StaticAdapter(LogSourceAdapter):
    """Returns a fixed sample list and records every ``since``."""

    def __init__(self, name, samples=(), severe=False):
        super().__init__(runner=lambda argv, timeout: None)
        self.name = name
        self.severe = severe
        self.samples = list(samples)
        self.since = []

    def query(self, since):
        self.since.append(since)
        return [s for s in self.samples if s.timestamp >= since]


class BlockingAdapter(LogSourceAdapter):
    name = "stuck"

    def __init__(self, release):
        super().__init__()
        self.release = release

    def query(self, since):
        self.release.wait(5)
        return []


class FailingAdapter(LogSourceAdapter):
    name = "broken"

    def query(self, since):
        raise RuntimeError("journal unavailable")


@pytest.fixture
def monitor():
    m = XrunMonitor([], XrunSettings(), severe_sources=["hardware", "kernel"])
    yield m
    m.close()


class TestClassifySeverity:
    """Tests for the severity rule."""

    @pytest.mark.fast
    @pytest.mark.parametrize(
        "minute,hardware,expected",
        [
            (0, 0, Severity.PERFECT),
            (0, 3, Severity.PERFECT),
            (1, 0, Severity.MILD),
            (4, 0, Severity.MILD),
            (5, 0, Severity.SEVERE),
            (40, 0, Severity.SEVERE),
            (1, 1, Severity.SEVERE),
        ],
    )
    def test_boundaries(self, minute, hardware, expected):
        assert classify_severity({60: minute}, hardware) is expected

    @pytest.mark.fast
    @pytest.mark.parametrize(
        "minute,recent_system,expected",
        [
            (0, 0, Severity.PERFECT),
            (0, 1, Severity.MILD),
            (4, 2, Severity.MILD),
            (5, 2, Severity.SEVERE),
        ],
    )
    def test_recent_system_rules_out_perfect(self, minute, recent_system, expected):
        assert classify_severity({60: minute}, recent_system=recent_system) is expected

    @pytest.mark.fast
    def test_configured_threshold(self):
        m = XrunMonitor([], XrunSettings(severity_threshold=10))
        assert m.classify_severity({60: 9}) is Severity.MILD
        assert m.classify_severity({60: 10}) is Severity.SEVERE


class TestWindows:
    """Tests for sliding-window counting."""

    @pytest.mark.fast
    def test_window_counts(self, monitor):
        monitor.ingest([_at(1), _at(7), _at(20), _at(45), _at(200, count=3)])

        assert monitor.window_counts(NOW) == {5: 1, 10: 2, 30: 3, 60: 4, 300: 7}

    @pytest.mark.fast
    def test_window_edges_are_inclusive(self, monitor):
        monitor.ingest([_at(60), _at(0)])
        assert monitor.window_counts(NOW)[60] == 2

    @pytest.mark.fast
    def test_future_samples_not_counted(self, monitor):
        monitor.ingest([_at(-5)])
        assert monitor.window_counts(NOW)[300] == 0

    @pytest.mark.fast
    def test_windows_are_monotonic(self, monitor):
        monitor.ingest([_at(s) for s in (0, 3, 9, 11, 29, 31, 59, 61, 299)])
        counts = monitor.window_counts(NOW)
        ordered = [counts[w] for w in sorted(counts)]
        assert ordered == sorted(ordered)

    @pytest.mark.fast
    def test_prune_drops_old_samples(self, monitor):
        monitor.ingest([_at(100), _at(10)])

        later = NOW + timedelta(seconds=250)
        counts = monitor.window_counts(later)

        assert counts[300] == 1
        assert sum(len(buf) for buf in monitor._samples.values()) == 1

    @pytest.mark.fast
    def test_recent_system_spans_hardware_window(self, monitor):
        monitor.ingest([_at(90, source="system"), _at(200), _at(250, source="kernel")])

        assert monitor.window_counts(NOW)[60] == 0
        assert monitor.recent_system(NOW) == 2

        report = monitor.report(NOW, poll=False)
        assert report.recent_system == 2
        assert monitor.classify_severity(report.windows, report.hardware_errors, report.recent_system) is Severity.SEVERE

    @pytest.mark.fast
    def test_old_system_problem_is_not_perfect(self, monitor):
        monitor.ingest([_at(120, source="system")])
        report = monitor.report(NOW, poll=False)

        assert monitor.classify_severity(report.windows, report.hardware_errors, report.recent_system) is Severity.MILD

    @pytest.mark.fast
    def test_severe_sources_counted_separately(self, monitor):
        monitor.ingest([_at(5), _at(10, source="hardware"), _at(250, source="kernel")])

        assert monitor.window_counts(NOW)[60] == 1
        assert monitor.hardware_errors(NOW) == 2
        assert monitor.xrun_total() == 1

    @pytest.mark.fast
    def test_naive_timestamps_normalized(self, monitor):
        local = (NOW - timedelta(seconds=2)).astimezone().replace(tzinfo=None)
        monitor.ingest([XrunSample(source="engine", timestamp=local)])
        assert monitor.window_counts(NOW)[5] == 1


class TestIngest:
    """Tests for cursor-based deduplication."""

    @pytest.mark.fast
    def test_same_sample_not_counted_twice(self, monitor):
        sample = _at(3)
        assert monitor.ingest([sample]) == 1
        assert monitor.ingest([sample]) == 0
        assert monitor.window_counts(NOW)[5] == 1

    @pytest.mark.fast
    def test_equal_timestamps_in_one_batch_all_count(self, monitor):
        assert monitor.ingest([_at(3), _at(3), _at(3)]) == 3
        assert monitor.window_counts(NOW)[5] == 3

    @pytest.mark.fast
    def test_samples_before_cursor_skipped(self, monitor):
        monitor.ingest([_at(2)])
        assert monitor.ingest([_at(8), _at(1)]) == 1

    @pytest.mark.fast
    def test_xrun_total_survives_pruning(self, monitor):
        monitor.ingest([_at(250, count=4)])
        monitor.window_counts(NOW + timedelta(seconds=100))
        assert monitor.xrun_total() == 4


class TestPolling:
    """Tests for concurrent adapter polling."""

    @pytest.mark.fast
    def test_poll_ingests_from_adapters(self):
        engine = StaticAdapter("engine", [_at(2), _at(40)])
        hardware = StaticAdapter("hardware", [_at(30, source="hardware")], severe=True)
        m = XrunMonitor([engine, hardware], XrunSettings())
        try:
            report = m.report(NOW)
        finally:
            m.close()

        assert report.windows[60] == 2
        assert report.hardware_errors == 1
        assert report.by_source == {"engine": 2, "hardware": 1}
        assert report.errors == []
        assert report.sampled_at == NOW

    @pytest.mark.fast
    def test_poll_uses_cursor(self):
        engine = StaticAdapter("engine", [_at(10)])
        m = XrunMonitor([engine], XrunSettings())
        try:
            m.poll(NOW)
            m.poll(NOW + timedelta(seconds=5))
        finally:
            m.close()

        assert engine.since[0] == NOW - timedelta(seconds=300)
        assert engine.since[1] == NOW - timedelta(seconds=10)
        assert m.window_counts(NOW)[60] == 1

    @pytest.mark.fast
    def test_failing_adapter_is_reported(self):
        m = XrunMonitor([FailingAdapter(), StaticAdapter("engine", [_at(1)])], XrunSettings())
        try:
            errors = m.poll(NOW)
        finally:
            m.close()

        assert len(errors) == 1
        assert isinstance(errors[0], LogSourceError)
        assert errors[0].source == "broken"
        assert m.window_counts(NOW)[5] == 1

    @pytest.mark.fast
    def test_slow_adapter_times_out(self):
        release = threading.Event()
        m = XrunMonitor(
            [BlockingAdapter(release), StaticAdapter("engine", [_at(1)])],
            XrunSettings(adapter_timeout_seconds=0.2),
        )
        try:
            errors = m.poll(NOW)
        finally:
            release.set()
            m.close()

        assert [e.source for e in errors] == ["stuck"]
        assert "timed out" in errors[0].message
        assert m.window_counts(NOW)[5] == 1

    @pytest.mark.fast
    def test_no_adapters(self, monitor):
        assert monitor.poll(NOW) == []
        assert monitor.sample(NOW) == {5: 0, 10: 0, 30: 0, 60: 0, 300: 0}
