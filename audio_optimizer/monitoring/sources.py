"""
Log-source adapters for xrun detection.

Each adapter implements ``query(since) -> List[XrunSample]`` and nothing
else. A missing backing facility (no journalctl, dmesg restricted) yields
an empty list rather than an error.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from ..utils import run_command
from .data_models import XrunSample

logger = logging.getLogger(__name__)

Runner = Callable[[Sequence[str], float], Optional[str]]

ENGINE_PATTERN = r"(jack|qjackctl|patchance).*(xrun|buffer.*late|delay.*exceeded|timeout)"
TUNNEL_PATTERN = r"mod\.jack-tunnel.*xrun|pipewire.*(xrun|drop|underrun)"
SYSTEM_PATTERN = r"(audio|sound).*(xrun|underrun|overrun|drop|timeout|delay)"
HARDWARE_JOURNAL_PATTERN = r"(usb|audio).*(error|fail|disconnect|reset)"
KERNEL_PATTERN = r"(usb|audio).*(error|xrun|underrun)"


def to_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime. Naive values are local time."""
    return value.astimezone(timezone.utc)


class LogSourceAdapter:
    """Base adapter. ``severe`` marks hardware-error sources."""

    name = "base"
    severe = False

    def __init__(self, runner: Optional[Runner] = None, timeout: float = 3.0):
        self.runner = runner or run_command
        self.timeout = timeout

    def query(self, since: datetime) -> List[XrunSample]:
        raise NotImplementedError


class JournalAdapter(LogSourceAdapter):
    """Counts system journal lines matching ``pattern`` since a point in time.

    Lines matching any of ``claimed_by`` belong to another adapter reading the
    same journal and are skipped, so each line is counted at most once.
    """

    pattern = ""
    claimed_by: Tuple[str, ...] = ()

    def __init__(self, runner: Optional[Runner] = None, timeout: float = 3.0):
        super().__init__(runner, timeout)
        self._regex = re.compile(self.pattern, re.IGNORECASE)
        self._claimed = [re.compile(p, re.IGNORECASE) for p in self.claimed_by]

    def matches(self, message: str) -> bool:
        if not self._regex.search(message):
            return False
        return not any(claimed.search(message) for claimed in self._claimed)

    def command(self, since: datetime) -> List[str]:
        return [
            "journalctl",
            "--since", f"@{int(to_utc(since).timestamp())}",
            "--no-pager", "-q",
            "-o", "short-unix",
        ]

    def query(self, since: datetime) -> List[XrunSample]:
        output = self.runner(self.command(since), self.timeout)
        if not output:
            return []
        return self.parse(output)

    def parse(self, output: str) -> List[XrunSample]:
        samples = []
        for line in output.splitlines():
            stamp, _, message = line.strip().partition(" ")
            try:
                timestamp = datetime.fromtimestamp(float(stamp), tz=timezone.utc)
            except ValueError:
                continue
            if self.matches(message):
                samples.append(XrunSample(source=self.name, timestamp=timestamp))
        return samples


class EngineLogAdapter(JournalAdapter):
    """JACK server and control-application messages"""

    name = "engine"
    pattern = ENGINE_PATTERN
    claimed_by = (TUNNEL_PATTERN,)


class TunnelLogAdapter(JournalAdapter):
    """PipeWire and its JACK tunnel module"""

    name = "tunnel"
    pattern = TUNNEL_PATTERN


class SystemJournalAdapter(JournalAdapter):
    """Generic audio/sound problems from any unit"""

    name = "system"
    pattern = SYSTEM_PATTERN
    claimed_by = (ENGINE_PATTERN, TUNNEL_PATTERN)


class HardwareJournalAdapter(JournalAdapter):
    """USB/audio hardware failures reported through the journal"""

    name = "hardware"
    pattern = HARDWARE_JOURNAL_PATTERN
    severe = True


class KernelLogAdapter(LogSourceAdapter):
    """USB audio errors from the kernel ring buffer"""

    name = "kernel"
    severe = True

    def __init__(self, runner: Optional[Runner] = None, timeout: float = 3.0):
        super().__init__(runner, timeout)
        self._regex = re.compile(KERNEL_PATTERN, re.IGNORECASE)

    def query(self, since: datetime) -> List[XrunSample]:
        output = self.runner(["dmesg", "--time-format", "iso"], self.timeout)
        if not output:
            return []

        since = to_utc(since)
        samples = []
        for line in output.splitlines():
            stamp, _, message = line.strip().partition(" ")
            try:
                # dmesg uses a comma before the fractional seconds
                timestamp = to_utc(datetime.fromisoformat(stamp.replace(",", ".")))
            except ValueError:
                continue
            if timestamp >= since and self._regex.search(message):
                samples.append(XrunSample(source=self.name, timestamp=timestamp))
        return samples


def default_adapters(runner: Optional[Runner] = None, timeout: float = 3.0) -> List[LogSourceAdapter]:
    """The standard adapter set: engine, tunnel, system, hardware, kernel."""
    return [
        EngineLogAdapter(runner, timeout),
        TunnelLogAdapter(runner, timeout),
        SystemJournalAdapter(runner, timeout),
        HardwareJournalAdapter(runner, timeout),
        KernelLogAdapter(runner, timeout),
    ]
