"""
Data models for xrun monitoring and audio engine probing.

This module contains the dataclasses and enums used throughout
the monitoring package. It has no internal dependencies to serve
as a stable foundation layer.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class XrunSample:
    """One xrun event (or batch of events) reported by a log source"""

    source: str
    timestamp: datetime
    count: int = 1


@dataclass
class XrunWindow:
    """Total xrun count over a trailing window"""

    window_seconds: int
    total_count: int


class Severity(Enum):
    """Overall xrun severity. Derived on demand, never stored."""

    PERFECT = "perfect"
    MILD = "mild"
    SEVERE = "severe"


class EngineStatus(str, Enum):
    """Audio engine state as seen by the probe"""

    INACTIVE = "inactive"
    ACTIVE = "active"
    DEVICE_UNAVAILABLE = "running (device not available)"
    USER_SESSION = "active (user session)"


@dataclass
class AudioEngineSettings:
    """Active audio engine configuration. ``None`` means unknown."""

    active: bool = False
    buffer_frames: Optional[int] = None
    sample_rate_hz: Optional[int] = None
    periods: Optional[int] = None
    status: EngineStatus = EngineStatus.INACTIVE

    @classmethod
    def inactive(cls) -> "AudioEngineSettings":
        return cls()

    @property
    def known(self) -> bool:
        """True when buffer and rate are both known"""
        return self.buffer_frames is not None and self.sample_rate_hz is not None

    def compact(self) -> str:
        """Short form such as ``256@48000Hz``"""
        if not self.active:
            return "inactive"
        buffer = self.buffer_frames if self.buffer_frames is not None else "unknown"
        rate = self.sample_rate_hz if self.sample_rate_hz is not None else "unknown"
        return f"{buffer}@{rate}Hz"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active": self.active,
            "bufferFrames": self.buffer_frames,
            "sampleRateHz": self.sample_rate_hz,
            "periods": self.periods,
            "status": self.status.value,
        }


@dataclass
class XrunReport:
    """Result of one XrunMonitor sample"""

    windows: Dict[int, int]
    by_source: Dict[str, int] = field(default_factory=dict)
    hardware_errors: int = 0
    recent_system: int = 0
    sampled_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    errors: List[str] = field(default_factory=list)

    def total(self, window_seconds: int) -> int:
        return self.windows.get(window_seconds, 0)

    def as_windows(self) -> List[XrunWindow]:
        return [XrunWindow(window_seconds=w, total_count=c) for w, c in sorted(self.windows.items())]
