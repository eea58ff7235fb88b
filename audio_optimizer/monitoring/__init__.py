"""
Monitoring package for xrun detection and audio engine probing.

Provides log-source adapters, sliding-window xrun counting, severity
classification and buffer/sample-rate/period recommendations.
"""

from .data_models import (
    AudioEngineSettings,
    EngineStatus,
    Severity,
    XrunReport,
    XrunSample,
    XrunWindow,
)
from .engine_probe import AudioEngineProbe, CommandRunner, UserIdentity, resolve_invoking_user
from .recommendations import advise, buffer_outlook, calculate_latency, recommend_buffer
from .sources import (
    EngineLogAdapter,
    HardwareJournalAdapter,
    JournalAdapter,
    KernelLogAdapter,
    LogSourceAdapter,
    SystemJournalAdapter,
    TunnelLogAdapter,
    default_adapters,
)
from .xrun_monitor import XrunMonitor, classify_severity

__all__ = [
    # Data models
    "AudioEngineSettings",
    "EngineStatus",
    "Severity",
    "XrunReport",
    "XrunSample",
    "XrunWindow",
    # Engine probe
    "AudioEngineProbe",
    "CommandRunner",
    "UserIdentity",
    "resolve_invoking_user",
    # Recommendations
    "advise",
    "buffer_outlook",
    "calculate_latency",
    "recommend_buffer",
    # Log sources
    "EngineLogAdapter",
    "HardwareJournalAdapter",
    "JournalAdapter",
    "KernelLogAdapter",
    "LogSourceAdapter",
    "SystemJournalAdapter",
    "TunnelLogAdapter",
    "default_adapters",
    # Monitor
    "XrunMonitor",
    "classify_severity",
]
