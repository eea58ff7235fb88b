"""
Status snapshot published for CLI and tray collaborators.

The snapshot is a small JSON record written atomically to a well-known
location after each Optimized-phase sample. Readers need no privilege and
get ``None`` for a missing or corrupt file.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Group
from rich.panel import Panel
from rich.table import Table

from .monitoring.data_models import Severity

logger = logging.getLogger(__name__)

_SEVERITY_STYLE = {
    Severity.PERFECT.value: "green",
    Severity.MILD.value: "yellow",
    Severity.SEVERE.value: "red",
}


@dataclass
class Snapshot:
    """Externally visible optimizer status"""

    device_present: bool
    state: str
    jack_active: bool = False
    buffer_frames: Optional[int] = None
    sample_rate_hz: Optional[int] = None
    periods: Optional[int] = None
    xrun_window_counts: Dict[int, int] = field(default_factory=dict)
    severity: Optional[str] = None
    recommendations: List[str] = field(default_factory=list)

    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    device_label: str = ""
    latency_ms: Optional[float] = None
    hardware_errors: int = 0
    source_counts: Dict[str, int] = field(default_factory=dict)
    engine_status: str = "inactive"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "devicePresent": self.device_present,
            "state": self.state,
            "jackActive": self.jack_active,
            "bufferFrames": self.buffer_frames,
            "sampleRateHz": self.sample_rate_hz,
            "periods": self.periods,
            # JSON object keys are strings
            "xrunWindowCounts": {str(k): v for k, v in self.xrun_window_counts.items()},
            "severity": self.severity,
            "recommendations": list(self.recommendations),
            "timestamp": self.timestamp,
            "deviceLabel": self.device_label,
            "latencyMs": self.latency_ms,
            "hardwareErrors": self.hardware_errors,
            "sourceCounts": dict(self.source_counts),
            "engineStatus": self.engine_status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        return cls(
            device_present=bool(data["devicePresent"]),
            state=data["state"],
            jack_active=bool(data.get("jackActive", False)),
            buffer_frames=data.get("bufferFrames"),
            sample_rate_hz=data.get("sampleRateHz"),
            periods=data.get("periods"),
            xrun_window_counts={int(k): int(v) for k, v in (data.get("xrunWindowCounts") or {}).items()},
            severity=data.get("severity"),
            recommendations=list(data.get("recommendations") or []),
            timestamp=data.get("timestamp", ""),
            device_label=data.get("deviceLabel", ""),
            latency_ms=data.get("latencyMs"),
            hardware_errors=int(data.get("hardwareErrors", 0)),
            source_counts=dict(data.get("sourceCounts") or {}),
            engine_status=data.get("engineStatus", "inactive"),
        )


@dataclass
class DetailedStatus:
    """Snapshot plus read-only system inspection"""

    snapshot: Snapshot
    tunables: List[Dict[str, Any]] = field(default_factory=list)
    irq_summary: Dict[str, str] = field(default_factory=dict)
    rt_process_count: int = 0
    processes: List[Dict[str, Any]] = field(default_factory=list)
    cpu_isolation: Dict[str, str] = field(default_factory=dict)
    buffer_outlook: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.snapshot.to_dict(),
            "tunables": self.tunables,
            "irqSummary": self.irq_summary,
            "rtProcessCount": self.rt_process_count,
            "processes": self.processes,
            "cpuIsolation": self.cpu_isolation,
            "bufferOutlook": self.buffer_outlook,
        }


class StatusPublisher:
    """Writes and reads the status snapshot file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def publish(self, snapshot: Snapshot) -> bool:
        """Atomic write (temp file + rename), world readable. False on failure."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=".status-", suffix=".tmp"
            )
            with os.fdopen(fd, "w") as handle:
                json.dump(snapshot.to_dict(), handle, indent=2)
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, self.path)
        except OSError as e:
            logger.warning("Could not publish status to %s: %s", self.path, e)
            return False
        return True

    def read(self) -> Optional[Snapshot]:
        try:
            return Snapshot.from_dict(json.loads(self.path.read_text()))
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.debug("Unreadable status file %s: %s", self.path, e)
            return None


def _value(value: Any) -> str:
    return "unknown" if value is None else str(value)


def render_status(snapshot: Snapshot, detailed: Optional[DetailedStatus] = None) -> Group:
    """Rich renderable for a snapshot, with detail tables when given."""
    lines = [
        f"[bold]Device:[/bold] {snapshot.device_label or 'audio interface'} "
        + ("[green]connected[/green]" if snapshot.device_present else "[dim]not connected[/dim]"),
        f"[bold]State:[/bold] {snapshot.state}",
        f"[bold]Audio engine:[/bold] {snapshot.engine_status}",
    ]
    if snapshot.jack_active:
        engine = f"{_value(snapshot.buffer_frames)}@{_value(snapshot.sample_rate_hz)}Hz"
        if snapshot.periods is not None:
            engine += f", {snapshot.periods} periods"
        if snapshot.latency_ms is not None:
            engine += f" ({snapshot.latency_ms:.1f}ms)"
        lines.append(f"[bold]Settings:[/bold] {engine}")
    if snapshot.severity:
        style = _SEVERITY_STYLE.get(snapshot.severity, "white")
        lines.append(f"[bold]Severity:[/bold] [{style}]{snapshot.severity}[/{style}]")
    if snapshot.hardware_errors:
        lines.append(f"[red]Hardware errors:[/red] {snapshot.hardware_errors}")

    parts: List[Any] = [Panel("\n".join(lines), title="Audio Optimizer", border_style="blue")]

    if snapshot.xrun_window_counts:
        table = Table(title="Xruns", show_header=True, header_style="bold blue")
        for window in sorted(snapshot.xrun_window_counts):
            table.add_column(f"{window}s", justify="center")
        table.add_row(*[str(snapshot.xrun_window_counts[w]) for w in sorted(snapshot.xrun_window_counts)])
        parts.append(table)

    if snapshot.recommendations:
        parts.append(
            Panel("\n".join(snapshot.recommendations), title="Recommendations", border_style="yellow")
        )

    if detailed is not None:
        tunables = Table(title="Tunables", show_header=True, header_style="bold blue")
        tunables.add_column("Tunable", style="cyan")
        tunables.add_column("Current")
        tunables.add_column("Optimized", justify="center")
        for item in detailed.tunables:
            tunables.add_row(
                item.get("label") or item["path"],
                _value(item.get("current")),
                "[green]yes[/green]" if item.get("matches") else "[yellow]no[/yellow]",
            )
        parts.append(tunables)

        processes = Table(title="Audio Processes", show_header=True, header_style="bold blue")
        processes.add_column("PID", justify="right")
        processes.add_column("Name", style="cyan")
        processes.add_column("CPUs")
        processes.add_column("Policy")
        processes.add_column("Priority", justify="right")
        for proc in detailed.processes:
            processes.add_row(
                str(proc["pid"]),
                proc["name"],
                _value(proc.get("cpus")),
                _value(proc.get("policy")),
                _value(proc.get("priority")),
            )
        parts.append(processes)

        summary = [
            f"Bus IRQs optimized: {detailed.irq_summary.get('bus', 'unknown')}",
            f"Audio IRQs optimized: {detailed.irq_summary.get('driver', 'unknown')}",
            f"RT audio processes: {detailed.rt_process_count}",
            f"Isolated CPUs: '{detailed.cpu_isolation.get('isolated', '')}' "
            f"(isolcpus='{detailed.cpu_isolation.get('isolcpus', '')}')",
        ] + detailed.buffer_outlook
        parts.append(Panel("\n".join(summary), title="System", border_style="blue"))

    return Group(*parts)
