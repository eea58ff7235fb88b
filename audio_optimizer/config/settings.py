"""Optimizer settings models.

Device identity, CPU pools, real-time priority table, xrun thresholds,
tick intervals, tunable values and runtime file locations.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..utils import parse_cpu_list


def _validate_cpu_list(value: str) -> str:
    try:
        parse_cpu_list(value)
    except ValueError as e:
        raise ValueError(f"invalid CPU list {value!r}: {e}") from e
    return value


# =============================================================================
# Device Identity
# =============================================================================

class DeviceIdentity(BaseModel):
    """Identity of the USB audio interface that triggers optimization."""
    model_config = ConfigDict(frozen=True)

    vendor_id: str = Field(default="07fd", description="USB idVendor (hex, lowercase)")
    product_id: str = Field(default="000b", description="USB idProduct (hex, lowercase)")
    card_label: str = Field(default="M4", description="ALSA card id registered by the driver")
    display_name: str = Field(default="MOTU M4", description="Name used in logs and status")

    @field_validator("vendor_id", "product_id")
    @classmethod
    def _normalize_hex(cls, value: str) -> str:
        return value.strip().lower()


# =============================================================================
# CPU Pools
# =============================================================================

class CPUPoolSettings(BaseModel):
    """CPU pools for the hybrid strategy.

    fast_path and irq pools run the performance governor, background stays on
    powersave to keep interference off the audio cores.
    """
    fast_path: str = Field(default="0-7", description="Audio processing cores")
    fast_path_governor: str = Field(default="performance")
    pin_fast_path_min_freq: bool = Field(default=True, description="Set scaling_min_freq to scaling_max_freq")

    background: str = Field(default="8-13", description="Background task cores")
    background_governor: str = Field(default="powersave")

    irq: str = Field(default="14-19", description="Interrupt handling cores")
    irq_governor: str = Field(default="performance")

    audio_server: str = Field(default="6-7", description="Cores for the audio server and its helpers")
    applications: str = Field(default="0-5", description="Cores for DAWs, synths and plugin hosts")

    all_cpus: Optional[str] = Field(default=None, description="Full CPU set for reverts; defaults to every online CPU")

    @field_validator("fast_path", "background", "irq", "audio_server", "applications")
    @classmethod
    def _check_cpu_list(cls, value: str) -> str:
        return _validate_cpu_list(value)

    @field_validator("all_cpus")
    @classmethod
    def _check_all_cpus(cls, value: Optional[str]) -> Optional[str]:
        return _validate_cpu_list(value) if value is not None else value


# =============================================================================
# Real-Time Priority Table
# =============================================================================

class ProcessRuleSettings(BaseModel):
    """One entry of the process priority table."""
    pattern: str = Field(description="Executable name, matched case-insensitively and exactly")
    priority: int = Field(ge=1, le=99, description="SCHED_FIFO/SCHED_RR priority")
    rule_class: Literal["server", "application"] = "application"
    policy: Literal["fifo", "rr"] = "fifo"
    cpus: Optional[str] = Field(default=None, description="Overrides the class CPU pool")

    @field_validator("cpus")
    @classmethod
    def _check_cpus(cls, value: Optional[str]) -> Optional[str]:
        return _validate_cpu_list(value) if value is not None else value


DEFAULT_SERVER_RULES = [
    ProcessRuleSettings(pattern="jackd", priority=99, rule_class="server"),
    ProcessRuleSettings(pattern="jackdbus", priority=99, rule_class="server"),
    ProcessRuleSettings(pattern="pipewire", priority=85, rule_class="server"),
    ProcessRuleSettings(pattern="pipewire-pulse", priority=80, rule_class="server"),
    ProcessRuleSettings(pattern="wireplumber", priority=80, rule_class="server"),
]

# Names are as reported by the kernel (comm, truncated to 15 characters)
DEFAULT_APPLICATION_PATTERNS = [
    # DAWs and main audio software
    "bitwig-studio", "reaper", "ardour", "studio", "cubase", "qtractor",
    "rosegarden", "renoise", "FL64.exe", "EZmix 3.exe",
    # Synthesizers and sound generators
    "yoshimi", "pianoteq", "organteq", "grandorgue", "aeolus", "zynaddsubfx",
    "qsynth", "fluidsynth", "bristol", "M1.exe", "ARP 2600", "Polisix.exe",
    "EP-1.exe", "VOX Super Conti", "legacycell.exe", "wavestate nativ",
    "WAVESTATION.exe", "opsix_native.ex", "modwave native.", "ARP ODYSSEY",
    "TRITON.exe", "TRITON_Extreme.", "EZkeys 2.exe", "EZbass.exe",
    "AAS Player.exe", "Lounge Lizard S",
    # Drums and percussion
    "hydrogen", "drumgizmo", "EZdrummer 3.exe",
    # Plugin hosts and audio tools
    "carla", "jalv", "lv2host", "lv2rack", "jack-rack", "calf", "guitarix",
    "rakarrack", "klangfalter",
    # Audio editors
    "musescore", "audacity",
]


class PrioritySettings(BaseModel):
    """Process rules: audio-server class always outranks application class."""
    server_rules: List[ProcessRuleSettings] = Field(
        default_factory=lambda: [r.model_copy() for r in DEFAULT_SERVER_RULES]
    )
    application_priority: int = Field(default=70, ge=1, le=98)
    application_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_APPLICATION_PATTERNS))
    application_rules: List[ProcessRuleSettings] = Field(
        default_factory=list, description="Application entries needing their own priority or CPUs"
    )
    extra_patterns: List[str] = Field(
        default_factory=list, description="Operator-supplied application names merged in at load"
    )

    @model_validator(mode="after")
    def _server_outranks_applications(self) -> "PrioritySettings":
        server_priorities = [
            r.priority for r in self.server_rules if r.rule_class == "server"
        ]
        if not server_priorities:
            raise ValueError("at least one audio-server rule is required")

        app_priorities = [self.application_priority] + [
            r.priority for r in self.application_rules
        ] + [r.priority for r in self.server_rules if r.rule_class == "application"]

        if max(app_priorities) >= min(server_priorities):
            raise ValueError(
                f"application priority {max(app_priorities)} must be lower than "
                f"every audio-server priority (lowest {min(server_priorities)})"
            )
        return self


# =============================================================================
# Xrun Monitoring and Recommendations
# =============================================================================

class XrunSettings(BaseModel):
    """Xrun windows, severity threshold and empirical recommendation constants."""
    windows_seconds: List[int] = Field(default_factory=lambda: [5, 10, 30, 60, 300])
    severity_window_seconds: int = Field(default=60, description="Window used for severity classification")
    severity_threshold: int = Field(default=5, ge=1, description="1-minute total at which severity becomes severe")
    hardware_window_seconds: int = Field(default=300, description="Window for hardware error counting")

    moderate_xrun_threshold: int = Field(default=5, ge=0)
    heavy_xrun_threshold: int = Field(default=20, ge=0)
    sample_rate_alternative_threshold: int = Field(default=10, ge=0)
    buffer_ladder: List[int] = Field(default_factory=lambda: [64, 128, 256, 512, 1024])
    safe_sample_rate: int = Field(default=48000)

    adapter_timeout_seconds: float = Field(default=3.0, gt=0.0, le=30.0)

    @model_validator(mode="after")
    def _check_windows(self) -> "XrunSettings":
        if not self.windows_seconds or any(w <= 0 for w in self.windows_seconds):
            raise ValueError("windows_seconds must contain positive durations")
        self.windows_seconds = sorted(set(self.windows_seconds))
        if self.severity_window_seconds not in self.windows_seconds:
            raise ValueError("severity_window_seconds must be one of windows_seconds")
        if self.heavy_xrun_threshold < self.moderate_xrun_threshold:
            raise ValueError("heavy_xrun_threshold must be >= moderate_xrun_threshold")
        if sorted(self.buffer_ladder) != self.buffer_ladder or len(self.buffer_ladder) < 2:
            raise ValueError("buffer_ladder must be ascending with at least two tiers")
        return self

    @property
    def max_window_seconds(self) -> int:
        return max(max(self.windows_seconds), self.hardware_window_seconds)


# =============================================================================
# Timing
# =============================================================================

class TimingSettings(BaseModel):
    """Tick cadence; sub-intervals are tick-count modulo checks."""
    tick_interval_seconds: float = Field(default=5.0, gt=0.0)
    affinity_rescan_ticks: int = Field(default=6, ge=1, description="6 x 5s = 30s")
    xrun_sample_ticks: int = Field(default=2, ge=1, description="2 x 5s = 10s")
    live_monitor_interval_seconds: float = Field(default=2.0, gt=0.0)
    command_timeout_seconds: float = Field(default=5.0, gt=0.0)
    max_audio_wait_seconds: float = Field(default=45.0, ge=0.0)


# =============================================================================
# Tunables
# =============================================================================

class SchedulerTunables(BaseModel):
    """Scheduler / VM sysctl values applied while optimized, with first-run baselines."""
    sched_rt_runtime_us: int = -1
    swappiness: int = 10
    sched_latency_ns: int = 1_000_000
    sched_min_granularity_ns: int = 100_000
    sched_wakeup_granularity_ns: int = 100_000

    baseline_sched_rt_runtime_us: int = 950_000
    baseline_swappiness: int = 60
    baseline_sched_latency_ns: int = 6_000_000
    baseline_sched_min_granularity_ns: int = 750_000
    baseline_sched_wakeup_granularity_ns: int = 1_000_000


class TunableSettings(BaseModel):
    """Per-kind enable flags for the apply plan."""
    governors: bool = True
    irq_affinity: bool = True
    irq_threading: bool = True
    usb_power: bool = True
    scheduler: bool = True
    kernel_params: bool = True
    network_rps: bool = True

    baseline_governor: str = "powersave"
    usbfs_memory_mb: int = 256
    hpet_max_user_freq: int = 2048
    bus_irq_pattern: str = Field(default="xhci_hcd", description="/proc/interrupts match for bus controllers")
    driver_irq_pattern: str = Field(default="snd|audio", description="/proc/interrupts regex for sound drivers")

    sched: SchedulerTunables = Field(default_factory=SchedulerTunables)


# =============================================================================
# Runtime Paths
# =============================================================================

class PathSettings(BaseModel):
    """Runtime file locations."""
    log_file: Path = Path("/var/log/audio-optimizer.log")
    state_file: Path = Path("/var/run/audio-optimizer/state")
    ledger_file: Path = Path("/var/lib/audio-optimizer/ledger.json")
    status_file: Path = Path("/var/run/audio-optimizer/status.json")
    sysfs_root: Path = Field(default=Path("/"), description="Prefix for /sys and /proc, used by tests")
