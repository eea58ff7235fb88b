"""
Apply-plan construction for the coordinated tunable set.

Table-driven: every tunable the optimizer touches is expressed as a
TunableTarget, grouped by CPU pool (fast-path, background, interrupt
handling), IRQ, USB device power policy and scheduler/VM sysctls. Only
targets whose path exists on this system make it into the plan.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import psutil

from ..config.loader import OptimizerConfig
from ..utils import cpu_mask_hex, format_cpu_list, parse_cpu_list, read_text
from .data_models import IRQSummary, TunableKind, TunableTarget

logger = logging.getLogger(__name__)


@dataclass
class IRQLine:
    """One numeric row of /proc/interrupts."""

    number: int
    description: str


class SystemLayout:
    """Filesystem view of /sys and /proc rooted at ``root`` (``/`` in production)."""

    def __init__(self, root: Path = Path("/")):
        self.root = Path(root)

    @property
    def cpu_dir(self) -> Path:
        return self.root / "sys" / "devices" / "system" / "cpu"

    def cpufreq(self, cpu: int) -> Path:
        return self.cpu_dir / f"cpu{cpu}" / "cpufreq"

    def irq_dir(self, irq: int) -> Path:
        return self.root / "proc" / "irq" / str(irq)

    def sysctl(self, name: str) -> Path:
        return self.root / "proc" / "sys" / name

    def online_cpus(self) -> List[int]:
        """Online CPUs from sysfs, falling back to psutil's logical count."""
        online = read_text(self.cpu_dir / "online")
        if online:
            try:
                return parse_cpu_list(online)
            except ValueError:
                logger.debug("Unparseable cpu/online: %r", online)
        count = psutil.cpu_count(logical=True) or 1
        return list(range(count))

    def interrupts(self) -> List[IRQLine]:
        """Numeric IRQ rows of /proc/interrupts. Missing file -> empty."""
        text = read_text(self.root / "proc" / "interrupts")
        if not text:
            return []

        lines = []
        for raw in text.splitlines():
            head, sep, rest = raw.strip().partition(":")
            if not sep or not head.isdigit():
                continue
            lines.append(IRQLine(number=int(head), description=rest))
        return lines

    def find_irqs(self, pattern: str) -> List[int]:
        regex = re.compile(pattern, re.IGNORECASE)
        return [line.number for line in self.interrupts() if regex.search(line.description)]

    def isolated_cpus(self) -> str:
        return read_text(self.cpu_dir / "isolated") or ""

    def isolcpus_param(self) -> str:
        cmdline = read_text(self.root / "proc" / "cmdline") or ""
        match = re.search(r"isolcpus=([0-9,\-]*)", cmdline)
        return match.group(1) if match else ""


class TunablePlanBuilder:
    """Builds the apply plan and the first-run baseline plan."""

    def __init__(self, config: OptimizerConfig, layout: Optional[SystemLayout] = None):
        self.config = config
        self.layout = layout or SystemLayout(config.paths.sysfs_root)
        pools = config.cpu_pools
        self.fast_path_cpus = parse_cpu_list(pools.fast_path)
        self.background_cpus = parse_cpu_list(pools.background)
        self.irq_cpus = parse_cpu_list(pools.irq)

    @property
    def all_cpus(self) -> List[int]:
        if self.config.cpu_pools.all_cpus:
            return parse_cpu_list(self.config.cpu_pools.all_cpus)
        return self.layout.online_cpus()

    @property
    def irq_cpu_list(self) -> str:
        return format_cpu_list(self.irq_cpus)

    def bus_irqs(self) -> List[int]:
        return self.layout.find_irqs(self.config.tunables.bus_irq_pattern)

    def driver_irqs(self) -> List[int]:
        return self.layout.find_irqs(self.config.tunables.driver_irq_pattern)

    # ------------------------------------------------------------------
    # Apply plan
    # ------------------------------------------------------------------

    def build(self, usb_device_path: Optional[Path] = None) -> List[TunableTarget]:
        """Full apply plan for the current system."""
        settings = self.config.tunables
        plan: List[TunableTarget] = []

        if settings.governors:
            plan.extend(self._governor_targets())
        if settings.irq_affinity:
            plan.extend(self._irq_targets())
        if settings.usb_power and usb_device_path is not None:
            plan.extend(self._usb_targets(Path(usb_device_path)))
        if settings.scheduler:
            plan.extend(self._sched_targets(baseline=False))
        if settings.kernel_params:
            plan.extend(self._kernel_param_targets())
        if settings.network_rps:
            plan.extend(self._rps_targets())

        logger.debug("Built apply plan with %d targets", len(plan))
        return plan

    def _governor_targets(self) -> List[TunableTarget]:
        pools = self.config.cpu_pools
        targets: List[TunableTarget] = []

        for cpu in self.fast_path_cpus:
            targets.extend(self._cpu_governor(cpu, pools.fast_path_governor, "fast-path"))
            if pools.pin_fast_path_min_freq:
                max_freq = read_text(self.layout.cpufreq(cpu) / "scaling_max_freq")
                min_path = self.layout.cpufreq(cpu) / "scaling_min_freq"
                if max_freq and min_path.exists():
                    targets.append(
                        TunableTarget(
                            path=str(min_path),
                            desired_value=max_freq,
                            kind=TunableKind.MIN_FREQ,
                            label=f"fast-path CPU {cpu} min frequency",
                        )
                    )

        for cpu in self.background_cpus:
            targets.extend(self._cpu_governor(cpu, pools.background_governor, "background"))

        for cpu in self.irq_cpus:
            # Fast-path and IRQ pools may overlap in custom layouts
            if cpu in self.fast_path_cpus:
                continue
            targets.extend(self._cpu_governor(cpu, pools.irq_governor, "irq"))

        return targets

    def _cpu_governor(self, cpu: int, governor: str, pool: str) -> List[TunableTarget]:
        path = self.layout.cpufreq(cpu) / "scaling_governor"
        if not path.exists():
            return []
        return [
            TunableTarget(
                path=str(path),
                desired_value=governor,
                kind=TunableKind.GOVERNOR,
                label=f"{pool} CPU {cpu} governor",
            )
        ]

    def _irq_targets(self) -> List[TunableTarget]:
        targets: List[TunableTarget] = []
        cpu_list = self.irq_cpu_list
        seen = set()

        for source, irqs in (("bus controller", self.bus_irqs()), ("audio driver", self.driver_irqs())):
            for irq in irqs:
                if irq in seen:
                    continue
                seen.add(irq)
                irq_dir = self.layout.irq_dir(irq)
                affinity = irq_dir / "smp_affinity_list"
                if not affinity.exists():
                    continue

                targets.append(
                    TunableTarget(
                        path=str(affinity),
                        desired_value=cpu_list,
                        kind=TunableKind.IRQ_AFFINITY,
                        label=f"{source} IRQ {irq} affinity",
                    )
                )
                if self.config.tunables.irq_threading and (irq_dir / "threading").exists():
                    targets.append(
                        TunableTarget(
                            path=str(irq_dir / "threading"),
                            desired_value="forced",
                            kind=TunableKind.IRQ_THREADING,
                            label=f"{source} IRQ {irq} threading",
                        )
                    )
                if (irq_dir / "balance_disabled").exists():
                    targets.append(
                        TunableTarget(
                            path=str(irq_dir / "balance_disabled"),
                            desired_value="1",
                            kind=TunableKind.IRQ_BALANCE,
                            label=f"{source} IRQ {irq} balancing",
                        )
                    )
        return targets

    def _usb_targets(self, device: Path) -> List[TunableTarget]:
        power = device / "power"
        table = [
            ("control", "on", TunableKind.USB_POWER, "USB power control"),
            ("autosuspend", "-1", TunableKind.USB_AUTOSUSPEND, "USB autosuspend"),
            ("autosuspend_delay_ms", "-1", TunableKind.USB_AUTOSUSPEND, "USB autosuspend delay"),
        ]
        return [
            TunableTarget(path=str(power / name), desired_value=value, kind=kind, label=label)
            for name, value, kind, label in table
            if (power / name).exists()
        ]

    def _sched_table(self, baseline: bool):
        sched = self.config.tunables.sched
        if baseline:
            return [
                ("kernel/sched_rt_runtime_us", sched.baseline_sched_rt_runtime_us),
                ("vm/swappiness", sched.baseline_swappiness),
                ("kernel/sched_latency_ns", sched.baseline_sched_latency_ns),
                ("kernel/sched_min_granularity_ns", sched.baseline_sched_min_granularity_ns),
                ("kernel/sched_wakeup_granularity_ns", sched.baseline_sched_wakeup_granularity_ns),
            ]
        return [
            ("kernel/sched_rt_runtime_us", sched.sched_rt_runtime_us),
            ("vm/swappiness", sched.swappiness),
            ("kernel/sched_latency_ns", sched.sched_latency_ns),
            ("kernel/sched_min_granularity_ns", sched.sched_min_granularity_ns),
            ("kernel/sched_wakeup_granularity_ns", sched.sched_wakeup_granularity_ns),
        ]

    def _sched_targets(self, baseline: bool) -> List[TunableTarget]:
        targets = []
        for name, value in self._sched_table(baseline):
            path = self.layout.sysctl(name)
            if path.exists():
                targets.append(
                    TunableTarget(
                        path=str(path),
                        desired_value=str(value),
                        kind=TunableKind.SCHED_PARAM,
                        label=name,
                    )
                )
        return targets

    def _kernel_param_targets(self) -> List[TunableTarget]:
        settings = self.config.tunables
        table = [
            (
                self.layout.root / "sys" / "module" / "usbcore" / "parameters" / "usbfs_memory_mb",
                str(settings.usbfs_memory_mb),
                "USB filesystem memory",
            ),
            (
                self.layout.sysctl("dev/hpet/max-user-freq"),
                str(settings.hpet_max_user_freq),
                "HPET max user frequency",
            ),
        ]
        return [
            TunableTarget(path=str(path), desired_value=value, kind=TunableKind.KERNEL_PARAM, label=label)
            for path, value, label in table
            if path.exists()
        ]

    def _rps_targets(self) -> List[TunableTarget]:
        net = self.layout.root / "sys" / "class" / "net"
        try:
            paths = sorted(net.glob("*/queues/rx-*/rps_cpus"))
        except OSError:
            return []

        mask = cpu_mask_hex(self.background_cpus)
        return [
            TunableTarget(
                path=str(path),
                desired_value=mask,
                kind=TunableKind.RPS_MASK,
                label=f"{path.parent.parent.parent.name} {path.parent.name} RPS",
            )
            for path in paths
        ]

    # ------------------------------------------------------------------
    # Baseline plan (revert with no ledger)
    # ------------------------------------------------------------------

    def build_baseline(self) -> List[TunableTarget]:
        """Documented defaults used when no ledger entry exists to revert to.

        Governors of the fast-path and IRQ pools go back to the baseline
        governor, fast-path min frequency to cpuinfo_min_freq, IRQs to all
        CPUs with balancing re-enabled and sysctls to kernel defaults.
        """
        settings = self.config.tunables
        plan: List[TunableTarget] = []

        for cpu in self._unique(self.fast_path_cpus + self.irq_cpus):
            plan.extend(self._cpu_governor(cpu, settings.baseline_governor, "baseline"))
            min_freq = read_text(self.layout.cpufreq(cpu) / "cpuinfo_min_freq")
            min_path = self.layout.cpufreq(cpu) / "scaling_min_freq"
            if min_freq and min_path.exists():
                plan.append(
                    TunableTarget(
                        path=str(min_path),
                        desired_value=min_freq,
                        kind=TunableKind.MIN_FREQ,
                        label=f"baseline CPU {cpu} min frequency",
                    )
                )

        all_cpus = format_cpu_list(self.all_cpus)
        for irq in self._unique(self.bus_irqs() + self.driver_irqs()):
            irq_dir = self.layout.irq_dir(irq)
            if (irq_dir / "smp_affinity_list").exists():
                plan.append(
                    TunableTarget(
                        path=str(irq_dir / "smp_affinity_list"),
                        desired_value=all_cpus,
                        kind=TunableKind.IRQ_AFFINITY,
                        label=f"baseline IRQ {irq} affinity",
                    )
                )
            if (irq_dir / "balance_disabled").exists():
                plan.append(
                    TunableTarget(
                        path=str(irq_dir / "balance_disabled"),
                        desired_value="0",
                        kind=TunableKind.IRQ_BALANCE,
                        label=f"baseline IRQ {irq} balancing",
                    )
                )

        if settings.scheduler:
            plan.extend(self._sched_targets(baseline=True))
        return plan

    # ------------------------------------------------------------------
    # Read-only reports
    # ------------------------------------------------------------------

    def irq_summary(self) -> IRQSummary:
        """Count bus/driver IRQs currently pinned to the interrupt pool."""
        bus = self.bus_irqs()
        driver = self.driver_irqs()
        return IRQSummary(
            bus_optimized=sum(1 for irq in bus if self._irq_pinned(irq)),
            bus_total=len(bus),
            driver_optimized=sum(1 for irq in driver if self._irq_pinned(irq)),
            driver_total=len(driver),
        )

    def _irq_pinned(self, irq: int) -> bool:
        current = read_text(self.layout.irq_dir(irq) / "smp_affinity_list")
        if current is None:
            return False
        try:
            return parse_cpu_list(current) == self.irq_cpus
        except ValueError:
            return False

    def cpu_isolation(self) -> Dict[str, str]:
        """Isolated CPUs as reported by sysfs and the isolcpus= boot parameter."""
        return {
            "isolated": self.layout.isolated_cpus(),
            "isolcpus": self.layout.isolcpus_param(),
        }

    @staticmethod
    def _unique(values: Iterable[int]) -> List[int]:
        seen: List[int] = []
        for value in values:
            if value not in seen:
                seen.append(value)
        return seen
