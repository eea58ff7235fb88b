"""
Data models for resource optimization.

This module contains the dataclasses used throughout the resources package.
It has no internal dependencies to serve as a stable foundation layer.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class TunableKind(str, Enum):
    """Kinds of OS tunables the optimizer manages"""

    GOVERNOR = "governor"
    MIN_FREQ = "min_freq"
    IRQ_AFFINITY = "irq_affinity"
    IRQ_BALANCE = "irq_balance"
    IRQ_THREADING = "irq_threading"
    USB_POWER = "usb_power"
    USB_AUTOSUSPEND = "usb_autosuspend"
    SCHED_PARAM = "sched_param"
    KERNEL_PARAM = "kernel_param"
    RPS_MASK = "rps_mask"


@dataclass(frozen=True)
class TunableTarget:
    """A single tunable and the value it should hold while optimized."""

    path: str
    desired_value: str
    kind: TunableKind
    label: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "desired_value": self.desired_value,
            "kind": self.kind.value,
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TunableTarget":
        return cls(
            path=data["path"],
            desired_value=data["desired_value"],
            kind=TunableKind(data["kind"]),
            label=data.get("label", ""),
        )


@dataclass
class LedgerEntry:
    """Pre-optimization value of a tunable, recorded before it is written."""

    target: TunableTarget
    prior_value: str
    applied_value: str
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target.to_dict(),
            "prior_value": self.prior_value,
            "applied_value": self.applied_value,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerEntry":
        return cls(
            target=TunableTarget.from_dict(data["target"]),
            prior_value=data["prior_value"],
            applied_value=data["applied_value"],
            timestamp=float(data["timestamp"]),
        )


@dataclass
class TunableStatus:
    """Read-only view of a tunable for detailed status."""

    target: TunableTarget
    current_value: Optional[str]
    matches: bool
    recorded_prior: Optional[str] = None


@dataclass
class IRQSummary:
    """How many bus/driver IRQs are currently pinned to the interrupt pool."""

    bus_optimized: int
    bus_total: int
    driver_optimized: int
    driver_total: int

    def format(self) -> Tuple[str, str]:
        return (
            f"{self.bus_optimized}/{self.bus_total}",
            f"{self.driver_optimized}/{self.driver_total}",
        )


@dataclass(frozen=True)
class ProcessAffinityRule:
    """Process-name pattern mapped to a CPU set and real-time priority."""

    name_pattern: str
    cpu_set: Tuple[int, ...]
    rt_priority: int
    sched_policy: str = "fifo"  # "fifo" | "rr"
    rule_class: str = "application"  # "server" | "application"


@dataclass
class AffinityAssignment:
    """A live process matched to a rule during one scan. Never persisted."""

    pid: int
    name: str
    rule: ProcessAffinityRule
    applied_cpu_set: Optional[Tuple[int, ...]] = None
    applied_priority: Optional[int] = None
    errors: List[str] = field(default_factory=list)


@dataclass
class ProcessInfo:
    """Matched process with its current placement, for detailed status."""

    pid: int
    name: str
    cpu_affinity: Optional[List[int]]
    policy: Optional[str]
    priority: Optional[int]
