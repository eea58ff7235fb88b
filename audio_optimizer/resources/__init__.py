"""
Resource management for the audio optimizer.

Public API:
- ResourceLedger: prior values of every tunable changed
- ResourceOptimizer: apply/revert tunable plans through the ledger
- TunablePlanBuilder: CPU pool, IRQ, USB and sysctl plans
- ProcessAffinityManager: CPU pinning and RT priority for audio processes
- Data models: TunableTarget, LedgerEntry, ProcessAffinityRule, ...
"""

from .affinity import ProcessAffinityManager, ProcessControl, build_rules, check_priority_ordering
from .data_models import (
    AffinityAssignment,
    IRQSummary,
    LedgerEntry,
    ProcessAffinityRule,
    ProcessInfo,
    TunableKind,
    TunableStatus,
    TunableTarget,
)
from .ledger import ResourceLedger
from .optimizer import ResourceOptimizer, write_tunable
from .plan import SystemLayout, TunablePlanBuilder

__all__ = [
    "AffinityAssignment",
    "IRQSummary",
    "LedgerEntry",
    "ProcessAffinityManager",
    "ProcessAffinityRule",
    "ProcessControl",
    "ProcessInfo",
    "ResourceLedger",
    "ResourceOptimizer",
    "SystemLayout",
    "TunableKind",
    "TunablePlanBuilder",
    "TunableStatus",
    "TunableTarget",
    "build_rules",
    "check_priority_ordering",
    "write_tunable",
]
