"""
ProcessAffinityManager: pins audio processes to CPU pools with RT priority.

Stateless re-scan design: every ``apply_all``/``revert_all`` walks the live
process table once. A pid that exits between scans is simply not seen on
the next one. Per-process failures (exited, permission denied) are logged
and returned as error values, never raised.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import psutil

from ..config.settings import CPUPoolSettings, PrioritySettings
from ..exceptions import ExecutionContext, InvalidConfigurationError, OptimizerError, ProcessControlError
from ..utils import parse_cpu_list
from .data_models import AffinityAssignment, ProcessAffinityRule, ProcessInfo

logger = logging.getLogger(__name__)

# Errors that mean "this process cannot be changed right now"
PROCESS_ERRORS = (psutil.NoSuchProcess, psutil.AccessDenied, OSError)

_POLICY_NAMES = {
    os.SCHED_OTHER: "other",
    os.SCHED_FIFO: "fifo",
    os.SCHED_RR: "rr",
    os.SCHED_BATCH: "batch",
    os.SCHED_IDLE: "idle",
}
_POLICY_CONSTANTS = {"fifo": os.SCHED_FIFO, "rr": os.SCHED_RR}
RT_POLICIES = ("fifo", "rr")


class ProcessControl:
    """Thin wrapper over psutil and os scheduler calls, replaceable in tests."""

    def iter_processes(self) -> Iterator[Tuple[int, str]]:
        for proc in psutil.process_iter(["pid", "name"]):
            name = proc.info.get("name")
            if name:
                yield proc.info["pid"], name

    def get_affinity(self, pid: int) -> List[int]:
        return sorted(psutil.Process(pid).cpu_affinity())

    def set_affinity(self, pid: int, cpus: Sequence[int]) -> None:
        psutil.Process(pid).cpu_affinity(list(cpus))

    def get_scheduler(self, pid: int) -> Tuple[str, int]:
        policy = os.sched_getscheduler(pid)
        priority = os.sched_getparam(pid).sched_priority
        return _POLICY_NAMES.get(policy, str(policy)), priority

    def set_realtime(self, pid: int, policy: str, priority: int) -> None:
        os.sched_setscheduler(pid, _POLICY_CONSTANTS[policy], os.sched_param(priority))

    def set_normal(self, pid: int) -> None:
        os.sched_setscheduler(pid, os.SCHED_OTHER, os.sched_param(0))

    def set_io_idle(self, pid: int) -> None:
        psutil.Process(pid).ionice(psutil.IOPRIO_CLASS_IDLE)


def build_rules(priorities: PrioritySettings, pools: CPUPoolSettings) -> List[ProcessAffinityRule]:
    """Expand the priority configuration into an ordered rule table.

    Server rules come first, then explicit application rules, then the plain
    application pattern list and operator extra patterns. The first rule for
    a (case-insensitive) name wins.

    Raises:
        InvalidConfigurationError: an application-class priority is not
            strictly below every server-class priority
    """
    server_cpus = tuple(parse_cpu_list(pools.audio_server))
    app_cpus = tuple(parse_cpu_list(pools.applications))

    rules: List[ProcessAffinityRule] = []
    seen = set()

    def add(pattern: str, cpus: tuple, priority: int, policy: str, rule_class: str) -> None:
        key = pattern.lower()
        if key in seen:
            return
        seen.add(key)
        rules.append(
            ProcessAffinityRule(
                name_pattern=pattern,
                cpu_set=cpus,
                rt_priority=priority,
                sched_policy=policy,
                rule_class=rule_class,
            )
        )

    for entry in list(priorities.server_rules) + list(priorities.application_rules):
        default_cpus = server_cpus if entry.rule_class == "server" else app_cpus
        cpus = tuple(parse_cpu_list(entry.cpus)) if entry.cpus else default_cpus
        add(entry.pattern, cpus, entry.priority, entry.policy, entry.rule_class)

    for pattern in list(priorities.application_patterns) + list(priorities.extra_patterns):
        add(pattern, app_cpus, priorities.application_priority, "fifo", "application")

    check_priority_ordering(rules)
    return rules


def check_priority_ordering(rules: Iterable[ProcessAffinityRule]) -> None:
    """Audio-server rules must strictly outrank every application rule."""
    rules = list(rules)
    server = [r.rt_priority for r in rules if r.rule_class == "server"]
    apps = [r.rt_priority for r in rules if r.rule_class != "server"]
    if not server:
        raise InvalidConfigurationError("Rule table has no audio-server rules")
    if apps and max(apps) >= min(server):
        raise InvalidConfigurationError(
            f"Application priority {max(apps)} is not below audio-server priority {min(server)}"
        )


class ProcessAffinityManager:
    """Matches live processes against the rule table and pins them."""

    def __init__(
        self,
        rules: List[ProcessAffinityRule],
        all_cpus: Sequence[int],
        control: Optional[ProcessControl] = None,
    ):
        check_priority_ordering(rules)
        self.rules = list(rules)
        self.all_cpus = list(all_cpus)
        self.control = control or ProcessControl()
        self._by_name: Dict[str, ProcessAffinityRule] = {
            r.name_pattern.lower(): r for r in reversed(self.rules)
        }

    @property
    def server_rules(self) -> List[ProcessAffinityRule]:
        return [r for r in self.rules if r.rule_class == "server"]

    def match(self, name: str) -> Optional[ProcessAffinityRule]:
        return self._by_name.get(name.lower())

    def scan(self) -> List[AffinityAssignment]:
        """One pass over the process table. Returns matches only."""
        assignments = []
        try:
            processes = list(self.control.iter_processes())
        except PROCESS_ERRORS as e:
            logger.warning("Process table scan failed: %s", e)
            return []

        for pid, name in processes:
            rule = self.match(name)
            if rule is not None:
                assignments.append(AffinityAssignment(pid=pid, name=name, rule=rule))
        return assignments

    def apply_all(self) -> List[OptimizerError]:
        """Pin every matching process to its rule's CPU set and RT priority."""
        errors: List[OptimizerError] = []
        assignments = self.scan()
        changed = 0

        for assignment in assignments:
            rule = assignment.rule
            pid = assignment.pid

            try:
                if self.control.get_affinity(pid) != sorted(rule.cpu_set):
                    self.control.set_affinity(pid, rule.cpu_set)
                    changed += 1
                assignment.applied_cpu_set = rule.cpu_set
            except PROCESS_ERRORS as e:
                self._fail(assignment, errors, "affinity", e)

            try:
                if self.control.get_scheduler(pid) != (rule.sched_policy, rule.rt_priority):
                    self.control.set_realtime(pid, rule.sched_policy, rule.rt_priority)
                    changed += 1
                assignment.applied_priority = rule.rt_priority
            except PROCESS_ERRORS as e:
                self._fail(assignment, errors, "priority", e)

        if changed:
            logger.info(
                "Pinned %d audio processes (%d changes, %d failures)",
                len(assignments), changed, len(errors),
            )
        return errors

    def revert_all(self) -> List[OptimizerError]:
        """Reset every matching process to all CPUs and normal scheduling."""
        errors: List[OptimizerError] = []
        assignments = self.scan()

        for assignment in assignments:
            pid = assignment.pid
            try:
                self.control.set_affinity(pid, self.all_cpus)
            except PROCESS_ERRORS as e:
                self._fail(assignment, errors, "affinity reset", e)
            try:
                self.control.set_normal(pid)
            except PROCESS_ERRORS as e:
                self._fail(assignment, errors, "scheduler reset", e)

        if assignments:
            logger.info("Reset %d audio processes to normal scheduling", len(assignments))
        return errors

    def _fail(
        self,
        assignment: AffinityAssignment,
        errors: List[OptimizerError],
        what: str,
        exc: BaseException,
    ) -> None:
        message = f"Cannot set {what} for {assignment.name} (pid {assignment.pid}): {exc}"
        logger.debug(message)
        assignment.errors.append(message)
        errors.append(
            ProcessControlError(
                message,
                pid=assignment.pid,
                context=ExecutionContext(component="affinity", target=assignment.name),
                original_exception=exc,
            )
        )

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def list_processes(self) -> List[ProcessInfo]:
        """Matched processes with their current placement."""
        infos = []
        for assignment in self.scan():
            try:
                affinity: Optional[List[int]] = self.control.get_affinity(assignment.pid)
            except PROCESS_ERRORS:
                affinity = None
            try:
                policy, priority = self.control.get_scheduler(assignment.pid)
            except PROCESS_ERRORS:
                policy, priority = None, None
            infos.append(
                ProcessInfo(
                    pid=assignment.pid,
                    name=assignment.name,
                    cpu_affinity=affinity,
                    policy=policy,
                    priority=priority,
                )
            )
        return infos

    def count_rt_processes(self) -> int:
        return sum(1 for info in self.list_processes() if info.policy in RT_POLICIES)

    def is_server_running(self) -> bool:
        return any(a.rule.rule_class == "server" for a in self.scan())

    def wait_for_audio_services(
        self,
        timeout: float,
        interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> bool:
        """Poll until an audio-server process appears or ``timeout`` passes."""
        deadline = clock() + timeout
        while True:
            if self.is_server_running():
                return True
            if clock() >= deadline:
                logger.info("No audio server after %.0fs, continuing", timeout)
                return False
            sleep(interval)

    # ------------------------------------------------------------------
    # Self-deprioritisation
    # ------------------------------------------------------------------

    def pin_self(self, cpus: Sequence[int]) -> List[OptimizerError]:
        """Move this process onto ``cpus`` with normal scheduling and idle I/O."""
        pid = os.getpid()
        me = AffinityAssignment(
            pid=pid,
            name="audio-optimizer",
            rule=ProcessAffinityRule(name_pattern="audio-optimizer", cpu_set=tuple(cpus), rt_priority=0),
        )
        errors: List[OptimizerError] = []
        for what, call in (
            ("affinity", lambda: self.control.set_affinity(pid, cpus)),
            ("scheduler", lambda: self.control.set_normal(pid)),
            ("io class", lambda: self.control.set_io_idle(pid)),
        ):
            try:
                call()
            except PROCESS_ERRORS as e:
                self._fail(me, errors, what, e)
        return errors
