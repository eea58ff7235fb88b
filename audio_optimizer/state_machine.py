"""
OptimizationStateMachine: presence-driven optimize/deoptimize driver.

States cycle Standard -> Optimizing -> Optimized -> Deoptimizing -> Standard.
Optimizing and Deoptimizing are synchronous sub-steps of a single tick.
Ticks never overlap: a tick that finds another one running is skipped.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .config.settings import TimingSettings, XrunSettings
from .exceptions import ExecutionContext, OptimizerError, StateInconsistencyError
from .logger import ProductionLogger
from .monitoring.engine_probe import AudioEngineProbe
from .monitoring.recommendations import advise, calculate_latency
from .monitoring.xrun_monitor import XrunMonitor
from .presence import PresenceDetector
from .resources.affinity import ProcessAffinityManager
from .resources.optimizer import ResourceOptimizer
from .resources.plan import TunablePlanBuilder
from .status import Snapshot, StatusPublisher

logger = logging.getLogger(__name__)


class OptimizationState(str, Enum):
    STANDARD = "standard"
    OPTIMIZING = "optimizing"
    OPTIMIZED = "optimized"
    DEOPTIMIZING = "deoptimizing"


class StateStore:
    """Persists the state name so a restarted process can reconcile."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> OptimizationState:
        """Persisted state. Missing, unreadable or unknown values mean Standard."""
        try:
            raw = self.path.read_text().strip().lower()
        except OSError:
            return OptimizationState.STANDARD
        try:
            return OptimizationState(raw)
        except ValueError:
            logger.debug("Unknown persisted state %r, treating as standard", raw)
            return OptimizationState.STANDARD

    def save(self, state: OptimizationState) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=".state-")
            with os.fdopen(fd, "w") as handle:
                handle.write(state.value + "\n")
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, self.path)
        except OSError as e:
            logger.warning("Could not persist state to %s: %s", self.path, e)


@dataclass
class TickOutcome:
    """What one tick did. Failures are recorded here, never raised."""

    tick: int
    state_before: OptimizationState
    state_after: OptimizationState
    present: Optional[bool] = None
    errors: List[OptimizerError] = field(default_factory=list)
    rescanned: bool = False
    snapshot: Optional[Snapshot] = None
    skipped: bool = False

    @property
    def transitioned(self) -> bool:
        return self.state_before != self.state_after


class OptimizationStateMachine:
    """Single owner of optimization state, the ledger and tick counters."""

    def __init__(
        self,
        presence: PresenceDetector,
        plan_builder: TunablePlanBuilder,
        optimizer: ResourceOptimizer,
        affinity: ProcessAffinityManager,
        monitor: XrunMonitor,
        probe: AudioEngineProbe,
        publisher: StatusPublisher,
        store: StateStore,
        timing: Optional[TimingSettings] = None,
        xrun_settings: Optional[XrunSettings] = None,
        device_label: str = "",
        event_logger: Optional[ProductionLogger] = None,
    ):
        self.presence = presence
        self.plan_builder = plan_builder
        self.optimizer = optimizer
        self.affinity = affinity
        self.monitor = monitor
        self.probe = probe
        self.publisher = publisher
        self.store = store
        self.timing = timing or TimingSettings()
        self.xrun_settings = xrun_settings or XrunSettings()
        self.device_label = device_label
        self.events = event_logger

        self.state = OptimizationState.STANDARD
        self.tick_count = 0
        self.last_snapshot: Optional[Snapshot] = None
        self._guard = threading.Lock()

    @property
    def ledger(self):
        return self.optimizer.ledger

    def _event(self, level: str, message: str, **fields) -> None:
        if self.events:
            self.events.log_event(level, message, **fields)
        else:
            logger.log(getattr(logging, level.upper()), message)

    def _set_state(self, state: OptimizationState) -> None:
        self.state = state
        self.store.save(state)

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------

    def tick(self, now: Optional[datetime] = None) -> TickOutcome:
        """Run one tick. Returns a skipped outcome if a tick is already running."""
        if not self._guard.acquire(blocking=False):
            return TickOutcome(
                tick=self.tick_count, state_before=self.state, state_after=self.state, skipped=True
            )
        try:
            return self._tick(now)
        finally:
            self._guard.release()

    def _tick(self, now: Optional[datetime]) -> TickOutcome:
        self.tick_count += 1
        outcome = TickOutcome(tick=self.tick_count, state_before=self.state, state_after=self.state)

        if self.state in (OptimizationState.OPTIMIZING, OptimizationState.DEOPTIMIZING):
            outcome.errors.extend(self._force_revert())

        present = self.presence.is_present()
        outcome.present = present

        if present and self.state is OptimizationState.STANDARD:
            outcome.errors.extend(self._optimize())
            outcome.snapshot = self.sample_and_publish(now)
        elif not present and self.state is OptimizationState.OPTIMIZED:
            outcome.errors.extend(self._deoptimize())
            outcome.snapshot = self.publish_basic(present)
        elif self.state is OptimizationState.OPTIMIZED:
            if self.tick_count % self.timing.affinity_rescan_ticks == 0:
                outcome.errors.extend(self.affinity.apply_all())
                outcome.rescanned = True
            if self.tick_count % self.timing.xrun_sample_ticks == 0:
                outcome.snapshot = self.sample_and_publish(now)

        outcome.state_after = self.state
        self._log_errors(outcome.errors)
        return outcome

    def _optimize(self) -> List[OptimizerError]:
        self._set_state(OptimizationState.OPTIMIZING)
        self._event("INFO", f"{self.device_label or 'Audio interface'} detected, optimizing", tick=self.tick_count)

        plan = self.plan_builder.build(self.presence.find_usb_device_path())
        errors: List[OptimizerError] = list(self.optimizer.apply(plan))
        errors.extend(self.affinity.apply_all())

        self._set_state(OptimizationState.OPTIMIZED)
        self._event(
            "INFO", "Optimization active",
            tick=self.tick_count, targets=len(plan), failures=len(errors),
        )
        return errors

    def _deoptimize(self) -> List[OptimizerError]:
        self._set_state(OptimizationState.DEOPTIMIZING)
        self._event("INFO", f"{self.device_label or 'Audio interface'} disconnected, restoring", tick=self.tick_count)

        errors: List[OptimizerError] = list(self.affinity.revert_all())
        errors.extend(self.optimizer.revert_all())

        self._set_state(OptimizationState.STANDARD)
        self._event("INFO", "Standard mode restored", tick=self.tick_count, failures=len(errors))
        return errors

    def _force_revert(self) -> List[OptimizerError]:
        """Revert through the ledger, or to baseline values when it is empty."""
        self._set_state(OptimizationState.DEOPTIMIZING)
        errors: List[OptimizerError] = list(self.affinity.revert_all())
        if len(self.ledger):
            errors.extend(self.optimizer.revert_all())
        else:
            errors.extend(self.optimizer.restore_baseline(self.plan_builder.build_baseline()))
        self._set_state(OptimizationState.STANDARD)
        return errors

    def _log_errors(self, errors: List[OptimizerError]) -> None:
        if not errors:
            return
        self._event(
            "WARNING", f"{len(errors)} sub-operation(s) failed",
            tick=self.tick_count, state=self.state.value,
        )
        for error in errors:
            error.context.tick = self.tick_count
            logger.debug("%s | %s", error.message, error.context.format_summary())

    # ------------------------------------------------------------------
    # Recovery and forced transitions
    # ------------------------------------------------------------------

    def recover(self, now: Optional[datetime] = None) -> TickOutcome:
        """Reconcile persisted state with reality before normal ticking.

        A non-Standard persisted state or a surviving ledger forces a revert
        pass. A tick then re-applies if the device is present.
        """
        with self._guard:
            persisted = self.store.load()
            self.ledger.load()
            errors: List[OptimizerError] = []

            if persisted is not OptimizationState.STANDARD or len(self.ledger):
                inconsistency = StateInconsistencyError(
                    f"Persisted state {persisted.value} with {len(self.ledger)} ledger entries, forcing revert",
                    context=ExecutionContext(state=persisted.value, component="recovery"),
                )
                self._event("WARNING", inconsistency.message, state=persisted.value, ledger_entries=len(self.ledger))
                self.state = persisted
                errors.append(inconsistency)
                errors.extend(self._force_revert())
            else:
                self.state = OptimizationState.STANDARD

        outcome = self.tick(now)
        outcome.errors = errors + outcome.errors
        return outcome

    def activate(self, now: Optional[datetime] = None) -> List[OptimizerError]:
        """Apply optimizations regardless of presence. Re-applies when already optimized."""
        with self._guard:
            if self.state is OptimizationState.OPTIMIZED:
                plan = self.plan_builder.build(self.presence.find_usb_device_path())
                errors = list(self.optimizer.apply(plan))
                errors.extend(self.affinity.apply_all())
            else:
                errors = self._optimize()
            self.sample_and_publish(now)
            self._log_errors(errors)
            return errors

    def deactivate(self) -> List[OptimizerError]:
        """Revert everything recorded, regardless of presence."""
        with self._guard:
            errors = self._deoptimize()
            self.publish_basic(self.presence.is_present())
            self._log_errors(errors)
            return errors

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def publish_basic(self, present: bool) -> Snapshot:
        """Snapshot without xrun data, used on transitions to Standard."""
        snapshot = Snapshot(
            device_present=present,
            state=self.state.value,
            device_label=self.device_label,
        )
        self.publisher.publish(snapshot)
        self.last_snapshot = snapshot
        return snapshot

    def sample_and_publish(self, now: Optional[datetime] = None) -> Snapshot:
        """Probe the engine, sample xruns, advise and publish."""
        snapshot = self.build_snapshot(now)
        self.publisher.publish(snapshot)
        self.last_snapshot = snapshot
        return snapshot

    def build_snapshot(self, now: Optional[datetime] = None, poll: bool = True) -> Snapshot:
        settings = self.probe.current_settings()
        report = self.monitor.report(now, poll=poll)
        severity = self.monitor.classify_severity(
            report.windows, report.hardware_errors, report.recent_system
        )
        recommendations = advise(settings, severity, report.windows, self.xrun_settings)

        latency = None
        if settings.active and settings.known:
            latency = round(calculate_latency(settings.buffer_frames, settings.sample_rate_hz), 1)

        return Snapshot(
            device_present=self.presence.is_present(),
            state=self.state.value,
            jack_active=settings.active,
            buffer_frames=settings.buffer_frames,
            sample_rate_hz=settings.sample_rate_hz,
            periods=settings.periods,
            xrun_window_counts=report.windows,
            severity=severity.value,
            recommendations=recommendations,
            timestamp=report.sampled_at.isoformat(),
            device_label=self.device_label,
            latency_ms=latency,
            hardware_errors=report.hardware_errors,
            source_counts=report.by_source,
            engine_status=settings.status.value,
        )
