"""
Adaptive resource optimization engine facade.

Wires presence detection, the tunable ledger, process affinity, xrun
monitoring and the state machine into the operations a CLI or service
wrapper calls: activate, deactivate, status, detailed_status,
start_live_monitor and the tick loop.
"""

from __future__ import annotations

import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Mapping, Optional, TYPE_CHECKING

from .config.loader import OptimizerConfig, load_optimizer_config
from .config.paths import get_user_data_dir
from .exceptions import OptimizerError
from .live_monitor import LiveFrame, LiveMonitor, run_in_terminal
from .logger import get_logger
from .monitoring.data_models import AudioEngineSettings, EngineStatus
from .monitoring.engine_probe import AudioEngineProbe, CommandRunner, resolve_invoking_user
from .monitoring.recommendations import buffer_outlook
from .monitoring.sources import LogSourceAdapter, Runner, default_adapters
from .monitoring.xrun_monitor import XrunMonitor
from .presence import PresenceDetector
from .resources.affinity import ProcessAffinityManager, ProcessControl, build_rules
from .resources.ledger import ResourceLedger
from .resources.optimizer import ResourceOptimizer
from .resources.plan import TunablePlanBuilder
from .state_machine import OptimizationState, OptimizationStateMachine, StateStore, TickOutcome
from .status import DetailedStatus, Snapshot, StatusPublisher
from .utils import parse_cpu_list, run_command

if TYPE_CHECKING:
    from .logger import ProductionLogger


class OptimizerEngine:
    """
    Single entry point for the optimizer.

    Every collaborator can be injected for tests: the process controller,
    the command runner used for journal/dmesg/JACK queries and the log
    source adapters.
    """

    def __init__(
        self,
        config: Optional[OptimizerConfig] = None,
        logger: Optional["ProductionLogger"] = None,
        control: Optional[ProcessControl] = None,
        runner: Optional[Runner] = None,
        adapters: Optional[Iterable[LogSourceAdapter]] = None,
        environ: Optional[Mapping[str, str]] = None,
        euid: Optional[int] = None,
    ):
        self.config = config or OptimizerConfig()
        self.logger = logger
        self.control = control or ProcessControl()
        self._runner = runner or run_command
        self._adapters = list(adapters) if adapters is not None else None

        cfg = self.config
        self.presence = PresenceDetector(cfg.device, cfg.paths.sysfs_root)
        self.ledger = ResourceLedger(cfg.paths.ledger_file)
        self.plan_builder = TunablePlanBuilder(cfg)
        self.optimizer = ResourceOptimizer(self.ledger)
        self.affinity = ProcessAffinityManager(
            build_rules(cfg.priorities, cfg.cpu_pools),
            self.plan_builder.all_cpus,
            self.control,
        )
        self.monitor = self._new_monitor()
        self.probe = AudioEngineProbe(
            process_names=self._process_names,
            device_available=lambda: self.presence.card_name() is not None,
            runner=CommandRunner(euid=euid, run=self._runner),
            identity=resolve_invoking_user(environ),
            timeout=cfg.timing.command_timeout_seconds,
        )
        self.publisher = StatusPublisher(cfg.paths.status_file)
        self.store = StateStore(cfg.paths.state_file)
        self.machine = OptimizationStateMachine(
            presence=self.presence,
            plan_builder=self.plan_builder,
            optimizer=self.optimizer,
            affinity=self.affinity,
            monitor=self.monitor,
            probe=self.probe,
            publisher=self.publisher,
            store=self.store,
            timing=cfg.timing,
            xrun_settings=cfg.xrun,
            device_label=cfg.device.display_name,
            event_logger=logger,
        )

    @classmethod
    def from_config_file(
        cls,
        path: Optional[Path] = None,
        quiet: Optional[bool] = None,
        **kwargs,
    ) -> "OptimizerEngine":
        """Load configuration, set up logging and build the engine.

        Raises:
            InvalidConfigurationError: configuration failed validation
        """
        config = load_optimizer_config(path)
        logger = get_logger(
            log_level=config.log_level,
            log_file=config.paths.log_file,
            fallback_log_file=get_user_data_dir() / config.paths.log_file.name,
            quiet=quiet,
        )
        return cls(config=config, logger=logger, **kwargs)

    def _new_monitor(self) -> XrunMonitor:
        adapters = self._adapters
        if adapters is None:
            adapters = default_adapters(self._runner, self.config.xrun.adapter_timeout_seconds)
        return XrunMonitor(adapters, self.config.xrun)

    def _process_names(self) -> List[str]:
        return [name for _, name in self.control.iter_processes()]

    @property
    def state(self) -> OptimizationState:
        return self.machine.state

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def activate(self) -> List[OptimizerError]:
        """Apply all optimizations now, regardless of device presence."""
        errors = self.machine.activate()
        if self.logger:
            self.logger.info("Activated", failures=len(errors), ledger_entries=len(self.ledger))
        return errors

    def deactivate(self) -> List[OptimizerError]:
        """Restore every recorded tunable and reset audio processes."""
        errors = self.machine.deactivate()
        if self.logger:
            self.logger.info("Deactivated", failures=len(errors), ledger_entries=len(self.ledger))
        return errors

    def status(self, now: Optional[datetime] = None) -> Snapshot:
        """Current snapshot computed on demand. Publishes nothing."""
        snapshot = self.machine.build_snapshot(now)
        snapshot.state = self._effective_state()
        return snapshot

    def published_status(self) -> Optional[Snapshot]:
        """Last snapshot written by the running service, if any."""
        return self.publisher.read()

    def detailed_status(self, now: Optional[datetime] = None) -> DetailedStatus:
        """Snapshot plus tunable, IRQ, process and CPU isolation reports."""
        snapshot = self.status(now)
        if not len(self.ledger):
            self.ledger.load()

        plan = self.plan_builder.build(self.presence.find_usb_device_path())
        tunables = [
            {
                "path": item.target.path,
                "label": item.target.label,
                "kind": item.target.kind.value,
                "desired": item.target.desired_value,
                "current": item.current_value,
                "matches": item.matches,
                "prior": item.recorded_prior,
            }
            for item in self.optimizer.describe(plan)
        ]
        processes = self.affinity.list_processes()
        bus, driver = self.plan_builder.irq_summary().format()

        settings = AudioEngineSettings(
            active=snapshot.jack_active,
            buffer_frames=snapshot.buffer_frames,
            sample_rate_hz=snapshot.sample_rate_hz,
            periods=snapshot.periods,
            status=EngineStatus(snapshot.engine_status),
        )
        recent = snapshot.xrun_window_counts.get(self.config.xrun.max_window_seconds, 0)

        return DetailedStatus(
            snapshot=snapshot,
            tunables=tunables,
            irq_summary={"bus": bus, "driver": driver},
            rt_process_count=self.affinity.count_rt_processes(),
            processes=[
                {
                    "pid": p.pid,
                    "name": p.name,
                    "cpus": ",".join(str(c) for c in p.cpu_affinity) if p.cpu_affinity else None,
                    "policy": p.policy,
                    "priority": p.priority,
                }
                for p in processes
            ],
            cpu_isolation=self.plan_builder.cpu_isolation(),
            buffer_outlook=buffer_outlook(settings, recent, self.config.xrun),
        )

    def start_live_monitor(
        self,
        cancel: threading.Event,
        on_update: Optional[Callable[[LiveFrame], None]] = None,
        max_frames: Optional[int] = None,
    ) -> int:
        """Read-only live xrun loop. Renders to the terminal when no callback is given."""
        live = LiveMonitor(
            self._new_monitor(),
            interval=self.config.timing.live_monitor_interval_seconds,
            probe=self.probe,
        )
        try:
            if on_update is None:
                return run_in_terminal(live, cancel)
            return live.run(cancel, on_update, max_frames=max_frames)
        finally:
            live.monitor.close()

    def _effective_state(self) -> str:
        """In-process state when this process owns it, else the persisted one."""
        if self.machine.tick_count or self.machine.last_snapshot is not None:
            return self.machine.state.value
        return self.store.load().value

    # ------------------------------------------------------------------
    # Service loop
    # ------------------------------------------------------------------

    def tick(self, now: Optional[datetime] = None) -> TickOutcome:
        return self.machine.tick(now)

    def prepare(self, wait_for_audio: bool = True) -> List[OptimizerError]:
        """Deprioritise this process and give the user's audio stack time to start."""
        background = parse_cpu_list(self.config.cpu_pools.background)
        errors = self.affinity.pin_self(background)
        if wait_for_audio and self.presence.is_present():
            self.affinity.wait_for_audio_services(self.config.timing.max_audio_wait_seconds)
        return errors

    def run(
        self,
        cancel: threading.Event,
        wait_for_audio: bool = True,
        revert_on_exit: bool = True,
    ) -> None:
        """Recover, then tick every ``tick_interval_seconds`` until cancelled."""
        self.prepare(wait_for_audio)
        outcome = self.machine.recover()
        if self.logger:
            self.logger.info(
                "Service started",
                run_id=self.logger.get_run_id(),
                state=outcome.state_after.value,
                recovery_errors=len(outcome.errors),
            )

        try:
            while not cancel.wait(self.config.timing.tick_interval_seconds):
                self.machine.tick()
        finally:
            if revert_on_exit and (len(self.ledger) or self.machine.state is not OptimizationState.STANDARD):
                self.machine.deactivate()
            self.monitor.close()
            if self.logger:
                self.logger.info("Service stopped", state=self.machine.state.value)
