"""
ResourceOptimizer: applies and reverts the coordinated tunable set.

Each tunable write is independent. A failure on one target is recorded as
an error value and the remaining targets are still processed, so a kernel
without IRQ threading support still gets its governors changed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from ..exceptions import (
    ExecutionContext,
    OptimizerError,
    TunableReadError,
    TunableWriteError,
)
from ..utils import read_text
from .data_models import TunableStatus, TunableTarget
from .ledger import ResourceLedger

logger = logging.getLogger(__name__)


def write_tunable(path: Path, value: str) -> None:
    """Write a sysfs/procfs value. Raises OSError when the kernel refuses."""
    with open(path, "w") as handle:
        handle.write(value)


class ResourceOptimizer:
    """Applies tunable plans through the ledger and restores prior values."""

    def __init__(self, ledger: ResourceLedger, logger_: Optional[logging.Logger] = None):
        self.ledger = ledger
        self.logger = logger_ or logger

    def apply(self, plan: List[TunableTarget]) -> List[OptimizerError]:
        """Apply every target in ``plan``.

        The current value is recorded in the ledger before the write. A
        target that already has a ledger entry keeps its original prior
        value, which makes repeated applies idempotent.
        """
        errors: List[OptimizerError] = []
        applied = 0

        for target in plan:
            path = Path(target.path)
            current = read_text(path)
            if current is None:
                errors.append(
                    TunableReadError(
                        f"Cannot read current value of {target.label or target.path}",
                        path=target.path,
                        context=ExecutionContext(component="optimizer", target=target.path),
                    )
                )
                continue

            newly_recorded = target not in self.ledger
            self.ledger.record(target, current, target.desired_value)

            if current == target.desired_value:
                applied += 1
                continue

            try:
                write_tunable(path, target.desired_value)
            except OSError as e:
                if newly_recorded:
                    # Nothing changed, nothing to restore
                    self.ledger.clear(target)
                errors.append(
                    TunableWriteError(
                        f"Cannot set {target.label or target.path} to {target.desired_value}: {e}",
                        path=target.path,
                        original_exception=e,
                    )
                )
                continue

            applied += 1
            self.logger.debug(
                "Applied %s: %s -> %s", target.label or target.path, current, target.desired_value
            )

        self.logger.info(
            "Applied %d/%d tunables (%d failed)", applied, len(plan), len(errors)
        )
        return errors

    def revert_all(self) -> List[OptimizerError]:
        """Restore every recorded prior value in reverse insertion order.

        Entries are cleared on success. A target whose path has disappeared
        (device unplugged) has nothing to restore and is cleared as well.
        Failed entries stay in the ledger for the next attempt.
        """
        errors: List[OptimizerError] = []
        entries = self.ledger.entries()
        restored = 0

        for entry in reversed(entries):
            target = entry.target
            path = Path(target.path)

            if not path.exists():
                self.logger.debug("Tunable %s vanished, dropping ledger entry", target.path)
                self.ledger.clear(target)
                continue

            try:
                write_tunable(path, entry.prior_value)
            except OSError as e:
                errors.append(
                    TunableWriteError(
                        f"Cannot restore {target.label or target.path} to {entry.prior_value}: {e}",
                        path=target.path,
                        original_exception=e,
                    )
                )
                continue

            self.ledger.clear(target)
            restored += 1

        if entries:
            self.logger.info(
                "Restored %d/%d tunables (%d failed)", restored, len(entries), len(errors)
            )
        return errors

    def restore_baseline(self, plan: List[TunableTarget]) -> List[OptimizerError]:
        """Write documented baseline values without touching the ledger.

        Used when a revert is needed but no ledger survives (first run or a
        lost ledger file).
        """
        errors: List[OptimizerError] = []
        for target in plan:
            try:
                write_tunable(Path(target.path), target.desired_value)
            except OSError as e:
                errors.append(
                    TunableWriteError(
                        f"Cannot reset {target.label or target.path} to baseline: {e}",
                        path=target.path,
                        original_exception=e,
                    )
                )

        self.logger.info(
            "Reset %d tunables to baseline (%d failed)", len(plan) - len(errors), len(errors)
        )
        return errors

    def describe(self, plan: List[TunableTarget]) -> List[TunableStatus]:
        """Read-only report of each target's current value."""
        report = []
        for target in plan:
            current = read_text(Path(target.path))
            prior, _ = self.ledger.lookup(target)
            report.append(
                TunableStatus(
                    target=target,
                    current_value=current,
                    matches=current == target.desired_value,
                    recorded_prior=prior,
                )
            )
        return report
