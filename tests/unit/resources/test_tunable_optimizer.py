"""
Tests for ResourceOptimizer apply/revert through the ledger.

Covers idempotent re-apply, exact restoration of prior values, non-fatal
write failures and targets that vanish while optimized.
"""

import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from audio_optimizer.exceptions import TunableReadError, TunableWriteError
from audio_optimizer.resources import (
    ResourceLedger,
    ResourceOptimizer,
    TunableKind,
    TunablePlanBuilder,
    TunableTarget,
)
from audio_optimizer.resources import optimizer as optimizer_module

from tests.utils import USB_DEVICE, detach_device, read

value_strategy = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789-", min_size=1, max_size=12)


def _target(path: Path, desired: str) -> TunableTarget:
    return TunableTarget(path=str(path), desired_value=desired, kind=TunableKind.SCHED_PARAM, label=path.name)


@pytest.fixture
def optimizer(tmp_path):
    return ResourceOptimizer(ResourceLedger(tmp_path / "ledger.json"))


class TestApply:
    """Tests for ResourceOptimizer.apply."""

    @pytest.mark.fast
    def test_apply_writes_and_records(self, tmp_path, optimizer):
        path = tmp_path / "swappiness"
        path.write_text("60\n")

        errors = optimizer.apply([_target(path, "10")])

        assert errors == []
        assert path.read_text() == "10"
        assert optimizer.ledger.lookup(str(path)) == ("60", True)

    @pytest.mark.fast
    def test_apply_twice_keeps_prior(self, tmp_path, optimizer):
        path = tmp_path / "swappiness"
        path.write_text("60\n")
        plan = [_target(path, "10")]

        optimizer.apply(plan)
        optimizer.apply(plan)

        assert optimizer.ledger.lookup(str(path)) == ("60", True)
        assert len(optimizer.ledger) == 1

    @pytest.mark.fast
    def test_unreadable_target_is_reported_and_skipped(self, tmp_path, optimizer):
        good = tmp_path / "good"
        good.write_text("a")
        missing = tmp_path / "missing"

        errors = optimizer.apply([_target(missing, "x"), _target(good, "b")])

        assert len(errors) == 1
        assert isinstance(errors[0], TunableReadError)
        assert errors[0].path == str(missing)
        assert good.read_text() == "b"
        assert str(missing) not in optimizer.ledger

    @pytest.mark.fast
    def test_write_failure_is_non_fatal(self, tmp_path, optimizer):
        first = tmp_path / "threading"
        first.write_text("normal")
        second = tmp_path / "governor"
        second.write_text("powersave")
        real_write = optimizer_module.write_tunable

        def refuse_threading(path, value):
            if Path(path).name == "threading":
                raise OSError(22, "Invalid argument")
            real_write(path, value)

        with patch.object(optimizer_module, "write_tunable", side_effect=refuse_threading):
            errors = optimizer.apply([_target(first, "forced"), _target(second, "performance")])

        assert len(errors) == 1
        assert isinstance(errors[0], TunableWriteError)
        assert second.read_text() == "performance"
        # nothing changed on the refused target, so nothing to restore
        assert str(first) not in optimizer.ledger
        assert str(second) in optimizer.ledger


class TestRevert:
    """Tests for ResourceOptimizer.revert_all and restore_baseline."""

    @pytest.mark.fast
    def test_revert_restores_prior_and_clears(self, tmp_path, optimizer):
        path = tmp_path / "swappiness"
        path.write_text("60\n")
        optimizer.apply([_target(path, "10")])

        errors = optimizer.revert_all()

        assert errors == []
        assert path.read_text() == "60"
        assert len(optimizer.ledger) == 0
        assert not (tmp_path / "ledger.json").exists()

    @pytest.mark.fast
    def test_revert_runs_in_reverse_order(self, tmp_path, optimizer):
        paths = [tmp_path / name for name in ("a", "b", "c")]
        for path in paths:
            path.write_text("0")
        optimizer.apply([_target(p, "1") for p in paths])
        written = []

        with patch.object(optimizer_module, "write_tunable", side_effect=lambda p, v: written.append(Path(p).name)):
            optimizer.revert_all()

        assert written == ["c", "b", "a"]

    @pytest.mark.fast
    def test_vanished_path_clears_entry(self, fake_root, optimizer_config, tmp_path, optimizer):
        device = fake_root / "sys" / "bus" / "usb" / "devices" / USB_DEVICE
        plan = TunablePlanBuilder(optimizer_config).build(device)
        optimizer.apply(plan)
        detach_device(fake_root)

        errors = optimizer.revert_all()

        assert errors == []
        assert len(optimizer.ledger) == 0
        assert read(fake_root, "proc/sys/vm/swappiness") == "60"

    @pytest.mark.fast
    def test_failed_restore_keeps_entry(self, tmp_path, optimizer):
        path = tmp_path / "swappiness"
        path.write_text("60")
        optimizer.apply([_target(path, "10")])

        with patch.object(optimizer_module, "write_tunable", side_effect=OSError(13, "Permission denied")):
            errors = optimizer.revert_all()

        assert len(errors) == 1
        assert str(path) in optimizer.ledger

    @pytest.mark.fast
    def test_restore_baseline_leaves_ledger_alone(self, tmp_path, optimizer):
        path = tmp_path / "governor"
        path.write_text("performance")

        errors = optimizer.restore_baseline([_target(path, "powersave")])

        assert errors == []
        assert path.read_text() == "powersave"
        assert len(optimizer.ledger) == 0

    @pytest.mark.fast
    def test_describe(self, tmp_path, optimizer):
        path = tmp_path / "governor"
        path.write_text("powersave")
        target = _target(path, "performance")

        before = optimizer.describe([target])[0]
        optimizer.apply([target])
        after = optimizer.describe([target])[0]

        assert (before.current_value, before.matches, before.recorded_prior) == ("powersave", False, None)
        assert (after.current_value, after.matches, after.recorded_prior) == ("performance", True, "powersave")


class TestRollbackFidelity:
    """Property: apply then revert leaves every tunable at its prior value."""

    @pytest.mark.fast
    @given(
        values=st.lists(st.tuples(value_strategy, value_strategy), min_size=1, max_size=8),
        repeat=st.integers(min_value=1, max_value=3),
    )
    @settings(max_examples=50, deadline=None)
    def test_apply_revert_round_trip(self, values, repeat):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            plan = []
            for i, (prior, desired) in enumerate(values):
                path = root / f"tunable{i}"
                path.write_text(prior + "\n")
                plan.append(_target(path, desired))
            optimizer = ResourceOptimizer(ResourceLedger(root / "ledger.json"))

            for _ in range(repeat):
                assert optimizer.apply(plan) == []
            assert optimizer.revert_all() == []

            for (prior, _), target in zip(values, plan):
                assert Path(target.path).read_text().strip() == prior
            assert len(optimizer.ledger) == 0
