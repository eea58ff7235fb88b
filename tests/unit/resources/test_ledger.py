"""
Tests for the ResourceLedger.

Covers prior-value preservation, insertion order, persistence and
recovery from a corrupt ledger file.
"""

import json

import pytest

from audio_optimizer.resources import ResourceLedger, TunableKind, TunableTarget


def _target(path: str, desired: str = "performance") -> TunableTarget:
    return TunableTarget(path=path, desired_value=desired, kind=TunableKind.GOVERNOR, label=path)


class TestResourceLedger:
    """Tests for the in-memory ledger."""

    @pytest.mark.fast
    def test_record_and_lookup(self):
        ledger = ResourceLedger()
        target = _target("/sys/a")

        ledger.record(target, "powersave")

        assert ledger.lookup(target) == ("powersave", True)
        assert ledger.lookup("/sys/a") == ("powersave", True)
        assert target in ledger
        assert len(ledger) == 1

    @pytest.mark.fast
    def test_lookup_missing(self):
        assert ResourceLedger().lookup("/sys/missing") == (None, False)

    @pytest.mark.fast
    def test_second_record_keeps_original_prior(self):
        """Re-applying must not replace the true pre-optimization value."""
        ledger = ResourceLedger()
        target = _target("/sys/a")

        ledger.record(target, "powersave")
        ledger.record(target, "performance")

        assert ledger.lookup(target) == ("powersave", True)
        assert len(ledger) == 1

    @pytest.mark.fast
    def test_entries_keep_insertion_order(self):
        ledger = ResourceLedger()
        for name in ("/sys/c", "/sys/a", "/sys/b"):
            ledger.record(_target(name), "0")

        assert [e.target.path for e in ledger.entries()] == ["/sys/c", "/sys/a", "/sys/b"]

    @pytest.mark.fast
    def test_clear(self):
        ledger = ResourceLedger()
        target = _target("/sys/a")
        ledger.record(target, "x")

        ledger.clear(target)
        ledger.clear(target)

        assert target not in ledger
        assert ledger.snapshot() == {}


class TestLedgerPersistence:
    """Tests for the on-disk mirror."""

    @pytest.mark.fast
    def test_persist_and_load(self, tmp_path):
        path = tmp_path / "ledger.json"
        ledger = ResourceLedger(path)
        ledger.record(_target("/sys/a"), "powersave")
        ledger.record(_target("/sys/b", "1"), "0")

        assert path.exists()
        data = json.loads(path.read_text())
        assert len(data["entries"]) == 2

        reloaded = ResourceLedger(path)
        assert reloaded.load() == 2
        assert reloaded.snapshot() == {"/sys/a": "powersave", "/sys/b": "0"}
        assert reloaded.get("/sys/b").target.desired_value == "1"

    @pytest.mark.fast
    def test_reapplied_value_reaches_disk(self, tmp_path):
        path = tmp_path / "ledger.json"
        ledger = ResourceLedger(path)
        ledger.record(_target("/sys/a", "performance"), "powersave")

        ledger.record(_target("/sys/a", "schedutil"), "performance")

        reloaded = ResourceLedger(path)
        reloaded.load()
        assert reloaded.get("/sys/a").applied_value == "schedutil"
        assert reloaded.lookup("/sys/a") == ("powersave", True)

    @pytest.mark.fast
    def test_empty_ledger_removes_file(self, tmp_path):
        path = tmp_path / "ledger.json"
        ledger = ResourceLedger(path)
        target = _target("/sys/a")
        ledger.record(target, "x")

        ledger.clear(target)

        assert not path.exists()
        assert not ledger.exists_on_disk()

    @pytest.mark.fast
    def test_load_missing_file(self, tmp_path):
        assert ResourceLedger(tmp_path / "nope.json").load() == 0

    @pytest.mark.fast
    def test_load_corrupt_file_is_empty(self, tmp_path):
        path = tmp_path / "ledger.json"
        path.write_text("{not json")

        ledger = ResourceLedger(path)

        assert ledger.load() == 0
        assert len(ledger) == 0
