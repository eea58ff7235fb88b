"""
Pytest configuration for the audio optimizer test suite.

Root conftest.py - delegates to tests/utils/ for the fake system tree,
fake process table and fake command runner. No test touches the real
system.
"""

import pytest

from audio_optimizer.config import OptimizerConfig, PathSettings
from audio_optimizer.config.settings import CPUPoolSettings

from tests.utils import CPU_COUNT, FakeProcessControl, FakeRunner, build_fake_root


def pytest_collection_modifyitems(config, items):
    """Automatically add markers based on test location."""
    for item in items:
        if "/unit/" in item.nodeid:
            item.add_marker(pytest.mark.unit)
            item.add_marker(pytest.mark.fast)
        elif "/integration/" in item.nodeid:
            item.add_marker(pytest.mark.integration)

        if "/resources/" in item.nodeid:
            item.add_marker(pytest.mark.resources)
        if "/monitoring/" in item.nodeid:
            item.add_marker(pytest.mark.monitoring)
        if "config" in item.nodeid.lower():
            item.add_marker(pytest.mark.config)


@pytest.fixture
def fake_root(tmp_path):
    """Fake system tree with the audio interface attached."""
    return build_fake_root(tmp_path / "root")


@pytest.fixture
def optimizer_config(fake_root, tmp_path):
    """Config pointing every runtime path into tmp_path."""
    return OptimizerConfig(
        cpu_pools=CPUPoolSettings(all_cpus=f"0-{CPU_COUNT - 1}"),
        paths=PathSettings(
            log_file=tmp_path / "run" / "optimizer.log",
            state_file=tmp_path / "run" / "state",
            ledger_file=tmp_path / "run" / "ledger.json",
            status_file=tmp_path / "run" / "status.json",
            sysfs_root=fake_root,
        ),
    )


@pytest.fixture
def process_control():
    """JACK, PipeWire, WirePlumber, a DAW and an unrelated process."""
    return FakeProcessControl(
        {
            100: "jackd",
            101: "pipewire",
            102: "wireplumber",
            200: "Bitwig-Studio",
            300: "firefox",
        }
    )


@pytest.fixture
def fake_runner():
    return FakeRunner()
