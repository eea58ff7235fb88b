"""
Tests for configuration models and YAML loading.
"""

from pathlib import Path

import pytest
import yaml

from audio_optimizer.config import (
    CONFIG_ENV_VAR,
    DEFAULT_CONFIG_PATH,
    CPUPoolSettings,
    OptimizerConfig,
    XrunSettings,
    build_config,
    get_config_path,
    load_optimizer_config,
    resolve_writable,
)
from audio_optimizer.exceptions import InvalidConfigurationError
from audio_optimizer.utils import cpu_mask_hex, format_cpu_list, parse_cpu_list


class TestDefaults:

    @pytest.mark.fast
    def test_default_config(self):
        config = OptimizerConfig()

        assert config.device.vendor_id == "07fd"
        assert config.device.product_id == "000b"
        assert config.cpu_pools.fast_path == "0-7"
        assert config.xrun.windows_seconds == [5, 10, 30, 60, 300]
        assert config.xrun.severity_threshold == 5
        assert config.timing.affinity_rescan_ticks == 6
        assert config.timing.xrun_sample_ticks == 2

    @pytest.mark.fast
    def test_max_window(self):
        assert XrunSettings().max_window_seconds == 300
        assert XrunSettings(hardware_window_seconds=600).max_window_seconds == 600


class TestValidation:

    @pytest.mark.fast
    def test_bad_cpu_list(self):
        with pytest.raises(ValueError):
            CPUPoolSettings(fast_path="7-0")

    @pytest.mark.fast
    def test_unknown_section_rejected(self):
        with pytest.raises(InvalidConfigurationError):
            build_config({"governors": {}})

    @pytest.mark.fast
    def test_priority_inversion_rejected(self):
        with pytest.raises(InvalidConfigurationError) as exc_info:
            build_config({"priorities": {"application_priority": 90}})
        assert exc_info.value.resolution_hints

    @pytest.mark.fast
    def test_severity_window_must_be_a_window(self):
        with pytest.raises(ValueError):
            XrunSettings(windows_seconds=[5, 30], severity_window_seconds=60)

    @pytest.mark.fast
    def test_ladder_must_ascend(self):
        with pytest.raises(ValueError):
            XrunSettings(buffer_ladder=[512, 256])

    @pytest.mark.fast
    def test_windows_sorted_and_deduplicated(self):
        assert XrunSettings(windows_seconds=[300, 60, 5, 60, 10, 30]).windows_seconds == [5, 10, 30, 60, 300]


class TestLoading:

    @pytest.mark.fast
    def test_load_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "cpu_pools": {"fast_path": "0-3", "irq": "4-5"},
                    "priorities": {"extra_patterns": ["vital"]},
                    "xrun": {"severity_threshold": 8},
                }
            )
        )

        config = load_optimizer_config(path)

        assert config.cpu_pools.fast_path == "0-3"
        assert config.priorities.extra_patterns == ["vital"]
        assert config.xrun.severity_threshold == 8
        assert config.timing.tick_interval_seconds == 5.0

    @pytest.mark.fast
    def test_empty_yaml_is_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_optimizer_config(path) == OptimizerConfig()

    @pytest.mark.fast
    def test_shipped_example_matches_defaults(self):
        example = Path(__file__).resolve().parents[2] / "config" / "audio_optimizer.yaml"
        assert load_optimizer_config(example) == OptimizerConfig()

    @pytest.mark.fast
    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(InvalidConfigurationError):
            load_optimizer_config(tmp_path / "missing.yaml")

    @pytest.mark.fast
    def test_missing_default_file(self, monkeypatch, tmp_path):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        monkeypatch.setattr(
            "audio_optimizer.config.loader.get_config_path", lambda: tmp_path / "absent.yaml"
        )
        monkeypatch.setattr("audio_optimizer.config.loader.DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")
        assert load_optimizer_config() == OptimizerConfig()

    @pytest.mark.fast
    def test_env_var(self, monkeypatch, tmp_path):
        path = tmp_path / "env.yaml"
        path.write_text("log_level: DEBUG\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert get_config_path() == path
        assert load_optimizer_config().log_level == "DEBUG"

    @pytest.mark.fast
    def test_env_var_missing_file(self, monkeypatch, tmp_path):
        monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "gone.yaml"))
        with pytest.raises(InvalidConfigurationError):
            load_optimizer_config()

    @pytest.mark.fast
    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("cpu_pools: [unclosed\n")
        with pytest.raises(InvalidConfigurationError):
            load_optimizer_config(path)

    @pytest.mark.fast
    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(InvalidConfigurationError):
            load_optimizer_config(path)

    @pytest.mark.fast
    def test_default_path(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        assert get_config_path() == DEFAULT_CONFIG_PATH


class TestPaths:

    @pytest.mark.fast
    def test_resolve_writable(self, tmp_path):
        target = tmp_path / "run" / "status.json"
        assert resolve_writable(target) == target
        assert target.parent.is_dir()

    @pytest.mark.fast
    def test_resolve_writable_fallback(self, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
        monkeypatch.setattr("audio_optimizer.config.paths.os.access", lambda path, mode: False)

        resolved = resolve_writable(tmp_path / "locked" / "status.json")

        assert resolved == tmp_path / "data" / "audio-optimizer" / "status.json"


class TestCpuLists:

    @pytest.mark.fast
    @pytest.mark.parametrize(
        "spec,cpus",
        [
            ("0-3", [0, 1, 2, 3]),
            ("0-2,8,10-11", [0, 1, 2, 8, 10, 11]),
            ("5", [5]),
            ("", []),
            (" 1 , 3 ", [1, 3]),
        ],
    )
    def test_parse_cpu_list(self, spec, cpus):
        assert parse_cpu_list(spec) == cpus

    @pytest.mark.fast
    def test_format_cpu_list(self):
        assert format_cpu_list([3, 0, 1, 2, 8, 10, 11]) == "0-3,8,10-11"
        assert format_cpu_list([]) == ""

    @pytest.mark.fast
    def test_cpu_mask_hex(self):
        assert cpu_mask_hex(range(8, 14)) == "00003f00"
        assert cpu_mask_hex([0]) == "00000001"

    @pytest.mark.fast
    def test_malformed(self):
        with pytest.raises(ValueError):
            parse_cpu_list("a-b")
