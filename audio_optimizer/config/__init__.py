"""Configuration module for the audio optimizer.

Submodules:
    - paths: Config/state file locations and per-user fallbacks
    - settings: Device, CPU pool, priority, xrun, timing and tunable models
    - loader: OptimizerConfig and YAML loading
"""

from .paths import (
    CONFIG_ENV_VAR,
    DEFAULT_CONFIG_PATH,
    get_config_path,
    get_user_data_dir,
    resolve_writable,
)
from .settings import (
    DEFAULT_APPLICATION_PATTERNS,
    DEFAULT_SERVER_RULES,
    CPUPoolSettings,
    DeviceIdentity,
    PathSettings,
    PrioritySettings,
    ProcessRuleSettings,
    SchedulerTunables,
    TimingSettings,
    TunableSettings,
    XrunSettings,
)
from .loader import OptimizerConfig, build_config, load_optimizer_config

__all__ = [
    # Paths
    "CONFIG_ENV_VAR",
    "DEFAULT_CONFIG_PATH",
    "get_config_path",
    "get_user_data_dir",
    "resolve_writable",
    # Settings
    "DEFAULT_APPLICATION_PATTERNS",
    "DEFAULT_SERVER_RULES",
    "CPUPoolSettings",
    "DeviceIdentity",
    "PathSettings",
    "PrioritySettings",
    "ProcessRuleSettings",
    "SchedulerTunables",
    "TimingSettings",
    "TunableSettings",
    "XrunSettings",
    # Loader
    "OptimizerConfig",
    "build_config",
    "load_optimizer_config",
]
