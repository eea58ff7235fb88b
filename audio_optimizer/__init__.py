"""
Adaptive resource optimization for USB audio interfaces.

Applies CPU governor, IRQ, USB power and scheduler tunables while the
interface is attached, pins audio processes to dedicated cores with
real-time priority, and turns xrun history into buffer advice.
"""

from ._version import __version__, __version_info__
from .config import OptimizerConfig, load_optimizer_config
from .engine import OptimizerEngine
from .exceptions import (
    ConfigurationError,
    InvalidConfigurationError,
    OptimizerError,
)
from .logger import ProductionLogger, get_logger
from .monitoring import AudioEngineSettings, Severity
from .state_machine import OptimizationState, OptimizationStateMachine, TickOutcome
from .status import DetailedStatus, Snapshot, StatusPublisher, render_status

__all__ = [
    "__version__",
    "__version_info__",
    "AudioEngineSettings",
    "ConfigurationError",
    "DetailedStatus",
    "InvalidConfigurationError",
    "OptimizationState",
    "OptimizationStateMachine",
    "OptimizerConfig",
    "OptimizerEngine",
    "OptimizerError",
    "ProductionLogger",
    "Severity",
    "Snapshot",
    "StatusPublisher",
    "TickOutcome",
    "get_logger",
    "load_optimizer_config",
    "render_status",
]
