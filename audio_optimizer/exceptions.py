"""
Structured exception hierarchy with execution context for the audio optimizer.

All exceptions include:
- correlation_id: Trace a failure back to the tick that produced it
- execution_context: Tick number, state, component, target
- resolution_hints: Actionable suggestions for common issues
- severity: ERROR, RECOVERABLE, WARNING

Core operations never raise these for per-target failures. They are
collected into outcome lists so a partially capable system still gets a
best-effort optimization. Only configuration loading raises.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorSeverity(str, Enum):
    """Error severity levels for triage"""
    ERROR = "error"              # Operation could not be performed at all
    RECOVERABLE = "recoverable"  # Transient failure, the next tick may succeed
    WARNING = "warning"          # Non-blocking issue, degrades a single field


class ErrorCategory(str, Enum):
    """Error categories for diagnostics"""
    TUNABLE = "tunable"                # sysfs/procfs read or write
    PROCESS = "process"                # affinity / scheduler changes
    PROBE = "probe"                    # audio engine queries
    LOG_SOURCE = "log_source"          # journal, kernel log
    CONFIGURATION = "configuration"    # invalid config, missing parameters
    STATE = "state"                    # state file / ledger inconsistency


@dataclass
class ExecutionContext:
    """Execution context attached to every error"""

    tick: Optional[int] = None
    state: Optional[str] = None
    component: Optional[str] = None
    target: Optional[str] = None

    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize context for logging and storage"""
        return {
            k: v for k, v in self.__dict__.items()
            if v is not None and not k.startswith('_')
        }

    def format_summary(self) -> str:
        """Human-readable one-line summary"""
        parts = []
        if self.tick is not None:
            parts.append(f"tick={self.tick}")
        if self.state:
            parts.append(f"state={self.state}")
        if self.component:
            parts.append(f"component={self.component}")
        if self.target:
            parts.append(f"target={self.target}")
        if self.correlation_id:
            parts.append(f"correlation_id={self.correlation_id}")
        return " | ".join(parts)


@dataclass
class ResolutionHint:
    """Actionable resolution guidance for common error patterns"""

    title: str
    description: str
    steps: List[str]


class OptimizerError(Exception):
    """
    Base exception for the audio optimizer with structured context.

    All optimizer exceptions inherit from this class to ensure consistent
    outcome logging and diagnostic information.
    """

    def __init__(
        self,
        message: str,
        *,
        context: Optional[ExecutionContext] = None,
        category: ErrorCategory = ErrorCategory.TUNABLE,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        resolution_hints: Optional[List[ResolutionHint]] = None,
        original_exception: Optional[BaseException] = None,
        **kwargs
    ):
        super().__init__(message)
        self.message = message
        self.context = context or ExecutionContext()
        self.category = category
        self.severity = severity
        self.resolution_hints = resolution_hints or []
        self.original_exception = original_exception
        self.additional_data = kwargs

    def format_diagnostic_message(self) -> str:
        """
        Format a multi-line diagnostic message for logs and user display.
        """
        lines = [
            f"{'='*80}",
            f"ERROR: {self.message}",
            f"Severity: {self.severity.value.upper()} | Category: {self.category.value}",
            f"{'='*80}",
            "",
            "EXECUTION CONTEXT:",
        ]

        context_dict = self.context.to_dict()
        for key, value in context_dict.items():
            if key == 'metadata' and isinstance(value, dict):
                for meta_key, meta_value in value.items():
                    lines.append(f"  {meta_key}: {meta_value}")
            else:
                lines.append(f"  {key}: {value}")

        if self.resolution_hints:
            lines.append("")
            lines.append("RESOLUTION HINTS:")
            for i, hint in enumerate(self.resolution_hints, 1):
                lines.append(f"\n{i}. {hint.title}")
                lines.append(f"   {hint.description}")
                if hint.steps:
                    lines.append("   Steps:")
                    for step in hint.steps:
                        lines.append(f"     - {step}")

        if self.original_exception:
            lines.append("")
            lines.append("ORIGINAL EXCEPTION:")
            lines.append(f"  {type(self.original_exception).__name__}: {str(self.original_exception)}")

        lines.append("")
        lines.append(f"{'='*80}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for structured logging and the status snapshot"""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "context": self.context.to_dict(),
            "resolution_hints": [
                {
                    "title": hint.title,
                    "description": hint.description,
                    "steps": hint.steps,
                }
                for hint in self.resolution_hints
            ],
            "original_exception": str(self.original_exception) if self.original_exception else None,
            **self.additional_data
        }


# Tunable Errors
class TunableError(OptimizerError):
    """sysfs / procfs tunable errors"""
    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        if path:
            context = kwargs.get("context") or ExecutionContext()
            context.target = path
            kwargs["context"] = context
        self.path = path
        super().__init__(message, category=ErrorCategory.TUNABLE, **kwargs)


class TunableReadError(TunableError):
    """Current value of a tunable could not be read"""
    def __init__(self, message: str, **kwargs):
        super().__init__(message, severity=ErrorSeverity.WARNING, **kwargs)


class TunableWriteError(TunableError):
    """A tunable write was rejected by the kernel"""
    def __init__(self, message: str, **kwargs):
        if "resolution_hints" not in kwargs:
            kwargs["resolution_hints"] = [
                ResolutionHint(
                    title="Check Privileges and Kernel Support",
                    description="Writing sysfs/procfs tunables requires root and kernel support",
                    steps=[
                        "Run the optimizer as root (systemd service or sudo)",
                        "Verify the path exists and is writable on this kernel",
                        "Kernels without threaded IRQ support reject /proc/irq/*/threading",
                    ],
                )
            ]
        super().__init__(message, severity=ErrorSeverity.RECOVERABLE, **kwargs)


# Process Errors
class ProcessControlError(OptimizerError):
    """Affinity or scheduler change refused for a process"""
    def __init__(self, message: str, pid: Optional[int] = None, **kwargs):
        self.pid = pid
        if pid is not None:
            kwargs["pid"] = pid
        super().__init__(
            message,
            category=ErrorCategory.PROCESS,
            severity=ErrorSeverity.RECOVERABLE,
            **kwargs
        )


# Probe / Log Source Errors
class EngineQueryError(OptimizerError):
    """An audio engine control query failed or timed out"""
    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.PROBE,
            severity=ErrorSeverity.WARNING,
            **kwargs
        )


class LogSourceError(OptimizerError):
    """A log-source adapter failed or timed out"""
    def __init__(self, message: str, source: Optional[str] = None, **kwargs):
        self.source = source
        if source:
            kwargs["source"] = source
        super().__init__(
            message,
            category=ErrorCategory.LOG_SOURCE,
            severity=ErrorSeverity.WARNING,
            **kwargs
        )


# Configuration Errors
class ConfigurationError(OptimizerError):
    """Configuration-related errors"""
    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=ErrorCategory.CONFIGURATION, **kwargs)


class InvalidConfigurationError(ConfigurationError):
    """Invalid configuration parameter or structure"""
    def __init__(
        self,
        message: str,
        config_path: Optional[str] = None,
        **kwargs
    ):
        if config_path:
            message = f"{message} (config_path: {config_path})"
        if "resolution_hints" not in kwargs:
            kwargs["resolution_hints"] = [
                ResolutionHint(
                    title="Fix Configuration File",
                    description="The optimizer configuration failed validation",
                    steps=[
                        "Open the configuration YAML named above",
                        "Compare it against the defaults in audio_optimizer/config/settings.py",
                        "Server priorities must stay above application priorities",
                    ],
                )
            ]
        super().__init__(message, severity=ErrorSeverity.ERROR, **kwargs)


# State Errors
class StateInconsistencyError(OptimizerError):
    """Persisted state disagrees with the ledger or device presence"""
    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.RECOVERABLE,
            **kwargs
        )
