"""
Audio Optimizer Version Information

This module provides centralized version management for the audio optimizer.
Follow Semantic Versioning 2.0.0 (https://semver.org/)

Version format: MAJOR.MINOR.PATCH
- MAJOR: Incompatible changes to the engine operations or config schema
- MINOR: New tunables, log sources or recommendations
- PATCH: Backwards-compatible bug fixes
"""

from __future__ import annotations

__version__ = "1.0.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))
