"""
Small helpers shared across the optimizer: kernel CPU-list syntax,
bounded file reads and bounded subprocess execution.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)


def parse_cpu_list(spec: str) -> List[int]:
    """Parse kernel CPU-list syntax ("0-5,8,10-11") into a sorted list.

    Raises:
        ValueError: on malformed input
    """
    cpus = set()
    spec = spec.strip()
    if not spec:
        return []
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start_s, end_s = part.split("-", 1)
            start, end = int(start_s), int(end_s)
            if end < start:
                raise ValueError(f"Invalid CPU range: {part}")
            cpus.update(range(start, end + 1))
        else:
            cpus.add(int(part))
    return sorted(cpus)


def format_cpu_list(cpus: Iterable[int]) -> str:
    """Format CPUs into kernel CPU-list syntax, collapsing runs into ranges."""
    ordered = sorted(set(cpus))
    if not ordered:
        return ""

    ranges = []
    start = prev = ordered[0]
    for cpu in ordered[1:]:
        if cpu == prev + 1:
            prev = cpu
            continue
        ranges.append(f"{start}-{prev}" if start != prev else str(start))
        start = prev = cpu
    ranges.append(f"{start}-{prev}" if start != prev else str(start))
    return ",".join(ranges)


def cpu_mask_hex(cpus: Iterable[int]) -> str:
    """Hex bitmask for CPUs as used by rps_cpus (8 digits, zero padded)."""
    mask = 0
    for cpu in cpus:
        mask |= 1 << cpu
    return f"{mask:08x}"


def read_text(path: Path) -> Optional[str]:
    """Read and strip a small sysfs/procfs file. Missing or unreadable -> None."""
    try:
        return path.read_text().strip()
    except (OSError, UnicodeDecodeError):
        return None


def run_command(argv: Sequence[str], timeout: float) -> Optional[str]:
    """Run a command with a bounded timeout and return stdout.

    Returns None when the binary is missing, the command times out or exits
    non-zero. Never raises for those cases.
    """
    try:
        result = subprocess.run(
            list(argv),
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError:
        logger.debug("Command not available: %s", argv[0])
        return None
    except subprocess.TimeoutExpired:
        logger.warning("Command timed out after %.1fs: %s", timeout, " ".join(argv))
        return None
    except OSError as e:
        logger.debug("Command failed to start: %s (%s)", argv[0], e)
        return None

    if result.returncode != 0:
        logger.debug(
            "Command exited %d: %s", result.returncode, " ".join(argv)
        )
        return None
    return result.stdout
