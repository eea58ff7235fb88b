"""
AudioEngineProbe: reads buffer size, sample rate and period count from JACK.

When the optimizer runs as root (systemd, sudo) but JACK runs in a desktop
session, control queries are re-issued as the invoking user. Each failed
query degrades its field to unknown (``None``).
"""

from __future__ import annotations

import logging
import os
import pwd
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, Optional, Sequence

from ..utils import run_command
from .data_models import AudioEngineSettings, EngineStatus

logger = logging.getLogger(__name__)

ENGINE_PROCESS_NAMES = ("jackd", "jackdbus")


@dataclass(frozen=True)
class UserIdentity:
    """Session user that owns the audio engine"""

    name: str
    uid: Optional[int] = None


def resolve_invoking_user(
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[UserIdentity]:
    """Desktop user behind sudo/pkexec, or None when not elevated through them."""
    environ = os.environ if environ is None else environ

    sudo_user = environ.get("SUDO_USER")
    if sudo_user and sudo_user != "root":
        uid = environ.get("SUDO_UID")
        return UserIdentity(name=sudo_user, uid=int(uid) if uid and uid.isdigit() else None)

    pkexec_uid = environ.get("PKEXEC_UID")
    if pkexec_uid and pkexec_uid.isdigit():
        try:
            return UserIdentity(name=pwd.getpwuid(int(pkexec_uid)).pw_name, uid=int(pkexec_uid))
        except KeyError:
            return None
    return None


class CommandRunner:
    """Runs control queries, switching to the session user when running as root."""

    def __init__(
        self,
        euid: Optional[int] = None,
        run: Callable[[Sequence[str], float], Optional[str]] = run_command,
    ):
        self.euid = os.geteuid() if euid is None else euid
        self._run = run

    def command_for(self, argv: Sequence[str], identity: Optional[UserIdentity]) -> list:
        if self.euid == 0 and identity is not None and identity.name != "root":
            return ["sudo", "-u", identity.name] + list(argv)
        return list(argv)

    def run(self, argv: Sequence[str], identity: Optional[UserIdentity], timeout: float) -> Optional[str]:
        return self._run(self.command_for(argv, identity), timeout)


def _first_int(output: Optional[str]) -> Optional[int]:
    if not output:
        return None
    match = re.search(r"\d+", output)
    return int(match.group(0)) if match else None


def parse_nperiods(output: Optional[str]) -> Optional[int]:
    """Period count from ``jack_control dp`` (last ':' field of the nperiods line)."""
    if not output:
        return None
    for line in output.splitlines():
        if "nperiods" in line:
            value = line.rsplit(":", 1)[-1].strip().rstrip(")").strip()
            return int(value) if value.isdigit() else None
    return None


class AudioEngineProbe:
    """Queries the running audio engine. Never raises for a failed query."""

    def __init__(
        self,
        process_names: Callable[[], Iterable[str]],
        device_available: Callable[[], bool],
        runner: Optional[CommandRunner] = None,
        identity: Optional[UserIdentity] = None,
        timeout: float = 5.0,
        engine_names: Sequence[str] = ENGINE_PROCESS_NAMES,
    ):
        self.process_names = process_names
        self.device_available = device_available
        self.runner = runner or CommandRunner()
        self.identity = identity
        self.timeout = timeout
        self.engine_names = tuple(engine_names)

    def is_running(self) -> bool:
        try:
            return any(name in self.engine_names for name in self.process_names())
        except OSError as e:
            logger.debug("Process lookup failed: %s", e)
            return False

    def _query(self, *argv: str) -> Optional[str]:
        return self.runner.run(argv, self.identity, self.timeout)

    def current_settings(self) -> AudioEngineSettings:
        if not self.is_running():
            return AudioEngineSettings.inactive()

        status = EngineStatus.ACTIVE if self.device_available() else EngineStatus.DEVICE_UNAVAILABLE
        buffer_frames = _first_int(self._query("jack_bufsize"))
        sample_rate = _first_int(self._query("jack_samplerate"))
        periods = parse_nperiods(self._query("jack_control", "dp"))

        if (
            buffer_frames is None
            and sample_rate is None
            and self.identity is not None
            and status is EngineStatus.ACTIVE
        ):
            status = EngineStatus.USER_SESSION

        return AudioEngineSettings(
            active=True,
            buffer_frames=buffer_frames,
            sample_rate_hz=sample_rate,
            periods=periods,
            status=status,
        )

    def compact(self) -> str:
        """``256@48000Hz`` or ``inactive``"""
        return self.current_settings().compact()
