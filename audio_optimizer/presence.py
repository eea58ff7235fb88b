"""
Device presence detection.

Two independent probes, OR'd together and short-circuiting on the first hit:
1. Driver-registered sound cards (/proc/asound/card*/id)
2. USB bus device tree (/sys/bus/usb/devices/*/idVendor, idProduct)

Missing enumeration paths (containers, sandboxes) count as "not found".
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .config.settings import DeviceIdentity
from .utils import read_text

logger = logging.getLogger(__name__)


class PresenceDetector:
    """Answers "is the target device attached" without side effects."""

    def __init__(self, identity: DeviceIdentity, root: Path = Path("/")):
        self.identity = identity
        self.root = Path(root)

    @property
    def _asound_dir(self) -> Path:
        return self.root / "proc" / "asound"

    @property
    def _usb_devices_dir(self) -> Path:
        return self.root / "sys" / "bus" / "usb" / "devices"

    def is_present(self) -> bool:
        """True if either probe finds the device."""
        if self.card_name() is not None:
            return True
        return self.find_usb_device_path() is not None

    def card_name(self) -> Optional[str]:
        """Driver card directory name (e.g. "card1") or None."""
        try:
            cards = sorted(self._asound_dir.glob("card*"))
        except OSError:
            return None

        for card in cards:
            card_id = read_text(card / "id")
            if card_id is not None and card_id == self.identity.card_label:
                return card.name
        return None

    def find_usb_device_path(self) -> Optional[Path]:
        """sysfs directory of the matching USB device, or None."""
        try:
            devices = sorted(self._usb_devices_dir.iterdir())
        except OSError:
            return None

        for device in devices:
            vendor = read_text(device / "idVendor")
            product = read_text(device / "idProduct")
            if vendor is None or product is None:
                continue
            if (
                vendor.lower() == self.identity.vendor_id
                and product.lower() == self.identity.product_id
            ):
                return device
        return None
