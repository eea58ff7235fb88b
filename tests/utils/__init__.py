"""Test utilities and shared components."""

from .fakes import FakeProcessControl, FakeRunner
from .system_tree import (
    BUS_IRQS,
    CPU_COUNT,
    DRIVER_IRQS,
    USB_DEVICE,
    attach_device,
    build_fake_root,
    detach_device,
    read,
    write,
)

__all__ = [
    # Fakes
    "FakeProcessControl",
    "FakeRunner",
    # System tree
    "BUS_IRQS",
    "CPU_COUNT",
    "DRIVER_IRQS",
    "USB_DEVICE",
    "attach_device",
    "build_fake_root",
    "detach_device",
    "read",
    "write",
]
