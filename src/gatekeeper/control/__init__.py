"""
Device control collaborators.

Backends that enable or disable every instance of a VID/PID pair.
"""

from __future__ import annotations

import platform
from typing import TYPE_CHECKING

from gatekeeper.control.base import DeviceControl
from gatekeeper.control.devcon import DevconControl, find_devcon
from gatekeeper.control.sysfs import SysfsControl
from gatekeeper.errors import DeviceControlError

if TYPE_CHECKING:
    from gatekeeper.config import ControlConfig


def get_device_control(config: ControlConfig) -> DeviceControl:
    """
    Create the device control backend selected by configuration.

    Raises:
        DeviceControlError: If the backend's tooling is unavailable or the
            platform is not supported
    """
    backend = config.backend
    if backend == "auto":
        system = platform.system().lower()
        if system == "windows":
            backend = "devcon"
        elif system == "linux":
            backend = "sysfs"
        else:
            raise DeviceControlError(f"No device control backend for platform: {system}")

    if backend == "devcon":
        return DevconControl(devcon_path=config.devcon_path, timeout=config.timeout)
    if backend == "sysfs":
        return SysfsControl()
    raise ValueError(f"Unknown control backend: {backend}")


__all__ = [
    "DeviceControl",
    "DevconControl",
    "SysfsControl",
    "find_devcon",
    "get_device_control",
]
