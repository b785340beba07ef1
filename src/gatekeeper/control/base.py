"""
Device control interface.

Device control toggles every attached instance of a VID/PID pair. It
usually needs administrator privileges; callers are expected to run
elevated.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from gatekeeper.devices.identity import DeviceKey


class DeviceControl(ABC):
    """Enables and disables devices by key."""

    name = "abstract"

    @abstractmethod
    def enable(self, key: DeviceKey) -> None:
        """
        Enable all instances of a device.

        Raises:
            DeviceControlError: If the host refuses or the call times out
        """

    @abstractmethod
    def disable(self, key: DeviceKey) -> None:
        """
        Disable all instances of a device.

        Raises:
            DeviceControlError: If the host refuses or the call times out
        """
