"""
Linux device control through the sysfs ``authorized`` attribute.

Writing 0 detaches drivers from the device; writing 1 lets them bind
again. Needs root.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from gatekeeper.control.base import DeviceControl
from gatekeeper.devices.identity import DeviceKey
from gatekeeper.devices.inventory import ROOT_HUB_PATTERN
from gatekeeper.errors import DeviceControlError

logger = logging.getLogger(__name__)


class SysfsControl(DeviceControl):
    """Device control for every sysfs USB device with a matching VID/PID."""

    name = "sysfs"

    SYSFS_USB_PATH = Path("/sys/bus/usb/devices")

    def __init__(self, sysfs_root: str | Path | None = None) -> None:
        self.sysfs_root = Path(sysfs_root) if sysfs_root else self.SYSFS_USB_PATH
        if sysfs_root is None and hasattr(os, "geteuid") and os.geteuid() != 0:
            logger.warning(
                "Not running as root. Device authorization control may not work."
            )

    def enable(self, key: DeviceKey) -> None:
        self._set_authorized(key, True)

    def disable(self, key: DeviceKey) -> None:
        self._set_authorized(key, False)

    def find_devices(self, key: DeviceKey) -> list[Path]:
        """Find sysfs directories of all devices with this key."""
        matches = []
        try:
            candidates = sorted(self.sysfs_root.iterdir())
        except OSError as e:
            raise DeviceControlError(f"Cannot read {self.sysfs_root}: {e}") from e

        for device_dir in candidates:
            vid_file = device_dir / "idVendor"
            pid_file = device_dir / "idProduct"
            if ROOT_HUB_PATTERN.match(device_dir.name):
                continue  # Root hubs are never toggled
            if not (vid_file.exists() and pid_file.exists()):
                continue  # Interfaces and controllers
            try:
                vid = vid_file.read_text().strip().upper()
                pid = pid_file.read_text().strip().upper()
            except OSError:
                continue
            if vid == key.vid and pid == key.pid:
                matches.append(device_dir)
        return matches

    def _set_authorized(self, key: DeviceKey, authorized: bool) -> None:
        verb = "enable" if authorized else "disable"
        devices = self.find_devices(key)
        if not devices:
            raise DeviceControlError(f"Cannot {verb} {key}: no attached device matches")

        for device_dir in devices:
            auth_file = device_dir / "authorized"
            try:
                auth_file.write_text("1" if authorized else "0")
            except OSError as e:
                raise DeviceControlError(
                    f"Failed to {verb} device {device_dir.name} ({key}): {e}"
                ) from e
            logger.info("Device %s (%s) %sd", device_dir.name, key, verb)
