"""
Host device inventory backends.

Each backend answers one question: which USB devices does the host
currently report, and what is their enable/disable status. Backends do
not interpret identifiers or consult the whitelist; that is the
enumerator's job.
"""

from __future__ import annotations

import logging
import platform
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable

from gatekeeper.errors import EnumerationError

logger = logging.getLogger(__name__)

# sysfs names of host controller root hubs (usb1, usb2, ...)
ROOT_HUB_PATTERN = re.compile(r"^usb\d+$")

# Device setup class GUID of USB controllers, hubs and devices
USB_CLASS_GUID = "{36FC9E60-C465-11CF-8056-444553540000}"

UNKNOWN_DEVICE = "Unknown Device"
UNKNOWN_MANUFACTURER = "Unknown Manufacturer"

# Host status strings that mean the device is disabled
BLOCKED_STATUSES = frozenset({"error", "disabled"})


@dataclass
class RawDevice:
    """One device as reported by the host, before policy interpretation."""

    device_id: str
    description: str
    manufacturer: str
    status: str | None = None

    @property
    def is_disabled(self) -> bool:
        """Whether the host status maps to blocked."""
        return is_blocked_status(self.status)


def is_blocked_status(status: str | None) -> bool:
    """Map a host status string to the blocked flag."""
    if not status:
        return False
    return status.strip().lower() in BLOCKED_STATUSES


class HostInventory(ABC):
    """Source of raw USB device entries."""

    name = "abstract"

    @abstractmethod
    def query(self) -> Iterable[Any]:
        """
        Query the host for attached USB devices.

        Returns:
            Host-specific device objects, one per reported device

        Raises:
            Exception: Any failure here aborts the whole scan
        """

    @abstractmethod
    def describe(self, obj: Any) -> RawDevice:
        """
        Convert one host object into a RawDevice.

        Failures are per-device; the enumerator skips the entry.
        """


class WmiInventory(HostInventory):
    """
    Windows inventory using WMI ``Win32_PnPEntity``.

    Only entries in the USB device setup class are returned.
    """

    name = "wmi"

    QUERY = f"SELECT * FROM Win32_PnPEntity WHERE ClassGuid='{USB_CLASS_GUID}'"

    def __init__(self, connection: Any = None) -> None:
        self._connection = connection

    def _ensure_connection(self) -> Any:
        if self._connection is None:
            import wmi
            self._connection = wmi.WMI()
        return self._connection

    def query(self) -> Iterable[Any]:
        return self._ensure_connection().query(self.QUERY)

    def describe(self, obj: Any) -> RawDevice:
        device_id = getattr(obj, "DeviceID", None) or ""
        description = (
            getattr(obj, "Description", None)
            or getattr(obj, "Name", None)
            or UNKNOWN_DEVICE
        )
        manufacturer = getattr(obj, "Manufacturer", None) or UNKNOWN_MANUFACTURER
        return RawDevice(
            device_id=str(device_id),
            description=str(description),
            manufacturer=str(manufacturer),
            status=getattr(obj, "Status", None),
        )


class UdevInventory(HostInventory):
    """
    Linux inventory using pyudev.

    Reports ``usb_device`` entries of the ``usb`` subsystem. Identifiers are
    synthesised in the ``USB\\VID_xxxx&PID_xxxx\\<sysname>`` form so the same
    key extraction applies on every platform. Root hubs get a
    ``USB\\ROOT_HUB\\<sysname>`` identifier with no key, so they are never
    policy targets. A device whose sysfs ``authorized`` attribute is ``0``
    is reported as Disabled.
    """

    name = "udev"

    def __init__(self, context: Any = None) -> None:
        self._context = context

    def _ensure_context(self) -> Any:
        if self._context is None:
            import pyudev
            self._context = pyudev.Context()
        return self._context

    def query(self) -> Iterable[Any]:
        context = self._ensure_context()
        return list(context.list_devices(subsystem="usb", DEVTYPE="usb_device"))

    @staticmethod
    def _attribute(device: Any, name: str) -> str | None:
        value = device.attributes.get(name)
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        return value.strip() or None

    def describe(self, obj: Any) -> RawDevice:
        properties = obj.properties
        vid = properties.get("ID_VENDOR_ID") or self._attribute(obj, "idVendor")
        pid = properties.get("ID_MODEL_ID") or self._attribute(obj, "idProduct")

        parts = ["USB"]
        if ROOT_HUB_PATTERN.match(obj.sys_name):
            # Host controller root hubs carry no device key, as on Windows
            parts.append("ROOT_HUB")
        else:
            ids = []
            if vid:
                ids.append(f"VID_{vid.upper()}")
            if pid:
                ids.append(f"PID_{pid.upper()}")
            parts.append("&".join(ids))
        parts.append(obj.sys_name)

        description = (
            self._attribute(obj, "product")
            or properties.get("ID_MODEL_FROM_DATABASE")
            or properties.get("ID_MODEL")
            or UNKNOWN_DEVICE
        )
        manufacturer = (
            self._attribute(obj, "manufacturer")
            or properties.get("ID_VENDOR_FROM_DATABASE")
            or properties.get("ID_VENDOR")
            or UNKNOWN_MANUFACTURER
        )

        authorized = self._attribute(obj, "authorized")
        status = "Disabled" if authorized == "0" else "OK"

        return RawDevice(
            device_id="\\".join(parts),
            description=description,
            manufacturer=manufacturer,
            status=status,
        )


def get_platform_inventory(backend: str = "auto") -> HostInventory:
    """
    Get the inventory backend for the current platform.

    Args:
        backend: "auto", "wmi" or "udev"

    Raises:
        EnumerationError: If the platform is not supported
    """
    if backend == "wmi":
        return WmiInventory()
    if backend == "udev":
        return UdevInventory()
    if backend != "auto":
        raise ValueError(f"Unknown inventory backend: {backend}")

    system = platform.system().lower()
    if system == "windows":
        return WmiInventory()
    elif system == "linux":
        return UdevInventory()
    else:
        raise EnumerationError(f"No device inventory for platform: {system}")
