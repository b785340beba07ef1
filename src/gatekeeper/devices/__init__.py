"""
Device identity, snapshot models and host enumeration.
"""

from gatekeeper.devices.enumerator import DeviceEnumerator
from gatekeeper.devices.identity import (
    SENTINEL_ID,
    DeviceKey,
    extract_key,
    parse_device_key,
)
from gatekeeper.devices.inventory import (
    HostInventory,
    RawDevice,
    UdevInventory,
    WmiInventory,
    get_platform_inventory,
    is_blocked_status,
)
from gatekeeper.devices.models import DeviceRecord, DeviceState, WhitelistEntry

__all__ = [
    # Identity
    "SENTINEL_ID",
    "DeviceKey",
    "extract_key",
    "parse_device_key",
    # Models
    "DeviceRecord",
    "DeviceState",
    "WhitelistEntry",
    # Inventory
    "HostInventory",
    "RawDevice",
    "UdevInventory",
    "WmiInventory",
    "get_platform_inventory",
    "is_blocked_status",
    # Enumerator
    "DeviceEnumerator",
]
