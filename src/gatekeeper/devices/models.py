"""
Device data models.

Snapshot records produced by a scan and the persisted whitelist entry.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from gatekeeper.devices.identity import DeviceKey
from gatekeeper.errors import StorageError


class DeviceState(Enum):
    """Classification bucket of a scanned device."""

    AVAILABLE = "available"
    WHITELISTED = "whitelisted"
    BLOCKED = "blocked"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class DeviceRecord:
    """
    One physical device instance observed by a scan.

    Records are immutable and only valid for the scan that produced them.
    Actions return an updated copy; re-scan for authoritative state.
    """

    device_id: str  # Raw host identifier (opaque)
    key: DeviceKey
    description: str
    manufacturer: str
    is_whitelisted: bool = False
    is_blocked: bool = False
    last_seen: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def vid(self) -> str:
        return self.key.vid

    @property
    def pid(self) -> str:
        return self.key.pid

    @property
    def display_name(self) -> str:
        """Human-readable name used in logs and error messages."""
        return f"{self.description} (VID:{self.vid} PID:{self.pid})"

    @property
    def state(self) -> DeviceState:
        """Classification of this record (whitelisting wins over blocking)."""
        if self.is_whitelisted:
            return DeviceState.WHITELISTED
        if self.is_blocked:
            return DeviceState.BLOCKED
        return DeviceState.AVAILABLE

    def with_blocked(self, blocked: bool) -> DeviceRecord:
        """Return a copy with the blocked flag set."""
        return replace(self, is_blocked=blocked)

    def with_whitelisted(self, whitelisted: bool) -> DeviceRecord:
        """Return a copy with the whitelisted flag set."""
        return replace(self, is_whitelisted=whitelisted)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "device_id": self.device_id,
            "vid": self.vid,
            "pid": self.pid,
            "description": self.description,
            "manufacturer": self.manufacturer,
            "is_whitelisted": self.is_whitelisted,
            "is_blocked": self.is_blocked,
            "state": self.state.value,
            "last_seen": self.last_seen.isoformat(),
        }


@dataclass(frozen=True)
class WhitelistEntry:
    """
    Persisted whitelist entry.

    Description and manufacturer are captured when the device is
    whitelisted and are informational only; matching uses the key.
    """

    key: DeviceKey
    description: str = ""
    manufacturer: str = ""

    @property
    def display_name(self) -> str:
        return f"{self.description or 'Unknown Device'} (VID:{self.key.vid} PID:{self.key.pid})"

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted mapping layout."""
        return {
            "device_key": self.key.to_dict(),
            "description": self.description,
            "manufacturer": self.manufacturer,
        }

    @classmethod
    def from_record(cls, record: DeviceRecord) -> WhitelistEntry:
        """Capture an entry from a scanned device."""
        return cls(
            key=record.key,
            description=record.description,
            manufacturer=record.manufacturer,
        )

    @classmethod
    def from_dict(cls, data: Any) -> WhitelistEntry:
        """
        Create from a persisted mapping.

        Accepts the ``device_key`` layout and the flat layout used by
        older settings exports (``VID``/``PID``/``Description``/``Manufacturer``).

        Raises:
            StorageError: If the mapping is malformed
        """
        if not isinstance(data, dict):
            raise StorageError(f"Whitelist entry must be a mapping, got {type(data).__name__}")

        key_data = data.get("device_key")
        if key_data is None:
            # Flat layout
            key_data = {
                "vid": data.get("vid", data.get("VID")),
                "pid": data.get("pid", data.get("PID")),
            }
        if not isinstance(key_data, dict):
            raise StorageError("'device_key' must be a mapping with 'vid' and 'pid'")

        vid = key_data.get("vid")
        pid = key_data.get("pid")
        if not isinstance(vid, str) or not isinstance(pid, str):
            raise StorageError(
                f"VID and PID must be quoted strings, got vid={vid!r} pid={pid!r}"
            )

        try:
            key = DeviceKey(vid, pid)
        except ValueError as e:
            raise StorageError(str(e)) from e

        description = data.get("description", data.get("Description")) or ""
        manufacturer = data.get("manufacturer", data.get("Manufacturer")) or ""
        return cls(key=key, description=str(description), manufacturer=str(manufacturer))
