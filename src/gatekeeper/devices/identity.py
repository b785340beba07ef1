"""
Device identity and matching.

Normalises host-specific device identifiers (e.g. Windows PnP instance
IDs such as ``USB\\VID_046D&PID_C52B\\5&1A2B3C&0&2``) into a canonical
vendor/product key.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

# Substituted for a VID or PID that is absent from the identifier
SENTINEL_ID = "0000"

VID_PATTERN = re.compile(r"VID_([0-9A-F]{4})", re.IGNORECASE)
PID_PATTERN = re.compile(r"PID_([0-9A-F]{4})", re.IGNORECASE)

_HEX4 = re.compile(r"^[0-9A-F]{4}$", re.IGNORECASE)
_KEY_FORMS = (
    re.compile(r"^\s*([0-9A-F]{4})\s*[:/]\s*([0-9A-F]{4})\s*$", re.IGNORECASE),
    re.compile(r"^\s*VID_([0-9A-F]{4})&PID_([0-9A-F]{4})\s*$", re.IGNORECASE),
)


@dataclass(frozen=True)
class DeviceKey:
    """
    Canonical (VID, PID) pair.

    Both fields are stored upper-cased, so equality and hashing are
    case-insensitive with respect to the input. All physical units with
    the same key are the same logical device for policy purposes.
    """

    vid: str
    pid: str

    def __post_init__(self) -> None:
        for name in ("vid", "pid"):
            value = getattr(self, name)
            if not isinstance(value, str) or not _HEX4.match(value):
                raise ValueError(f"Invalid {name.upper()}: {value!r} (expected 4 hex digits)")
            object.__setattr__(self, name, value.upper())

    def __str__(self) -> str:
        return f"{self.vid}:{self.pid}"

    @property
    def is_sentinel(self) -> bool:
        """True when neither VID nor PID could be extracted."""
        return self.vid == SENTINEL_ID and self.pid == SENTINEL_ID

    def match_expression(self) -> str:
        """Wildcard expression matching every instance of this device."""
        return f"*VID_{self.vid}&PID_{self.pid}*"

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for serialization."""
        return {"vid": self.vid, "pid": self.pid}

    @classmethod
    def parse(cls, text: str) -> DeviceKey:
        """
        Parse a user-supplied key.

        Accepts ``046d:c52b``, ``046d/c52b`` and ``VID_046D&PID_C52B``.

        Raises:
            ValueError: If the text is not a recognised key form
        """
        for pattern in _KEY_FORMS:
            match = pattern.match(text)
            if match:
                return cls(match.group(1), match.group(2))
        raise ValueError(f"Invalid device key: {text!r} (expected VID:PID)")


def extract_key(device_id: str) -> DeviceKey:
    """
    Extract the VID/PID key from a raw device identifier.

    Missing fields are replaced with ``"0000"``; the result may therefore
    be the sentinel key.
    """
    vid = SENTINEL_ID
    pid = SENTINEL_ID

    if device_id:
        vid_match = VID_PATTERN.search(device_id)
        pid_match = PID_PATTERN.search(device_id)
        if vid_match:
            vid = vid_match.group(1)
        if pid_match:
            pid = pid_match.group(1)

    return DeviceKey(vid, pid)


def parse_device_key(device_id: str) -> DeviceKey | None:
    """
    Extract a key, rejecting identifiers that carry neither VID nor PID.

    Returns:
        DeviceKey, or None if the device is not USB-identifiable
    """
    key = extract_key(device_id)
    if key.is_sentinel:
        return None
    return key

