"""
Device enumerator.

Turns the host inventory into a snapshot of DeviceRecords annotated with
whitelist membership and blocked status.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from gatekeeper.devices.identity import parse_device_key
from gatekeeper.devices.inventory import HostInventory
from gatekeeper.devices.models import DeviceRecord
from gatekeeper.errors import EnumerationError

if TYPE_CHECKING:
    from gatekeeper.policy.store import PolicyStore


logger = logging.getLogger(__name__)


class DeviceEnumerator:
    """
    Produces per-scan device snapshots.

    Scans are read-only and hold no state between calls.
    """

    def __init__(self, inventory: HostInventory, store: PolicyStore) -> None:
        self.inventory = inventory
        self.store = store

    def scan(self) -> list[DeviceRecord]:
        """
        Enumerate attached USB devices.

        Devices are deduplicated by raw identifier (first occurrence wins)
        and devices without a VID or PID are dropped. A malformed entry is
        logged and skipped.

        Returns:
            Records in host order

        Raises:
            EnumerationError: If the host inventory query itself fails
        """
        try:
            entries = list(self.inventory.query())
        except Exception as e:
            raise EnumerationError(f"Failed to enumerate USB devices: {e}") from e

        records: list[DeviceRecord] = []
        seen: set[str] = set()
        now = datetime.now(timezone.utc)

        for entry in entries:
            try:
                raw = self.inventory.describe(entry)
                key = parse_device_key(raw.device_id)
                if key is None:
                    logger.debug("Skipping non-USB-identifiable device: %s", raw.device_id)
                    continue
                if raw.device_id in seen:
                    continue
                seen.add(raw.device_id)

                records.append(DeviceRecord(
                    device_id=raw.device_id,
                    key=key,
                    description=raw.description,
                    manufacturer=raw.manufacturer,
                    is_whitelisted=self.store.contains(key),
                    is_blocked=raw.is_disabled,
                    last_seen=now,
                ))
            except Exception as e:
                logger.warning("Error processing device: %s", e)

        logger.debug("Found %d USB devices", len(records))
        return records
