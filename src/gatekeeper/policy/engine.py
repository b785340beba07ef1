"""
Policy Engine.

Classifies scanned devices and drives block/unblock and whitelist
commands while holding the invariant that a whitelisted device is never
blocked.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from gatekeeper.control.base import DeviceControl
from gatekeeper.devices.enumerator import DeviceEnumerator
from gatekeeper.devices.identity import DeviceKey
from gatekeeper.devices.models import DeviceRecord, DeviceState, WhitelistEntry
from gatekeeper.errors import AggregateError, DeviceControlError, PolicyViolation
from gatekeeper.policy.store import PolicyStore

if TYPE_CHECKING:
    from gatekeeper.config import GatekeeperConfig


logger = logging.getLogger(__name__)


class BulkStatus(Enum):
    """Overall outcome of a bulk operation."""

    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Classification:
    """
    Partition of one scan into disjoint buckets.

    Every scanned record appears in exactly one bucket.
    """

    available: tuple[DeviceRecord, ...] = ()
    whitelisted: tuple[DeviceRecord, ...] = ()
    blocked: tuple[DeviceRecord, ...] = ()

    def __iter__(self):
        return iter((self.available, self.whitelisted, self.blocked))

    @property
    def total(self) -> int:
        return len(self.available) + len(self.whitelisted) + len(self.blocked)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "available": [r.to_dict() for r in self.available],
            "whitelisted": [r.to_dict() for r in self.whitelisted],
            "blocked": [r.to_dict() for r in self.blocked],
        }


@dataclass
class DeviceFailure:
    """A single device's failure inside a bulk operation."""

    record: DeviceRecord
    error: Exception

    @property
    def reason(self) -> str:
        return str(self.error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "device": self.record.display_name,
            "vid": self.record.vid,
            "pid": self.record.pid,
            "error": type(self.error).__name__,
            "reason": self.reason,
        }


@dataclass
class BulkResult:
    """
    Per-device outcome of a bulk block/unblock.

    Returned rather than raised; call raise_on_failure() to get the
    AggregateError behaviour.
    """

    action: str
    succeeded: list[DeviceRecord] = field(default_factory=list)
    failed: list[DeviceFailure] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def status(self) -> BulkStatus:
        if not self.failed:
            return BulkStatus.SUCCEEDED
        if not self.succeeded:
            return BulkStatus.FAILED
        return BulkStatus.PARTIAL

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_on_failure(self) -> None:
        """
        Raises:
            AggregateError: If any device failed
        """
        if self.failed:
            raise AggregateError(
                f"Failed to {self.action} one or more devices", self.failed
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "status": self.status.value,
            "attempted": self.attempted,
            "succeeded": [r.to_dict() for r in self.succeeded],
            "failed": [f.to_dict() for f in self.failed],
        }


@dataclass
class WhitelistOutcome:
    """
    Result of adding a device to the whitelist.

    When the device was blocked, the engine also unblocks it. If that
    unblock fails the entry still stands and unblock_error is set; the
    device stays disabled until a later unblock succeeds.
    """

    entry: WhitelistEntry
    added: bool
    record: DeviceRecord | None = None
    unblock_error: DeviceControlError | None = None

    @property
    def consistent(self) -> bool:
        """False when the device is whitelisted but still disabled."""
        return self.unblock_error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry": self.entry.to_dict(),
            "added": self.added,
            "record": self.record.to_dict() if self.record else None,
            "unblock_error": str(self.unblock_error) if self.unblock_error else None,
        }


class PolicyEngine:
    """
    Orchestrates scanning, classification and device actions.

    The engine keeps no device state between scans; every command works
    on the records it is given and returns updated copies.
    """

    def __init__(
        self,
        store: PolicyStore,
        enumerator: DeviceEnumerator,
        control: DeviceControl | None = None,
        max_workers: int = 1,
        rollback_failed_unblock: bool = False,
        control_factory: Callable[[], DeviceControl] | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            store: Loaded whitelist store
            enumerator: Device enumerator (should share the store)
            control: Device control backend
            max_workers: Concurrent device control calls in bulk operations
            rollback_failed_unblock: Undo a whitelist addition when the
                implicit unblock fails, instead of keeping it
            control_factory: Builds the control backend on first use when
                control is None
        """
        self.store = store
        self.enumerator = enumerator
        self._control = control
        self._control_factory = control_factory
        self._control_lock = threading.Lock()
        self.max_workers = max(1, max_workers)
        self.rollback_failed_unblock = rollback_failed_unblock

    @classmethod
    def from_config(
        cls,
        config: GatekeeperConfig,
        control: DeviceControl | None = None,
    ) -> PolicyEngine:
        """
        Build an engine with the platform backends selected in config.

        Loads the whitelist store. The device control backend is created
        on first use, so scanning and whitelist edits work without it.
        """
        from gatekeeper.control import get_device_control
        from gatekeeper.devices.inventory import get_platform_inventory

        store = PolicyStore.from_config(config)
        inventory = get_platform_inventory(config.inventory.backend)
        return cls(
            store=store,
            enumerator=DeviceEnumerator(inventory, store),
            control=control,
            control_factory=lambda: get_device_control(config.control),
            max_workers=config.control.max_workers,
            rollback_failed_unblock=config.policy.rollback_failed_unblock,
        )

    @property
    def control(self) -> DeviceControl:
        """
        Device control backend, created on first access.

        Raises:
            DeviceControlError: If the backend cannot be created
        """
        if self._control is None:
            with self._control_lock:
                if self._control is None:
                    if self._control_factory is None:
                        raise DeviceControlError("No device control backend configured")
                    self._control = self._control_factory()
        return self._control

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def scan(self) -> list[DeviceRecord]:
        """Take a fresh device snapshot."""
        return self.enumerator.scan()

    @staticmethod
    def classify(records: list[DeviceRecord]) -> Classification:
        """Partition records into available, whitelisted and blocked."""
        buckets: dict[DeviceState, list[DeviceRecord]] = {state: [] for state in DeviceState}
        for record in records:
            buckets[record.state].append(record)
        return Classification(
            available=tuple(buckets[DeviceState.AVAILABLE]),
            whitelisted=tuple(buckets[DeviceState.WHITELISTED]),
            blocked=tuple(buckets[DeviceState.BLOCKED]),
        )

    def find(self, key: DeviceKey, records: list[DeviceRecord] | None = None) -> list[DeviceRecord]:
        """Records in a snapshot (a fresh scan if None) with the given key."""
        if records is None:
            records = self.scan()
        return [record for record in records if record.key == key]

    # ------------------------------------------------------------------
    # Single-device actions
    # ------------------------------------------------------------------

    def block(self, record: DeviceRecord) -> DeviceRecord:
        """
        Disable a device.

        Returns:
            Copy of the record marked blocked

        Raises:
            PolicyViolation: If the device is whitelisted (nothing is run)
            DeviceControlError: If the control call fails
        """
        self._check_blockable(record.key, record.is_whitelisted, record.display_name)
        self._invoke(self.control.disable, record.key, "block", record.display_name)
        logger.info("Blocked %s", record.display_name)
        return record.with_blocked(True)

    def unblock(self, record: DeviceRecord) -> DeviceRecord:
        """
        Enable a device. Always permitted.

        Returns:
            Copy of the record marked not blocked

        Raises:
            DeviceControlError: If the control call fails
        """
        self._invoke(self.control.enable, record.key, "unblock", record.display_name)
        logger.info("Unblocked %s", record.display_name)
        return record.with_blocked(False)

    def block_key(self, key: DeviceKey) -> None:
        """Disable every instance of a key without a scanned record."""
        self._check_blockable(key, False, str(key))
        self._invoke(self.control.disable, key, "block", str(key))
        logger.info("Blocked %s", key)

    def unblock_key(self, key: DeviceKey) -> None:
        """Enable every instance of a key without a scanned record."""
        self._invoke(self.control.enable, key, "unblock", str(key))
        logger.info("Unblocked %s", key)

    def _check_blockable(self, key: DeviceKey, flagged: bool, name: str) -> None:
        # The record flag may be stale; the store is authoritative
        if flagged or self.store.contains(key):
            raise PolicyViolation(f"Cannot block a whitelisted device: {name}")

    @staticmethod
    def _invoke(
        action: Callable[[DeviceKey], None],
        key: DeviceKey,
        verb: str,
        name: str,
    ) -> None:
        try:
            action(key)
        except DeviceControlError as e:
            raise DeviceControlError(
                f"Failed to {verb} device {name}: {e.args[0] if e.args else e}",
                exit_code=e.exit_code,
                stdout=e.stdout,
                stderr=e.stderr,
            ) from e
        except Exception as e:
            raise DeviceControlError(f"Failed to {verb} device {name}: {e}") from e

    # ------------------------------------------------------------------
    # Bulk actions
    # ------------------------------------------------------------------

    def block_all(self, records: list[DeviceRecord] | None = None) -> BulkResult:
        """
        Block every device that is neither whitelisted nor blocked.

        Best effort: every target is attempted regardless of earlier
        failures.

        Args:
            records: Snapshot to act on (a fresh scan if None)
        """
        if records is None:
            records = self.scan()
        targets = [r for r in records if not r.is_whitelisted and not r.is_blocked]
        return self._run_bulk("block", targets, self.block)

    def unblock_all(self, records: list[DeviceRecord] | None = None) -> BulkResult:
        """
        Unblock every blocked device.

        Args:
            records: Snapshot to act on (a fresh scan if None)
        """
        if records is None:
            records = self.scan()
        targets = [r for r in records if r.is_blocked]
        return self._run_bulk("unblock", targets, self.unblock)

    def _run_bulk(
        self,
        action: str,
        targets: list[DeviceRecord],
        operation: Callable[[DeviceRecord], DeviceRecord],
    ) -> BulkResult:
        result = BulkResult(action=action)
        if not targets:
            return result
        # An unavailable backend fails the whole operation
        logger.debug("%s-all via %s: %d targets", action, self.control.name, len(targets))

        def attempt(record: DeviceRecord) -> tuple[DeviceRecord, DeviceRecord | None, Exception | None]:
            try:
                return record, operation(record), None
            except Exception as e:
                return record, None, e

        if self.max_workers == 1 or len(targets) == 1:
            outcomes = [attempt(record) for record in targets]
        else:
            workers = min(self.max_workers, len(targets))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"{action}-all") as pool:
                outcomes = list(pool.map(attempt, targets))

        for record, updated, error in outcomes:
            if error is None:
                result.succeeded.append(updated)
            else:
                logger.warning("Failed to %s %s: %s", action, record.display_name, error)
                result.failed.append(DeviceFailure(record=record, error=error))

        logger.info(
            "%s-all: %d succeeded, %d failed",
            action, len(result.succeeded), len(result.failed),
        )
        return result

    # ------------------------------------------------------------------
    # Whitelist
    # ------------------------------------------------------------------

    @property
    def whitelist(self) -> tuple[WhitelistEntry, ...]:
        return self.store.entries

    def add_to_whitelist(self, record: DeviceRecord) -> WhitelistOutcome:
        """
        Whitelist a device, unblocking it if it is currently blocked.

        A failed unblock does not undo the whitelist entry unless the
        engine was created with rollback_failed_unblock.

        Raises:
            StorageError: If the whitelist cannot be saved
            DeviceControlError: Only when rollback_failed_unblock is set
        """
        entry = WhitelistEntry.from_record(record)
        added = self.store.add(entry)
        updated = record.with_whitelisted(True)
        unblock_error = None

        if record.is_blocked:
            try:
                updated = self.unblock(updated)
            except DeviceControlError as e:
                if self.rollback_failed_unblock:
                    if added:
                        self.store.remove(record.key)
                        logger.warning(
                            "Rolled back whitelisting of %s: unblock failed",
                            record.display_name,
                        )
                    raise
                unblock_error = e
                logger.warning(
                    "%s is whitelisted but still blocked: %s",
                    record.display_name, e,
                )

        return WhitelistOutcome(
            entry=self.store.get(record.key) or entry,
            added=added,
            record=updated,
            unblock_error=unblock_error,
        )

    def whitelist_key(
        self,
        key: DeviceKey,
        description: str = "",
        manufacturer: str = "",
        records: list[DeviceRecord] | None = None,
    ) -> WhitelistOutcome:
        """
        Whitelist a key, with optional metadata.

        If the key is attached (in records, or a fresh scan when None)
        this behaves like add_to_whitelist on that device, preferring a
        blocked instance so it gets unblocked.
        """
        matches = self.find(key, records)
        if not matches:
            entry = WhitelistEntry(key=key, description=description, manufacturer=manufacturer)
            added = self.store.add(entry)
            return WhitelistOutcome(entry=self.store.get(key) or entry, added=added)

        target = next((r for r in matches if r.is_blocked), matches[0])
        target = replace(
            target,
            description=description or target.description,
            manufacturer=manufacturer or target.manufacturer,
        )
        return self.add_to_whitelist(target)

    def remove_from_whitelist(self, record: DeviceRecord) -> DeviceRecord:
        """
        Remove a device's key from the whitelist.

        The device is not blocked; it becomes available.
        """
        self.store.remove(record.key)
        return record.with_whitelisted(False)

    def remove_key(self, key: DeviceKey) -> bool:
        """Remove a key from the whitelist. Returns True if it was present."""
        return self.store.remove(key) > 0

    def backup_whitelist(self, path: str | Path) -> Path:
        return self.store.backup(path)

    def restore_whitelist(self, path: str | Path) -> None:
        self.store.restore(path)
