"""
Whitelist policy store.

Persists the set of whitelisted device keys as a human-readable YAML
file. Every mutation is written through immediately and atomically.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

import yaml

from gatekeeper.devices.identity import DeviceKey
from gatekeeper.devices.models import WhitelistEntry
from gatekeeper.errors import NotFoundError, StorageError

if TYPE_CHECKING:
    from gatekeeper.config import GatekeeperConfig

logger = logging.getLogger(__name__)

FILE_HEADER = "# USB Gatekeeper whitelist - one entry per VID/PID pair\n"


def parse_whitelist(text: str, source: str = "<string>") -> list[WhitelistEntry]:
    """
    Parse whitelist file contents.

    Duplicate keys are collapsed; the first entry wins.

    Raises:
        StorageError: If the content is not a valid whitelist
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise StorageError(f"Corrupt whitelist file {source}: {e}") from e

    if data is None:
        return []
    if not isinstance(data, list):
        raise StorageError(f"Whitelist file {source} must contain a list of devices")

    entries: list[WhitelistEntry] = []
    seen: set[DeviceKey] = set()
    for i, item in enumerate(data):
        try:
            entry = WhitelistEntry.from_dict(item)
        except StorageError as e:
            raise StorageError(f"Invalid whitelist entry {i} in {source}: {e}") from e
        if entry.key in seen:
            logger.warning("Duplicate whitelist entry for %s in %s ignored", entry.key, source)
            continue
        seen.add(entry.key)
        entries.append(entry)
    return entries


def dump_whitelist(entries: list[WhitelistEntry]) -> str:
    """Serialise entries to whitelist file contents."""
    body = yaml.safe_dump(
        [entry.to_dict() for entry in entries],
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    )
    return FILE_HEADER + body


class PolicyStore:
    """
    Whitelist of device keys backed by a file.

    The storage path is injected; the store keeps no process-wide state.
    A re-entrant lock serialises mutations so concurrent callers never
    interleave writes.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._entries: list[WhitelistEntry] = []
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config: GatekeeperConfig) -> PolicyStore:
        """Open and load the whitelist file named in config."""
        store = cls(Path(config.storage.whitelist_path).expanduser())
        store.load()
        return store

    @property
    def entries(self) -> tuple[WhitelistEntry, ...]:
        """Current whitelist entries in insertion order."""
        with self._lock:
            return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[WhitelistEntry]:
        return iter(self.entries)

    def load(self) -> None:
        """
        Load the whitelist from disk.

        Creates an empty whitelist file if none exists yet.

        Raises:
            StorageError: If the file is unreadable or malformed
        """
        with self._lock:
            if not self.path.exists():
                logger.info("No whitelist at %s, creating an empty one", self.path)
                self._write([])
                self._entries = []
                return

            self._entries = self._read(self.path)
            logger.debug("Loaded %d whitelist entries from %s", len(self._entries), self.path)

    def save(self) -> None:
        """
        Write the in-memory whitelist to disk, replacing the file.

        Raises:
            StorageError: On I/O failure
        """
        with self._lock:
            self._write(self._entries)

    def contains(self, key: DeviceKey) -> bool:
        """Check whitelist membership."""
        with self._lock:
            return any(entry.key == key for entry in self._entries)

    def get(self, key: DeviceKey) -> WhitelistEntry | None:
        """Get the entry for a key, if whitelisted."""
        with self._lock:
            for entry in self._entries:
                if entry.key == key:
                    return entry
            return None

    def add(self, entry: WhitelistEntry) -> bool:
        """
        Add an entry unless its key is already whitelisted.

        Returns:
            True if the entry was added, False if the key was present
        """
        with self._lock:
            if self.contains(entry.key):
                return False
            self._commit(self._entries + [entry])
            logger.info("Whitelisted %s", entry.display_name)
            return True

    def remove(self, key: DeviceKey) -> int:
        """
        Remove every entry matching the key.

        Returns:
            Number of entries removed (0 if the key was absent)
        """
        with self._lock:
            remaining = [entry for entry in self._entries if entry.key != key]
            removed = len(self._entries) - len(remaining)
            if removed:
                self._commit(remaining)
                logger.info("Removed %s from whitelist", key)
            return removed

    def clear(self) -> None:
        """Remove all entries."""
        with self._lock:
            self._commit([])
            logger.info("Whitelist cleared")

    def backup(self, destination: str | Path) -> Path:
        """
        Copy the whitelist file to another location.

        Returns:
            The destination path

        Raises:
            StorageError: If the copy fails
        """
        destination = Path(destination)
        with self._lock:
            if not self.path.exists():
                self._write(self._entries)
            try:
                self._atomic_copy(self.path, destination)
            except OSError as e:
                raise StorageError(f"Failed to back up whitelist to {destination}: {e}") from e
        logger.info("Whitelist backed up to %s", destination)
        return destination

    def restore(self, source: str | Path) -> None:
        """
        Replace the whitelist with a backup file and reload it.

        The backup is validated before anything is replaced.

        Raises:
            NotFoundError: If the source file does not exist
            StorageError: If the backup is malformed or cannot be copied
        """
        source = Path(source)
        if not source.is_file():
            raise NotFoundError(f"Backup file not found: {source}", path=str(source))

        with self._lock:
            self._read(source)
            try:
                self._atomic_copy(source, self.path)
            except OSError as e:
                raise StorageError(f"Failed to restore whitelist from {source}: {e}") from e
            self.load()
        logger.info("Whitelist restored from %s (%d entries)", source, len(self._entries))

    def _commit(self, entries: list[WhitelistEntry]) -> None:
        """Persist entries, then make them current."""
        self._write(entries)
        self._entries = entries

    def _read(self, path: Path) -> list[WhitelistEntry]:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Failed to read whitelist {path}: {e}") from e
        return parse_whitelist(text, source=str(path))

    def _write(self, entries: list[WhitelistEntry]) -> None:
        content = dump_whitelist(entries)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Failed to save whitelist {self.path}: {e}") from e

    @staticmethod
    def _atomic_copy(source: Path, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{destination.name}.", suffix=".tmp", dir=destination.parent
        )
        os.close(fd)
        try:
            shutil.copyfile(source, tmp_name)
            os.replace(tmp_name, destination)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
