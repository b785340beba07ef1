"""
Tests for the whitelist policy store.
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from gatekeeper.devices.identity import DeviceKey
from gatekeeper.devices.models import WhitelistEntry
from gatekeeper.errors import NotFoundError, StorageError
from gatekeeper.policy.store import PolicyStore, dump_whitelist, parse_whitelist


def entry(vid: str, pid: str, description: str = "Device") -> WhitelistEntry:
    return WhitelistEntry(DeviceKey(vid, pid), description, "Vendor")


class TestLoad:
    """Tests for loading the whitelist."""

    def test_first_run_creates_empty_file(self, temp_dir: Path) -> None:
        """Test missing file is created empty on load."""
        path = temp_dir / "sub" / "whitelist.yaml"
        store = PolicyStore(path)
        store.load()

        assert path.exists()
        assert len(store) == 0
        assert parse_whitelist(path.read_text()) == []

    def test_corrupt_file_raises(self, temp_dir: Path) -> None:
        """Test corrupt YAML surfaces as StorageError."""
        path = temp_dir / "whitelist.yaml"
        path.write_text("- device_key: {vid: [\n")
        store = PolicyStore(path)

        with pytest.raises(StorageError):
            store.load()

    def test_wrong_shape_raises(self, temp_dir: Path) -> None:
        """Test a mapping at top level is rejected."""
        path = temp_dir / "whitelist.yaml"
        path.write_text("devices: []\n")

        with pytest.raises(StorageError):
            PolicyStore(path).load()

    def test_corrupt_file_not_overwritten(self, temp_dir: Path) -> None:
        """Test a failed load leaves the user's file alone."""
        path = temp_dir / "whitelist.yaml"
        path.write_text("{{{ not yaml")
        with pytest.raises(StorageError):
            PolicyStore(path).load()
        assert path.read_text() == "{{{ not yaml"

    def test_load_json(self, temp_dir: Path) -> None:
        """Test JSON-encoded whitelists load too."""
        path = temp_dir / "whitelist.json"
        path.write_text(json.dumps([
            {"device_key": {"vid": "046D", "pid": "C52B"}, "description": "Receiver", "manufacturer": "Logitech"},
        ]))
        store = PolicyStore(path)
        store.load()
        assert store.contains(DeviceKey("046d", "c52b"))

    def test_duplicates_collapsed(self, temp_dir: Path) -> None:
        """Test duplicate keys in the file keep only the first entry."""
        path = temp_dir / "whitelist.yaml"
        path.write_text(dump_whitelist([
            entry("046D", "C52B", "first"),
            entry("046d", "c52b", "second"),
        ]))
        store = PolicyStore(path)
        store.load()

        assert len(store) == 1
        assert store.get(DeviceKey("046D", "C52B")).description == "first"


class TestMutations:
    """Tests for add/remove/clear."""

    def test_add_persists(self, store: PolicyStore) -> None:
        """Test add writes through to disk."""
        assert store.add(entry("046D", "C52B")) is True

        reloaded = PolicyStore(store.path)
        reloaded.load()
        assert reloaded.contains(DeviceKey("046D", "C52B"))

    def test_add_duplicate_is_noop(self, store: PolicyStore) -> None:
        """Test adding an existing key changes nothing."""
        store.add(entry("046D", "C52B", "original"))
        assert store.add(entry("046d", "c52b", "duplicate")) is False

        assert len(store) == 1
        assert store.get(DeviceKey("046D", "C52B")).description == "original"

    def test_contains_case_insensitive(self, store: PolicyStore) -> None:
        store.add(entry("abcd", "ef01"))
        assert store.contains(DeviceKey("ABCD", "EF01"))
        assert not store.contains(DeviceKey("ABCD", "EF02"))

    def test_remove(self, store: PolicyStore) -> None:
        """Test remove deletes the key and persists."""
        store.add(entry("046D", "C52B"))
        store.add(entry("1234", "5678"))

        assert store.remove(DeviceKey("046d", "c52b")) == 1
        assert not store.contains(DeviceKey("046D", "C52B"))

        reloaded = PolicyStore(store.path)
        reloaded.load()
        assert [e.key for e in reloaded] == [DeviceKey("1234", "5678")]

    def test_remove_absent_is_noop(self, store: PolicyStore) -> None:
        assert store.remove(DeviceKey("FFFF", "FFFF")) == 0

    def test_clear(self, store: PolicyStore) -> None:
        store.add(entry("046D", "C52B"))
        store.clear()

        reloaded = PolicyStore(store.path)
        reloaded.load()
        assert len(reloaded) == 0

    def test_failed_save_keeps_previous_state(self, store: PolicyStore) -> None:
        """Test an I/O failure leaves file and memory unchanged."""
        store.add(entry("046D", "C52B"))
        before = store.path.read_text()

        with patch("gatekeeper.policy.store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StorageError):
                store.add(entry("1234", "5678"))

        assert store.path.read_text() == before
        assert not store.contains(DeviceKey("1234", "5678"))
        assert not [p for p in store.path.parent.iterdir() if p.name.endswith(".tmp")]

    def test_concurrent_adds_serialised(self, store: PolicyStore) -> None:
        """Test concurrent mutations all land in the file."""
        keys = [DeviceKey(f"{i:04X}", "0001") for i in range(1, 21)]
        threads = [
            threading.Thread(target=store.add, args=(WhitelistEntry(key),))
            for key in keys
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        reloaded = PolicyStore(store.path)
        reloaded.load()
        assert {e.key for e in reloaded} == set(keys)


class TestRoundTrip:
    """Tests for save/load round trips."""

    @pytest.mark.parametrize("count", [0, 1, 5])
    def test_round_trip(self, store: PolicyStore, count: int) -> None:
        """Test save then load yields the deduplicated entries."""
        entries = [entry(f"{i:04X}", "BEEF", f"Device {i}") for i in range(count)]
        for e in entries:
            store.add(e)
            store.add(e)  # duplicate attempt
        store.save()

        reloaded = PolicyStore(store.path)
        reloaded.load()
        assert set(reloaded.entries) == set(entries)

    def test_file_is_readable_yaml(self, store: PolicyStore) -> None:
        """Test the persisted file is plain YAML with quoted IDs."""
        store.add(WhitelistEntry(DeviceKey("1234", "0781"), "Cruzer", "SanDisk"))
        data = yaml.safe_load(store.path.read_text())

        assert data == [{
            "device_key": {"vid": "1234", "pid": "0781"},
            "description": "Cruzer",
            "manufacturer": "SanDisk",
        }]


class TestBackupRestore:
    """Tests for backup and restore."""

    def test_backup_and_restore(self, store: PolicyStore, temp_dir: Path) -> None:
        """Test restore brings back the backed-up whitelist."""
        store.add(entry("046D", "C52B"))
        backup_path = store.backup(temp_dir / "backups" / "wl.yaml")
        assert backup_path.exists()

        store.clear()
        assert len(store) == 0

        store.restore(backup_path)
        assert store.contains(DeviceKey("046D", "C52B"))

        reloaded = PolicyStore(store.path)
        reloaded.load()
        assert reloaded.contains(DeviceKey("046D", "C52B"))

    def test_restore_missing_raises(self, store: PolicyStore, temp_dir: Path) -> None:
        """Test missing backup raises NotFoundError and changes nothing."""
        store.add(entry("046D", "C52B"))

        with pytest.raises(NotFoundError):
            store.restore(temp_dir / "nope.yaml")

        assert [e.key for e in store] == [DeviceKey("046D", "C52B")]

    def test_restore_corrupt_changes_nothing(self, store: PolicyStore, temp_dir: Path) -> None:
        """Test a malformed backup is rejected before replacing anything."""
        store.add(entry("046D", "C52B"))
        before = store.path.read_text()
        bad = temp_dir / "bad.yaml"
        bad.write_text("- device_key: {vid: 12, pid: 34}\n")

        with pytest.raises(StorageError):
            store.restore(bad)

        assert store.path.read_text() == before
        assert store.contains(DeviceKey("046D", "C52B"))

    def test_restore_legacy_json(self, store: PolicyStore, temp_dir: Path) -> None:
        """Test settings exported by the older desktop tool restore."""
        legacy = temp_dir / "settings.json"
        legacy.write_text(json.dumps([{
            "DeviceID": "USB\\VID_0781&PID_5567\\2004",
            "VID": "0781",
            "PID": "5567",
            "Description": "Cruzer Blade",
            "Manufacturer": "SanDisk",
            "IsWhitelisted": True,
            "IsBlocked": False,
            "LastSeen": "2024-01-01T10:00:00",
        }], indent=2))

        store.restore(legacy)
        assert store.get(DeviceKey("0781", "5567")).description == "Cruzer Blade"

    def test_backup_failure_raises(self, store: PolicyStore) -> None:
        with patch("gatekeeper.policy.store.shutil.copyfile", side_effect=OSError("denied")):
            with pytest.raises(StorageError):
                store.backup(store.path.parent / "copy.yaml")


@pytest.mark.skipif(not hasattr(os, "geteuid") or os.geteuid() == 0, reason="root ignores permissions")
def test_unwritable_directory(temp_dir: Path) -> None:
    """Test permission failure surfaces as StorageError."""
    locked = temp_dir / "locked"
    locked.mkdir()
    locked.chmod(0o500)
    try:
        with pytest.raises(StorageError):
            PolicyStore(locked / "whitelist.yaml").load()
    finally:
        locked.chmod(0o700)
