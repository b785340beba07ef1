"""
Pytest configuration and shared fixtures for USB Gatekeeper tests.
"""

from __future__ import annotations

import tempfile
from dataclasses import replace
from pathlib import Path
from typing import Any, Generator, Iterable

import pytest
import yaml

from gatekeeper.control.base import DeviceControl
from gatekeeper.devices.enumerator import DeviceEnumerator
from gatekeeper.devices.identity import DeviceKey, extract_key
from gatekeeper.devices.inventory import HostInventory, RawDevice
from gatekeeper.errors import DeviceControlError
from gatekeeper.policy.engine import PolicyEngine
from gatekeeper.policy.store import PolicyStore


LOGITECH = DeviceKey("046D", "C52B")
STORAGE = DeviceKey("1234", "5678")
KEYBOARD = DeviceKey("04D9", "1603")


class FakeInventory(HostInventory):
    """In-memory host inventory."""

    name = "fake"

    def __init__(self, devices: Iterable[Any] = (), fail: bool = False) -> None:
        self.devices = list(devices)
        self.fail = fail

    def query(self) -> list[Any]:
        if self.fail:
            raise OSError("inventory service unavailable")
        return list(self.devices)

    def describe(self, obj: Any) -> RawDevice:
        if isinstance(obj, Exception):
            raise obj
        return obj


class FakeControl(DeviceControl):
    """
    Device control that records calls.

    Successful calls update the status of matching devices in the linked
    inventory, so a follow-up scan observes the change.
    """

    name = "fake"

    def __init__(
        self,
        inventory: FakeInventory | None = None,
        failing: Iterable[DeviceKey] = (),
    ) -> None:
        self.inventory = inventory
        self.failing = set(failing)
        self.calls: list[tuple[str, DeviceKey]] = []

    def enable(self, key: DeviceKey) -> None:
        self._apply("enable", key)

    def disable(self, key: DeviceKey) -> None:
        self._apply("disable", key)

    def count(self, verb: str) -> int:
        return sum(1 for v, _ in self.calls if v == verb)

    def _apply(self, verb: str, key: DeviceKey) -> None:
        self.calls.append((verb, key))
        if key in self.failing:
            raise DeviceControlError(
                f"devcon {verb} {key} failed",
                exit_code=1,
                stdout="No matching devices found.",
                stderr="",
            )
        if self.inventory is None:
            return
        status = "OK" if verb == "enable" else "Disabled"
        for i, device in enumerate(self.inventory.devices):
            if isinstance(device, RawDevice) and extract_key(device.device_id) == key:
                self.inventory.devices[i] = replace(device, status=status)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config(temp_dir: Path) -> Path:
    """Create a sample configuration file."""
    config_path = temp_dir / "gatekeeper.yaml"
    config_data = {
        "logging": {"level": "debug"},
        "storage": {"whitelist_path": str(temp_dir / "whitelist.yaml")},
        "control": {"backend": "devcon", "timeout": 10, "max_workers": 2},
        "api": {"port": 8080, "api_key": "test-key"},
    }
    with open(config_path, "w") as f:
        yaml.dump(config_data, f)
    return config_path


@pytest.fixture
def raw_devices() -> list[RawDevice]:
    """Host entries: two plain devices, one disabled, one without IDs."""
    return [
        RawDevice(
            device_id="USB\\VID_046D&PID_C52B\\5&1A2B3C&0&2",
            description="USB Receiver",
            manufacturer="Logitech",
            status="OK",
        ),
        RawDevice(
            device_id="USB\\VID_1234&PID_5678\\AA00112233",
            description="USB Mass Storage Device",
            manufacturer="Generic",
            status="Error",
        ),
        RawDevice(
            device_id="USB\\VID_04D9&PID_1603\\6&2B44F1&0&1",
            description="USB Input Device",
            manufacturer="Holtek",
            status="OK",
        ),
        RawDevice(
            device_id="USB\\ROOT_HUB30\\4&1C2D3E&0&0",
            description="USB Root Hub (USB 3.0)",
            manufacturer="(Standard USB HUBs)",
            status="OK",
        ),
    ]


@pytest.fixture
def store(temp_dir: Path) -> PolicyStore:
    """Loaded, empty whitelist store."""
    store = PolicyStore(temp_dir / "whitelist.yaml")
    store.load()
    return store


@pytest.fixture
def inventory(raw_devices: list[RawDevice]) -> FakeInventory:
    return FakeInventory(raw_devices)


@pytest.fixture
def control(inventory: FakeInventory) -> FakeControl:
    return FakeControl(inventory)


@pytest.fixture
def enumerator(inventory: FakeInventory, store: PolicyStore) -> DeviceEnumerator:
    return DeviceEnumerator(inventory, store)


@pytest.fixture
def engine(
    store: PolicyStore,
    enumerator: DeviceEnumerator,
    control: FakeControl,
) -> PolicyEngine:
    """Policy engine over the fake host."""
    return PolicyEngine(store=store, enumerator=enumerator, control=control)
