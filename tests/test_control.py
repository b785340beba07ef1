"""
Tests for device control backends.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from gatekeeper.config import ControlConfig
from gatekeeper.control import DevconControl, SysfsControl, find_devcon, get_device_control
from gatekeeper.devices.identity import DeviceKey
from gatekeeper.errors import DeviceControlError


KEY = DeviceKey("1234", "5678")


@pytest.fixture
def devcon_exe(temp_dir: Path) -> Path:
    path = temp_dir / "devcon.exe"
    path.write_bytes(b"MZ")
    return path


@pytest.fixture
def devcon(devcon_exe: Path) -> DevconControl:
    return DevconControl(devcon_path=devcon_exe, timeout=5)


def completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestFindDevcon:
    """Tests for locating devcon.exe."""

    def test_explicit_path(self, devcon_exe: Path) -> None:
        assert find_devcon(devcon_exe) == devcon_exe

    def test_explicit_missing(self, temp_dir: Path) -> None:
        """Test a bad explicit path does not fall back to a search."""
        assert find_devcon(temp_dir / "nope.exe") is None

    def test_on_path(self, temp_dir: Path) -> None:
        with patch("gatekeeper.control.devcon.sys.argv", [str(temp_dir / "app")]), \
                patch("gatekeeper.control.devcon.shutil.which", return_value="/usr/bin/devcon"):
            assert find_devcon() == Path("/usr/bin/devcon")

    def test_not_found(self, temp_dir: Path) -> None:
        with patch("gatekeeper.control.devcon.sys.argv", [str(temp_dir / "app")]), \
                patch("gatekeeper.control.devcon.shutil.which", return_value=None), \
                patch("gatekeeper.control.devcon.WDK_PATHS", ()):
            assert find_devcon() is None
            with pytest.raises(DeviceControlError, match="devcon.exe not found"):
                DevconControl()


class TestDevconControl:
    """Tests for devcon invocation."""

    def test_disable_command(self, devcon: DevconControl, devcon_exe: Path) -> None:
        """Test the wildcard expression passed to devcon."""
        with patch("gatekeeper.control.devcon.subprocess.run", return_value=completed()) as run:
            devcon.disable(KEY)

        args, kwargs = run.call_args
        assert args[0] == [str(devcon_exe), "disable", "*VID_1234&PID_5678*"]
        assert kwargs["timeout"] == 5
        assert kwargs["capture_output"] is True

    def test_enable_command(self, devcon: DevconControl) -> None:
        with patch("gatekeeper.control.devcon.subprocess.run", return_value=completed()) as run:
            devcon.enable(DeviceKey("046d", "c52b"))

        assert run.call_args[0][0][1:] == ["enable", "*VID_046D&PID_C52B*"]

    def test_nonzero_exit(self, devcon: DevconControl) -> None:
        """Test a nonzero exit carries status and output."""
        result = completed(2, stdout="No matching devices found.", stderr="access denied")
        with patch("gatekeeper.control.devcon.subprocess.run", return_value=result):
            with pytest.raises(DeviceControlError) as exc_info:
                devcon.disable(KEY)

        error = exc_info.value
        assert error.exit_code == 2
        assert error.stdout == "No matching devices found."
        assert error.stderr == "access denied"
        assert "(exit code: 2)" in str(error)
        assert "access denied" in str(error)

    def test_timeout(self, devcon: DevconControl) -> None:
        """Test a hung devcon is reported as a control failure."""
        timeout = subprocess.TimeoutExpired(cmd="devcon", timeout=5, output=b"partial")
        with patch("gatekeeper.control.devcon.subprocess.run", side_effect=timeout):
            with pytest.raises(DeviceControlError, match="timed out after 5s") as exc_info:
                devcon.enable(KEY)

        assert exc_info.value.exit_code is None
        assert exc_info.value.stdout == "partial"

    def test_launch_failure(self, devcon: DevconControl) -> None:
        with patch("gatekeeper.control.devcon.subprocess.run", side_effect=PermissionError("denied")):
            with pytest.raises(DeviceControlError, match="Failed to run devcon"):
                devcon.disable(KEY)


@pytest.fixture
def sysfs_root(temp_dir: Path) -> Path:
    """Fake /sys/bus/usb/devices tree."""
    root = temp_dir / "devices"

    def add(name: str, vid: str | None = None, pid: str | None = None) -> None:
        device = root / name
        device.mkdir(parents=True)
        if vid is not None:
            (device / "idVendor").write_text(f"{vid}\n")
            (device / "idProduct").write_text(f"{pid}\n")
            (device / "authorized").write_text("1\n")

    add("1-1", "1234", "5678")
    add("1-2", "046d", "c52b")
    add("2-3", "1234", "5678")
    add("1-1:1.0")
    add("usb1", "1d6b", "0003")
    return root


class TestSysfsControl:
    """Tests for sysfs authorization control."""

    def test_find_devices(self, sysfs_root: Path) -> None:
        """Test every instance of the key is found, interfaces skipped."""
        control = SysfsControl(sysfs_root)
        names = [p.name for p in control.find_devices(KEY)]
        assert names == ["1-1", "2-3"]

    def test_find_devices_case_insensitive(self, sysfs_root: Path) -> None:
        control = SysfsControl(sysfs_root)
        assert [p.name for p in control.find_devices(DeviceKey("046D", "C52B"))] == ["1-2"]

    def test_disable_then_enable(self, sysfs_root: Path) -> None:
        control = SysfsControl(sysfs_root)

        control.disable(KEY)
        assert (sysfs_root / "1-1" / "authorized").read_text() == "0"
        assert (sysfs_root / "2-3" / "authorized").read_text() == "0"
        assert (sysfs_root / "1-2" / "authorized").read_text().strip() == "1"

        control.enable(KEY)
        assert (sysfs_root / "1-1" / "authorized").read_text() == "1"

    def test_root_hub_never_matched(self, sysfs_root: Path) -> None:
        """Test a root hub key is not toggled even when asked for."""
        control = SysfsControl(sysfs_root)

        assert control.find_devices(DeviceKey("1d6b", "0003")) == []
        with pytest.raises(DeviceControlError, match="no attached device matches"):
            control.disable(DeviceKey("1D6B", "0003"))
        assert (sysfs_root / "usb1" / "authorized").read_text().strip() == "1"

    def test_no_match(self, sysfs_root: Path) -> None:
        control = SysfsControl(sysfs_root)
        with pytest.raises(DeviceControlError, match="no attached device matches"):
            control.disable(DeviceKey("FFFF", "FFFF"))

    def test_missing_root(self, temp_dir: Path) -> None:
        control = SysfsControl(temp_dir / "missing")
        with pytest.raises(DeviceControlError, match="Cannot read"):
            control.enable(KEY)


class TestGetDeviceControl:
    """Tests for backend selection."""

    def test_devcon(self, devcon_exe: Path) -> None:
        control = get_device_control(
            ControlConfig(backend="devcon", devcon_path=str(devcon_exe), timeout=12)
        )
        assert isinstance(control, DevconControl)
        assert control.timeout == 12

    def test_sysfs(self) -> None:
        assert isinstance(get_device_control(ControlConfig(backend="sysfs")), SysfsControl)

    @pytest.mark.parametrize("system,expected", [("Linux", SysfsControl), ("Windows", DevconControl)])
    def test_auto(self, system: str, expected: type, devcon_exe: Path) -> None:
        config = ControlConfig(backend="auto", devcon_path=str(devcon_exe))
        with patch("gatekeeper.control.platform.system", return_value=system):
            assert isinstance(get_device_control(config), expected)

    def test_auto_unsupported(self) -> None:
        with patch("gatekeeper.control.platform.system", return_value="Darwin"):
            with pytest.raises(DeviceControlError, match="darwin"):
                get_device_control(ControlConfig())

    def test_unknown(self) -> None:
        with pytest.raises(ValueError):
            get_device_control(ControlConfig(backend="usbip"))

