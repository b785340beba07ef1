"""
Windows device control through devcon.exe.

Runs ``devcon enable|disable *VID_xxxx&PID_xxxx*`` against the device
tree. The wildcard matches every instance of the pair.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
from pathlib import Path

from gatekeeper.control.base import DeviceControl
from gatekeeper.devices.identity import DeviceKey
from gatekeeper.errors import DeviceControlError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

# Windows Driver Kit tool locations
WDK_PATHS = (
    Path(r"C:\Program Files (x86)\Windows Kits\10\Tools\10.0.26100.0\x64\devcon.exe"),
    Path(r"C:\Program Files (x86)\Windows Kits\10\Tools\10.0.26100.0\arm64\devcon.exe"),
)


def find_devcon(explicit: str | Path | None = None) -> Path | None:
    """
    Locate devcon.exe.

    Search order: explicit path, the application directory, PATH, then
    the Windows Driver Kit tool directories.
    """
    if explicit:
        path = Path(explicit)
        return path if path.is_file() else None

    local = Path(sys.argv[0]).resolve().parent / "devcon.exe"
    if local.is_file():
        return local

    on_path = shutil.which("devcon")
    if on_path:
        return Path(on_path)

    for candidate in WDK_PATHS:
        if candidate.is_file():
            return candidate
    return None


class DevconControl(DeviceControl):
    """Device control backed by the devcon utility."""

    name = "devcon"

    def __init__(
        self,
        devcon_path: str | Path | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """
        Initialize the controller.

        Args:
            devcon_path: Path to devcon.exe (searched for when None)
            timeout: Seconds to wait for each devcon run

        Raises:
            DeviceControlError: If devcon.exe cannot be found
        """
        path = find_devcon(devcon_path)
        if path is None:
            raise DeviceControlError(
                "devcon.exe not found. Install the Windows Driver Kit tools, "
                "put devcon.exe next to the application or set control.devcon_path"
            )
        self.devcon_path = path
        self.timeout = timeout

    def enable(self, key: DeviceKey) -> None:
        self._run("enable", key)

    def disable(self, key: DeviceKey) -> None:
        self._run("disable", key)

    def _run(self, verb: str, key: DeviceKey) -> None:
        cmd = [str(self.devcon_path), verb, key.match_expression()]
        logger.debug("Running: %s", " ".join(cmd))

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise DeviceControlError(
                f"devcon {verb} {key} timed out after {self.timeout:g}s",
                stdout=_text(e.stdout),
                stderr=_text(e.stderr),
            ) from e
        except OSError as e:
            raise DeviceControlError(f"Failed to run devcon {verb} {key}: {e}") from e

        if result.returncode != 0:
            raise DeviceControlError(
                f"devcon {verb} {key} failed",
                exit_code=result.returncode,
                stdout=result.stdout or "",
                stderr=result.stderr or "",
            )

        logger.info("devcon %s %s succeeded", verb, key)


def _text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
