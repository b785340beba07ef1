"""
Error taxonomy for USB Gatekeeper.

Every failure surfaced by the policy layer derives from GatekeeperError
so front-ends can catch one type and still inspect the concrete cause.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gatekeeper.policy.engine import DeviceFailure


class GatekeeperError(Exception):
    """Base class for all USB Gatekeeper errors."""

    pass


class StorageError(GatekeeperError):
    """Whitelist file could not be read, parsed or written."""

    pass


class NotFoundError(GatekeeperError):
    """A referenced file (e.g. a whitelist backup) does not exist."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class EnumerationError(GatekeeperError):
    """The host device inventory could not be queried."""

    pass


class PolicyViolation(GatekeeperError):
    """The requested action conflicts with the whitelist policy."""

    pass


class DeviceControlError(GatekeeperError):
    """
    The external device control mechanism failed or timed out.

    Carries the exit status and captured output of the utility when
    one was run.
    """

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr

    def __str__(self) -> str:
        text = super().__str__()
        if self.exit_code is not None:
            text += f" (exit code: {self.exit_code})"
        details = [s.strip() for s in (self.stdout, self.stderr) if s and s.strip()]
        if details:
            text += "\n" + "\n".join(details)
        return text


class AggregateError(GatekeeperError):
    """One or more devices failed during a bulk operation."""

    def __init__(self, message: str, failures: list[DeviceFailure]) -> None:
        self.failures = list(failures)
        lines = [message]
        for failure in self.failures:
            lines.append(f"  - {failure.record.display_name}: {failure.reason}")
        super().__init__("\n".join(lines))
        self.message = message
