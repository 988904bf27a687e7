"""Exception hierarchy for the bootstrap orchestrator."""

from __future__ import annotations

from typing import Optional, Sequence

__all__ = [
    "AuthenticationFailed",
    "BootstrapError",
    "CommandError",
    "ConfigError",
    "ControlPlaneError",
    "ControlPlaneUnreachable",
    "DhcpActivationFailed",
    "MissingGuestImage",
    "NonZeroExit",
    "PollTimeout",
    "RetriesExhausted",
    "SpawnFailure",
]


class BootstrapError(Exception):
    """Base class for guestbox exceptions."""


class ConfigError(BootstrapError):
    """Raised when a setting cannot be parsed."""


class CommandError(BootstrapError):
    """Raised when an external command fails."""

    def __init__(self, message: str, command_line: str):
        super().__init__(message)
        self.command_line = command_line


class SpawnFailure(CommandError):
    """Raised when the executable cannot be located or started."""


class NonZeroExit(CommandError):
    """Raised when a command exits with a non-zero status."""

    def __init__(self, command_line: str, exit_code: int):
        super().__init__(
            f"Command exited with code {exit_code}: {command_line}", command_line
        )
        self.exit_code = exit_code


class RetriesExhausted(BootstrapError):
    """Raised when every attempt of a retried operation failed."""

    def __init__(self, label: str, attempts: int):
        super().__init__(f"Failed to {label} after {attempts} attempts")
        self.label = label
        self.attempts = attempts


class PollTimeout(BootstrapError):
    """Raised when a readiness probe never reported ready."""

    def __init__(self, label: str, attempts: int):
        super().__init__(f"{label} not ready after {attempts} attempts")
        self.label = label
        self.attempts = attempts


class ControlPlaneError(BootstrapError):
    """Raised when the appliance control API misbehaves."""


class ControlPlaneUnreachable(ControlPlaneError):
    """Raised when none of the candidate ports answered."""

    def __init__(self, host: str, ports: Sequence[int]):
        ports_str = ", ".join(str(p) for p in ports)
        super().__init__(f"Control plane at {host} not reachable on any of the ports: {ports_str}")
        self.host = host
        self.ports = list(ports)


class AuthenticationFailed(ControlPlaneError):
    """Raised when no session cookie could be obtained."""


class DhcpActivationFailed(ControlPlaneError):
    """Raised when the DHCP server could not be enabled."""

    def __init__(self, attempts: int, last_status: Optional[int] = None):
        detail = f" (last status {last_status})" if last_status is not None else ""
        super().__init__(f"DHCP could not be enabled after {attempts} attempts{detail}")
        self.attempts = attempts
        self.last_status = last_status


class MissingGuestImage(BootstrapError):
    """Raised when the base guest disk image does not exist."""

    def __init__(self, path: str):
        super().__init__(f"Guest image not found: {path}")
        self.path = path
