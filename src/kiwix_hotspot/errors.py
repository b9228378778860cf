"""Error taxonomy shared by the provisioning pipeline and the CLI."""
from __future__ import annotations

from .exit_codes import ExitCode


class ProvisionError(RuntimeError):
    """Base class for fatal provisioning failures.

    Every subclass carries a short ``label`` used in diagnostics and the
    ``exit_code`` the CLI terminates with.
    """

    label = "provision"
    exit_code = ExitCode.PROVIDER


class PrivilegeError(ProvisionError):
    """Raised when the provisioner is not running with root privileges."""

    label = "privilege"
    exit_code = ExitCode.PRIVILEGE


class HostEnvironmentError(ProvisionError):
    """Raised when the package manager or service manager is unavailable."""

    label = "environment"
    exit_code = ExitCode.ENVIRONMENT


class DependencyMissingError(ProvisionError):
    """Raised when a required binary is still absent after an install attempt."""

    label = "dependency"
    exit_code = ExitCode.DEPENDENCY


class TransferError(ProvisionError):
    """Raised when a content transfer fails."""

    label = "transfer"
    exit_code = ExitCode.TRANSFER


class ConfigurationWriteError(ProvisionError):
    """Raised when unit, environment or access-point files cannot be persisted."""

    label = "config-write"
    exit_code = ExitCode.CONFIG_WRITE


class ServiceControlError(ProvisionError):
    """Raised when a service manager action fails."""

    label = "service"
    exit_code = ExitCode.PROVIDER


__all__ = [
    "ConfigurationWriteError",
    "DependencyMissingError",
    "HostEnvironmentError",
    "PrivilegeError",
    "ProvisionError",
    "ServiceControlError",
    "TransferError",
]
