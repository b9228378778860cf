"""Systemd provider for controlling the managed services."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum


class SystemdError(RuntimeError):
    """Raised when systemd operations fail."""


class ServiceState(str, Enum):
    """Observed run state of a unit."""

    ABSENT = "absent"
    STOPPED = "stopped"
    RUNNING = "running"


_RUNNING_STATES = {"active", "activating", "reloading"}


@dataclass(slots=True)
class SystemdProvider:
    """Thin wrapper around ``systemctl`` addressed by unit name."""

    systemctl_bin: str = "systemctl"

    @staticmethod
    def unit_name(service: str) -> str:
        """Return the systemd unit name for *service*."""
        return service if service.endswith(".service") else f"{service}.service"

    def enable(self, service: str) -> subprocess.CompletedProcess[str]:
        """Enable the unit for boot-time start."""
        return self._systemctl("enable", self.unit_name(service))

    def start(self, service: str) -> subprocess.CompletedProcess[str]:
        """Start the unit."""
        return self._systemctl("start", self.unit_name(service))

    def stop(self, service: str) -> subprocess.CompletedProcess[str]:
        """Stop the unit."""
        return self._systemctl("stop", self.unit_name(service))

    def restart(self, service: str) -> subprocess.CompletedProcess[str]:
        """Restart the unit."""
        return self._systemctl("restart", self.unit_name(service))

    def daemon_reload(self) -> subprocess.CompletedProcess[str]:
        """Ask systemd to re-read unit files."""
        return self._systemctl("daemon-reload")

    def is_active(self, service: str) -> bool:
        """Return ``True`` when the unit is active or transitioning to active."""
        result = self._systemctl("is-active", self.unit_name(service), check=False)
        return (result.stdout or "").strip() in _RUNNING_STATES

    def is_enabled(self, service: str) -> bool:
        """Return ``True`` when the unit is enabled."""
        result = self._systemctl("is-enabled", self.unit_name(service), check=False)
        return result.returncode == 0 and (result.stdout or "").strip() == "enabled"

    def state(self, service: str) -> ServiceState:
        """Return the observed :class:`ServiceState` of the unit."""
        result = self._run_command(
            [
                self.systemctl_bin,
                "show",
                "--property=LoadState",
                "--value",
                self.unit_name(service),
            ],
            check=False,
            error_prefix=f"{self.systemctl_bin} show",
        )
        if (result.stdout or "").strip() in {"not-found", ""}:
            return ServiceState.ABSENT
        return ServiceState.RUNNING if self.is_active(service) else ServiceState.STOPPED

    # ------------------------------------------------------------------
    def _systemctl(
        self,
        command: str,
        unit: str | None = None,
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        args: list[str] = [self.systemctl_bin, command]
        if unit is not None:
            args.append(unit)
        return self._run_command(
            args,
            check=check,
            error_prefix=f"{self.systemctl_bin} {command}",
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SystemdError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["ServiceState", "SystemdError", "SystemdProvider"]
