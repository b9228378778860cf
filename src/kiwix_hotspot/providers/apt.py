"""Debian package manager provider."""
from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass


class PackageManagerError(RuntimeError):
    """Raised when apt or dpkg-query fail."""


@dataclass(slots=True)
class AptProvider:
    """Install packages non-interactively through ``apt-get``."""

    apt_bin: str = "apt-get"
    dpkg_query_bin: str = "dpkg-query"

    def update_index(self) -> subprocess.CompletedProcess[str]:
        """Refresh the package index."""
        return self._run([self.apt_bin, "update"], error_prefix=f"{self.apt_bin} update")

    def install(self, packages: Sequence[str]) -> subprocess.CompletedProcess[str]:
        """Install *packages* without recommended extras."""
        if not packages:
            raise PackageManagerError("No packages requested for installation.")
        return self._run(
            [self.apt_bin, "install", "-y", "--no-install-recommends", *packages],
            error_prefix=f"{self.apt_bin} install {' '.join(packages)}",
        )

    def is_installed(self, package: str) -> bool:
        """Return ``True`` when dpkg reports *package* as installed."""
        result = self._run(
            [self.dpkg_query_bin, "--show", "--showformat=${Status}", package],
            error_prefix=f"{self.dpkg_query_bin} --show {package}",
            check=False,
        )
        return result.returncode == 0 and (result.stdout or "").strip().endswith(" installed")

    def _run(
        self,
        args: Sequence[str],
        *,
        error_prefix: str,
        check: bool = True,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        env_vars = os.environ.copy()
        env_vars["DEBIAN_FRONTEND"] = "noninteractive"
        if env:
            env_vars.update(env)
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
                env=env_vars,
            )
        except FileNotFoundError as exc:
            raise PackageManagerError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            message = (result.stderr or "").strip() or (result.stdout or "").strip() or "no output"
            raise PackageManagerError(
                f"{error_prefix} failed (exit {result.returncode}): {message}"
            )
        return result


__all__ = ["AptProvider", "PackageManagerError"]
