"""Capabilities the provisioning pipeline uses to observe and change the host.

Steps never touch the operating system directly. They query a
:class:`SystemObserver` and act through a :class:`SystemMutator`;
:class:`LocalHost` implements both against the real machine, and the test
suite supplies in-memory fakes.
"""
from __future__ import annotations

import os
import shutil
from collections.abc import Sequence
from enum import Enum
from pathlib import Path
from typing import Protocol

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TransferSpeedColumn,
)

from .config import ProvisionConfig
from .errors import (
    ConfigurationWriteError,
    DependencyMissingError,
    HostEnvironmentError,
    ProvisionError,
    ServiceControlError,
)
from .providers import (
    AccessPointError,
    AptProvider,
    ContentDownloader,
    DownloadResult,
    PackageManagerError,
    RaspAPInstaller,
    ServiceState,
    SystemdError,
    SystemdProvider,
)
from .templates import atomic_write


class ServiceAction(str, Enum):
    """Service manager verbs the pipeline may issue."""

    START = "start"
    STOP = "stop"
    RESTART = "restart"
    ENABLE = "enable"


class SystemObserver(Protocol):
    """Read-only queries against the host."""

    def is_privileged(self) -> bool: ...

    def binary_on_path(self, name: str) -> bool: ...

    def package_installed(self, name: str) -> bool: ...

    def file_exists(self, path: Path) -> bool: ...

    def directory_exists(self, path: Path) -> bool: ...

    def read_text(self, path: Path) -> str | None: ...

    def list_content(self, directory: Path, pattern: str) -> list[Path]: ...

    def service_state(self, name: str) -> ServiceState: ...

    def service_enabled(self, name: str) -> bool: ...


class SystemMutator(Protocol):
    """State-changing actions against the host."""

    def refresh_package_index(self) -> None: ...

    def install_packages(self, names: Sequence[str]) -> None: ...

    def ensure_directory(self, path: Path) -> bool: ...

    def write_file(self, path: Path, content: str, *, mode: int = 0o644) -> None: ...

    def daemon_reload(self) -> None: ...

    def control_service(self, action: ServiceAction, name: str) -> None: ...

    def download(self, url: str, destination: Path) -> DownloadResult: ...

    def run_access_point_installer(self, url: str, args: Sequence[str]) -> None: ...


class LocalHost:
    """Observer and mutator backed by the running operating system."""

    def __init__(
        self,
        config: ProvisionConfig,
        *,
        console: Console | None = None,
        apt: AptProvider | None = None,
        systemd: SystemdProvider | None = None,
        downloader: ContentDownloader | None = None,
        access_point: RaspAPInstaller | None = None,
    ) -> None:
        """Wire providers from *config* unless explicit instances are given."""
        self.config = config
        self.console = console
        self.apt = apt or AptProvider(
            apt_bin=config.apt.apt_bin,
            dpkg_query_bin=config.apt.dpkg_query_bin,
        )
        self.systemd = systemd or SystemdProvider(systemctl_bin=config.systemd.systemctl_bin)
        self._downloader = downloader
        self.access_point = access_point or RaspAPInstaller()

    @property
    def downloader(self) -> ContentDownloader:
        """Return the content downloader, creating the HTTP client lazily."""
        if self._downloader is None:
            self._downloader = ContentDownloader(
                timeout=self.config.transfer.timeout,
                chunk_size=self.config.transfer.chunk_size,
            )
        return self._downloader

    def close(self) -> None:
        """Release network resources held by the downloader."""
        if self._downloader is not None:
            self._downloader.close()

    # -- observer -------------------------------------------------------
    def is_privileged(self) -> bool:
        return os.geteuid() == 0

    def binary_on_path(self, name: str) -> bool:
        return shutil.which(name) is not None

    def package_installed(self, name: str) -> bool:
        try:
            return self.apt.is_installed(name)
        except PackageManagerError:
            return False

    def file_exists(self, path: Path) -> bool:
        return path.is_file()

    def directory_exists(self, path: Path) -> bool:
        return path.is_dir()

    def read_text(self, path: Path) -> str | None:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigurationWriteError(f"Cannot read {path}: {exc}") from exc

    def list_content(self, directory: Path, pattern: str) -> list[Path]:
        if not directory.is_dir():
            return []
        return sorted(path for path in directory.glob(pattern) if path.is_file())

    def service_state(self, name: str) -> ServiceState:
        try:
            return self.systemd.state(name)
        except SystemdError as exc:
            raise ServiceControlError(str(exc)) from exc

    def service_enabled(self, name: str) -> bool:
        try:
            return self.systemd.is_enabled(name)
        except SystemdError as exc:
            raise ServiceControlError(str(exc)) from exc

    # -- mutator --------------------------------------------------------
    def refresh_package_index(self) -> None:
        try:
            self.apt.update_index()
        except PackageManagerError as exc:
            raise HostEnvironmentError(str(exc)) from exc

    def install_packages(self, names: Sequence[str]) -> None:
        try:
            self.apt.install(list(names))
        except PackageManagerError as exc:
            raise DependencyMissingError(str(exc)) from exc

    def ensure_directory(self, path: Path) -> bool:
        if path.is_dir():
            return False
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigurationWriteError(f"Cannot create directory {path}: {exc}") from exc
        return True

    def write_file(self, path: Path, content: str, *, mode: int = 0o644) -> None:
        try:
            atomic_write(path, content, mode=mode)
        except OSError as exc:
            raise ConfigurationWriteError(f"Cannot write {path}: {exc}") from exc

    def daemon_reload(self) -> None:
        try:
            self.systemd.daemon_reload()
        except SystemdError as exc:
            raise ServiceControlError(str(exc)) from exc

    def control_service(self, action: ServiceAction, name: str) -> None:
        handlers = {
            ServiceAction.START: self.systemd.start,
            ServiceAction.STOP: self.systemd.stop,
            ServiceAction.RESTART: self.systemd.restart,
            ServiceAction.ENABLE: self.systemd.enable,
        }
        try:
            handlers[action](name)
        except SystemdError as exc:
            raise ServiceControlError(str(exc)) from exc

    def download(self, url: str, destination: Path) -> DownloadResult:
        if self.console is None:
            return self.downloader.fetch(url, destination)
        with Progress(
            TextColumn("{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            console=self.console,
            transient=True,
        ) as progress:
            task = progress.add_task(destination.name, total=None)

            def _advance(completed: int, total: int | None) -> None:
                progress.update(task, completed=completed, total=total)

            return self.downloader.fetch(url, destination, progress=_advance)

    def run_access_point_installer(self, url: str, args: Sequence[str]) -> None:
        try:
            self.access_point.install(url, args)
        except AccessPointError as exc:
            raise ProvisionError(str(exc)) from exc


__all__ = ["LocalHost", "ServiceAction", "SystemMutator", "SystemObserver"]
