"""Provider interfaces for kiwix-hotspot."""
from __future__ import annotations

from .access_point import AccessPointError, RaspAPInstaller, set_assignment
from .apt import AptProvider, PackageManagerError
from .systemd import ServiceState, SystemdError, SystemdProvider
from .transfer import ContentDownloader, DownloadResult, partial_path

__all__ = [
    "AccessPointError",
    "AptProvider",
    "ContentDownloader",
    "DownloadResult",
    "PackageManagerError",
    "RaspAPInstaller",
    "ServiceState",
    "SystemdError",
    "SystemdProvider",
    "partial_path",
    "set_assignment",
]
