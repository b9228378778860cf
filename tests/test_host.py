"""Tests for the real-host observer and mutator."""
from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from fakes import make_config
from kiwix_hotspot.errors import (
    ConfigurationWriteError,
    DependencyMissingError,
    HostEnvironmentError,
    ProvisionError,
    ServiceControlError,
)
from kiwix_hotspot.host import LocalHost, ServiceAction
from kiwix_hotspot.providers import (
    AccessPointError,
    AptProvider,
    ContentDownloader,
    PackageManagerError,
    RaspAPInstaller,
    SystemdError,
    SystemdProvider,
)


@pytest.fixture
def host(tmp_path: Path) -> LocalHost:
    """Return a host wired to the default providers."""
    return LocalHost(make_config(tmp_path))


def test_file_queries(tmp_path: Path, host: LocalHost) -> None:
    """File and directory queries reflect the filesystem."""
    content = tmp_path / "content"
    content.mkdir()
    (content / "b.zim").write_text("b")
    (content / "a.zim").write_text("a")
    (content / "a.zim.part").write_text("partial")
    (content / "nested.zim").mkdir()

    assert host.directory_exists(content)
    assert host.file_exists(content / "a.zim")
    assert not host.file_exists(content / "nested.zim")
    assert host.read_text(content / "a.zim") == "a"
    assert host.read_text(content / "missing") is None
    assert host.list_content(content, "*.zim") == [content / "a.zim", content / "b.zim"]
    assert host.list_content(tmp_path / "absent", "*.zim") == []


def test_write_file_and_directory(tmp_path: Path, host: LocalHost) -> None:
    """Writes create parents and report whether a directory was created."""
    target = tmp_path / "etc" / "default" / "kiwix-serve"

    host.write_file(target, "KIWIX_PORT=8080\n", mode=0o640)

    assert target.read_text(encoding="utf-8") == "KIWIX_PORT=8080\n"
    assert oct(target.stat().st_mode & 0o777) == "0o640"
    assert host.ensure_directory(tmp_path / "srv" / "content") is True
    assert host.ensure_directory(tmp_path / "srv" / "content") is False


def test_write_failure_is_configuration_write_error(
    tmp_path: Path,
    host: LocalHost,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Filesystem errors while persisting files map to ``ConfigurationWriteError``."""

    def fail(*args: object, **kwargs: object) -> None:
        raise PermissionError("read-only file system")

    monkeypatch.setattr("kiwix_hotspot.host.atomic_write", fail)

    with pytest.raises(ConfigurationWriteError, match="read-only file system"):
        host.write_file(tmp_path / "unit.service", "[Unit]\n")


def test_package_errors_are_mapped(
    host: LocalHost,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Index refresh failures are environment errors; install failures are dependency errors."""

    def fail(self: AptProvider, *args: object) -> None:
        raise PackageManagerError("apt-get failed")

    monkeypatch.setattr(AptProvider, "update_index", fail)
    monkeypatch.setattr(AptProvider, "install", fail)
    monkeypatch.setattr(AptProvider, "is_installed", fail)

    with pytest.raises(HostEnvironmentError):
        host.refresh_package_index()
    with pytest.raises(DependencyMissingError):
        host.install_packages(["kiwix-tools"])
    assert host.package_installed("kiwix-tools") is False


def test_service_errors_are_mapped(
    host: LocalHost,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Systemd failures surface as ``ServiceControlError``."""
    called: list[str] = []

    def fake_start(self: SystemdProvider, service: str) -> None:
        called.append(service)

    def fail(self: SystemdProvider, *args: object) -> None:
        raise SystemdError("systemctl restart failed")

    monkeypatch.setattr(SystemdProvider, "start", fake_start)
    monkeypatch.setattr(SystemdProvider, "restart", fail)
    monkeypatch.setattr(SystemdProvider, "daemon_reload", fail)

    host.control_service(ServiceAction.START, "kiwix-serve")
    assert called == ["kiwix-serve"]
    with pytest.raises(ServiceControlError, match="restart failed"):
        host.control_service(ServiceAction.RESTART, "kiwix-serve")
    with pytest.raises(ServiceControlError):
        host.daemon_reload()


def test_access_point_failure_is_provision_error(
    host: LocalHost,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A failed RaspAP bootstrap aborts with a provisioning error."""

    def fail(self: RaspAPInstaller, url: str, args: object) -> int:
        raise AccessPointError("RaspAP installer failed (exit 1).")

    monkeypatch.setattr(RaspAPInstaller, "install", fail)

    with pytest.raises(ProvisionError, match="RaspAP installer failed"):
        host.run_access_point_installer("https://install.raspap.com", ["--yes"])


def test_download_uses_injected_downloader(tmp_path: Path) -> None:
    """Downloads go through the configured downloader and close it afterwards."""
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"ZIM"))
    downloader = ContentDownloader(client=httpx.Client(transport=transport))
    host = LocalHost(make_config(tmp_path), downloader=downloader)
    destination = tmp_path / "content" / "demo.zim"

    result = host.download("https://example.org/demo.zim", destination)
    host.close()

    assert result.path == destination
    assert destination.read_bytes() == b"ZIM"


def test_unreadable_file_is_configuration_write_error(tmp_path: Path, host: LocalHost) -> None:
    """A managed file that is not UTF-8 fails with a labelled error."""
    target = tmp_path / "hostapd.conf"
    target.write_bytes(b"ssid=\xff\xfe\n")

    with pytest.raises(ConfigurationWriteError, match="Cannot read"):
        host.read_text(target)
