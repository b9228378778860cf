"""In-memory stand-ins for the host capabilities used by pipeline tests."""
from __future__ import annotations

import io
from collections.abc import Iterable, Mapping, Sequence
from fnmatch import fnmatch
from pathlib import Path

from rich.console import Console

from kiwix_hotspot.config import RESTART_ON_CHANGE, ProvisionConfig, load_config
from kiwix_hotspot.confirm import ConfirmationSource, DeclineAll
from kiwix_hotspot.errors import TransferError
from kiwix_hotspot.host import ServiceAction
from kiwix_hotspot.providers import DownloadResult, ServiceState
from kiwix_hotspot.provisioner import ProvisionContext
from kiwix_hotspot.templates import TemplateEngine

DEFAULT_PROVIDES = {"kiwix-tools": "kiwix-serve", "curl": "curl"}


def make_config(tmp_path: Path, **overrides: object) -> ProvisionConfig:
    """Load defaults rooted under *tmp_path* plus *overrides*."""
    values: dict[str, object] = {
        "content_dir": str(tmp_path / "content"),
        "logs_dir": str(tmp_path / "logs"),
        "templates_dir": str(tmp_path / "templates"),
        "systemd": {
            "unit_dir": str(tmp_path / "systemd"),
            "environment_dir": str(tmp_path / "default"),
        },
        "access_point": {"config_file": str(tmp_path / "hostapd" / "hostapd.conf")},
    }
    values.update(overrides)
    return load_config(config_file=tmp_path / "missing.yml", env={}, overrides=values)


class ScriptedConfirmation:
    """Answer questions from a fixed script and remember what was asked."""

    interactive = True

    def __init__(self, answers: Iterable[bool] = ()) -> None:
        """Queue *answers*; questions beyond the script are declined."""
        self._answers = list(answers)
        self.questions: list[str] = []

    def confirm(self, question: str) -> bool:
        self.questions.append(question)
        return self._answers.pop(0) if self._answers else False


class FakeHost:
    """Observer and mutator over an in-memory model of a Debian host."""

    def __init__(
        self,
        *,
        privileged: bool = True,
        binaries: Iterable[str] = ("apt-get", "systemctl"),
        packages: Iterable[str] = (),
        files: Mapping[Path, str] | None = None,
        directories: Iterable[Path] = (),
        services: Mapping[str, ServiceState] | None = None,
        enabled: Iterable[str] = (),
        provides: Mapping[str, str] | None = None,
        failing_urls: Iterable[str] = (),
        installer_files: Mapping[Path, str] | None = None,
    ) -> None:
        """Describe the initial host state."""
        self.privileged = privileged
        self.binaries = set(binaries)
        self.packages = set(packages)
        self.files: dict[Path, str] = dict(files or {})
        self.directories = set(directories)
        self.services: dict[str, ServiceState] = dict(services or {})
        self.enabled = set(enabled)
        self.provides = dict(DEFAULT_PROVIDES if provides is None else provides)
        self.failing_urls = set(failing_urls)
        self.installer_files = dict(installer_files or {})
        self.calls: list[tuple[object, ...]] = []
        self.closed = False

    @classmethod
    def provisioned(cls, config: ProvisionConfig, **kwargs: object) -> FakeHost:
        """Return a host where every package is already installed."""
        host = cls(**kwargs)  # type: ignore[arg-type]
        for requirement in config.packages:
            host.packages.add(requirement.name)
            if requirement.binary:
                host.binaries.add(requirement.binary)
        host.directories.add(config.content_dir)
        return host

    def add_archive(self, path: Path) -> None:
        self.directories.add(path.parent)
        self.files[path] = "ZIM"

    def actions(self, kind: str) -> list[tuple[object, ...]]:
        """Return recorded calls whose first element equals *kind*."""
        return [call for call in self.calls if call[0] == kind]

    def close(self) -> None:
        self.closed = True

    # observer
    def is_privileged(self) -> bool:
        return self.privileged

    def binary_on_path(self, name: str) -> bool:
        return name in self.binaries

    def package_installed(self, name: str) -> bool:
        return name in self.packages

    def file_exists(self, path: Path) -> bool:
        return path in self.files

    def directory_exists(self, path: Path) -> bool:
        return path in self.directories

    def read_text(self, path: Path) -> str | None:
        return self.files.get(path)

    def list_content(self, directory: Path, pattern: str) -> list[Path]:
        return sorted(
            path for path in self.files if path.parent == directory and fnmatch(path.name, pattern)
        )

    def service_state(self, name: str) -> ServiceState:
        return self.services.get(name, ServiceState.ABSENT)

    def service_enabled(self, name: str) -> bool:
        return name in self.enabled

    # mutator
    def refresh_package_index(self) -> None:
        self.calls.append(("refresh",))

    def install_packages(self, names: Sequence[str]) -> None:
        self.calls.append(("install", tuple(names)))
        for name in names:
            self.packages.add(name)
            binary = self.provides.get(name)
            if binary:
                self.binaries.add(binary)

    def ensure_directory(self, path: Path) -> bool:
        self.calls.append(("mkdir", path))
        created = path not in self.directories
        self.directories.add(path)
        return created

    def write_file(self, path: Path, content: str, *, mode: int = 0o644) -> None:
        self.calls.append(("write", path, mode))
        self.files[path] = content

    def daemon_reload(self) -> None:
        self.calls.append(("daemon-reload",))

    def control_service(self, action: ServiceAction, name: str) -> None:
        self.calls.append((action.value, name))
        if action is ServiceAction.ENABLE:
            self.enabled.add(name)
        elif action is ServiceAction.STOP:
            self.services[name] = ServiceState.STOPPED
        else:
            self.services[name] = ServiceState.RUNNING

    def download(self, url: str, destination: Path) -> DownloadResult:
        self.calls.append(("download", url))
        if url in self.failing_urls:
            raise TransferError(f"GET {url} failed with HTTP 404 Not Found")
        self.files[destination] = "ZIM"
        return DownloadResult(path=destination, bytes_written=3, resumed_from=0)

    def run_access_point_installer(self, url: str, args: Sequence[str]) -> None:
        self.calls.append(("raspap", url, tuple(args)))
        self.files.update(self.installer_files)


def build_context(
    config: ProvisionConfig,
    host: FakeHost,
    *,
    confirmations: ConfirmationSource | None = None,
    dry_run: bool = False,
    restart_policy: str = RESTART_ON_CHANGE,
) -> ProvisionContext:
    """Return a pipeline context writing its output to a buffer."""
    return ProvisionContext(
        config=config,
        observer=host,
        mutator=host,
        confirmations=confirmations or DeclineAll(),
        templates=TemplateEngine.with_overrides(config.templates_dir),
        console=Console(file=io.StringIO(), width=400),
        dry_run=dry_run,
        restart_policy=restart_policy,
    )


def output_of(ctx: ProvisionContext) -> str:
    """Return everything printed to the context's console."""
    file = ctx.console.file
    assert isinstance(file, io.StringIO)
    return file.getvalue()
