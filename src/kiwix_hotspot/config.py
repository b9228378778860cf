"""Configuration loader for kiwix-hotspot.

Configuration values are merged from several sources, lowest precedence
first:

1. Built-in defaults.
2. ``/etc/kiwix-hotspot/config.yml`` (or an override path).
3. Environment variables prefixed with ``KIWIX_HOTSPOT_``.
4. The installer's historical variables ``KIWIX_PORT`` and ``ZIM_DIR``.
5. Explicit overrides supplied programmatically (reserved for CLI flags).

Prefixed environment keys use double underscores to express nesting, e.g.::

    export KIWIX_HOTSPOT_ACCESS_POINT__SSID=Library
    export KIWIX_HOTSPOT_RESTART_POLICY=always

Values are coerced via PyYAML's ``safe_load`` so that booleans, numbers and
inline lists are parsed naturally. Text settings such as paths, the SSID and
the passphrases are taken verbatim. The resulting configuration is exposed as
immutable ``dataclasses`` and stays fixed for the whole run.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import cast
from urllib.parse import urlsplit

import yaml

from .errors import ProvisionError
from .exit_codes import ExitCode

ENV_PREFIX = "KIWIX_HOTSPOT_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}
LEGACY_ENV_KEYS = {
    "KIWIX_PORT": "port",
    "ZIM_DIR": "content_dir",
}

RESTART_ON_CHANGE = "on-change"
RESTART_ALWAYS = "always"
ALLOWED_RESTART_POLICIES = {RESTART_ON_CHANGE, RESTART_ALWAYS}


class ConfigError(ProvisionError):
    """Raised when configuration parsing fails."""

    label = "config"
    exit_code = ExitCode.VALIDATION


@dataclass(frozen=True)
class PackageRequirement:
    """A system package and the binary it is expected to provide."""

    name: str
    binary: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"name": self.name, "binary": self.binary}


@dataclass(frozen=True)
class ArchiveSource:
    """A downloadable ZIM archive offered to the operator."""

    name: str
    url: str
    title: str

    @property
    def filename(self) -> str:
        """Return the basename of the URL path."""
        return PurePosixPath(urlsplit(self.url).path).name

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"name": self.name, "title": self.title, "url": self.url}


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    unit_dir: Path = Path("/etc/systemd/system")
    environment_dir: Path = Path("/etc/default")
    systemctl_bin: str = "systemctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "unit_dir": str(self.unit_dir),
            "environment_dir": str(self.environment_dir),
            "systemctl_bin": self.systemctl_bin,
        }


@dataclass(frozen=True)
class AptConfig:
    """Package manager binaries."""

    apt_bin: str = "apt-get"
    dpkg_query_bin: str = "dpkg-query"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"apt_bin": self.apt_bin, "dpkg_query_bin": self.dpkg_query_bin}


@dataclass(frozen=True)
class TransferConfig:
    """HTTP transfer tuning for archive downloads."""

    timeout: float = 30.0
    chunk_size: int = 1024 * 1024

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"timeout": self.timeout, "chunk_size": self.chunk_size}


@dataclass(frozen=True)
class AccessPointConfig:
    """RaspAP installation and hostapd settings."""

    installer_url: str = "https://install.raspap.com"
    installer_args: tuple[str, ...] = ("--yes",)
    transfer_package: str = "curl"
    config_file: Path = Path("/etc/hostapd/hostapd.conf")
    service: str = "hostapd"
    ssid: str = "Kiwix-Hotspot"
    passphrase: str = "ChangeMe"
    admin_user: str = "admin"
    admin_password: str = "secret"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "installer_url": self.installer_url,
            "installer_args": list(self.installer_args),
            "transfer_package": self.transfer_package,
            "config_file": str(self.config_file),
            "service": self.service,
            "ssid": self.ssid,
            "passphrase": self.passphrase,
            "admin_user": self.admin_user,
            "admin_password": self.admin_password,
        }


@dataclass(frozen=True)
class ProvisionConfig:
    """Resolved configuration values for a provisioning run."""

    config_file: Path
    port: int
    content_dir: Path
    content_pattern: str
    service_name: str
    server_binary: Path
    restart_policy: str
    logs_dir: Path
    templates_dir: Path
    packages: tuple[PackageRequirement, ...]
    archives: tuple[ArchiveSource, ...]
    systemd: SystemdConfig
    apt: AptConfig
    transfer: TransferConfig
    access_point: AccessPointConfig

    @property
    def unit_file(self) -> Path:
        """Return the path of the managed systemd unit."""
        return self.systemd.unit_dir / f"{self.service_name}.service"

    @property
    def environment_file(self) -> Path:
        """Return the path of the environment file consumed by the unit."""
        return self.systemd.environment_dir / self.service_name

    @property
    def content_glob(self) -> str:
        """Return the glob matching every servable archive."""
        return str(self.content_dir / self.content_pattern)

    def archive_path(self, source: ArchiveSource) -> Path:
        """Return the local destination for *source*."""
        return self.content_dir / source.filename

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "port": self.port,
            "content_dir": str(self.content_dir),
            "content_pattern": self.content_pattern,
            "service_name": self.service_name,
            "server_binary": str(self.server_binary),
            "restart_policy": self.restart_policy,
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "packages": [package.to_dict() for package in self.packages],
            "archives": [archive.to_dict() for archive in self.archives],
            "systemd": self.systemd.to_dict(),
            "apt": self.apt.to_dict(),
            "transfer": self.transfer.to_dict(),
            "access_point": self.access_point.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/kiwix-hotspot/config.yml",
    "port": 8080,
    "content_dir": "/srv/kiwix/content",
    "content_pattern": "*.zim",
    "service_name": "kiwix-serve",
    "server_binary": "/usr/bin/kiwix-serve",
    "restart_policy": RESTART_ON_CHANGE,
    "logs_dir": "/var/log/kiwix-hotspot",
    "templates_dir": "/etc/kiwix-hotspot/templates",
    "packages": [
        {"name": "kiwix-tools", "binary": "kiwix-serve"},
        {"name": "ca-certificates", "binary": None},
    ],
    "archives": [
        {
            "name": "bitcoin",
            "title": "Bitcoin wiki",
            "url": "https://download.kiwix.org/zim/other/bitcoin_en_all_maxi_2021-03.zim",
        },
        {
            "name": "ifixit",
            "title": "iFixit",
            "url": "https://download.kiwix.org/zim/ifixit/ifixit_en_all_2025-12.zim",
        },
    ],
    "systemd": {
        "unit_dir": "/etc/systemd/system",
        "environment_dir": "/etc/default",
        "systemctl_bin": "systemctl",
    },
    "apt": {
        "apt_bin": "apt-get",
        "dpkg_query_bin": "dpkg-query",
    },
    "transfer": {
        "timeout": 30.0,
        "chunk_size": 1024 * 1024,
    },
    "access_point": {
        "installer_url": "https://install.raspap.com",
        "installer_args": ["--yes"],
        "transfer_package": "curl",
        "config_file": "/etc/hostapd/hostapd.conf",
        "service": "hostapd",
        "ssid": "Kiwix-Hotspot",
        "passphrase": "ChangeMe",
        "admin_user": "admin",
        "admin_password": "secret",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
# Environment values for these keys are taken verbatim rather than parsed as YAML.
_STRING_ENV_KEYS = {
    ("config_file",),
    ("content_dir",),
    ("content_pattern",),
    ("service_name",),
    ("server_binary",),
    ("restart_policy",),
    ("logs_dir",),
    ("templates_dir",),
    ("systemd", "unit_dir"),
    ("systemd", "environment_dir"),
    ("systemd", "systemctl_bin"),
    ("apt", "apt_bin"),
    ("apt", "dpkg_query_bin"),
    ("access_point", "installer_url"),
    ("access_point", "transfer_package"),
    ("access_point", "config_file"),
    ("access_point", "service"),
    ("access_point", "ssid"),
    ("access_point", "passphrase"),
    ("access_point", "admin_user"),
    ("access_point", "admin_password"),
}
_NESTED_KEYS: dict[str, set[str]] = {
    "systemd": {"unit_dir", "environment_dir", "systemctl_bin"},
    "apt": {"apt_bin", "dpkg_query_bin"},
    "transfer": {"timeout", "chunk_size"},
    "access_point": {
        "installer_url",
        "installer_args",
        "transfer_package",
        "config_file",
        "service",
        "ssid",
        "passphrase",
        "admin_user",
        "admin_password",
    },
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> ProvisionConfig:
    """Load and merge configuration sources into a :class:`ProvisionConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    legacy_values = _build_legacy_overrides(resolved_env)
    if legacy_values:
        _deep_merge(merged, legacy_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_provision_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _NESTED_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        mapping = _as_dict(value, section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    policy = raw.get("restart_policy")
    if policy is not None and str(policy) not in ALLOWED_RESTART_POLICIES:
        allowed_policies = ", ".join(sorted(ALLOWED_RESTART_POLICIES))
        raise ConfigError(
            f"Unsupported restart policy '{policy}'. Allowed: {allowed_policies}."
        )


def _build_provision_config(raw: Mapping[str, object]) -> ProvisionConfig:
    port = _expect_int(raw.get("port"), "port", default=8080)
    if not 1 <= port <= 65535:
        raise ConfigError(f"port must be between 1 and 65535. Got {port}.")

    pattern = str(raw.get("content_pattern") or "*.zim")
    if "/" in pattern:
        raise ConfigError("content_pattern must be a file glob without directory separators.")

    service_name = str(raw.get("service_name") or "").strip()
    if not service_name or "/" in service_name:
        raise ConfigError("service_name must be a non-empty name without '/'.")

    packages = tuple(
        _build_package(entry, f"packages[{index}]")
        for index, entry in enumerate(_as_sequence(raw.get("packages", []), "packages"))
    )
    archives = tuple(
        _build_archive(entry, f"archives[{index}]")
        for index, entry in enumerate(_as_sequence(raw.get("archives", []), "archives"))
    )
    names = [archive.name for archive in archives]
    if len(set(names)) != len(names):
        raise ConfigError("archives entries must use unique names.")

    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        unit_dir=_absolute_path(
            systemd_mapping.get("unit_dir", "/etc/systemd/system"), "systemd.unit_dir"
        ),
        environment_dir=_absolute_path(
            systemd_mapping.get("environment_dir", "/etc/default"), "systemd.environment_dir"
        ),
        systemctl_bin=str(systemd_mapping.get("systemctl_bin", "systemctl")),
    )

    apt_mapping = _as_dict(raw.get("apt"), "apt")
    apt = AptConfig(
        apt_bin=str(apt_mapping.get("apt_bin", "apt-get")),
        dpkg_query_bin=str(apt_mapping.get("dpkg_query_bin", "dpkg-query")),
    )

    transfer_mapping = _as_dict(raw.get("transfer"), "transfer")
    chunk_size = _expect_int(
        transfer_mapping.get("chunk_size"), "transfer.chunk_size", default=1024 * 1024
    )
    if chunk_size <= 0:
        raise ConfigError("transfer.chunk_size must be greater than zero.")
    transfer = TransferConfig(
        timeout=_expect_positive_float(
            transfer_mapping.get("timeout"), "transfer.timeout", default=30.0
        ),
        chunk_size=chunk_size,
    )

    ap_mapping = _as_dict(raw.get("access_point"), "access_point")
    raw_args = ap_mapping.get("installer_args", ["--yes"])
    installer_args = tuple(
        str(item) for item in _as_sequence(raw_args, "access_point.installer_args")
    )
    ssid = _expect_text(ap_mapping.get("ssid"), "access_point.ssid", default="Kiwix-Hotspot")
    if not ssid or len(ssid.encode("utf-8")) > 32 or "\n" in ssid:
        raise ConfigError("access_point.ssid must be 1-32 bytes on a single line.")
    access_point = AccessPointConfig(
        installer_url=str(ap_mapping.get("installer_url", "https://install.raspap.com")),
        installer_args=installer_args,
        transfer_package=str(ap_mapping.get("transfer_package", "curl")),
        config_file=_absolute_path(
            ap_mapping.get("config_file", "/etc/hostapd/hostapd.conf"), "access_point.config_file"
        ),
        service=str(ap_mapping.get("service", "hostapd")),
        ssid=ssid,
        passphrase=_expect_text(
            ap_mapping.get("passphrase"), "access_point.passphrase", default="ChangeMe"
        ),
        admin_user=_expect_text(
            ap_mapping.get("admin_user"), "access_point.admin_user", default="admin"
        ),
        admin_password=_expect_text(
            ap_mapping.get("admin_password"), "access_point.admin_password", default="secret"
        ),
    )

    return ProvisionConfig(
        config_file=_to_path(raw.get("config_file")),
        port=port,
        content_dir=_absolute_path(raw.get("content_dir"), "content_dir"),
        content_pattern=pattern,
        service_name=service_name,
        server_binary=_absolute_path(raw.get("server_binary"), "server_binary"),
        restart_policy=str(raw.get("restart_policy", RESTART_ON_CHANGE)),
        logs_dir=_absolute_path(raw.get("logs_dir"), "logs_dir"),
        templates_dir=_to_path(raw.get("templates_dir")),
        packages=packages,
        archives=archives,
        systemd=systemd,
        apt=apt,
        transfer=transfer,
        access_point=access_point,
    )


def _build_package(value: object, label: str) -> PackageRequirement:
    mapping = _as_dict(value, label)
    unknown = set(mapping.keys()) - {"name", "binary"}
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys for {label}: {joined}.")
    name = mapping.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError(f"{label}.name must be a non-empty string.")
    binary = mapping.get("binary")
    if binary is not None and not isinstance(binary, str):
        raise ConfigError(f"{label}.binary must be a string or null.")
    return PackageRequirement(name=name.strip(), binary=binary or None)


def _build_archive(value: object, label: str) -> ArchiveSource:
    mapping = _as_dict(value, label)
    unknown = set(mapping.keys()) - {"name", "title", "url"}
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys for {label}: {joined}.")
    url = mapping.get("url")
    if not isinstance(url, str) or not url.strip():
        raise ConfigError(f"{label}.url must be a non-empty string.")
    url = url.strip()
    if urlsplit(url).scheme not in {"http", "https"}:
        raise ConfigError(f"{label}.url must be an http(s) URL. Got {url!r}.")
    filename = PurePosixPath(urlsplit(url).path).name
    if not filename:
        raise ConfigError(f"{label}.url must end with a file name. Got {url!r}.")
    name = str(mapping.get("name") or filename)
    title = str(mapping.get("title") or name)
    return ArchiveSource(name=name, url=url, title=title)


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        if tuple(path_segments) in _STRING_ENV_KEYS:
            parsed: object = value.strip()
        else:
            parsed = _coerce_value(value)
        _assign_nested(overrides, path_segments, parsed)
    return overrides


def _build_legacy_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, target in LEGACY_ENV_KEYS.items():
        value = env.get(key)
        if value is None or not value.strip():
            continue
        overrides[target] = value.strip()
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = [
                _deep_copy(_as_dict(item, f"copy.{key}")) if isinstance(item, Mapping) else item
                for item in value
            ]
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _absolute_path(value: object, label: str) -> Path:
    path = _to_path(value)
    if not path.is_absolute():
        raise ConfigError(f"{label} must be an absolute path. Got {str(path)!r}.")
    return path


def _expect_text(value: object | None, label: str, *, default: str) -> str:
    if value is None:
        return default
    if not isinstance(value, str):
        raise ConfigError(
            f"Expected {label} to be a string. Got {type(value).__name__} {value!r}; quote it."
        )
    return value


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip(), 10)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "ALLOWED_RESTART_POLICIES",
    "AccessPointConfig",
    "AptConfig",
    "ArchiveSource",
    "ConfigError",
    "PackageRequirement",
    "ProvisionConfig",
    "RESTART_ALWAYS",
    "RESTART_ON_CHANGE",
    "SystemdConfig",
    "TransferConfig",
    "load_config",
]
