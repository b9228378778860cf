"""Tests for the systemd provider."""
from __future__ import annotations

from collections.abc import Sequence

import pytest

from kiwix_hotspot.providers.systemd import ServiceState, SystemdError, SystemdProvider


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def _script(
    monkeypatch: pytest.MonkeyPatch,
    responses: dict[str, DummyResult],
) -> list[list[str]]:
    """Answer ``systemctl <verb>`` calls from *responses*, recording argv."""
    calls: list[list[str]] = []

    def fake_run(
        self: SystemdProvider,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
    ) -> DummyResult:
        calls.append(list(args))
        result = responses.get(args[1], DummyResult())
        if check and result.returncode != 0:
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {result.stderr}")
        return result

    monkeypatch.setattr(SystemdProvider, "_run_command", fake_run)
    return calls


def test_control_verbs_address_service_unit(monkeypatch: pytest.MonkeyPatch) -> None:
    """Enable, start and restart append the ``.service`` suffix once."""
    calls = _script(monkeypatch, {})
    provider = SystemdProvider()

    provider.enable("kiwix-serve")
    provider.start("kiwix-serve.service")
    provider.restart("hostapd")
    provider.daemon_reload()

    assert calls == [
        ["systemctl", "enable", "kiwix-serve.service"],
        ["systemctl", "start", "kiwix-serve.service"],
        ["systemctl", "restart", "hostapd.service"],
        ["systemctl", "daemon-reload"],
    ]


@pytest.mark.parametrize(
    ("load_state", "active", "expected"),
    [
        ("not-found", "inactive", ServiceState.ABSENT),
        ("", "inactive", ServiceState.ABSENT),
        ("loaded", "inactive", ServiceState.STOPPED),
        ("loaded", "failed", ServiceState.STOPPED),
        ("loaded", "active", ServiceState.RUNNING),
        ("loaded", "activating", ServiceState.RUNNING),
    ],
)
def test_state_combines_load_and_active_state(
    monkeypatch: pytest.MonkeyPatch,
    load_state: str,
    active: str,
    expected: ServiceState,
) -> None:
    """LoadState decides absence and is-active decides running."""
    _script(
        monkeypatch,
        {
            "show": DummyResult(stdout=f"{load_state}\n"),
            "is-active": DummyResult(returncode=0 if active == "active" else 3, stdout=active),
        },
    )

    assert SystemdProvider().state("kiwix-serve") is expected


@pytest.mark.parametrize(
    ("returncode", "stdout", "expected"),
    [
        (0, "enabled\n", True),
        (1, "disabled\n", False),
        (0, "static\n", False),
        (1, "", False),
    ],
)
def test_is_enabled(
    monkeypatch: pytest.MonkeyPatch,
    returncode: int,
    stdout: str,
    expected: bool,
) -> None:
    """Only an explicit ``enabled`` answer counts as enabled."""
    _script(monkeypatch, {"is-enabled": DummyResult(returncode=returncode, stdout=stdout)})

    assert SystemdProvider().is_enabled("kiwix-serve") is expected


def test_failed_action_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    """A non-zero exit from a control verb raises ``SystemdError``."""
    _script(monkeypatch, {"start": DummyResult(returncode=1, stderr="unit failed")})

    with pytest.raises(SystemdError, match="systemctl start failed"):
        SystemdProvider().start("kiwix-serve")


def test_missing_binary_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    """A missing systemctl binary is reported as ``SystemdError``."""

    def fake_subprocess_run(*args: object, **kwargs: object) -> DummyResult:
        raise FileNotFoundError(2, "No such file or directory", "systemctl")

    monkeypatch.setattr("kiwix_hotspot.providers.systemd.subprocess.run", fake_subprocess_run)

    with pytest.raises(SystemdError, match="systemctl not found"):
        SystemdProvider().daemon_reload()
