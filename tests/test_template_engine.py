"""Tests for the template rendering engine and service definition rendering."""
from __future__ import annotations

from pathlib import Path

import pytest

from fakes import FakeHost, build_context, make_config
from kiwix_hotspot.errors import ConfigurationWriteError
from kiwix_hotspot.provisioner.steps import render_service_definition, service_template_context
from kiwix_hotspot.templates import TemplateEngine, TemplateRenderError, atomic_write


def test_unit_template_guards_start_on_content(tmp_path: Path) -> None:
    """The unit only starts when archives exist and serves all of them."""
    config = make_config(tmp_path)
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string("systemd/service.j2", service_template_context(config))

    assert f"ConditionPathExistsGlob={config.content_dir}/*.zim" in output
    assert f"EnvironmentFile={config.environment_file}" in output
    assert (
        "ExecStart=/bin/sh -c 'exec /usr/bin/kiwix-serve --port ${KIWIX_PORT} "
        "--address 0.0.0.0 ${ZIM_DIR}/*.zim'"
    ) in output
    assert "Restart=on-failure" in output
    assert "WantedBy=multi-user.target" in output


def test_environment_template(tmp_path: Path) -> None:
    """The environment file carries the port and content directory."""
    config = make_config(tmp_path, port=9000)
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string("default/environment.j2", service_template_context(config))

    assert output == f"KIWIX_PORT=9000\nZIM_DIR={config.content_dir}\n"


def test_override_path_takes_precedence(tmp_path: Path) -> None:
    """Override templates shadow the built-in ones."""
    override_template = tmp_path / "templates" / "default" / "environment.j2"
    override_template.parent.mkdir(parents=True)
    override_template.write_text("PORT={{ port }}\n", encoding="utf-8")
    config = make_config(tmp_path)

    definition = render_service_definition(build_context(config, FakeHost()))

    assert definition[config.environment_file] == "PORT=8080\n"
    assert "[Service]" in definition[config.unit_file]


def test_missing_variable_is_a_write_error(tmp_path: Path) -> None:
    """Strict undefined variables surface as configuration write errors."""
    override_template = tmp_path / "templates" / "systemd" / "service.j2"
    override_template.parent.mkdir(parents=True)
    override_template.write_text("{{ not_provided }}\n", encoding="utf-8")
    config = make_config(tmp_path)

    with pytest.raises(ConfigurationWriteError, match="systemd/service.j2"):
        render_service_definition(build_context(config, FakeHost()))


def test_unknown_template_raises() -> None:
    """Missing templates raise a render error."""
    engine = TemplateEngine.with_overrides(None)

    with pytest.raises(TemplateRenderError):
        engine.render_to_string("missing.j2", {})


def test_atomic_write_sets_mode_and_replaces(tmp_path: Path) -> None:
    """Atomic writes create parents, apply the mode and leave no temp files."""
    destination = tmp_path / "etc" / "hostapd.conf"

    atomic_write(destination, "ssid=one\n", mode=0o600)
    atomic_write(destination, "ssid=two\n", mode=0o600)

    assert destination.read_text(encoding="utf-8") == "ssid=two\n"
    assert oct(destination.stat().st_mode & 0o777) == "0o600"
    assert sorted(path.name for path in destination.parent.iterdir()) == ["hostapd.conf"]


def test_atomic_write_keeps_existing_permissions(tmp_path: Path) -> None:
    """Rewriting a file installed by another tool keeps its mode and ownership."""
    destination = tmp_path / "hostapd.conf"
    destination.write_text("ssid=raspi-webgui\n", encoding="utf-8")
    destination.chmod(0o664)
    before = destination.stat()

    atomic_write(destination, "ssid=Library\n", mode=0o600)

    after = destination.stat()
    assert destination.read_text(encoding="utf-8") == "ssid=Library\n"
    assert oct(after.st_mode & 0o777) == "0o664"
    assert (after.st_uid, after.st_gid) == (before.st_uid, before.st_gid)
