"""Jinja2 rendering for the files kiwix-hotspot manages on the host."""
from __future__ import annotations

import os
import stat
import tempfile
from collections.abc import Mapping
from pathlib import Path

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    TemplateError,
)


class TemplateRenderError(RuntimeError):
    """Raised when a template cannot be loaded or rendered."""


class TemplateEngine:
    """Render built-in templates, optionally shadowed by an override directory."""

    def __init__(self, environment: Environment) -> None:
        """Wrap a configured Jinja2 environment."""
        self._environment = environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine whose lookups try *override_dir* before built-ins."""
        loaders = []
        if override_dir is not None and override_dir.is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(PackageLoader("kiwix_hotspot", "templates"))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,  # noqa: S701 - renders config files, not HTML
        )
        return cls(environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context* and return the text."""
        try:
            template = self._environment.get_template(template_name)
            return template.render(**dict(context))
        except TemplateError as exc:
            raise TemplateRenderError(f"Failed to render {template_name}: {exc}") from exc


def atomic_write(destination: Path, content: str, *, mode: int = 0o644) -> None:
    """Write *content* beside *destination* then rename it into place.

    A file that already exists keeps its permission bits, owner and group;
    *mode* only applies to newly created files.
    """
    destination.parent.mkdir(parents=True, exist_ok=True)
    try:
        existing: os.stat_result | None = destination.stat()
    except FileNotFoundError:
        existing = None
    fd, tmp_name = tempfile.mkstemp(prefix=f".{destination.name}.", dir=str(destination.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        if existing is None:
            tmp_path.chmod(mode)
        else:
            tmp_path.chmod(stat.S_IMODE(existing.st_mode))
            current = tmp_path.stat()
            if (current.st_uid, current.st_gid) != (existing.st_uid, existing.st_gid):
                os.chown(tmp_path, existing.st_uid, existing.st_gid)
        os.replace(tmp_path, destination)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


__all__ = ["TemplateEngine", "TemplateRenderError", "atomic_write"]
