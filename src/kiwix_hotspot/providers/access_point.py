"""RaspAP bootstrap and hostapd configuration helpers."""
from __future__ import annotations

import re
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass


class AccessPointError(RuntimeError):
    """Raised when the RaspAP bootstrap fails."""


@dataclass(slots=True)
class RaspAPInstaller:
    """Fetch the RaspAP quick installer and pipe it into a shell."""

    curl_bin: str = "curl"
    shell_bin: str = "bash"

    def command(self, url: str, args: Sequence[str]) -> tuple[list[str], list[str]]:
        """Return the fetch and execute commands for *url*."""
        fetch = [self.curl_bin, "-fsSL", url]
        execute = [self.shell_bin, "-s", "--", *args]
        return fetch, execute

    def install(self, url: str, args: Sequence[str] = ()) -> int:
        """Run the installer, streaming its output to the terminal."""
        fetch, execute = self.command(url, args)
        try:
            with subprocess.Popen(fetch, stdout=subprocess.PIPE) as downloader:  # noqa: S603
                installer = subprocess.run(  # noqa: S603
                    execute,
                    stdin=downloader.stdout,
                    check=False,
                )
                if downloader.stdout is not None:
                    downloader.stdout.close()
                fetch_rc = downloader.wait()
        except FileNotFoundError as exc:
            raise AccessPointError(f"{exc.filename or fetch[0]} not found: {exc}") from exc
        if fetch_rc != 0:
            raise AccessPointError(f"Fetching {url} failed (exit {fetch_rc}).")
        if installer.returncode != 0:
            raise AccessPointError(f"RaspAP installer failed (exit {installer.returncode}).")
        return installer.returncode


def set_assignment(text: str, key: str, value: str) -> str:
    """Return *text* with ``key=value`` set, replacing or appending the line.

    Every uncommented assignment of *key* is rewritten; commented lines are
    left alone.
    """
    pattern = re.compile(rf"^([ \t]*){re.escape(key)}[ \t]*=.*$", re.MULTILINE)
    replacement = f"{key}={value}"
    updated, count = pattern.subn(lambda match: match.group(1) + replacement, text)
    if count:
        return updated
    if text and not text.endswith("\n"):
        text += "\n"
    return f"{text}{replacement}\n"


__all__ = ["AccessPointError", "RaspAPInstaller", "set_assignment"]
