"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI."""

    OK = 0
    VALIDATION = 2
    ENVIRONMENT = 3
    PROVIDER = 4
    PRIVILEGE = 5
    DEPENDENCY = 6
    TRANSFER = 7
    CONFIG_WRITE = 8
