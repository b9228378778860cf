"""Yes/no confirmation sources for optional provisioning actions."""
from __future__ import annotations

import sys
from typing import Protocol, TextIO

import typer


class ConfirmationSource(Protocol):
    """Answers yes/no questions put to the operator."""

    interactive: bool

    def confirm(self, question: str) -> bool: ...


class PromptConfirmation:
    """Ask on the controlling terminal, defaulting to "no"."""

    interactive = True

    def confirm(self, question: str) -> bool:
        return typer.confirm(question, default=False)


class DeclineAll:
    """Answer "no" to everything; used when no terminal is attached."""

    interactive = False

    def confirm(self, question: str) -> bool:
        return False


def select_confirmation_source(stream: TextIO | None = None) -> ConfirmationSource:
    """Return a prompt source when *stream* (stdin by default) is a TTY."""
    stream = sys.stdin if stream is None else stream
    try:
        attached = stream.isatty()
    except (AttributeError, ValueError):
        attached = False
    return PromptConfirmation() if attached else DeclineAll()


__all__ = [
    "ConfirmationSource",
    "DeclineAll",
    "PromptConfirmation",
    "select_confirmation_source",
]
