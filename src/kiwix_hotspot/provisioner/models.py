"""Data models shared by provisioning steps and the pipeline runner."""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from rich.console import Console
from rich.markup import escape

from ..config import RESTART_ON_CHANGE, ProvisionConfig
from ..confirm import ConfirmationSource
from ..errors import ProvisionError
from ..host import SystemMutator, SystemObserver
from ..templates import TemplateEngine


class StepStatus(str, Enum):
    """Outcome category for a provisioning step."""

    CHANGED = "changed"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    PLANNED = "planned"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class StepOutcome:
    """Result of running one step."""

    status: StepStatus
    detail: str = ""
    step: str = ""
    error: ProvisionError | None = None

    @property
    def fatal(self) -> bool:
        """Return ``True`` when the pipeline must stop after this outcome."""
        return self.status is StepStatus.FAILED

    @classmethod
    def changed(cls, detail: str = "") -> StepOutcome:
        return cls(StepStatus.CHANGED, detail)

    @classmethod
    def unchanged(cls, detail: str = "") -> StepOutcome:
        return cls(StepStatus.UNCHANGED, detail)

    @classmethod
    def skipped(cls, detail: str = "") -> StepOutcome:
        return cls(StepStatus.SKIPPED, detail)

    @classmethod
    def planned(cls, detail: str = "") -> StepOutcome:
        return cls(StepStatus.PLANNED, detail)

    @classmethod
    def failed(cls, error: ProvisionError) -> StepOutcome:
        return cls(StepStatus.FAILED, str(error), error=error)


@dataclass(slots=True)
class RunState:
    """Facts gathered by earlier steps that gate later ones."""

    definition_changed: bool = False
    content_fetched: bool = False
    serving: bool = False
    fetched_archives: list[str] = field(default_factory=list)
    service_actions: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ProvisionContext:
    """Everything a step needs: configuration, host capabilities and output."""

    config: ProvisionConfig
    observer: SystemObserver
    mutator: SystemMutator
    confirmations: ConfirmationSource
    templates: TemplateEngine
    console: Console
    dry_run: bool = False
    restart_policy: str = RESTART_ON_CHANGE
    state: RunState = field(default_factory=RunState)

    def info(self, message: str) -> None:
        """Print a progress line."""
        self.console.print(f"[bold cyan]==>[/bold cyan] {escape(message)}")

    def warn(self, message: str) -> None:
        """Print a warning and remember it for the operation log."""
        self.state.warnings.append(message)
        self.console.print(f"[yellow]WARNING:[/yellow] {escape(message)}")


StepAction = Callable[[ProvisionContext], StepOutcome]


@dataclass(frozen=True, slots=True)
class ProvisionStep:
    """A named, ordered unit of provisioning work."""

    name: str
    description: str
    action: StepAction


@dataclass(frozen=True, slots=True)
class PipelineResult:
    """Ordered step outcomes and the first fatal one, if any."""

    outcomes: tuple[StepOutcome, ...]
    state: RunState
    failure: StepOutcome | None = None

    @property
    def ok(self) -> bool:
        """Return ``True`` when every step completed without a fatal error."""
        return self.failure is None

    @property
    def changed(self) -> int:
        """Return how many steps changed the host."""
        return sum(1 for outcome in self.outcomes if outcome.status is StepStatus.CHANGED)

    @property
    def content_fetched(self) -> bool:
        return self.state.content_fetched

    @property
    def definition_changed(self) -> bool:
        return self.state.definition_changed

    @property
    def serving(self) -> bool:
        """Return ``True`` when the run left the content server running."""
        return self.state.serving

    def outcome(self, step: str) -> StepOutcome | None:
        """Return the outcome recorded for *step*, if it ran."""
        for outcome in self.outcomes:
            if outcome.step == step:
                return outcome
        return None


__all__ = [
    "PipelineResult",
    "ProvisionContext",
    "ProvisionStep",
    "RunState",
    "StepAction",
    "StepOutcome",
    "StepStatus",
]
