"""Content-gated reconciliation of the content server's run state.

The reconciler only ever moves the service forward::

    NoContent              -> NoContent              (no action)
    ContentPresentStopped  -> ContentPresentRunning  (start)
    ContentPresentRunning  -> ContentPresentRunning  (restart when refreshed)

It never starts a server with nothing to serve, because ``kiwix-serve``
exits with an error when given no archives.
"""
from __future__ import annotations

from enum import Enum

from ..config import RESTART_ALWAYS
from ..host import ServiceAction
from ..providers import ServiceState
from .models import ProvisionContext, StepOutcome


class ContentServiceState(str, Enum):
    """Combined view of content presence and service run state."""

    NO_CONTENT = "no-content"
    STOPPED = "content-present-stopped"
    RUNNING = "content-present-running"


class ReconcileAction(str, Enum):
    """Action the reconciler takes for a given state."""

    NONE = "none"
    START = "start"
    RESTART = "restart"


def classify(archive_count: int, service: ServiceState) -> ContentServiceState:
    """Fold the archive count and observed service state into one state."""
    if archive_count <= 0:
        return ContentServiceState.NO_CONTENT
    if service is ServiceState.RUNNING:
        return ContentServiceState.RUNNING
    return ContentServiceState.STOPPED


def decide_action(
    state: ContentServiceState,
    *,
    refresh: bool,
    policy: str,
) -> ReconcileAction:
    """Return the action for *state*.

    ``refresh`` is set when the service definition changed or new content
    arrived. Under the ``always`` policy a running service is restarted on
    every invocation.
    """
    if state is ContentServiceState.NO_CONTENT:
        return ReconcileAction.NONE
    if state is ContentServiceState.STOPPED:
        return ReconcileAction.START
    if refresh or policy == RESTART_ALWAYS:
        return ReconcileAction.RESTART
    return ReconcileAction.NONE


def reconcile(ctx: ProvisionContext, *, refresh: bool) -> StepOutcome:
    """Observe the host and apply the action chosen by :func:`decide_action`."""
    config = ctx.config
    archives = ctx.observer.list_content(config.content_dir, config.content_pattern)
    service = ctx.observer.service_state(config.service_name)
    state = classify(len(archives), service)
    action = decide_action(state, refresh=refresh, policy=ctx.restart_policy)

    if action is ReconcileAction.NONE:
        ctx.state.serving = state is ContentServiceState.RUNNING
        if state is ContentServiceState.NO_CONTENT:
            ctx.info(
                f"No {config.content_pattern} files in {config.content_dir} yet; "
                f"{config.service_name} will not be started until content is added."
            )
            return StepOutcome.skipped("no content to serve")
        return StepOutcome.unchanged(f"{config.service_name} already running")

    if ctx.dry_run:
        return StepOutcome.planned(f"{action.value} {config.service_name}")

    verb = "Starting" if action is ReconcileAction.START else "Restarting"
    ctx.info(f"{verb} {config.service_name} ({len(archives)} archive(s))...")
    ctx.mutator.control_service(ServiceAction(action.value), config.service_name)
    ctx.state.service_actions.append(action.value)
    ctx.state.serving = True
    return StepOutcome.changed(f"{action.value} {config.service_name}")


__all__ = [
    "ContentServiceState",
    "ReconcileAction",
    "classify",
    "decide_action",
    "reconcile",
]
