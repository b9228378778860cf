"""Idempotent provisioning pipeline for the Kiwix hotspot."""
from __future__ import annotations

from .engine import provision, run_pipeline
from .models import (
    PipelineResult,
    ProvisionContext,
    ProvisionStep,
    RunState,
    StepOutcome,
    StepStatus,
)
from .reconcile import ContentServiceState, ReconcileAction, classify, decide_action
from .steps import default_steps

__all__ = [
    "ContentServiceState",
    "PipelineResult",
    "ProvisionContext",
    "ProvisionStep",
    "ReconcileAction",
    "RunState",
    "StepOutcome",
    "StepStatus",
    "classify",
    "decide_action",
    "default_steps",
    "provision",
    "run_pipeline",
]
