"""Pipeline runner that stops at the first fatal step."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace

from ..errors import ProvisionError
from ..logging import OperationScope
from .models import PipelineResult, ProvisionContext, ProvisionStep, StepOutcome
from .steps import default_steps

logger = logging.getLogger(__name__)


def run_pipeline(
    steps: Sequence[ProvisionStep],
    ctx: ProvisionContext,
    *,
    op: OperationScope | None = None,
) -> PipelineResult:
    """Run *steps* in order, recording each outcome on *op*."""
    outcomes: list[StepOutcome] = []
    for step in steps:
        logger.debug("Running step %s", step.name)
        try:
            outcome = step.action(ctx)
        except ProvisionError as exc:
            outcome = StepOutcome.failed(exc)
        outcome = replace(outcome, step=step.name)
        outcomes.append(outcome)
        if op is not None:
            op.add_step(step.name, status=outcome.status.value, detail=outcome.detail)
        if outcome.fatal:
            logger.debug("Step %s failed: %s", step.name, outcome.detail)
            return PipelineResult(outcomes=tuple(outcomes), state=ctx.state, failure=outcome)
    return PipelineResult(outcomes=tuple(outcomes), state=ctx.state)


def provision(ctx: ProvisionContext, *, op: OperationScope | None = None) -> PipelineResult:
    """Run the full provisioning pipeline against *ctx*."""
    return run_pipeline(default_steps(), ctx, op=op)


__all__ = ["provision", "run_pipeline"]
