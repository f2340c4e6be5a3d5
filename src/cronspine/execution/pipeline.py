"""
Step pipeline and item state machine.

An item's position in its pipeline is never stored as a field: it is derived
from which step checkpoints exist. ``next_step`` returns the first step
without one, and a step with a checkpoint is never run again.

Manifesto:
    - **Checkpoint = done:** presence of a step checkpoint is the only
      completion signal; re-running a finished step returns the stored
      output without calling the handler
    - **Steps are pure:** a handler sees the outputs of its declared
      dependencies and the item payload, and returns data; side effects
      belong to the finalizer
    - **Typed payloads:** each step may declare a pydantic ``output_model``;
      dependency outputs are decoded with the producing step's model, so a
      consumer reads ``ctx.inputs["RESEARCH"].summary``, not a raw dict

Architecture:
    ::

        StepPipeline(job_type, [RESEARCH, ANALYSIS, COMPILATION], checkpoints)
            │
            ├── next_step(item_id)   first step without checkpoint | None
            ├── run_step(item, step) load deps → handler(ctx) → validate → save
            └── outputs(item_id)     {step_name: decoded output}

        StepContext handed to each handler:
            job_type, item, step, inputs{dep: output}, payload,
            budget, subtask_cursor()

Guardrails:
    ❌ DON'T: send notifications from a step handler
    ✅ DO: return data; do side effects in the job's finalize

    ❌ DON'T: declare depends_on a step that comes later
    ✅ DO: order steps so every dependency precedes its consumer

Tags:
    pipeline, state-machine, checkpoints, tagged-union, pydantic
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from cronspine.core.checkpoints import CheckpointStore
from cronspine.core.errors import (
    InvalidPipelineError,
    MissingCheckpointError,
    StepOutputError,
)
from cronspine.core.logging import get_logger
from cronspine.core.models import WorkItem
from cronspine.execution.budget import TimeBudget
from cronspine.execution.subtasks import SubtaskCursor

logger = get_logger(__name__)

StepHandler = Callable[..., Any]


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StepDefinition:
    """One named stage of a pipeline.

    Attributes:
        name: Unique step name within the pipeline (``"RESEARCH"``).
        handler: Pure function ``(StepContext) -> dict | BaseModel``.
        depends_on: Earlier steps whose outputs the handler consumes.
        output_model: Pydantic model the output is validated against and
            decoded into when a later step reads it.
    """

    name: str
    handler: StepHandler
    depends_on: tuple[str, ...] = ()
    output_model: type[BaseModel] | None = None


@dataclass(slots=True)
class StepContext:
    """Everything a step handler may read."""

    job_type: str
    item: WorkItem
    step: str
    inputs: dict[str, Any]
    budget: TimeBudget | None
    _checkpoints: CheckpointStore = field(repr=False)

    @property
    def payload(self) -> dict[str, Any]:
        return self.item.payload

    def subtask_cursor(self) -> SubtaskCursor:
        """Sub-task checkpoint scoped to this item and step."""
        return SubtaskCursor(
            self._checkpoints, self.job_type, self.item.item_id, self.step, self.budget
        )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class StepPipeline:
    """Ordered steps for one job type, driven by the checkpoint store.

    Args:
        job_type: Job the pipeline belongs to.
        steps: Ordered step definitions.
        checkpoints: Store holding step outputs.
        step_warn_seconds: Steps slower than this log a warning.

    Raises:
        InvalidPipelineError: Empty pipeline, duplicate step names, or a
            dependency that is not an earlier step.
    """

    def __init__(
        self,
        job_type: str,
        steps: Sequence[StepDefinition],
        checkpoints: CheckpointStore,
        *,
        step_warn_seconds: float = 30.0,
    ) -> None:
        self.job_type = job_type
        self._steps = tuple(steps)
        self._checkpoints = checkpoints
        self._warn_seconds = step_warn_seconds
        self._validate()
        self._by_name = {s.name: s for s in self._steps}

    @property
    def steps(self) -> tuple[StepDefinition, ...]:
        return self._steps

    def ordinal(self, name: str) -> int:
        return [s.name for s in self._steps].index(name)

    # -- state machine -------------------------------------------------------

    def next_step(self, item_id: str) -> StepDefinition | None:
        """First step lacking a checkpoint, or ``None`` if all are done."""
        done = self._checkpoints.list_steps(self.job_type, item_id)
        for step in self._steps:
            if step.name not in done:
                return step
        return None

    def run_step(
        self,
        item: WorkItem,
        step: StepDefinition,
        budget: TimeBudget | None = None,
    ) -> Any:
        """Run ``step`` for ``item`` unless it is already checkpointed.

        Returns:
            The step output, decoded with the step's ``output_model``.

        Raises:
            MissingCheckpointError: A declared dependency has no checkpoint.
            StepOutputError: The handler's output does not fit its model.
        """
        existing = self._checkpoints.load(self.job_type, item.item_id, step.name)
        if existing is not None:
            logger.debug("pipeline.step_cached", step=step.name, item_id=item.item_id)
            return self.decode(step.name, existing)

        inputs: dict[str, Any] = {}
        for dep in step.depends_on:
            data = self._checkpoints.load(self.job_type, item.item_id, dep)
            if data is None:
                raise MissingCheckpointError(
                    f"step {step.name} requires checkpoint {dep}, which is missing"
                ).with_context(job_type=self.job_type, item_id=item.item_id, step=step.name)
            inputs[dep] = self.decode(dep, data)

        ctx = StepContext(
            job_type=self.job_type,
            item=item,
            step=step.name,
            inputs=inputs,
            budget=budget,
            _checkpoints=self._checkpoints,
        )

        logger.info("pipeline.step_start", step=step.name, item_id=item.item_id)
        started = time.monotonic()
        result = step.handler(ctx)
        duration = time.monotonic() - started

        data = self._encode(step, result)
        self._checkpoints.save(self.job_type, item.item_id, step.name, data)

        if duration > self._warn_seconds:
            logger.warning(
                "pipeline.step_slow",
                step=step.name,
                item_id=item.item_id,
                duration_ms=int(duration * 1000),
                threshold_ms=int(self._warn_seconds * 1000),
            )
        else:
            logger.info(
                "pipeline.step_done",
                step=step.name,
                item_id=item.item_id,
                duration_ms=int(duration * 1000),
            )
        return self.decode(step.name, data)

    def outputs(self, item_id: str) -> dict[str, Any]:
        """All checkpointed outputs of ``item_id``, decoded, in step order."""
        raw = self._checkpoints.list_steps(self.job_type, item_id)
        return {s.name: self.decode(s.name, raw[s.name]) for s in self._steps if s.name in raw}

    def decode(self, step_name: str, data: dict[str, Any]) -> Any:
        """Decode a stored payload with the producing step's model."""
        step = self._by_name.get(step_name)
        if step is None or step.output_model is None:
            return data
        try:
            return step.output_model.model_validate(data)
        except PydanticValidationError as e:
            raise StepOutputError(
                f"checkpoint {step_name} does not match {step.output_model.__name__}",
                cause=e,
            ).with_context(job_type=self.job_type, step=step_name) from e

    # -- internal ------------------------------------------------------------

    def _encode(self, step: StepDefinition, result: Any) -> dict[str, Any]:
        if isinstance(result, BaseModel):
            return result.model_dump(mode="json")
        if step.output_model is not None:
            try:
                return step.output_model.model_validate(result).model_dump(mode="json")
            except PydanticValidationError as e:
                raise StepOutputError(
                    f"step {step.name} returned data that does not match "
                    f"{step.output_model.__name__}",
                    cause=e,
                ).with_context(job_type=self.job_type, step=step.name) from e
        if not isinstance(result, dict):
            raise StepOutputError(
                f"step {step.name} must return a dict or pydantic model, "
                f"got {type(result).__name__}"
            )
        return result

    def _validate(self) -> None:
        if not self._steps:
            raise InvalidPipelineError(f"pipeline {self.job_type} has no steps")
        seen: set[str] = set()
        for step in self._steps:
            if step.name in seen:
                raise InvalidPipelineError(f"duplicate step {step.name} in {self.job_type}")
            missing = [d for d in step.depends_on if d not in seen]
            if missing:
                raise InvalidPipelineError(
                    f"step {step.name} depends on {', '.join(missing)}, "
                    "which is not an earlier step"
                )
            seen.add(step.name)


__all__ = ["StepDefinition", "StepContext", "StepPipeline", "StepHandler"]
