"""Flag re-evaluation job (``flag-reevaluations``).

WHY
───
A company flag ("fundamental loss detected") goes stale as conditions
change. Each queued flag is researched again, its relevance analysed, and
a keep/deactivate verdict reached, one checkpointed LLM step at a time.

ARCHITECTURE
────────────
::

    RESEARCH    current conditions of the company for this flag type
    ANALYSIS    relevance of the flag given those conditions
    EVALUATION  {should_keep_active, new_reason, analysis_summary}
    finalize    FlagRepository.apply_reevaluation(...)   (the only write)

Collaborators: ``FlagAnalyst`` (LLM calls) and ``FlagRepository``
(flag lookup and update).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from pydantic import BaseModel

from cronspine.core.errors import PipelineError
from cronspine.core.logging import get_logger
from cronspine.core.models import FinalizeResult, PriorityClass, WorkItem
from cronspine.core.timestamps import utc_now
from cronspine.core.work_items import WorkItemRepository
from cronspine.execution.job import JobDefinition
from cronspine.execution.pipeline import StepContext, StepDefinition
from cronspine.jobs.common import ProviderCaller

logger = get_logger(__name__)

JOB_NAME = "flag-reevaluations"
COUNTER = "reevaluated"


@dataclass(frozen=True, slots=True)
class CompanyFlag:
    flag_id: str
    company_id: int
    ticker: str
    company_name: str
    flag_type: str
    reason: str
    is_active: bool = True


class ResearchOutput(BaseModel):
    current_conditions: dict[str, Any]
    researched_at: datetime


class AnalysisOutput(BaseModel):
    analysis: dict[str, Any]
    analyzed_at: datetime


class Evaluation(BaseModel):
    should_keep_active: bool
    new_reason: str | None = None
    analysis_summary: str | None = None


class EvaluationOutput(BaseModel):
    evaluation: Evaluation
    evaluated_at: datetime


class FlagAnalyst(Protocol):
    def research_current_conditions(
        self, company_id: int, flag_type: str, ticker: str
    ) -> dict[str, Any]: ...

    def analyze_flag_relevance(
        self,
        reason: str,
        flag_type: str,
        ticker: str,
        company_name: str,
        conditions: dict[str, Any],
    ) -> dict[str, Any]: ...

    def evaluate_flag_status(self, analysis: dict[str, Any], reason: str) -> dict[str, Any]: ...


class FlagRepository(Protocol):
    def get_flag(self, flag_id: str) -> CompanyFlag | None: ...

    def apply_reevaluation(
        self,
        flag_id: str,
        *,
        is_active: bool,
        reason: str,
        reevaluated_at: datetime,
    ) -> None:
        """Persist the verdict and increment the flag's re-evaluation count."""
        ...


def queue_reevaluation(
    items: WorkItemRepository,
    flag_id: str,
    *,
    priority: PriorityClass = PriorityClass.STANDARD,
) -> WorkItem:
    return items.enqueue(JOB_NAME, f"flag:{flag_id}", priority=priority, payload={"flag_id": flag_id})


class _FlagSteps:
    def __init__(
        self,
        analyst: FlagAnalyst,
        flags: FlagRepository,
        call: ProviderCaller,
        clock: Any,
    ) -> None:
        self._analyst = analyst
        self._flags = flags
        self._call = call
        self._clock = clock

    def _flag(self, item: WorkItem) -> CompanyFlag:
        flag_id = item.payload["flag_id"]
        flag = self._flags.get_flag(flag_id)
        if flag is None:
            raise PipelineError(f"flag {flag_id} not found").with_context(item_id=item.item_id)
        return flag

    def research(self, ctx: StepContext) -> ResearchOutput:
        flag = self._flag(ctx.item)
        conditions = self._call(
            ctx,
            self._analyst.research_current_conditions,
            flag.company_id,
            flag.flag_type,
            flag.ticker,
        )
        return ResearchOutput(current_conditions=conditions, researched_at=self._clock())

    def analysis(self, ctx: StepContext) -> AnalysisOutput:
        flag = self._flag(ctx.item)
        research: ResearchOutput = ctx.inputs["RESEARCH"]
        analysis = self._call(
            ctx,
            self._analyst.analyze_flag_relevance,
            flag.reason,
            flag.flag_type,
            flag.ticker,
            flag.company_name,
            research.current_conditions,
        )
        return AnalysisOutput(analysis=analysis, analyzed_at=self._clock())

    def evaluation(self, ctx: StepContext) -> EvaluationOutput:
        flag = self._flag(ctx.item)
        analysis: AnalysisOutput = ctx.inputs["ANALYSIS"]
        evaluation = self._call.decode(
            ctx, Evaluation, self._analyst.evaluate_flag_status, analysis.analysis, flag.reason
        )
        return EvaluationOutput(evaluation=evaluation, evaluated_at=self._clock())

    def finalize(self, outputs: dict[str, Any], item: WorkItem) -> FinalizeResult:
        flag = self._flag(item)
        verdict: EvaluationOutput = outputs["EVALUATION"]
        evaluation = verdict.evaluation
        self._flags.apply_reevaluation(
            flag.flag_id,
            is_active=evaluation.should_keep_active,
            reason=evaluation.new_reason or flag.reason,
            reevaluated_at=self._clock(),
        )
        logger.info(
            "flags.reevaluated",
            flag_id=flag.flag_id,
            ticker=flag.ticker,
            kept_active=evaluation.should_keep_active,
        )
        return FinalizeResult(
            result_id=flag.flag_id,
            counters={COUNTER: 1, "deactivated": int(not evaluation.should_keep_active)},
        )


def build_flag_reevaluation_job(
    analyst: FlagAnalyst,
    flags: FlagRepository,
    *,
    caller: ProviderCaller | None = None,
    clock=utc_now,
    batch_size: int | None = None,
) -> JobDefinition:
    steps = _FlagSteps(analyst, flags, caller or ProviderCaller(), clock)
    return JobDefinition(
        name=JOB_NAME,
        steps=(
            StepDefinition("RESEARCH", steps.research, output_model=ResearchOutput),
            StepDefinition(
                "ANALYSIS", steps.analysis, depends_on=("RESEARCH",), output_model=AnalysisOutput
            ),
            StepDefinition(
                "EVALUATION",
                steps.evaluation,
                depends_on=("ANALYSIS",),
                output_model=EvaluationOutput,
            ),
        ),
        finalize=steps.finalize,
        counter=COUNTER,
        batch_size=batch_size,
        description="Re-evaluate queued company flags",
    )


__all__ = [
    "JOB_NAME",
    "CompanyFlag",
    "Evaluation",
    "FlagAnalyst",
    "FlagRepository",
    "queue_reevaluation",
    "build_flag_reevaluation_job",
]
