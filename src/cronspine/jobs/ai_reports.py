"""
AI report generation job (``ai-reports``).

A queued report moves through three LLM-backed steps, each checkpointed so a
timed-out invocation resumes at the step it had not finished::

    RESEARCH ──▶ ANALYSIS ──▶ COMPILATION ──▶ finalize
    (why did     (is it a     (markdown      (save report, flag company,
     it move?)   fundamental   report)        notify subscribers)
                 loss?)

Two report types share the pipeline:

- ``PRICE_VARIATION``: a large price drop; all three steps call the
  researcher, and a fundamental loss (or weak / deteriorating
  fundamentals) flags the company.
- ``CUSTOM_TRIGGER``: a user-defined monitor fired; RESEARCH and ANALYSIS
  are pass-through and only the monitor owner is notified.

Collaborators are protocols so the job runs against any LLM client and
any persistence layer::

    job = build_ai_reports_job(researcher, publisher)
    registry.register(job)

Tags:
    job, ai-reports, llm, pipeline, notifications
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, Field

from cronspine.core.errors import EmptyResponseError, MalformedResponseError
from cronspine.core.logging import get_logger
from cronspine.core.models import FinalizeResult, PriorityClass, WorkItem
from cronspine.core.work_items import WorkItemRepository
from cronspine.execution.job import JobDefinition
from cronspine.execution.pipeline import StepContext, StepDefinition
from cronspine.jobs.common import ProviderCaller

logger = get_logger(__name__)

JOB_NAME = "ai-reports"
COUNTER = "reportsGenerated"
SUMMARY_LENGTH = 500


class ReportType(str, Enum):
    PRICE_VARIATION = "PRICE_VARIATION"
    CUSTOM_TRIGGER = "CUSTOM_TRIGGER"


class Assessment(str, Enum):
    STRONG = "STRONG"
    MODERATE = "MODERATE"
    WEAK = "WEAK"
    DETERIORATING = "DETERIORATING"


# ---------------------------------------------------------------------------
# Step outputs
# ---------------------------------------------------------------------------


class Fundamentals(BaseModel):
    overall_assessment: Assessment = Assessment.MODERATE
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    key_indicators: str = ""
    outlook: str = ""


class FundamentalAnalysis(BaseModel):
    is_fundamental_loss: bool = False
    conclusion: str = "ANALYSIS_UNAVAILABLE"
    current_fundamentals: Fundamentals | None = None


class ResearchOutput(BaseModel):
    research: dict[str, Any] | None = None


class AnalysisOutput(BaseModel):
    analysis: FundamentalAnalysis | None = None
    prepared: bool = False


class CompilationOutput(BaseModel):
    report: str
    is_fundamental_loss: bool = False
    conclusion: str = "ANALYSIS_UNAVAILABLE"
    current_fundamentals: Fundamentals = Field(default_factory=Fundamentals)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class ReportResearcher(Protocol):
    """LLM-backed research and writing."""

    def research_price_move(
        self, ticker: str, company_name: str, variation: dict[str, Any]
    ) -> dict[str, Any]: ...

    def analyze_fundamental_impact(
        self,
        ticker: str,
        company_name: str,
        variation: dict[str, Any],
        research: dict[str, Any] | None,
    ) -> dict[str, Any]: ...

    def write_price_variation_report(
        self,
        ticker: str,
        company_name: str,
        variation: dict[str, Any],
        research: dict[str, Any] | None,
    ) -> str: ...

    def write_custom_trigger_report(
        self, ticker: str, company_name: str, trigger: dict[str, Any]
    ) -> str: ...


@dataclass(frozen=True, slots=True)
class ReportNotice:
    """What subscribers are told about a new report."""

    company_id: int
    ticker: str
    report_id: str
    report_type: ReportType
    summary: str
    url: str
    has_active_flag: bool = False
    only_user_id: str | None = None


class ReportPublisher(Protocol):
    """Persistence and delivery of finished reports."""

    def save_report(
        self,
        company_id: int,
        report_type: ReportType,
        content: str,
        metadata: dict[str, Any],
    ) -> str: ...

    def create_flag(self, company_id: int, report_id: str, reason: str) -> None: ...

    def has_active_flag(self, company_id: int) -> bool: ...

    def notify_subscribers(self, notice: ReportNotice) -> int: ...


# ---------------------------------------------------------------------------
# Queueing
# ---------------------------------------------------------------------------


def report_target(company_id: int, report_type: ReportType | str) -> str:
    return f"company:{company_id}:{ReportType(report_type).value}"


def queue_report(
    items: WorkItemRepository,
    *,
    company_id: int,
    ticker: str,
    company_name: str,
    report_type: ReportType | str,
    trigger: dict[str, Any],
    priority: PriorityClass = PriorityClass.STANDARD,
    user_id: str | None = None,
) -> WorkItem:
    """Enqueue a report request; a request already in flight is reused."""
    report_type = ReportType(report_type)
    payload = {
        "company_id": company_id,
        "ticker": ticker,
        "company_name": company_name,
        "report_type": report_type.value,
        "trigger": trigger,
    }
    if user_id:
        payload["user_id"] = user_id
    return items.enqueue(
        JOB_NAME,
        report_target(company_id, report_type),
        priority=priority,
        payload=payload,
    )


def flag_reason(output: CompilationOutput) -> str | None:
    """Reason to flag the company, or None when no flag is warranted."""
    assessment = output.current_fundamentals.overall_assessment
    if assessment in (Assessment.WEAK, Assessment.DETERIORATING):
        label = "weak" if assessment == Assessment.WEAK else "deteriorating"
        return f"{label.capitalize()} fundamentals detected. {output.current_fundamentals.outlook}".strip()
    if output.is_fundamental_loss:
        return output.conclusion or "Fundamental loss detected"
    return None


def summarize(content: str, length: int = SUMMARY_LENGTH) -> str:
    plain = re.sub(r"[#*`]", "", content).strip()
    if len(plain) <= length:
        return plain
    return plain[:length].rstrip() + "..."


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------


class _AIReportSteps:
    def __init__(
        self,
        researcher: ReportResearcher,
        publisher: ReportPublisher,
        call: ProviderCaller,
    ) -> None:
        self._researcher = researcher
        self._publisher = publisher
        self._call = call

    @staticmethod
    def _subject(ctx_or_item: StepContext | WorkItem) -> tuple[ReportType, str, str, dict[str, Any]]:
        payload = ctx_or_item.payload
        return (
            ReportType(payload["report_type"]),
            payload["ticker"],
            payload.get("company_name") or payload["ticker"],
            payload.get("trigger") or {},
        )

    def research(self, ctx: StepContext) -> ResearchOutput:
        report_type, ticker, name, trigger = self._subject(ctx)
        if report_type != ReportType.PRICE_VARIATION:
            return ResearchOutput()
        research = self._call(ctx, self._researcher.research_price_move, ticker, name, trigger)
        return ResearchOutput(research=research)

    def analysis(self, ctx: StepContext) -> AnalysisOutput:
        report_type, ticker, name, trigger = self._subject(ctx)
        if report_type != ReportType.PRICE_VARIATION:
            return AnalysisOutput(prepared=True)
        research: ResearchOutput = ctx.inputs["RESEARCH"]
        try:
            found = self._call.decode(
                ctx,
                FundamentalAnalysis,
                self._researcher.analyze_fundamental_impact,
                ticker,
                name,
                trigger,
                research.research,
            )
        except MalformedResponseError as e:
            # the report still goes out, without a fundamental-loss verdict
            logger.warning("ai_reports.analysis_unavailable", ticker=ticker, error=e.message)
            found = FundamentalAnalysis()
        return AnalysisOutput(analysis=found, prepared=True)

    def compilation(self, ctx: StepContext) -> CompilationOutput:
        report_type, ticker, name, trigger = self._subject(ctx)
        if report_type == ReportType.CUSTOM_TRIGGER:
            content = self._call(
                ctx, self._researcher.write_custom_trigger_report, ticker, name, trigger
            )
            return CompilationOutput(report=_require_content(content, ticker))

        research: ResearchOutput = ctx.inputs["RESEARCH"]
        analysis: AnalysisOutput = ctx.inputs["ANALYSIS"]
        content = self._call(
            ctx,
            self._researcher.write_price_variation_report,
            ticker,
            name,
            trigger,
            research.research,
        )
        found = analysis.analysis or FundamentalAnalysis()
        return CompilationOutput(
            report=_require_content(content, ticker),
            is_fundamental_loss=found.is_fundamental_loss,
            conclusion=found.conclusion,
            current_fundamentals=found.current_fundamentals or Fundamentals(),
        )

    def finalize(self, outputs: dict[str, Any], item: WorkItem) -> FinalizeResult:
        report_type, ticker, _name, trigger = self._subject(item)
        company_id = int(item.payload["company_id"])
        compiled: CompilationOutput = outputs["COMPILATION"]

        metadata: dict[str, Any] = {"trigger": trigger, "work_item_id": item.item_id}
        if report_type == ReportType.PRICE_VARIATION:
            metadata["conclusion"] = compiled.conclusion
            metadata["is_fundamental_loss"] = compiled.is_fundamental_loss

        report_id = self._publisher.save_report(company_id, report_type, compiled.report, metadata)

        has_flag = False
        if report_type == ReportType.PRICE_VARIATION:
            reason = flag_reason(compiled)
            if reason:
                self._publisher.create_flag(company_id, report_id, reason)
                logger.info("ai_reports.flag_created", company_id=company_id, report_id=report_id)
            has_flag = self._publisher.has_active_flag(company_id)

        notice = ReportNotice(
            company_id=company_id,
            ticker=ticker,
            report_id=report_id,
            report_type=report_type,
            summary=summarize(compiled.report),
            url=f"/acao/{ticker.lower()}/relatorios/{report_id}",
            has_active_flag=has_flag,
            only_user_id=item.payload.get("user_id") if report_type == ReportType.CUSTOM_TRIGGER else None,
        )
        notified = self._publisher.notify_subscribers(notice)
        logger.info(
            "ai_reports.published",
            report_id=report_id,
            report_type=report_type.value,
            notified=notified,
        )
        return FinalizeResult(result_id=report_id, counters={COUNTER: 1, "notified": notified})


def _require_content(content: str | None, ticker: str) -> str:
    if not content or not content.strip():
        raise EmptyResponseError(f"empty report generated for {ticker}")
    return content


def build_ai_reports_job(
    researcher: ReportResearcher,
    publisher: ReportPublisher,
    *,
    caller: ProviderCaller | None = None,
    batch_size: int | None = None,
    parallel: bool = False,
) -> JobDefinition:
    """Assemble the ``ai-reports`` job around its collaborators."""
    steps = _AIReportSteps(researcher, publisher, caller or ProviderCaller())
    return JobDefinition(
        name=JOB_NAME,
        steps=(
            StepDefinition("RESEARCH", steps.research, output_model=ResearchOutput),
            StepDefinition(
                "ANALYSIS", steps.analysis, depends_on=("RESEARCH",), output_model=AnalysisOutput
            ),
            StepDefinition(
                "COMPILATION",
                steps.compilation,
                depends_on=("RESEARCH", "ANALYSIS"),
                output_model=CompilationOutput,
            ),
        ),
        finalize=steps.finalize,
        counter=COUNTER,
        batch_size=batch_size,
        parallel=parallel,
        description="Generate queued AI reports (research, analysis, compilation)",
    )


__all__ = [
    "JOB_NAME",
    "ReportType",
    "Assessment",
    "Fundamentals",
    "FundamentalAnalysis",
    "ResearchOutput",
    "AnalysisOutput",
    "CompilationOutput",
    "ReportResearcher",
    "ReportPublisher",
    "ReportNotice",
    "queue_report",
    "report_target",
    "flag_reason",
    "summarize",
    "build_ai_reports_job",
]
