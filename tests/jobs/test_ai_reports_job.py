"""Tests for the ai-reports job."""

from __future__ import annotations

from typing import Any

import pytest

from cronspine.core.errors import RateLimitError
from cronspine.core.models import PriorityClass, WorkItemStatus
from cronspine.execution.retry import ExponentialBackoff, NoRetry
from cronspine.jobs.ai_reports import (
    COUNTER,
    JOB_NAME,
    Assessment,
    CompilationOutput,
    Fundamentals,
    ReportNotice,
    ReportType,
    build_ai_reports_job,
    flag_reason,
    queue_report,
    summarize,
)
from cronspine.jobs.common import ProviderCaller


class FakeResearcher:
    def __init__(self, analysis: dict[str, Any] | None = None, report: str = "# Report\nAll good.") -> None:
        self.analysis = analysis or {"is_fundamental_loss": False, "conclusion": "Temporary move"}
        self.report = report
        self.calls: list[str] = []
        self.failures: list[Exception] = []

    def _maybe_fail(self) -> None:
        if self.failures:
            raise self.failures.pop(0)

    def research_price_move(self, ticker, company_name, variation):
        self.calls.append("research")
        self._maybe_fail()
        return {"drivers": [f"{ticker} guidance cut"], "variation": variation}

    def analyze_fundamental_impact(self, ticker, company_name, variation, research):
        self.calls.append("analyze")
        return self.analysis

    def write_price_variation_report(self, ticker, company_name, variation, research):
        self.calls.append("write_price")
        return self.report

    def write_custom_trigger_report(self, ticker, company_name, trigger):
        self.calls.append("write_custom")
        return self.report


class FakePublisher:
    def __init__(self) -> None:
        self.reports: list[dict[str, Any]] = []
        self.flags: list[tuple[int, str, str]] = []
        self.notices: list[ReportNotice] = []

    def save_report(self, company_id, report_type, content, metadata):
        report_id = f"report-{len(self.reports) + 1}"
        self.reports.append(
            {"id": report_id, "company_id": company_id, "type": report_type, "metadata": metadata}
        )
        return report_id

    def create_flag(self, company_id, report_id, reason):
        self.flags.append((company_id, report_id, reason))

    def has_active_flag(self, company_id):
        return any(f[0] == company_id for f in self.flags)

    def notify_subscribers(self, notice):
        self.notices.append(notice)
        return 3


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


def _queue_price_move(items, company_id: int = 7, ticker: str = "MGLU3"):
    return queue_report(
        items,
        company_id=company_id,
        ticker=ticker,
        company_name="Magazine Luiza",
        report_type=ReportType.PRICE_VARIATION,
        trigger={"variation": -12.5, "period": "1d"},
    )


class TestPriceVariation:
    def test_report_without_flag(self, executor, items, publisher):
        researcher = FakeResearcher()
        job = build_ai_reports_job(researcher, publisher, caller=ProviderCaller(NoRetry()))
        item = _queue_price_move(items)

        report = executor.run(job)

        assert researcher.calls == ["research", "analyze", "write_price"]
        assert report.to_response()[COUNTER] == 1
        assert publisher.flags == []
        saved = publisher.reports[0]
        assert saved["metadata"]["conclusion"] == "Temporary move"
        assert saved["metadata"]["work_item_id"] == item.item_id
        notice = publisher.notices[0]
        assert notice.url == "/acao/mglu3/relatorios/report-1"
        assert notice.has_active_flag is False
        assert notice.only_user_id is None
        stored = items.get(item.item_id)
        assert stored.status == WorkItemStatus.COMPLETED
        assert stored.result_id == "report-1"

    def test_fundamental_loss_flags_company(self, executor, items, publisher):
        researcher = FakeResearcher(
            analysis={"is_fundamental_loss": True, "conclusion": "Margins collapsed"}
        )
        job = build_ai_reports_job(researcher, publisher, caller=ProviderCaller(NoRetry()))
        _queue_price_move(items)

        executor.run(job)

        assert publisher.flags == [(7, "report-1", "Margins collapsed")]
        assert publisher.notices[0].has_active_flag is True

    def test_weak_fundamentals_flag_company(self, executor, items, publisher):
        researcher = FakeResearcher(
            analysis={
                "is_fundamental_loss": False,
                "conclusion": "Noise",
                "current_fundamentals": {"overall_assessment": "WEAK", "outlook": "Debt rising."},
            }
        )
        job = build_ai_reports_job(researcher, publisher, caller=ProviderCaller(NoRetry()))
        _queue_price_move(items)

        executor.run(job)

        assert publisher.flags[0][2] == "Weak fundamentals detected. Debt rising."

    def test_empty_report_is_retried_from_compilation(self, executor, items, publisher, checkpoints):
        researcher = FakeResearcher(report="   ")
        job = build_ai_reports_job(researcher, publisher, caller=ProviderCaller(NoRetry()))
        item = _queue_price_move(items)

        first = executor.run(job)

        stored = items.get(item.item_id)
        assert stored.status == WorkItemStatus.PROCESSING
        assert stored.attempts == 1
        assert "empty report generated for MGLU3" in first.errors[0]
        assert set(checkpoints.list_steps(JOB_NAME, item.item_id)) == {"RESEARCH", "ANALYSIS"}

        researcher.report = "Recovered report"
        researcher.calls.clear()
        second = executor.run(job)

        assert researcher.calls == ["write_price"]
        assert second.processed == 1
        assert items.get(item.item_id).status == WorkItemStatus.COMPLETED

    def test_rate_limit_retried_inside_step(self, executor, items, publisher):
        sleeps: list[float] = []
        researcher = FakeResearcher()
        researcher.failures.append(RateLimitError(retry_after=5))
        caller = ProviderCaller(ExponentialBackoff(max_retries=2, jitter=False), sleep=sleeps.append)
        job = build_ai_reports_job(researcher, publisher, caller=caller)
        _queue_price_move(items)

        report = executor.run(job)

        assert sleeps == [5.0]
        assert researcher.calls.count("research") == 2
        assert report.processed == 1

    def test_malformed_analysis_falls_back_after_retries(self, executor, items, publisher):
        sleeps: list[float] = []
        researcher = FakeResearcher(analysis={"is_fundamental_loss": "not sure"})
        caller = ProviderCaller(ExponentialBackoff(max_retries=2, jitter=False), sleep=sleeps.append)
        job = build_ai_reports_job(researcher, publisher, caller=caller)
        item = _queue_price_move(items)

        report = executor.run(job)

        assert researcher.calls.count("analyze") == 3
        assert sleeps == [1.0, 2.0]
        assert report.processed == 1
        assert publisher.flags == []
        assert publisher.reports[0]["metadata"]["conclusion"] == "ANALYSIS_UNAVAILABLE"
        assert items.get(item.item_id).status == WorkItemStatus.COMPLETED


class TestCustomTrigger:
    def test_only_monitor_owner_notified(self, executor, items, publisher):
        researcher = FakeResearcher(report="**Monitor** fired: P/L below 8")
        job = build_ai_reports_job(researcher, publisher, caller=ProviderCaller(NoRetry()))
        queue_report(
            items,
            company_id=11,
            ticker="ITSA4",
            company_name="Itausa",
            report_type="CUSTOM_TRIGGER",
            trigger={"monitor_id": "m-1", "condition": "pl < 8"},
            priority=PriorityClass.PREMIUM,
            user_id="user-9",
        )

        executor.run(job)

        assert researcher.calls == ["write_custom"]
        assert publisher.flags == []
        notice = publisher.notices[0]
        assert notice.only_user_id == "user-9"
        assert notice.report_type == ReportType.CUSTOM_TRIGGER
        assert notice.summary == "Monitor fired: P/L below 8"
        assert "conclusion" not in publisher.reports[0]["metadata"]


class TestHelpers:
    def test_queue_report_reuses_in_flight_request(self, items):
        first = _queue_price_move(items)
        second = _queue_price_move(items)
        other = _queue_price_move(items, company_id=8, ticker="VALE3")

        assert first.item_id == second.item_id
        assert other.item_id != first.item_id
        assert first.target_key == "company:7:PRICE_VARIATION"
        assert first.payload["trigger"] == {"variation": -12.5, "period": "1d"}

    def test_flag_reason(self):
        strong = CompilationOutput(
            report="r", current_fundamentals=Fundamentals(overall_assessment=Assessment.STRONG)
        )
        deteriorating = CompilationOutput(
            report="r",
            current_fundamentals=Fundamentals(overall_assessment=Assessment.DETERIORATING),
        )
        assert flag_reason(strong) is None
        assert flag_reason(deteriorating) == "Deteriorating fundamentals detected."

    def test_summarize_truncates(self):
        text = "## Title\n" + "x" * 600
        summary = summarize(text)
        assert summary.startswith("Title")
        assert summary.endswith("...")
        assert len(summary) == 503
