"""Tests for the flag-reevaluations job."""

from __future__ import annotations

from typing import Any

import pytest

from cronspine.core.models import WorkItemStatus
from cronspine.execution.retry import ExponentialBackoff, NoRetry
from cronspine.jobs.common import ProviderCaller
from cronspine.jobs.flag_reevaluation import (
    COUNTER,
    CompanyFlag,
    build_flag_reevaluation_job,
    queue_reevaluation,
)


class FakeAnalyst:
    def __init__(self, verdict: dict[str, Any]) -> None:
        self.verdict = verdict
        self.calls: list[tuple[str, tuple]] = []

    def research_current_conditions(self, company_id, flag_type, ticker):
        self.calls.append(("research", (company_id, flag_type, ticker)))
        return {"net_margin": -0.04, "ticker": ticker}

    def analyze_flag_relevance(self, reason, flag_type, ticker, company_name, conditions):
        self.calls.append(("analyze", (reason, conditions["net_margin"])))
        return {"still_relevant": False}

    def evaluate_flag_status(self, analysis, reason):
        self.calls.append(("evaluate", (analysis["still_relevant"], reason)))
        return self.verdict


class FakeFlags:
    def __init__(self, *flags: CompanyFlag) -> None:
        self.flags = {f.flag_id: f for f in flags}
        self.applied: list[dict[str, Any]] = []

    def get_flag(self, flag_id):
        return self.flags.get(flag_id)

    def apply_reevaluation(self, flag_id, *, is_active, reason, reevaluated_at):
        self.applied.append(
            {"flag_id": flag_id, "is_active": is_active, "reason": reason, "at": reevaluated_at}
        )


@pytest.fixture
def flags() -> FakeFlags:
    return FakeFlags(
        CompanyFlag("f-1", 7, "MGLU3", "Magazine Luiza", "FUNDAMENTAL_LOSS", "Margins collapsed"),
        CompanyFlag("f-2", 8, "VALE3", "Vale", "WEAK_FUNDAMENTALS", "Debt rising"),
    )


def _job(analyst, flags, clock):
    return build_flag_reevaluation_job(
        analyst, flags, caller=ProviderCaller(NoRetry()), clock=clock
    )


class TestFlagReevaluation:
    def test_flag_deactivated(self, executor, items, flags, clock):
        analyst = FakeAnalyst(
            {"should_keep_active": False, "new_reason": "Margins recovered", "analysis_summary": "ok"}
        )
        item = queue_reevaluation(items, "f-1")

        report = executor.run(_job(analyst, flags, clock))

        assert [c[0] for c in analyst.calls] == ["research", "analyze", "evaluate"]
        assert analyst.calls[1][1] == ("Margins collapsed", -0.04)
        assert flags.applied == [
            {
                "flag_id": "f-1",
                "is_active": False,
                "reason": "Margins recovered",
                "at": clock.now,
            }
        ]
        assert report.to_response()[COUNTER] == 1
        assert items.get(item.item_id).result_id == "f-1"

    def test_flag_kept_with_original_reason(self, executor, items, flags, clock):
        analyst = FakeAnalyst({"should_keep_active": True})
        queue_reevaluation(items, "f-2")

        executor.run(_job(analyst, flags, clock))

        assert flags.applied[0]["is_active"] is True
        assert flags.applied[0]["reason"] == "Debt rising"

    def test_missing_flag_fails_without_retry(self, executor, items, flags, clock):
        analyst = FakeAnalyst({"should_keep_active": True})
        item = queue_reevaluation(items, "f-404")

        report = executor.run(_job(analyst, flags, clock))

        stored = items.get(item.item_id)
        assert stored.status == WorkItemStatus.FAILED
        assert stored.attempts == 0
        assert "flag f-404 not found" in stored.error
        assert report.failed == 1
        assert analyst.calls == []

    def test_invalid_verdict_counts_an_attempt(self, executor, items, flags, clock):
        analyst = FakeAnalyst({"summary": "no decision"})
        item = queue_reevaluation(items, "f-1")
        job = _job(analyst, flags, clock)

        first = executor.run(job)

        stored = items.get(item.item_id)
        assert stored.status == WorkItemStatus.PROCESSING
        assert stored.attempts == 1
        assert "Evaluation payload rejected" in first.errors[0]
        assert flags.applied == []

        analyst.verdict = {"should_keep_active": True}
        analyst.calls.clear()
        executor.run(job)

        assert [c[0] for c in analyst.calls] == ["evaluate"]
        assert items.get(item.item_id).status == WorkItemStatus.COMPLETED
        assert flags.applied[0]["is_active"] is True

    def test_invalid_verdict_retried_inside_step(self, executor, items, flags, clock):
        analyst = FakeAnalyst({"summary": "no decision"})
        verdicts = iter([{"summary": "no decision"}, {"should_keep_active": False}])
        analyst.evaluate_flag_status = lambda analysis, reason: next(verdicts)
        sleeps: list[float] = []
        caller = ProviderCaller(ExponentialBackoff(max_retries=2, jitter=False), sleep=sleeps.append)
        queue_reevaluation(items, "f-1")

        report = executor.run(build_flag_reevaluation_job(analyst, flags, caller=caller, clock=clock))

        assert sleeps == [1.0]
        assert report.processed == 1
        assert flags.applied[0]["is_active"] is False

    def test_queue_is_keyed_by_flag(self, items):
        first = queue_reevaluation(items, "f-1")
        again = queue_reevaluation(items, "f-1")
        assert first.item_id == again.item_id
        assert first.target_key == "flag:f-1"
