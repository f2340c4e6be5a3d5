"""
Cron router: the trigger endpoints schedulers call.

Endpoints:
    GET|POST /cron/{job_type}            Run one time-boxed batch
             ?job=<variant>              Pick a variant; ``all`` runs each in turn
                                         under one shared time budget
    GET      /cron/{job_type}/status     Batch progress and item counts

A run always answers 200 with the batch report, even when items failed;
the scheduler reads ``hasMore`` to decide whether to call again. Only a
crash of the run itself answers 500.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from cronspine.api.deps import Executor, Registry
from cronspine.core.errors import JobNotFoundError
from cronspine.core.logging import get_logger
from cronspine.core.timestamps import utc_now
from cronspine.execution.job import JobDefinition

logger = get_logger(__name__)

router = APIRouter(prefix="/cron")

ALL_VARIANTS = "all"


def _not_found(error: JobNotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"title": "Not Found", "status": 404, "detail": error.message},
    )


def _crashed(error: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": str(error) or type(error).__name__,
            "timestamp": utc_now().isoformat(),
        },
    )


def _resolve(registry: Registry, job_type: str, variant: str | None) -> list[JobDefinition]:
    if variant == ALL_VARIANTS:
        variants = registry.variants(job_type)
        if not variants:
            raise JobNotFoundError(f"{job_type}?job={variant}")
        return [registry.get(job_type, v) for v in variants]
    return [registry.get(job_type, variant)]


@router.api_route("/{job_type}", methods=["GET", "POST"])
def trigger(
    job_type: str,
    executor: Executor,
    registry: Registry,
    job: str | None = Query(None, description="Job variant, or 'all'"),
) -> Any:
    """Run one batch of ``job_type`` within the time budget."""
    try:
        jobs = _resolve(registry, job_type, job)
    except JobNotFoundError as e:
        return _not_found(e)

    try:
        if len(jobs) == 1:
            return executor.run(jobs[0]).to_response()

        # one invocation, one budget: later variants get whatever time is left
        budget = executor.new_budget()
        reports = {j.variant: executor.run(j, budget) for j in jobs}
        return {
            "success": all(r.success for r in reports.values()),
            "results": {v: r.to_response() for v, r in reports.items()},
            "hasMore": any(r.has_more for r in reports.values()),
            "timestamp": utc_now().isoformat(),
        }
    except Exception as e:
        logger.exception("cron.run_crashed", job_type=job_type, variant=job, error=str(e))
        return _crashed(e)


@router.get("/{job_type}/status")
def status(
    job_type: str,
    executor: Executor,
    registry: Registry,
    job: str | None = Query(None, description="Job variant"),
) -> Any:
    """Progress of the current batch without running anything."""
    try:
        definition = registry.get(job_type, job)
    except JobNotFoundError as e:
        return _not_found(e)

    progress = executor.checkpoints.load_progress(definition.job_type)
    return {
        "jobType": definition.job_type,
        "progress": progress.to_dict() if progress else None,
        "pending": executor.selector.count_pending(definition.job_type),
        "items": executor.items.count_by_status(definition.job_type),
        "timestamp": utc_now().isoformat(),
    }
