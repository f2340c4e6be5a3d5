"""Shipped jobs and the registry that serves them.

Each ``build_*`` function takes the job's collaborators (protocols) and
returns ready-to-register :class:`~cronspine.execution.job.JobDefinition`
objects::

    registry = JobRegistry()
    registry.register(build_ai_reports_job(researcher, publisher))
    registry.register(build_flag_reevaluation_job(analyst, flags))
    for job in build_index_jobs(index_service):
        registry.register(job)
"""

from cronspine.jobs.ai_reports import build_ai_reports_job, queue_report
from cronspine.jobs.flag_reevaluation import build_flag_reevaluation_job, queue_reevaluation
from cronspine.jobs.index_update import build_index_jobs
from cronspine.jobs.registry import JobRegistry, load_registry

__all__ = [
    "JobRegistry",
    "load_registry",
    "build_ai_reports_job",
    "queue_report",
    "build_flag_reevaluation_job",
    "queue_reevaluation",
    "build_index_jobs",
]
