"""
cronspine - resumable, time-boxed batch jobs for cron-triggered hosts.

A scheduler hits ``/cron/<job>`` every few minutes on a host that kills
requests after 60 seconds. Each call drives a bounded batch of work items
through checkpointed multi-step pipelines, stops cleanly before the budget
runs out, and reports ``hasMore`` so the scheduler calls again.
"""

__version__ = "0.1.0"
