"""HTTP trigger for cron jobs (FastAPI)."""

from cronspine.api.app import create_app

__all__ = ["create_app"]
