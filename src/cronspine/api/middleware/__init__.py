"""HTTP middleware for the cron trigger API."""

from cronspine.api.middleware.auth import CronSecretMiddleware

__all__ = ["CronSecretMiddleware"]
