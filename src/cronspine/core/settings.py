"""Engine settings.

Every knob the engine reads comes from here: the time budget, batch sizes,
retry ceilings, the cron secret and the database. Values are validated at
startup, not halfway through a batch.

Manifesto:
    - **Pydantic validation:** Type-checked at startup
    - **Environment-driven:** ``CRONSPINE_*`` env vars and ``.env``
    - **Budget below host limit:** the executor's own deadline must leave
      room to save progress and write the response before the host kills
      the invocation

Examples:
    >>> from cronspine.core.settings import CronSpineSettings
    >>> settings = CronSpineSettings(max_execution_seconds=20)
    >>> settings.batch_size_for("ai-reports")
    5

Tags:
    settings, configuration, pydantic, environment
"""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cronspine.core.timestamps import DEFAULT_TIMEZONE


class CronSpineSettings(BaseSettings):
    """Settings for the batch engine, the HTTP trigger and the CLI.

    Fields
    ──────
    cron_secret            : Shared secret presented by the scheduler
    environment            : ``development`` allows an unset secret
    database_url           : SQLite URL or path
    max_execution_seconds  : Executor's time budget per invocation
    host_timeout_seconds   : Hard limit imposed by the host
    step_warn_seconds      : Steps slower than this log a warning
    default_batch_size     : Items selected per invocation
    batch_sizes            : Per-job overrides of the batch size
    max_attempts           : Retryable failures tolerated before FAILED
    dedupe_window_hours    : Recency window for duplicate targets
    timezone               : Timezone that defines "today" for daily jobs
    parallel_slots         : Worker slots for fan-out jobs
    lease_enabled          : Enforce one invocation per job type
    lease_ttl_seconds      : Lease expiry (crash safety)
    """

    model_config = SettingsConfigDict(
        env_prefix="CRONSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Trigger ──────────────────────────────────────────────────
    cron_secret: str | None = Field(default=None, description="Shared cron secret")
    environment: str = Field(default="production", description="Deployment environment")
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=12100, description="Bind port")

    # ── Storage ──────────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite:///cronspine.db",
        description="SQLite URL or file path",
    )

    # ── Time budget ──────────────────────────────────────────────
    max_execution_seconds: float = Field(default=50.0, gt=0)
    host_timeout_seconds: float = Field(default=60.0, gt=0)
    step_warn_seconds: float = Field(default=30.0, gt=0)

    # ── Batching ─────────────────────────────────────────────────
    default_batch_size: int = Field(default=5, ge=1)
    batch_sizes: dict[str, int] = Field(default_factory=dict)
    max_attempts: int = Field(default=3, ge=1)
    dedupe_window_hours: float = Field(default=24.0, ge=0)
    timezone: str = Field(default=DEFAULT_TIMEZONE)
    parallel_slots: int = Field(default=10, ge=1)

    # ── Jobs ─────────────────────────────────────────────────────
    registry_factory: str | None = Field(
        default=None,
        description="'module:function' returning the JobRegistry to serve",
    )

    # ── Lease ────────────────────────────────────────────────────
    lease_enabled: bool = Field(default=True)
    lease_ttl_seconds: int = Field(default=120, ge=1)

    # ── Observability ────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str | None = Field(
        default=None, description="'json', 'console' or unset for auto"
    )

    @model_validator(mode="after")
    def _budget_below_host_limit(self) -> CronSpineSettings:
        if self.max_execution_seconds >= self.host_timeout_seconds:
            raise ValueError(
                "max_execution_seconds must be below host_timeout_seconds "
                f"({self.max_execution_seconds} >= {self.host_timeout_seconds})"
            )
        return self

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "dev", "local")

    @property
    def json_logs(self) -> bool | None:
        if self.log_format is None:
            return None
        return self.log_format.lower() == "json"

    def batch_size_for(self, job_type: str) -> int:
        """Batch size for ``job_type`` (per-job override or default)."""
        return self.batch_sizes.get(job_type, self.default_batch_size)


__all__ = ["CronSpineSettings"]
