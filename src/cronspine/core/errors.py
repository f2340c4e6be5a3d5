"""
Structured error types for the cron batch engine.

Every failure that crosses a component boundary is one of the types below.
The executor never inspects messages; it decides what to do with an item
purely from the error's ``retryable`` flag and category.

Manifesto:
    - **Typed Error Hierarchy:** Transient, structural and configuration
      failures are different classes, not different strings
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry job/item/step metadata for logging
    - **Interruption is not failure:** running out of time is signalled
      with ``BudgetExhausted``, which is deliberately *not* a CronSpineError

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                      CronSpineError                             │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                 │
        │  TransientError          PipelineError        ConfigError       │
        │  (retryable=True)        (PIPELINE)           (CONFIG)          │
        │       │                       │                    │            │
        │  RateLimitError          MissingCheckpoint    JobNotFoundError  │
        │  ProviderOverloaded      InvalidPipeline                        │
        │  EmptyResponseError      SubtaskIncomplete*                     │
        │  MalformedResponseError                                         │
        │                                                                 │
        │  AuthenticationError                                            │
        │  (AUTH)                                                         │
        │                                                                 │
        │  * SubtaskIncomplete is retryable                               │
        └─────────────────────────────────────────────────────────────────┘

        BudgetExhausted(Exception)   -- control flow, never counted

Guardrails:
    ❌ DON'T: Mark an item FAILED because the time budget ran out
    ✅ DO: Raise BudgetExhausted and leave the item PROCESSING

    ❌ DON'T: Retry MissingCheckpointError
    ✅ DO: Let structural errors fail the item immediately

Tags:
    error-handling, exception-hierarchy, retry-logic, cron
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    NETWORK = "NETWORK"           # Upstream provider, rate limit, timeout
    PROVIDER = "PROVIDER"         # LLM / market-data provider misbehaviour

    PIPELINE = "PIPELINE"         # Step ordering, missing checkpoints
    VALIDATION = "VALIDATION"     # Step output failed to decode

    CONFIG = "CONFIG"             # Missing secret, unknown job
    AUTH = "AUTH"                 # Trigger authentication

    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass(slots=True)
class ErrorContext:
    """Where in the engine a failure happened.

    Known keys get fields so log processors can index them; anything else
    passed to :meth:`CronSpineError.with_context` lands in ``extra``.
    """

    job_type: str | None = None
    item_id: str | None = None
    step: str | None = None
    attempt: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def update(self, **values: Any) -> None:
        for key, value in values.items():
            if key in _CONTEXT_FIELDS:
                setattr(self, key, value)
            else:
                self.extra[key] = value

    def to_dict(self) -> dict[str, Any]:
        known = {k: getattr(self, k) for k in _CONTEXT_FIELDS}
        return {k: v for k, v in known.items() if v is not None} | self.extra


_CONTEXT_FIELDS = ("job_type", "item_id", "step", "attempt")


class CronSpineError(Exception):
    """
    Base exception for all engine errors.

    Subclasses set ``default_category`` and ``default_retryable``; either can
    be overridden per instance. The executor only reads ``retryable``.

    Examples:
        >>> MissingCheckpointError("no RESEARCH").retryable
        False
        >>> TransientError("provider busy").retryable
        True
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category if category is not None else self.default_category
        self.retryable = self.default_retryable if retryable is None else retryable
        self.retry_after = retry_after
        self.context = context if context is not None else ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **values: Any) -> CronSpineError:
        """Attach item/step context and return ``self`` so it can be raised inline::

            raise MissingCheckpointError("no RESEARCH").with_context(
                job_type="ai-reports", item_id=item.item_id
            )
        """
        self.context.update(**values)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Log-friendly view: type, message, category, retry hints, context."""
        data: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        if context := self.context.to_dict():
            data["context"] = context
        if self.cause is not None:
            data["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Retryable)
# =============================================================================


class TransientError(CronSpineError):
    """
    Temporary failure that may succeed on retry.

    Step functions retry these with exponential backoff. If retries are
    exhausted the error reaches the executor, which counts an attempt
    against the item and leaves it PROCESSING until ``max_attempts``.
    """

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class RateLimitError(TransientError):
    """Upstream rate limit exceeded."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: int = 60,
        **kwargs: Any,
    ):
        super().__init__(message, retry_after=retry_after, **kwargs)


class ProviderOverloadedError(TransientError):
    """Provider reported it is overloaded (HTTP 529/503)."""

    default_category = ErrorCategory.PROVIDER


class EmptyResponseError(TransientError):
    """Provider returned an empty body where content was expected."""

    default_category = ErrorCategory.PROVIDER


class MalformedResponseError(TransientError):
    """Provider answered, but the payload does not fit the expected shape."""

    default_category = ErrorCategory.PROVIDER


# =============================================================================
# PIPELINE ERRORS (Structural)
# =============================================================================


class PipelineError(CronSpineError):
    """Pipeline execution failure."""

    default_category = ErrorCategory.PIPELINE
    default_retryable = False


class MissingCheckpointError(PipelineError):
    """A step ran before a step it depends on had been checkpointed."""


class InvalidPipelineError(PipelineError):
    """Step definitions are malformed (duplicate names, forward deps)."""


class StepOutputError(PipelineError):
    """A persisted step payload does not decode into the step's output model."""

    default_category = ErrorCategory.VALIDATION


class SubtaskIncomplete(PipelineError):
    """
    Some sub-units of a step failed; the sub-task checkpoint is kept.

    Retryable: the next attempt resumes after the last completed unit and
    reprocesses only the units that are still outstanding.
    """

    default_retryable = True


# =============================================================================
# CONFIG / AUTH
# =============================================================================


class ConfigError(CronSpineError):
    """Configuration error (never retryable)."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class JobNotFoundError(ConfigError):
    """No job is registered under the requested name."""

    def __init__(self, job_type: str, **kwargs: Any):
        super().__init__(f"Unknown job: {job_type}", **kwargs)
        self.job_type = job_type


class AuthenticationError(CronSpineError):
    """Trigger presented a missing or wrong cron secret."""

    default_category = ErrorCategory.AUTH
    default_retryable = False


# =============================================================================
# CONTROL FLOW
# =============================================================================


class BudgetExhausted(Exception):
    """
    Raised when the invocation's time budget runs out.

    Not a CronSpineError: it is an interruption signal. Whatever was in
    flight keeps its checkpoints and stays PROCESSING.
    """

    def __init__(self, remaining: float = 0.0):
        super().__init__(f"time budget exhausted (remaining={remaining:.3f}s)")
        self.remaining = remaining


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, CronSpineError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def get_retry_after(error: BaseException) -> int | None:
    """Get retry delay from error, if specified."""
    if isinstance(error, CronSpineError):
        return error.retry_after
    return None


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, CronSpineError):
        return error.category
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorCategory.NETWORK
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "CronSpineError",
    # Transient
    "TransientError",
    "RateLimitError",
    "ProviderOverloadedError",
    "EmptyResponseError",
    "MalformedResponseError",
    # Pipeline
    "PipelineError",
    "MissingCheckpointError",
    "InvalidPipelineError",
    "StepOutputError",
    "SubtaskIncomplete",
    # Config / auth
    "ConfigError",
    "JobNotFoundError",
    "AuthenticationError",
    # Control flow
    "BudgetExhausted",
    # Utilities
    "is_retryable",
    "get_retry_after",
    "categorize_error",
]
