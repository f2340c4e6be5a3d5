"""Job registry: route names and variants to job definitions.

The HTTP trigger and the CLI both resolve ``(job_type, ?job=variant)``
through a :class:`JobRegistry`. Deployments build one registry wired to
their collaborators and point ``CRONSPINE_REGISTRY_FACTORY`` at the
function that returns it.
"""

from __future__ import annotations

import importlib
from collections.abc import Callable, Iterator

from cronspine.core.errors import ConfigError, JobNotFoundError
from cronspine.core.logging import get_logger
from cronspine.execution.job import JobDefinition

logger = get_logger(__name__)


class JobRegistry:
    """Holds the jobs one process can run.

    Variants of a job are registered separately; the first variant
    registered for a name is its default (``?job=`` omitted).
    """

    def __init__(self) -> None:
        self._jobs: dict[tuple[str, str | None], JobDefinition] = {}
        self._defaults: dict[str, JobDefinition] = {}

    def register(self, job: JobDefinition, *, default: bool = False) -> JobDefinition:
        key = (job.name, job.variant)
        if key in self._jobs:
            raise ConfigError(f"job {job.job_type} is already registered")
        self._jobs[key] = job
        if default or job.name not in self._defaults:
            self._defaults[job.name] = job
        logger.debug("registry.registered", job_type=job.job_type)
        return job

    def get(self, name: str, variant: str | None = None) -> JobDefinition:
        """Resolve a job.

        Raises:
            JobNotFoundError: Unknown name, or unknown variant of a known name.
        """
        if variant is None:
            job = self._defaults.get(name)
        else:
            job = self._jobs.get((name, variant))
        if job is None:
            label = f"{name}?job={variant}" if variant else name
            raise JobNotFoundError(label)
        return job

    def variants(self, name: str) -> list[str]:
        return [v for (n, v) in self._jobs if n == name and v is not None]

    def names(self) -> list[str]:
        return sorted(self._defaults)

    def __contains__(self, name: object) -> bool:
        return name in self._defaults

    def __iter__(self) -> Iterator[JobDefinition]:
        return iter(self._jobs.values())

    def __len__(self) -> int:
        return len(self._jobs)


def load_registry(path: str | None) -> JobRegistry:
    """Import ``"package.module:function"`` and call it to get a registry.

    ``None`` yields an empty registry.

    Raises:
        ConfigError: The path is malformed, cannot be imported, or the
            function does not return a :class:`JobRegistry`.
    """
    if not path:
        return JobRegistry()

    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"registry factory must look like 'module:function', got {path!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"cannot import registry module {module_name!r}", cause=e) from e

    factory: Callable[[], JobRegistry] | None = getattr(module, attr, None)
    if factory is None or not callable(factory):
        raise ConfigError(f"{module_name!r} has no callable {attr!r}")

    registry = factory()
    if not isinstance(registry, JobRegistry):
        raise ConfigError(f"{path} returned {type(registry).__name__}, expected JobRegistry")
    logger.info("registry.loaded", factory=path, jobs=len(registry))
    return registry


__all__ = ["JobRegistry", "load_registry"]
