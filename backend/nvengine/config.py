"""
Queue configuration.

QueueSettings define HOW the job queue admits and runs work:
- Parallelism (how many job bodies run at once)
- Admission limit (how many jobs may wait)
- Queue timeout (how long a job may wait before it is dropped)
- History retention

Operator overrides are read from environment variables only when
QueueSettings.from_env() is called explicitly. The queue itself never
inspects the environment.
"""

import logging
import os
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, field_validator

logger = logging.getLogger(__name__)


DEFAULT_MAX_PARALLEL_JOBS = 1
DEFAULT_MAX_QUEUE_LENGTH = 4
DEFAULT_QUEUE_TIMEOUT_MS = 3 * 60_000
DEFAULT_HISTORY_LIMIT = 20

ENV_PREFIX = "NVENGINE_"

# field name -> environment variable
ENV_OVERRIDES: Dict[str, str] = {
    "max_parallel_jobs": f"{ENV_PREFIX}MAX_PARALLEL_JOBS",
    "max_queue_length": f"{ENV_PREFIX}MAX_QUEUE_LENGTH",
    "queue_timeout_ms": f"{ENV_PREFIX}QUEUE_TIMEOUT_MS",
    "history_limit": f"{ENV_PREFIX}HISTORY_LIMIT",
}


class ConfigError(ValueError):
    """Raised when a configuration override cannot be parsed."""

    def __init__(self, variable: str, value: str):
        self.variable = variable
        self.value = value
        super().__init__(f"Invalid integer for {variable}: {value!r}")


class QueueSettings(BaseModel):
    """
    Limits applied by a JobQueue.

    Counts are floored at 1. A queue_timeout_ms of 0 or less disables
    queue expiry entirely.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_parallel_jobs: int = DEFAULT_MAX_PARALLEL_JOBS
    max_queue_length: int = DEFAULT_MAX_QUEUE_LENGTH
    queue_timeout_ms: int = DEFAULT_QUEUE_TIMEOUT_MS
    history_limit: int = DEFAULT_HISTORY_LIMIT

    @field_validator("max_parallel_jobs", "max_queue_length", "history_limit")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, value)

    @property
    def queue_timeout_seconds(self) -> float:
        return self.queue_timeout_ms / 1000.0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a plain dictionary with stable key ordering."""
        return self.model_dump()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "QueueSettings":
        if not data:
            return cls()
        return cls.model_validate(data)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "QueueSettings":
        """
        Build settings from NVENGINE_* environment variables.

        Unset or blank variables keep their defaults.

        Raises:
            ConfigError: If a variable is set but is not an integer
        """
        source = os.environ if environ is None else environ
        values: Dict[str, int] = {}

        for field_name, variable in ENV_OVERRIDES.items():
            raw = source.get(variable)
            if raw is None or not raw.strip():
                continue
            try:
                values[field_name] = int(raw.strip())
            except ValueError:
                raise ConfigError(variable, raw) from None
            logger.debug(f"[Config] {variable}={values[field_name]}")

        return cls(**values)


DEFAULT_QUEUE_SETTINGS = QueueSettings()
