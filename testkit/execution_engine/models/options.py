"""Configuration for a test run."""

import os

from pydantic import BaseModel, ConfigDict, Field


def _default_concurrency() -> int:
    return os.cpu_count() or 1


class ExecutionOptions(BaseModel):
    """Scheduling options for the execution engine."""

    model_config = ConfigDict(frozen=True)

    parallel: bool = Field(default=True, description="Run units concurrently")
    max_concurrency: int = Field(
        default_factory=_default_concurrency,
        ge=1,
        description="Maximum number of units in flight at once",
    )
    stop_on_first_failure: bool = Field(
        default=False, description="Stop dispatching units after the first failure"
    )
    global_timeout: float | None = Field(
        default=None, gt=0, description="Deadline for the whole run in seconds"
    )
