"""Models for unit outcomes and run summaries."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from testkit.execution_engine.errors import ErrorKind

TestStatus = Literal["passed", "failed", "skipped"]


class TestOutcome(BaseModel):
    """Immutable result of one execution unit."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Stable unit identifier")
    suite_name: str = Field(..., description="Owning suite")
    case_name: str = Field(..., description="Test case name")
    display_name: str | None = Field(default=None, description="Display name")
    status: TestStatus = Field(..., description="Outcome status")
    start_time: datetime = Field(..., description="When execution started (UTC)")
    end_time: datetime = Field(..., description="When execution ended (UTC)")
    duration: float = Field(..., ge=0.0, description="Execution time in seconds")
    error_message: str | None = Field(default=None, description="Failure message")
    error_kind: ErrorKind | None = Field(default=None, description="Failure category")
    error_type: str | None = Field(
        default=None, description="Fully qualified exception class name"
    )
    stack_trace: str | None = Field(default=None, description="Formatted traceback")
    skip_reason: str | None = Field(default=None, description="Why it was skipped")
    arguments: tuple[Any, ...] | None = Field(
        default=None, description="Parameter-set arguments, if any"
    )


class Summary(BaseModel):
    """Counters over a collection of outcomes."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(default=0, description="Number of outcomes")
    passed: int = Field(default=0, description="Passed outcomes")
    failed: int = Field(default=0, description="Failed outcomes")
    skipped: int = Field(default=0, description="Skipped outcomes")
    total_duration: float = Field(
        default=0.0, description="Sum of outcome durations in seconds"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def pass_rate(self) -> float:
        """Fraction of outcomes that passed, 0.0 for an empty run."""
        return self.passed / self.total if self.total else 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_passed(self) -> bool:
        """True when no outcome failed."""
        return self.failed == 0


class RunReport(BaseModel):
    """Summary plus ordered outcomes, handed to presentation tools."""

    model_config = ConfigDict(frozen=True)

    summary: Summary
    outcomes: list[TestOutcome] = Field(default_factory=list)
