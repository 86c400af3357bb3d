"""Models describing test suites, test cases and parameter sets."""

from collections.abc import Callable
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ParameterSet(BaseModel):
    """One concrete argument tuple for a parameterized case."""

    model_config = ConfigDict(frozen=True)

    arguments: tuple[Any, ...] = Field(
        default_factory=tuple, description="Positional arguments for the body"
    )
    display_name: str | None = Field(
        default=None, description="Name shown instead of the parameter index"
    )
    skip: bool = Field(default=False, description="Skip this parameter set")
    skip_reason: str | None = Field(default=None, description="Why it is skipped")


class SimpleCase(BaseModel):
    """A test case executed exactly once.

    The body is called as ``body(cancellation)`` and may be a plain function
    or a coroutine function.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["simple"] = "simple"
    name: str = Field(..., description="Test case name")
    display_name: str | None = Field(default=None, description="Human-readable name")
    skip: bool = Field(default=False, description="Skip this case")
    skip_reason: str | None = Field(default=None, description="Why it is skipped")
    category: str | None = Field(
        default=None, description="Category used for filtering (overrides the suite)"
    )
    timeout: float | None = Field(
        default=None, description="Per-execution timeout in seconds"
    )
    body: Callable[..., Any] = Field(..., description="Test body")


class ParameterizedCase(BaseModel):
    """A test case executed once per parameter set.

    The body is called as ``body(cancellation, *arguments)``. With no
    parameter sets it runs once without arguments.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["parameterized"] = "parameterized"
    name: str = Field(..., description="Test case name")
    display_name: str | None = Field(default=None, description="Human-readable name")
    skip: bool = Field(default=False, description="Skip every parameter set")
    skip_reason: str | None = Field(default=None, description="Why it is skipped")
    category: str | None = Field(
        default=None, description="Category used for filtering (overrides the suite)"
    )
    timeout: float | None = Field(
        default=None, description="Per-execution timeout in seconds"
    )
    body: Callable[..., Any] = Field(..., description="Parameterized test body")
    parameter_sets: list[ParameterSet] = Field(
        default_factory=list, description="Argument sets, executed in order"
    )


TestCase = Annotated[SimpleCase | ParameterizedCase, Field(discriminator="kind")]


class TestSuite(BaseModel):
    """A named, ordered group of test cases."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Suite name")
    skip: bool = Field(default=False, description="Skip every case in the suite")
    skip_reason: str | None = Field(
        default=None, description="Why the suite is skipped (required with skip)"
    )
    category: str | None = Field(
        default=None, description="Default category for the suite's cases"
    )
    cases: list[TestCase] = Field(default_factory=list, description="Test cases")

    @model_validator(mode="after")
    def _require_skip_reason(self) -> "TestSuite":
        if self.skip and not self.skip_reason:
            raise ValueError(f"Suite '{self.name}' is skipped without a skip_reason")
        return self
