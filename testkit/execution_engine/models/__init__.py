"""Data models for test descriptors, run options and outcomes."""

from testkit.execution_engine.models.descriptors import (
    ParameterizedCase,
    ParameterSet,
    SimpleCase,
    TestCase,
    TestSuite,
)
from testkit.execution_engine.models.options import ExecutionOptions
from testkit.execution_engine.models.outcome import (
    RunReport,
    Summary,
    TestOutcome,
    TestStatus,
)

__all__ = [
    "ExecutionOptions",
    "ParameterSet",
    "ParameterizedCase",
    "RunReport",
    "SimpleCase",
    "Summary",
    "TestCase",
    "TestOutcome",
    "TestStatus",
    "TestSuite",
]
