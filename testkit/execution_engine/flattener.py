"""Expand suite descriptors into independently schedulable execution units."""

import fnmatch
import inspect
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from testkit.execution_engine.cancellation import CancellationToken
from testkit.execution_engine.models.descriptors import (
    ParameterizedCase,
    ParameterSet,
    SimpleCase,
    TestSuite,
)

CASE_SKIP_REASON = "Test marked as skipped"
PARAMETER_SET_SKIP_REASON = "Test case marked as skipped"


class ExecutionUnit(BaseModel):
    """One flattened unit of work: a simple case or one parameter set."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Stable identifier across runs")
    index: int = Field(..., description="Position in flattened order")
    suite_name: str
    case_name: str
    display_name: str | None = None
    skip: bool = False
    skip_reason: str | None = None
    category: str | None = None
    timeout: float | None = Field(default=None, description="Timeout in seconds")
    arguments: tuple[Any, ...] | None = None
    is_async: bool = Field(
        default=False, description="Whether invoke returns a coroutine"
    )
    invoke: Callable[[CancellationToken], Any]


def flatten(suites: Sequence[TestSuite]) -> list[ExecutionUnit]:
    """Flatten suites into execution units.

    Units come out in suite order, then case order, then parameter-set
    order. A parameterized case without parameter sets yields one unit.

    Args:
        suites: Resolved suite descriptors

    Returns:
        Execution units in flattened order

    """
    units: list[ExecutionUnit] = []
    for suite in suites:
        for case in suite.cases:
            if isinstance(case, SimpleCase):
                units.append(_simple_unit(suite, case, len(units)))
            elif isinstance(case, ParameterizedCase):
                units.extend(_parameterized_units(suite, case, len(units)))
            else:
                raise TypeError(f"Unknown test case type: {type(case).__name__}")
    return units


def select_units(
    units: Iterable[ExecutionUnit],
    patterns: Sequence[str] = (),
    category: str | None = None,
    include_skipped: bool = True,
) -> list[ExecutionUnit]:
    """Filter units before execution.

    Matching is case-insensitive throughout.

    Args:
        units: Units in flattened order
        patterns: Shell-style id patterns; a unit is kept if any matches.
            An empty list keeps every unit.
        category: Keep only units in this category
        include_skipped: Whether units marked skip are kept

    Returns:
        The selected units, still in flattened order

    """
    lowered = [pattern.lower() for pattern in patterns]
    wanted = category.lower() if category else None
    selected = []
    for unit in units:
        if not include_skipped and unit.skip:
            continue
        if wanted is not None and (unit.category or "").lower() != wanted:
            continue
        if lowered and not any(
            fnmatch.fnmatchcase(unit.id.lower(), p) for p in lowered
        ):
            continue
        selected.append(unit)
    return selected


def _simple_unit(suite: TestSuite, case: SimpleCase, index: int) -> ExecutionUnit:
    skip, skip_reason = _resolve_skip(suite, case, None)
    return ExecutionUnit(
        id=f"{suite.name}.{case.name}",
        index=index,
        suite_name=suite.name,
        case_name=case.name,
        display_name=case.display_name,
        skip=skip,
        skip_reason=skip_reason,
        category=case.category or suite.category,
        timeout=_effective_timeout(case.timeout),
        is_async=_is_coroutine_callable(case.body),
        invoke=case.body,
    )


def _parameterized_units(
    suite: TestSuite, case: ParameterizedCase, start: int
) -> list[ExecutionUnit]:
    base_id = f"{suite.name}.{case.name}"
    is_async = _is_coroutine_callable(case.body)
    timeout = _effective_timeout(case.timeout)

    if not case.parameter_sets:
        skip, skip_reason = _resolve_skip(suite, case, None)
        return [
            ExecutionUnit(
                id=base_id,
                index=start,
                suite_name=suite.name,
                case_name=case.name,
                display_name=case.display_name,
                skip=skip,
                skip_reason=skip_reason,
                category=case.category or suite.category,
                timeout=timeout,
                arguments=(),
                is_async=is_async,
                invoke=_bind(case.body, ()),
            )
        ]

    units = []
    for i, parameter_set in enumerate(case.parameter_sets):
        if parameter_set.display_name is not None:
            unit_id = f"{base_id}({parameter_set.display_name})"
        else:
            unit_id = f"{base_id}[{i}]"
        skip, skip_reason = _resolve_skip(suite, case, parameter_set)
        units.append(
            ExecutionUnit(
                id=unit_id,
                index=start + i,
                suite_name=suite.name,
                case_name=case.name,
                display_name=parameter_set.display_name or case.display_name,
                skip=skip,
                skip_reason=skip_reason,
                category=case.category or suite.category,
                timeout=timeout,
                arguments=parameter_set.arguments,
                is_async=is_async,
                invoke=_bind(case.body, parameter_set.arguments),
            )
        )
    return units


def _resolve_skip(
    suite: TestSuite,
    case: SimpleCase | ParameterizedCase,
    parameter_set: ParameterSet | None,
) -> tuple[bool, str | None]:
    """Combine skip flags; the reason follows parameter set > case > suite."""
    levels: list[tuple[bool, str | None, str]] = []
    if parameter_set is not None:
        levels.append(
            (parameter_set.skip, parameter_set.skip_reason, PARAMETER_SET_SKIP_REASON)
        )
    levels.append((case.skip, case.skip_reason, CASE_SKIP_REASON))
    levels.append((suite.skip, suite.skip_reason, CASE_SKIP_REASON))

    skipping = [level for level in levels if level[0]]
    if not skipping:
        return False, None
    for _, reason, _ in skipping:
        if reason:
            return True, reason
    return True, skipping[0][2]


def _effective_timeout(timeout: float | None) -> float | None:
    # Zero is the conventional "unset" value; negatives are treated the same.
    if timeout is None or timeout <= 0:
        return None
    return timeout


def _bind(
    body: Callable[..., Any], arguments: tuple[Any, ...]
) -> Callable[[CancellationToken], Any]:
    def invoke(cancellation: CancellationToken) -> Any:
        return body(cancellation, *arguments)

    return invoke


def _is_coroutine_callable(body: Callable[..., Any]) -> bool:
    if inspect.iscoroutinefunction(body):
        return True
    call = getattr(body, "__call__", None)  # noqa: B004
    return call is not None and inspect.iscoroutinefunction(call)
