"""Tests for the unit flattener."""

from unittest.mock import Mock

import pytest

from testkit.execution_engine.cancellation import CancellationToken
from testkit.execution_engine.flattener import (
    CASE_SKIP_REASON,
    PARAMETER_SET_SKIP_REASON,
    flatten,
    select_units,
)
from testkit.execution_engine.models.descriptors import (
    ParameterizedCase,
    ParameterSet,
    SimpleCase,
    TestSuite,
)


def noop(cancellation: CancellationToken) -> None:
    """Body that does nothing."""


async def async_noop(cancellation: CancellationToken) -> None:
    """Coroutine body that does nothing."""


def test_flatten_preserves_suite_case_and_parameter_order() -> None:
    """Units come out in suite, case, then parameter-set order."""
    suites = [
        TestSuite(
            name="Alpha",
            cases=[
                SimpleCase(name="first", body=noop),
                ParameterizedCase(
                    name="second",
                    body=noop,
                    parameter_sets=[
                        ParameterSet(arguments=(1,)),
                        ParameterSet(arguments=(2,), display_name="two"),
                    ],
                ),
            ],
        ),
        TestSuite(name="Beta", cases=[SimpleCase(name="third", body=noop)]),
    ]

    units = flatten(suites)

    assert [u.id for u in units] == [
        "Alpha.first",
        "Alpha.second[0]",
        "Alpha.second(two)",
        "Beta.third",
    ]
    assert [u.index for u in units] == [0, 1, 2, 3]
    assert units[1].arguments == (1,)
    assert units[2].display_name == "two"
    assert units[0].arguments is None


def test_flatten_is_deterministic() -> None:
    """Flattening the same suites twice yields the same ids."""
    suite = TestSuite(
        name="S",
        cases=[
            ParameterizedCase(
                name="p",
                body=noop,
                parameter_sets=[ParameterSet(arguments=(i,)) for i in range(5)],
            )
        ],
    )

    assert [u.id for u in flatten([suite])] == [u.id for u in flatten([suite])]


def test_parameterized_case_without_sets_yields_one_unit() -> None:
    """A parameterized case with no parameter sets runs once without arguments."""
    body = Mock()
    suite = TestSuite(name="S", cases=[ParameterizedCase(name="p", body=body)])

    units = flatten([suite])

    assert len(units) == 1
    assert units[0].id == "S.p"
    assert units[0].arguments == ()
    token = CancellationToken()
    units[0].invoke(token)
    body.assert_called_once_with(token)


def test_parameterized_invoke_binds_arguments_after_token() -> None:
    """The parameterized invoke thunk calls body(token, *arguments)."""
    body = Mock()
    suite = TestSuite(
        name="S",
        cases=[
            ParameterizedCase(
                name="p", body=body, parameter_sets=[ParameterSet(arguments=("a", 2))]
            )
        ],
    )
    token = CancellationToken()

    flatten([suite])[0].invoke(token)

    body.assert_called_once_with(token, "a", 2)


def test_simple_invoke_calls_body_with_token() -> None:
    """The simple invoke thunk calls body(token)."""
    body = Mock()
    token = CancellationToken()

    flatten([TestSuite(name="S", cases=[SimpleCase(name="c", body=body)])])[0].invoke(
        token
    )

    body.assert_called_once_with(token)


def test_flatten_detects_coroutine_bodies() -> None:
    """Coroutine-function bodies are flagged as async units."""
    suite = TestSuite(
        name="S",
        cases=[
            SimpleCase(name="sync", body=noop),
            SimpleCase(name="async", body=async_noop),
            ParameterizedCase(
                name="p", body=async_noop, parameter_sets=[ParameterSet()]
            ),
        ],
    )

    assert [u.is_async for u in flatten([suite])] == [False, True, True]


@pytest.mark.parametrize(
    ("suite_skip", "case_skip", "set_skip", "expected"),
    [
        (False, False, False, (False, None)),
        (True, False, False, (True, "suite reason")),
        (False, True, False, (True, "case reason")),
        (False, False, True, (True, "set reason")),
        (True, True, True, (True, "set reason")),
        (True, True, False, (True, "case reason")),
    ],
)
def test_skip_precedence(
    suite_skip: bool,
    case_skip: bool,
    set_skip: bool,
    expected: tuple[bool, str | None],
) -> None:
    """Skip combines all levels; the reason follows set > case > suite."""
    suite = TestSuite(
        name="S",
        skip=suite_skip,
        skip_reason="suite reason",
        cases=[
            ParameterizedCase(
                name="p",
                body=noop,
                skip=case_skip,
                skip_reason="case reason",
                parameter_sets=[
                    ParameterSet(arguments=(1,), skip=set_skip, skip_reason="set reason")
                ],
            )
        ],
    )

    unit = flatten([suite])[0]

    assert (unit.skip, unit.skip_reason) == expected


def test_skip_without_reason_uses_defaults() -> None:
    """Skipped levels without a reason fall back to the default reasons."""
    suite = TestSuite(
        name="S",
        cases=[
            SimpleCase(name="c", body=noop, skip=True),
            ParameterizedCase(
                name="p", body=noop, parameter_sets=[ParameterSet(skip=True)]
            ),
        ],
    )

    units = flatten([suite])

    assert units[0].skip_reason == CASE_SKIP_REASON
    assert units[1].skip_reason == PARAMETER_SET_SKIP_REASON


def test_skipping_level_without_reason_defers_to_next_reason() -> None:
    """The first skipping level that has a reason supplies it."""
    suite = TestSuite(
        name="S",
        skip=True,
        skip_reason="suite disabled",
        cases=[SimpleCase(name="c", body=noop, skip=True)],
    )

    assert flatten([suite])[0].skip_reason == "suite disabled"


@pytest.mark.parametrize(
    ("timeout", "expected"), [(None, None), (-1.0, None), (0.0, None), (2.5, 2.5)]
)
def test_timeout_normalisation(timeout: float | None, expected: float | None) -> None:
    """Negative and zero timeouts mean no timeout."""
    suite = TestSuite(name="S", cases=[SimpleCase(name="c", body=noop, timeout=timeout)])

    assert flatten([suite])[0].timeout == expected


def test_flatten_empty_input() -> None:
    """No suites flatten to no units."""
    assert flatten([]) == []


def test_select_units_matches_patterns_case_insensitively() -> None:
    """select_units keeps units matching any pattern, in order."""
    suite = TestSuite(
        name="Math",
        cases=[
            SimpleCase(name="adds", body=noop),
            SimpleCase(name="divides", body=noop),
            SimpleCase(name="subtracts", body=noop),
        ],
    )
    units = flatten([suite])

    selected = select_units(units, ["math.*DS", "*.subtracts"])

    assert [u.id for u in selected] == ["Math.adds", "Math.subtracts"]


def test_select_units_without_patterns_keeps_all() -> None:
    """An empty pattern list selects every unit."""
    units = flatten([TestSuite(name="S", cases=[SimpleCase(name="c", body=noop)])])

    assert select_units(units, []) == units


def test_flatten_case_category_overrides_suite_category() -> None:
    """Units inherit the suite category unless the case declares its own."""
    suite = TestSuite(
        name="S",
        category="unit",
        cases=[
            SimpleCase(name="plain", body=noop),
            SimpleCase(name="tagged", category="slow", body=noop),
            ParameterizedCase(
                name="p",
                category="integration",
                body=noop,
                parameter_sets=[ParameterSet(arguments=(1,))],
            ),
        ],
    )

    units = flatten([suite])

    assert [u.category for u in units] == ["unit", "slow", "integration"]


def test_select_units_by_category_case_insensitively() -> None:
    """select_units keeps only units in the requested category."""
    suite = TestSuite(
        name="S",
        cases=[
            SimpleCase(name="fast", category="Unit", body=noop),
            SimpleCase(name="slow", category="integration", body=noop),
            SimpleCase(name="untagged", body=noop),
        ],
    )

    selected = select_units(flatten([suite]), category="UNIT")

    assert [u.id for u in selected] == ["S.fast"]


def test_select_units_can_exclude_skipped() -> None:
    """include_skipped=False drops units marked skip."""
    suite = TestSuite(
        name="S",
        cases=[
            SimpleCase(name="runs", body=noop),
            SimpleCase(name="skipped", skip=True, body=noop),
            ParameterizedCase(
                name="p",
                body=noop,
                parameter_sets=[
                    ParameterSet(arguments=(1,)),
                    ParameterSet(arguments=(2,), skip=True),
                ],
            ),
        ],
    )
    units = flatten([suite])

    assert len(select_units(units)) == 4
    assert [u.id for u in select_units(units, include_skipped=False)] == [
        "S.runs",
        "S.p[0]",
    ]


def test_select_units_combines_patterns_and_category() -> None:
    """A unit must match both a pattern and the category."""
    suite = TestSuite(
        name="S",
        category="unit",
        cases=[
            SimpleCase(name="keep_a", body=noop),
            SimpleCase(name="keep_b", category="slow", body=noop),
            SimpleCase(name="drop", body=noop),
        ],
    )

    selected = select_units(flatten([suite]), ["S.keep_*"], category="unit")

    assert [u.id for u in selected] == ["S.keep_a"]
