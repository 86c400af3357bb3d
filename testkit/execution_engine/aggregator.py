"""Order and summarize unit outcomes."""

from collections.abc import Iterable, Sequence

from testkit.execution_engine.flattener import ExecutionUnit
from testkit.execution_engine.models.outcome import RunReport, Summary, TestOutcome


def summarize(outcomes: Iterable[TestOutcome]) -> Summary:
    """Count outcomes by status and total their durations."""
    total = passed = failed = skipped = 0
    total_duration = 0.0
    for outcome in outcomes:
        total += 1
        total_duration += outcome.duration
        if outcome.status == "passed":
            passed += 1
        elif outcome.status == "failed":
            failed += 1
        else:
            skipped += 1

    return Summary(
        total=total,
        passed=passed,
        failed=failed,
        skipped=skipped,
        total_duration=total_duration,
    )


def order_outcomes(
    outcomes: Iterable[TestOutcome], units: Sequence[ExecutionUnit]
) -> list[TestOutcome]:
    """Sort outcomes into flattened unit order.

    Outcomes whose id is not among ``units`` sort last, by id.
    """
    positions = {unit.id: unit.index for unit in units}
    missing = len(positions)
    return sorted(
        outcomes,
        key=lambda outcome: (positions.get(outcome.id, missing), outcome.id),
    )


def build_report(outcomes: Sequence[TestOutcome]) -> RunReport:
    """Package outcomes with their summary for presentation."""
    return RunReport(summary=summarize(outcomes), outcomes=list(outcomes))
