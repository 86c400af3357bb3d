"""CLI entry point for running test suites from YAML manifests."""

import asyncio
import contextlib
import json
import logging
import signal
import sys
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError

from testkit.execution_engine.cancellation import CancellationToken
from testkit.execution_engine.engine import run_suites
from testkit.execution_engine.errors import RunCancelledError
from testkit.execution_engine.models.descriptors import TestSuite
from testkit.execution_engine.models.options import ExecutionOptions
from testkit.execution_engine.models.outcome import RunReport
from testkit.execution_engine.suite_loader import load_all_suites

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
    force=True,
)
logger = logging.getLogger(__name__)

app = typer.Typer()


@app.command()
def main(  # noqa: PLR0913
    manifests: list[Path] = typer.Argument(..., help="Suite manifest files (YAML)"),  # noqa: B008
    parallel: bool = typer.Option(
        True, "--parallel/--sequential", help="Run units concurrently"
    ),
    max_concurrency: int | None = typer.Option(
        None,
        envvar="TESTKIT_MAX_CONCURRENCY",
        help="Maximum units in flight (default: CPU count)",
    ),
    stop_on_first_failure: bool = typer.Option(
        False, help="Stop dispatching units after the first failure"
    ),
    global_timeout: float | None = typer.Option(
        None, envvar="TESTKIT_GLOBAL_TIMEOUT", help="Deadline for the whole run (s)"
    ),
    filters: list[str] = typer.Option(  # noqa: B008
        [], "--filter", help="Only run units whose id matches this pattern"
    ),
    category: str | None = typer.Option(
        None, "--category", help="Only run units in this category"
    ),
    exclude_skipped: bool = typer.Option(
        False, "--exclude-skipped", help="Leave skipped units out of the report"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Run the test suites declared in one or more manifests."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        options = _build_options(
            parallel, max_concurrency, stop_on_first_failure, global_timeout
        )
    except ValidationError as e:
        logger.error(f"Invalid execution options: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    try:
        suites = load_all_suites(manifests)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Failed to load suites: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    try:
        report = asyncio.run(
            _run(suites, options, filters, category, not exclude_skipped)
        )
    except (RunCancelledError, KeyboardInterrupt):
        logger.warning("Test run aborted")
        raise typer.Abort()

    if report.outcomes:
        _log_report(report)
    else:
        logger.info("No tests to run")
    typer.echo(json.dumps(report.model_dump(), indent=2, default=_json_default))

    if not report.summary.all_passed:
        logger.error(
            f"Tests failed: {report.summary.failed}/{report.summary.total}"
        )
        raise typer.Exit(code=1)


def _build_options(
    parallel: bool,
    max_concurrency: int | None,
    stop_on_first_failure: bool,
    global_timeout: float | None,
) -> ExecutionOptions:
    settings: dict[str, Any] = {
        "parallel": parallel,
        "stop_on_first_failure": stop_on_first_failure,
        "global_timeout": global_timeout,
    }
    if max_concurrency is not None:
        settings["max_concurrency"] = max_concurrency
    return ExecutionOptions(**settings)


async def _run(
    suites: Sequence[TestSuite],
    options: ExecutionOptions,
    filters: Sequence[str],
    category: str | None,
    include_skipped: bool,
) -> RunReport:
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGTERM, token.cancel, "SIGTERM received")
    try:
        return await run_suites(
            suites,
            options,
            token,
            filters,
            category=category,
            include_skipped=include_skipped,
        )
    finally:
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.remove_signal_handler(signal.SIGTERM)


def _log_report(report: RunReport) -> None:
    logger.info("=" * 80)
    logger.info("Test Results Summary:")
    logger.info("=" * 80)
    for outcome in report.outcomes:
        if outcome.status == "passed":
            logger.info(f"✓ {outcome.id} ({outcome.duration * 1000:.0f}ms)")
        elif outcome.status == "skipped":
            logger.info(f"⊝ {outcome.id}: skipped ({outcome.skip_reason})")
        else:
            logger.error(f"✗ {outcome.id}: {outcome.error_kind}")
            if outcome.error_message:
                logger.error(f"  Message: {outcome.error_message}")

    summary = report.summary
    logger.info(
        f"Total: {summary.total}, passed: {summary.passed}, "
        f"failed: {summary.failed}, skipped: {summary.skipped}, "
        f"duration: {summary.total_duration:.2f}s, "
        f"pass rate: {summary.pass_rate:.1%}"
    )


def _json_default(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


if __name__ == "__main__":  # pragma: no cover
    app()
