"""Execution engine: runs flattened units and records one outcome per unit."""

import asyncio
import inspect
import logging
import threading
import time
import traceback
from collections.abc import Callable, Iterator, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any, get_args

from testkit.execution_engine.aggregator import build_report, order_outcomes
from testkit.execution_engine.cancellation import CancellationToken
from testkit.execution_engine.errors import (
    ErrorKind,
    OperationCancelledError,
    RunCancelledError,
    UnitSkipped,
)
from testkit.execution_engine.flattener import (
    CASE_SKIP_REASON,
    ExecutionUnit,
    flatten,
    select_units,
)
from testkit.execution_engine.models.descriptors import TestSuite
from testkit.execution_engine.models.options import ExecutionOptions
from testkit.execution_engine.models.outcome import RunReport, TestOutcome

logger = logging.getLogger(__name__)

STOPPED_REASON = "Run stopped after first failure"

OutcomeHook = Callable[[TestOutcome], None]


class _RunState:
    """Mutable state owned by a single ``execute`` invocation."""

    def __init__(
        self,
        units: Sequence[ExecutionUnit],
        run_token: CancellationToken,
        deadline: float | None,
    ) -> None:
        self.units = units
        self.run_token = run_token
        self.stop_token = CancellationToken()
        self.deadline = deadline
        self.outcomes: list[TestOutcome] = []
        self.finished = False
        self.deadline_reported = False


class ExecutionEngine:
    """Runs execution units under a sequential or bounded-parallel policy.

    Sequential runs start units in flattened order and settle each one
    before the next, so ``stop_on_first_failure`` stops exactly after the
    first failed unit. Parallel runs only stop *dispatching* once a failure
    is seen: units already in flight run to completion and still report an
    outcome. Their cancellation token does fire, so bodies that poll it may
    end early; such units are reported as skipped.

    Outcomes are always returned in flattened order, whatever the order in
    which units actually completed.
    """

    def __init__(
        self,
        options: ExecutionOptions | None = None,
        on_unit_settled: OutcomeHook | None = None,
    ) -> None:
        """Initialize the engine with run options and an optional settle hook."""
        self.options = options or ExecutionOptions()
        self.on_unit_settled = on_unit_settled

    async def execute(
        self,
        units: Sequence[ExecutionUnit],
        cancellation: CancellationToken | None = None,
    ) -> list[TestOutcome]:
        """Execute units and return their outcomes.

        Args:
            units: Flattened execution units
            cancellation: Run-level cancellation token supplied by the caller

        Returns:
            One outcome per scheduled unit, in flattened order

        Raises:
            RunCancelledError: If ``cancellation`` fires before the run settles

        """
        run_token = cancellation or CancellationToken()
        if run_token.cancelled:
            raise RunCancelledError(run_token.reason)

        loop = asyncio.get_running_loop()
        deadline = None
        if self.options.global_timeout is not None:
            deadline = loop.time() + self.options.global_timeout
        state = _RunState(units, run_token, deadline)

        sequential = not self.options.parallel or len(units) <= 1
        logger.info(
            f"Executing {len(units)} units "
            f"({'sequential' if sequential else 'parallel'}, "
            f"max_concurrency={self.options.max_concurrency}, "
            f"stop_on_first_failure={self.options.stop_on_first_failure})"
        )

        task = asyncio.current_task()

        def abort() -> None:
            if not state.finished and task is not None:
                task.cancel()

        unregister = run_token.register(lambda: loop.call_soon_threadsafe(abort))
        try:
            if sequential:
                await self._run_sequential(state)
            else:
                await self._run_parallel(state)
        except asyncio.CancelledError:
            if not run_token.cancelled:
                raise
            if task is not None:
                task.uncancel()
            logger.warning(f"Test run cancelled: {run_token.reason or 'no reason'}")
            raise RunCancelledError(run_token.reason) from None
        finally:
            state.finished = True
            unregister()

        if run_token.cancelled:
            logger.warning(f"Test run cancelled: {run_token.reason or 'no reason'}")
            raise RunCancelledError(run_token.reason)

        logger.info(f"Test execution completed: {len(state.outcomes)} outcomes")
        return order_outcomes(state.outcomes, units)

    async def _run_sequential(self, state: _RunState) -> None:
        for unit in state.units:
            if not self._can_dispatch(state):
                break
            outcome = await self._run_unit(unit, state)
            self._settle(state, outcome)

    async def _run_parallel(self, state: _RunState) -> None:
        pending = iter(state.units)
        workers = min(self.options.max_concurrency, len(state.units))
        async with asyncio.TaskGroup() as group:
            for n in range(workers):
                group.create_task(
                    self._worker(pending, state), name=f"testkit-worker-{n}"
                )

    async def _worker(
        self, pending: Iterator[ExecutionUnit], state: _RunState
    ) -> None:
        # Workers share one iterator; only the event loop thread advances it.
        for unit in pending:
            if not self._can_dispatch(state):
                return
            outcome = await self._run_unit(unit, state)
            self._settle(state, outcome)

    def _can_dispatch(self, state: _RunState) -> bool:
        if state.stop_token.cancelled:
            return False
        if state.deadline is not None:
            if asyncio.get_running_loop().time() >= state.deadline:
                if not state.deadline_reported:
                    state.deadline_reported = True
                    logger.warning(
                        f"Global timeout of {self.options.global_timeout:g}s "
                        "reached, no further units will be dispatched"
                    )
                return False
        return True

    def _settle(self, state: _RunState, outcome: TestOutcome | None) -> None:
        if outcome is None:
            return
        state.outcomes.append(outcome)
        logger.debug(f"Unit settled: {outcome.id} = {outcome.status}")

        if self.options.stop_on_first_failure and outcome.status == "failed":
            if state.stop_token.cancel(STOPPED_REASON):
                logger.info(f"Stopping dispatch after failure of {outcome.id}")

        if self.on_unit_settled is not None:
            try:
                self.on_unit_settled(outcome)
            except Exception:
                logger.warning(
                    f"on_unit_settled hook failed for {outcome.id}", exc_info=True
                )

    async def _run_unit(
        self, unit: ExecutionUnit, state: _RunState
    ) -> TestOutcome | None:
        if unit.skip:
            return _skipped(unit, unit.skip_reason or CASE_SKIP_REASON)

        deadline, timeout_message = self._unit_deadline(unit, state)
        unit_token = CancellationToken.linked(state.run_token, state.stop_token)
        start_time = datetime.now(UTC)
        started = time.perf_counter()
        error: BaseException | None = None
        scope = asyncio.timeout_at(deadline)

        try:
            async with scope:
                await _invoke(unit, unit_token)
        except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
            raise
        except BaseException as e:
            error = e
        finally:
            # Also set when the body swallowed its cancellation and returned.
            timed_out = scope.expired()
            if timed_out:
                unit_token.cancel(timeout_message)
            unit_token.close()

        duration = time.perf_counter() - started

        if state.run_token.cancelled:
            # Abandoned: the caller stopped observing this run.
            return None
        if timed_out:
            return _failed(
                unit,
                start_time,
                duration,
                message=timeout_message,
                kind="timeout",
            )
        if error is None:
            return _outcome(unit, "passed", start_time, duration)
        if isinstance(error, UnitSkipped):
            return _skipped(unit, error.reason, start_time, duration)
        if isinstance(error, OperationCancelledError) and state.stop_token.cancelled:
            return _skipped(unit, STOPPED_REASON, start_time, duration)
        return _failed_from_exception(unit, start_time, duration, error)

    def _unit_deadline(
        self, unit: ExecutionUnit, state: _RunState
    ) -> tuple[float | None, str]:
        """Return the loop time at which the unit times out, and the message."""
        now = asyncio.get_running_loop().time()
        unit_deadline = None if unit.timeout is None else now + unit.timeout
        unit_message = f"Test exceeded timeout of {unit.timeout or 0:g}s"

        if state.deadline is None or (
            unit_deadline is not None and unit_deadline <= state.deadline
        ):
            return unit_deadline, unit_message
        return (
            state.deadline,
            f"Test run exceeded global timeout of {self.options.global_timeout:g}s",
        )


async def execute(
    units: Sequence[ExecutionUnit],
    options: ExecutionOptions | None = None,
    cancellation: CancellationToken | None = None,
    on_unit_settled: OutcomeHook | None = None,
) -> list[TestOutcome]:
    """Execute units with a one-off ExecutionEngine."""
    engine = ExecutionEngine(options, on_unit_settled)
    return await engine.execute(units, cancellation)


async def run_suites(
    suites: Sequence[TestSuite],
    options: ExecutionOptions | None = None,
    cancellation: CancellationToken | None = None,
    patterns: Sequence[str] = (),
    on_unit_settled: OutcomeHook | None = None,
    category: str | None = None,
    include_skipped: bool = True,
) -> RunReport:
    """Flatten, filter and execute suites, returning the packaged report."""
    units = select_units(flatten(suites), patterns, category, include_skipped)
    logger.info(f"Flattened {len(suites)} suites into {len(units)} units")
    outcomes = await execute(units, options, cancellation, on_unit_settled)
    return build_report(outcomes)


async def _invoke(unit: ExecutionUnit, token: CancellationToken) -> None:
    if unit.is_async:
        await unit.invoke(token)
        return

    result = await _call_in_thread(unit.invoke, token, name=f"testkit:{unit.id}")
    if inspect.isawaitable(result):
        await result


async def _call_in_thread(
    func: Callable[..., Any], *args: Any, name: str
) -> Any:
    """Run a blocking callable on its own daemon thread.

    Cancelling the awaiting task stops waiting for the result; the thread
    itself is left to finish in the background.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[Any] = loop.create_future()

    def settle(result: Any, exc: BaseException | None) -> None:
        if future.cancelled():
            return
        if exc is not None:
            future.set_exception(exc)
        else:
            future.set_result(result)

    def target() -> None:
        try:
            result = func(*args)
        except BaseException as exc:
            outcome: tuple[Any, BaseException | None] = (None, exc)
        else:
            outcome = (result, None)
        try:
            loop.call_soon_threadsafe(settle, *outcome)
        except RuntimeError:
            logger.debug(f"Event loop closed before {name} finished")

    threading.Thread(target=target, name=name, daemon=True).start()
    return await future


def _skipped(
    unit: ExecutionUnit,
    reason: str,
    start_time: datetime | None = None,
    duration: float = 0.0,
) -> TestOutcome:
    return _outcome(
        unit,
        "skipped",
        start_time or datetime.now(UTC),
        duration,
        skip_reason=reason,
    )


def _failed(
    unit: ExecutionUnit,
    start_time: datetime,
    duration: float,
    message: str,
    kind: ErrorKind,
    error_type: str | None = None,
    stack_trace: str | None = None,
) -> TestOutcome:
    return _outcome(
        unit,
        "failed",
        start_time,
        duration,
        error_message=message,
        error_kind=kind,
        error_type=error_type,
        stack_trace=stack_trace,
    )


def _failed_from_exception(
    unit: ExecutionUnit, start_time: datetime, duration: float, error: BaseException
) -> TestOutcome:
    error_class = type(error)
    return _failed(
        unit,
        start_time,
        duration,
        message=str(error) or error_class.__name__,
        kind=_error_kind(error),
        error_type=f"{error_class.__module__}.{error_class.__qualname__}",
        stack_trace="".join(traceback.format_exception(error)),
    )


def _error_kind(error: BaseException) -> ErrorKind:
    declared = getattr(error, "error_kind", None)
    if declared in get_args(ErrorKind):
        return declared  # type: ignore[no-any-return]
    if isinstance(error, AssertionError):
        return "assertion-failure"
    return "unexpected-exception"


def _outcome(
    unit: ExecutionUnit,
    status: str,
    start_time: datetime,
    duration: float,
    **details: Any,
) -> TestOutcome:
    duration = max(duration, 0.0)
    return TestOutcome(
        id=unit.id,
        suite_name=unit.suite_name,
        case_name=unit.case_name,
        display_name=unit.display_name,
        status=status,  # type: ignore[arg-type]
        start_time=start_time,
        end_time=start_time + timedelta(seconds=duration),
        duration=duration,
        arguments=unit.arguments,
        **details,
    )
