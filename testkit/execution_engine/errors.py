"""Exceptions raised by the execution engine and by test bodies."""

from typing import Literal

ErrorKind = Literal["assertion-failure", "timeout", "unexpected-exception"]


class ExecutionEngineError(Exception):
    """Base class for errors raised by the execution engine."""


class RunCancelledError(ExecutionEngineError):
    """The caller cancelled the run before every unit settled."""

    def __init__(self, reason: str | None = None) -> None:
        """Initialize with the reason the run was cancelled."""
        super().__init__(reason or "Test run cancelled")
        self.reason = reason


class OperationCancelledError(ExecutionEngineError):
    """Raised inside a test body when its cancellation token has fired."""

    def __init__(self, reason: str | None = None) -> None:
        """Initialize with the reason carried by the token."""
        super().__init__(reason or "Operation cancelled")
        self.reason = reason


class UnitSkipped(Exception):  # noqa: N818
    """Raised by a test body to mark itself as skipped at run time."""

    def __init__(self, reason: str = "Skipped at run time") -> None:
        """Initialize with the skip reason reported in the outcome."""
        super().__init__(reason)
        self.reason = reason
