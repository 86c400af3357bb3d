"""Cooperative cancellation tokens shared between the engine and test bodies."""

import logging
import threading
from collections.abc import Callable

from testkit.execution_engine.errors import OperationCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe, set-once cancellation signal.

    Test bodies receive a token and may poll ``cancelled``, block on
    ``wait()`` or call ``raise_if_cancelled()``. The engine composes tokens
    with ``linked()`` so that a unit observes the run-level token, its own
    timeout and the stop-on-first-failure signal through a single object.
    """

    def __init__(self) -> None:
        """Initialize an uncancelled token."""
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None
        self._callbacks: list[Callable[[], None]] = []
        self._unlinks: list[Callable[[], None]] = []

    @classmethod
    def linked(cls, *parents: "CancellationToken | None") -> "CancellationToken":
        """Create a token that fires as soon as any parent fires.

        Args:
            *parents: Source tokens; ``None`` entries are ignored

        Returns:
            A new token, already cancelled if any parent is

        """
        child = cls()
        for parent in parents:
            if parent is None:
                continue
            unlink = parent.register(
                lambda source=parent: child.cancel(source.reason)
            )
            child._unlinks.append(unlink)
        return child

    @property
    def cancelled(self) -> bool:
        """Whether cancellation has been requested."""
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """The reason given when the token was cancelled."""
        return self._reason

    def cancel(self, reason: str | None = None) -> bool:
        """Request cancellation.

        Returns:
            True if this call cancelled the token, False if it already was

        """
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []

        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.warning("Cancellation callback failed", exc_info=True)
        return True

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` when the token is cancelled.

        The callback runs immediately if the token is already cancelled.

        Returns:
            A function that removes the registration

        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._unregister(callback)
        callback()
        return lambda: None

    def _unregister(self, callback: Callable[[], None]) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def close(self) -> None:
        """Detach this token from the parents it was linked to."""
        unlinks, self._unlinks = self._unlinks, []
        for unlink in unlinks:
            unlink()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` seconds elapse.

        Returns:
            True if the token is cancelled

        """
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelledError if cancellation was requested."""
        if self._event.is_set():
            raise OperationCancelledError(self._reason)
