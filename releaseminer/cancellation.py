"""Cooperative cancellation shared by transfers, extractions and job bodies.

A run derives its own token from the caller's token with
:meth:`CancellationToken.linked`. Cancelling the parent cancels the child,
cancelling the child leaves the parent alone. Nothing is interrupted; long
running work checks the token between chunks, polls, and sleeps.
"""
import threading
from typing import Callable, List, Optional

from releaseminer.exceptions import OperationCancelled


class CancellationToken:
    def __init__(self) -> None:
        self._is_cancelled = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
        self._unlink: Optional[Callable[[], None]] = None

    @classmethod
    def linked(cls, parent: Optional["CancellationToken"]) -> "CancellationToken":
        """Create a token that is cancelled whenever `parent` is."""
        token = cls()
        if parent is not None:
            token._unlink = parent.register(token.cancel)
        return token

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call `callback` once on cancellation. Returns an unregister function.

        When the token is already cancelled the callback runs immediately.
        """
        with self._lock:
            if not self._is_cancelled.is_set():
                self._callbacks.append(callback)

                def unregister():
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return unregister

        callback()
        return lambda: None

    def cancel(self) -> None:
        with self._lock:
            if self._is_cancelled.is_set():
                return
            self._is_cancelled.set()
            callbacks, self._callbacks = self._callbacks, []

        for callback in callbacks:
            callback()

    def is_cancelled(self) -> bool:
        return self._is_cancelled.is_set()

    def raise_if_cancelled(self) -> None:
        if self._is_cancelled.is_set():
            raise OperationCancelled("Operation was cancelled")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleep up to `timeout` seconds. Returns True when cancelled meanwhile."""
        return self._is_cancelled.wait(timeout)

    def sleep(self, seconds: float) -> None:
        """Like `time.sleep`, but raises `OperationCancelled` when cancelled."""
        if self._is_cancelled.wait(seconds):
            raise OperationCancelled("Operation was cancelled")

    def detach(self) -> None:
        """Stop following the parent token."""
        if self._unlink:
            self._unlink()
            self._unlink = None

    def __repr__(self):
        return f"CancellationToken(cancelled={self.is_cancelled()})"
