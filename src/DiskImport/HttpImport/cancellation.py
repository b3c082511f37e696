"""Cooperative cancellation primitives owned by an import data source.

An import blocks on two things: the streaming HTTP read that feeds format
classification and the external converter process.  Both are aborted through a
:class:`CancellationToken`; callbacks registered on the token release the
underlying resource (closing the HTTP response, killing the converter) as soon
as cancellation is requested.  :class:`CancelOnce` wraps the token in the
single-fire, lock-guarded action a data source exposes from ``close()`` so a
watchdog thread and the normal completion path can both call it safely.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

__all__ = ["CancellationToken", "CancelOnce"]


class CancellationToken:
    """Thread-safe cancellation token with release callbacks.

    Examples:
        >>> token = CancellationToken()
        >>> released = []
        >>> token.add_callback(lambda: released.append(True))
        >>> token.cancel()
        >>> token.is_cancelled(), released
        (True, [True])
    """

    def __init__(self) -> None:
        """Initialize a new cancellation token."""
        self._is_cancelled = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    def cancel(self) -> None:
        """Signal cancellation and run registered callbacks exactly once."""
        with self._lock:
            if self._is_cancelled.is_set():
                return
            self._is_cancelled.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:  # noqa: BLE001 - cancellation never raises
                logger.debug("cancellation callback failed", exc_info=True)

    def is_cancelled(self) -> bool:
        """Check if cancellation has been requested.

        Returns:
            True if cancellation has been requested, False otherwise.
        """
        return self._is_cancelled.is_set()

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Register ``callback`` to run on cancellation.

        Callbacks added after cancellation run immediately in the caller's
        thread.
        """

        with self._lock:
            if not self._is_cancelled.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        """Unregister ``callback`` if it is still pending."""

        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass


class CancelOnce:
    """Single-fire guarded cancellation action.

    Holds a :class:`CancellationToken` until the first call to :meth:`cancel`,
    which fires the token and drops the reference.  Later or concurrent calls
    find no token and return without doing anything.
    """

    def __init__(self, token: Optional[CancellationToken] = None) -> None:
        self._lock = threading.Lock()
        self._token: Optional[CancellationToken] = token or CancellationToken()
        self._observed = self._token

    @property
    def token(self) -> CancellationToken:
        """Return the token controlled by this action, even after it fired."""

        return self._observed

    @property
    def fired(self) -> bool:
        with self._lock:
            return self._token is None

    def cancel(self) -> bool:
        """Fire the action.

        Returns:
            True on the call that performed cancellation, False otherwise.
        """

        with self._lock:
            if self._token is None:
                return False
            self._token.cancel()
            self._token = None
            return True
