"""Cooperative cancellation for long-running pipeline steps."""

from __future__ import annotations

import threading

from .errors import PipelineCancelled

__all__ = ["CancelToken"]


class CancelToken:
    """Signal shared by downloads, tool invocations and file enumeration."""

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        """Return ``True`` once :meth:`cancel` has been called."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation of the in-flight operation."""
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise :class:`PipelineCancelled` when cancellation was requested."""
        if self._event.is_set():
            raise PipelineCancelled

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds, returning early when cancelled."""
        return self._event.wait(timeout)
