"""Cancellation tokens passed through poller and IMAP calls.

What:
  Provide :class:`CallContext`, a small token combining an explicit cancel
  switch with an optional monotonic deadline.

Why:
  IMAP operations block on the network. Callers (the scheduler, the CLI) need
  to bound those waits and to abort a cycle early without leaving a client
  mutex held or a watermark half written.

How:
  The token wraps a :class:`threading.Event` and an absolute deadline taken
  from :func:`time.monotonic`. Components call :meth:`CallContext.check` at
  their suspension points and :meth:`CallContext.clamp` to shrink their own
  timeouts to whatever budget remains.

Interfaces:
  :class:`CallContext`, :func:`ensure_context`.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Optional

from .errors import CancelledError


@dataclass
class CallContext:
    """Cancellation switch plus optional deadline.

    Attributes:
      deadline: Absolute :func:`time.monotonic` value after which the context
        counts as cancelled, or ``None`` for no deadline.
    """

    deadline: Optional[float] = None
    _event: threading.Event = field(default_factory=threading.Event, repr=False)

    @classmethod
    def with_timeout(cls, seconds: float) -> "CallContext":
        """Return a context that expires ``seconds`` from now."""

        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, ``None`` when unbounded."""

        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def clamp(self, timeout: float) -> float:
        """Return ``timeout`` reduced to the remaining deadline when shorter."""

        remaining = self.remaining()
        if remaining is None:
            return timeout
        return min(timeout, remaining)

    def check(self) -> None:
        """Raise :class:`CancelledError` when the context is no longer live."""

        if self._event.is_set():
            raise CancelledError("operation cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise CancelledError("operation deadline exceeded")


def ensure_context(ctx: Optional[CallContext]) -> CallContext:
    """Return ``ctx`` or a fresh, never-cancelled context when it is ``None``."""

    return ctx if ctx is not None else CallContext()
