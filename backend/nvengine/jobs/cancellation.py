"""
Cooperative cancellation token.

The queue never terminates a job body. It only flips this token; the
body is expected to notice at or after its own suspension points and
unwind (usually by raising JobCancelledError).
"""

import asyncio
import logging
from typing import Callable, List, Optional

from .errors import JobCancelledError

logger = logging.getLogger(__name__)

CancelCallback = Callable[[Optional[str]], None]


class CancellationToken:
    """
    Shared flag + reason + subscriber callbacks.

    Usage:
        async def execute(ctx):
            await run_ffmpeg(plan, on_line=lambda _: ctx.token.raise_if_cancelled())
            ctx.token.raise_if_cancelled()
    """

    def __init__(self):
        self._cancelled = False
        self._reason: Optional[str] = None
        self._callbacks: List[CancelCallback] = []
        self._event: Optional[asyncio.Event] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> bool:
        """
        Signal cancellation.

        Idempotent: only the first call records a reason and fires
        callbacks.

        Returns:
            True if this call flipped the token
        """
        if self._cancelled:
            return False

        self._cancelled = True
        self._reason = reason
        if self._event is not None:
            self._event.set()

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(reason)
            except Exception:
                logger.exception("[CancellationToken] Cancel callback raised")
        return True

    def add_callback(self, callback: CancelCallback) -> Callable[[], None]:
        """
        Register a callback fired once on cancellation.

        Fires immediately if the token is already cancelled.

        Returns:
            A function that removes the callback
        """
        if self._cancelled:
            callback(self._reason)
            return lambda: None

        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def raise_if_cancelled(self) -> None:
        """Raise JobCancelledError if cancellation was requested."""
        if self._cancelled:
            raise JobCancelledError(self._reason or "Job cancelled", reason=self._reason)

    async def wait(self) -> Optional[str]:
        """Suspend until cancelled; returns the reason."""
        if not self._cancelled:
            if self._event is None:
                self._event = asyncio.Event()
            await self._event.wait()
        return self._reason

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled}, reason={self._reason!r})"
