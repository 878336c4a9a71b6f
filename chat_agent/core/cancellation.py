"""Cooperative cancellation for conductor turns.

A CancellationToken is shared by everything that runs on behalf of one
user-initiated answer. Suspension points poll it explicitly, and any in-flight
model stream or tool call is wired to it through an AbortController so that
cancelling the token also interrupts work that is already awaiting.
"""

import asyncio
import logging
import threading
from typing import Any, AsyncIterator, Awaitable, Optional

logger = logging.getLogger(__name__)


class AbortError(Exception):
    """Raised when an operation guarded by an AbortController is aborted."""

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(reason or "Operation aborted")


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class AbortController:
    """Abort signal for a single in-flight operation.

    ``abort`` may be called from any thread; the wake-up is handed to the
    event loop the guarded operation runs on.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._event = asyncio.Event()
        self._aborted = False
        self._reason: Optional[str] = None
        self._loop = _running_loop()

    @property
    def aborted(self) -> bool:
        with self._lock:
            return self._aborted

    @property
    def reason(self) -> Optional[str]:
        with self._lock:
            return self._reason

    def abort(self, reason: Optional[str] = None):
        """Abort the guarded operation. Only the first reason is kept."""
        with self._lock:
            if self._aborted:
                return
            self._aborted = True
            self._reason = reason
            loop = self._loop

        logger.debug(f"Abort controller triggered: {reason or 'no reason'}")
        if loop is not None and not loop.is_closed() and _running_loop() is not loop:
            loop.call_soon_threadsafe(self._event.set)
        else:
            self._event.set()

    async def run(self, awaitable: Awaitable[Any]) -> Any:
        """Await an operation unless the controller is aborted first.

        Args:
            awaitable: Coroutine or future to wait for

        Returns:
            Result of the awaitable

        Raises:
            AbortError: If the controller was aborted before the operation finished
        """
        with self._lock:
            self._loop = asyncio.get_running_loop()
        if self.aborted:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise AbortError(self.reason)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        raise AbortError(self._reason)

    async def iterate(self, source) -> AsyncIterator[Any]:
        """Iterate an async iterable, aborting the pending item on abort."""
        iterator = source.__aiter__()
        while True:
            try:
                item = await self.run(_next_item(iterator))
            except StopAsyncIteration:
                return
            yield item


async def _next_item(iterator: AsyncIterator[Any]) -> Any:
    return await iterator.__anext__()


class CancellationToken:
    """Cancellation state shared across every suspendable step of a turn.

    Policy for repeated cancellation: the first reason wins. Calling
    ``cancel()`` on a token that is already cancelled is a no-op; ``reset()``
    must be called before the token can be cancelled with a new reason.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._is_cancelled = False
        self._cancel_reason: Optional[str] = None
        self._abort_controller: Optional[AbortController] = None

    @property
    def is_cancelled(self) -> bool:
        with self._lock:
            return self._is_cancelled

    @property
    def cancel_reason(self) -> Optional[str]:
        with self._lock:
            return self._cancel_reason

    @property
    def abort_controller(self) -> Optional[AbortController]:
        with self._lock:
            return self._abort_controller

    def cancel(self, reason: Optional[str] = None):
        """Cancel the ongoing operation with an optional reason."""
        with self._lock:
            if self._is_cancelled:
                return
            self._is_cancelled = True
            self._cancel_reason = reason
            controller = self._abort_controller

        logger.info(f"Cancellation requested: {reason or 'User cancelled'}")
        if controller is not None:
            controller.abort(reason)

    def set_abort_controller(self, controller: AbortController):
        """Attach the abort controller of the current in-flight operation.

        A controller attached to an already-cancelled token is aborted at once.
        """
        with self._lock:
            self._abort_controller = controller
            cancelled = self._is_cancelled
            reason = self._cancel_reason

        if cancelled:
            controller.abort(reason)

    def release_abort_controller(self, controller: AbortController):
        """Detach a controller if it is still the attached one."""
        with self._lock:
            if self._abort_controller is controller:
                self._abort_controller = None

    def reset(self):
        """Reset the token to the uncancelled state."""
        with self._lock:
            self._is_cancelled = False
            self._cancel_reason = None
            self._abort_controller = None
