"""
Cooperative Cancellation

Provides an explicit cancellation token that is handed to every restore
component at construction time. Components check it at each suspension
point (metadata fetch, streaming copy, process wait) instead of relying on
ambient task cancellation, so each one stays testable on its own.
"""

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from ..exceptions import RestoreCancelledError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CancellationToken:
    """
    Cooperative cancellation signal shared by one restore run.

    Example:
        ```python
        token = CancellationToken()
        loop.add_signal_handler(signal.SIGTERM, token.cancel)

        # At a suspension point
        token.raise_if_cancelled("copy data.wt")
        data = await token.run(reader.read(1024), "read data.wt")
        ```
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancellation requested") -> None:
        """Signal cancellation. Subsequent calls keep the first reason."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        logger.warning(f"Restore cancellation requested: {reason}")

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, operation: str = "operation") -> None:
        """
        Raise if cancellation has been requested.

        Raises:
            RestoreCancelledError: If the token is cancelled
        """
        if self._event.is_set():
            raise RestoreCancelledError(
                f"{operation} cancelled: {self.reason}",
                context={"operation": operation}
            )

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._event.wait()

    async def run(self, awaitable: Awaitable[T], operation: str = "operation") -> T:
        """
        Await ``awaitable`` unless the token is cancelled first.

        If cancellation wins the race, the pending operation is cancelled and
        awaited before ``RestoreCancelledError`` is raised.

        Args:
            awaitable: Operation to run
            operation: Human-readable name for error messages

        Returns:
            Result of the awaitable

        Raises:
            RestoreCancelledError: If the token is cancelled before completion
        """
        task = asyncio.ensure_future(awaitable)
        if self._event.is_set():
            task.cancel()
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task.done() and not task.cancelled():
            waiter.cancel()
            return task.result()

        task.cancel()
        waiter.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"{operation} raised after cancellation: {e}")
        self.raise_if_cancelled(operation)
        # Only reachable if the awaitable cancelled itself
        raise RestoreCancelledError(f"{operation} was cancelled", context={"operation": operation})
