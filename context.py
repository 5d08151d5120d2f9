from dataclasses import dataclass, field
from typing import Awaitable, TypeVar
import asyncio
import logging


logger = logging.getLogger(__name__)

T = TypeVar('T')


class ScanCancelled(Exception):
    """Raised when a batch run is cancelled while work is in flight."""


@dataclass
class ScanContext:
    """State owned by one batch run and passed to every stage."""

    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        if not self.cancelled:
            logger.info('Scan cancellation requested')
        self.cancel_event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ScanCancelled('Scan cancelled')

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` unless the run is cancelled first.

        On cancellation the underlying task is cancelled and awaited, so
        its cleanup (closing a browser, an HTTP client) finishes before
        ScanCancelled is raised. A coroutine that never got to run is closed.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise ScanCancelled('Scan cancelled')

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.cancel_event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        if task.cancelled():
            raise ScanCancelled('Scan cancelled')
        return task.result()
