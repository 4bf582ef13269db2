"""Push-to-pull adapter over notifier channels."""

import asyncio
import logging
from collections import deque
from collections.abc import Callable, Iterable
from typing import Any, Generic, TypeVar

from .transport import Notifier

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# Settles pending pulls on teardown.
_DONE = object()


def _identity(message: Any) -> Any:
    return message


class NotificationIterator(Generic[T]):
    """Async iterator fed by one or more notifier channels.

    The iterator registers :meth:`push` as a listener for every channel on
    construction. Pushed values are queued until a consumer pulls them, and
    pulls are queued until a value arrives. At most one of the two queues is
    non-empty at any time, so values are delivered in arrival order and no
    waiting consumer is skipped. Values from several channels are merged in
    arrival order with no channel tag.

    Closing the iterator (:meth:`aclose`, :meth:`athrow`, or leaving an
    ``async with`` block) settles every waiting pull as exhausted, drops the
    buffer and detaches the listeners from the notifier. Closing is
    irreversible; later pulls raise ``StopAsyncIteration`` right away.

    The buffer is unbounded. Consumers that fall behind grow it.

    Attributes:
        channels: The channels this iterator listens to
        listening: False once the iterator has been closed

    Example:
        >>> iterator = NotificationIterator(notifier, ["orders", "refunds"])
        >>> async for message in iterator:
        ...     handle(message)
    """

    def __init__(
        self,
        notifier: Notifier,
        channels: Iterable[str],
        transform: Callable[[Any], T] | None = None,
    ) -> None:
        """Attach the iterator to ``channels`` on ``notifier``.

        Args:
            notifier: Notifier whose ``notifications`` feed the iterator
            channels: Channel names to merge
            transform: Applied to every non-exception value on arrival.
                Exceptions are delivered untransformed.
        """
        self.notifier = notifier
        self.channels = tuple(dict.fromkeys(channels))
        self.listening = True
        self._transform = transform or _identity
        self._pending: deque[asyncio.Future[Any]] = deque()
        self._buffered: deque[Any] = deque()

        for channel in self.channels:
            notifier.notifications.on(channel, self.push)

    @property
    def pending_count(self) -> int:
        """Number of pulls waiting for a value."""
        return sum(1 for waiter in self._pending if not waiter.done())

    @property
    def buffered_count(self) -> int:
        """Number of values waiting for a pull."""
        return len(self._buffered)

    def push(self, value: Any) -> None:
        """Hand ``value`` to the oldest waiting pull, or buffer it."""
        if not self.listening:
            return
        if not isinstance(value, BaseException):
            value = self._transform(value)

        while self._pending:
            waiter = self._pending.popleft()
            # Pulls cancelled by their consumer stay queued until reached here.
            if not waiter.done():
                waiter.set_result(value)
                return
        self._buffered.append(value)

    def __aiter__(self) -> "NotificationIterator[T]":
        return self

    async def __anext__(self) -> T:
        if not self.listening:
            raise StopAsyncIteration

        if self._buffered:
            value = self._buffered.popleft()
        else:
            waiter = asyncio.get_running_loop().create_future()
            self._pending.append(waiter)
            value = await waiter

        if value is _DONE:
            raise StopAsyncIteration
        return value

    async def aclose(self) -> None:
        """Close the iterator. Calling it again has no effect."""
        self._teardown()

    async def athrow(self, error: BaseException) -> T:
        """Close the iterator and raise ``error`` to the caller."""
        self._teardown()
        raise error

    async def __aenter__(self) -> "NotificationIterator[T]":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    def _teardown(self) -> None:
        if not self.listening:
            return
        self.listening = False

        for channel in self.channels:
            self.notifier.notifications.off(channel, self.push)

        while self._pending:
            waiter = self._pending.popleft()
            if not waiter.done():
                waiter.set_result(_DONE)
        self._buffered.clear()
        LOGGER.debug("Iterator closed", extra={"channels": list(self.channels)})
