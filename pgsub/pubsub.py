"""Subscription engine over a push-based notifier.

This module provides:
- PubSubEngine: The publish/subscribe capability set request handlers use
- NotificationPubSub: PubSubEngine implementation backed by a Notifier
"""

import asyncio
import errno
import logging
import weakref
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any, NewType

from .emitter import EventEmitter
from .exceptions import SubscriptionNotFoundError
from .iterator import NotificationIterator
from .transport import Notifier

LOGGER = logging.getLogger(__name__)

SubscriptionHandle = NewType("SubscriptionHandle", int)

MessageHandler = Callable[[Any], Any]


def _identity(message: Any) -> Any:
    return message


def _as_channel_list(channels: str | Iterable[str]) -> list[str]:
    if isinstance(channels, str):
        return [channels]
    return list(channels)


def _is_connection_refused(error: BaseException) -> bool:
    """Whether ``error`` reports a refused TCP connection.

    asyncio raises a plain OSError aggregating every address it tried when a
    host resolves to several of them, so the errno is also looked up in the
    message.
    """
    if isinstance(error, ConnectionRefusedError):
        return True
    if not isinstance(error, OSError):
        return False
    if error.errno == errno.ECONNREFUSED:
        return True
    message = str(error)
    return f"[Errno {errno.ECONNREFUSED}]" in message or "ECONNREFUSED" in message


@dataclass(frozen=True)
class Subscription:
    """A callback registered on a channel.

    Attributes:
        handle: Identifier returned by subscribe(), unique per engine
        channel: Channel the callback listens to
        callback: Listener attached to the notifier (wraps the caller's
            callback with the message transform)
    """

    handle: SubscriptionHandle
    channel: str
    callback: Callable[[Any], Any]


class ConnectionState(str, Enum):
    """Connection lifecycle of a NotificationPubSub."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class PubSubEngine(ABC):
    """The publish/subscribe capability set.

    Request-handling code publishes messages to channels, registers callbacks
    on channels, and consumes channels as async iterators without knowing
    which broker delivers them.
    """

    @abstractmethod
    async def publish(self, channel: str, payload: Any) -> bool:
        """Publish ``payload`` to ``channel``.

        Returns:
            Whether the message was handed to the broker.
        """
        ...

    @abstractmethod
    async def subscribe(
        self, channel: str, on_message: MessageHandler
    ) -> SubscriptionHandle:
        """Call ``on_message`` for every message published to ``channel``.

        Returns:
            A handle to pass to :meth:`unsubscribe`.
        """
        ...

    @abstractmethod
    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Remove the subscription identified by ``handle``."""
        ...

    @abstractmethod
    def async_iterator(self, channels: str | Iterable[str]) -> NotificationIterator[Any]:
        """Return an async iterator over messages published to ``channels``."""
        ...

    async def async_iterator_promised(
        self, channels: str | Iterable[str]
    ) -> NotificationIterator[Any]:
        """Like :meth:`async_iterator`, for callers that await setup first."""
        return self.async_iterator(channels)


class NotificationPubSub(PubSubEngine):
    """PubSubEngine backed by a :class:`Notifier`.

    The engine owns the notifier, the declared interest set (``topics`` plus
    the implicit ``error`` channel), the subscription table and the
    connection state. Every subscription and every iterator attaches its own
    listener to the notifier, so N consumers of a channel each receive every
    message.

    Messages pass through ``common_message_handler`` before delivery.
    Exceptions delivered by the notifier skip it so consumers can tell
    transport failures from domain messages.

    Attributes:
        notifier: The underlying notification broker
        triggers: Channels listened to on connect
        state: Current connection state

    Example:
        >>> pubsub = NotificationPubSub(InMemoryNotifier(), topics=["orders"])
        >>> await pubsub.connect()
        >>> handle = await pubsub.subscribe("orders", print)
        >>> await pubsub.publish("orders", {"id": 1})
        {'id': 1}
        True
        >>> await pubsub.unsubscribe(handle)
        >>> await pubsub.close()
    """

    def __init__(
        self,
        notifier: Notifier,
        *,
        topics: Iterable[str] = (),
        common_message_handler: MessageHandler | None = None,
    ) -> None:
        """Initialize a disconnected engine.

        Args:
            notifier: Notification broker to publish to and listen on
            topics: Channels to listen to as part of connect()
            common_message_handler: Transform applied to every non-error
                message before delivery. Defaults to identity.
        """
        self.notifier = notifier
        self.triggers = [*topics, "error"]
        self.common_message_handler = common_message_handler or _identity
        self.state = ConnectionState.DISCONNECTED
        self._subscriptions: dict[SubscriptionHandle, Subscription] = {}
        self._handle_counter = 0
        self._iterators: weakref.WeakSet[NotificationIterator[Any]] = weakref.WeakSet()

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def events(self) -> EventEmitter:
        """The notifier's lifecycle events, including ``error``."""
        return self.notifier.events

    @property
    def subscriptions(self) -> dict[SubscriptionHandle, Subscription]:
        """Snapshot of the active subscriptions, keyed by handle."""
        return dict(self._subscriptions)

    async def connect(self) -> None:
        """Connect the notifier and listen to every declared trigger.

        Three outcomes race: the notifier emitting ``connected`` (followed by
        LISTEN on every trigger), the notifier emitting ``error``, and the
        first ``notifier.connect()`` call raising. The first to settle
        decides the result; the others are ignored.

        A refused connection on the first attempt (``ConnectionRefusedError``
        or an ``OSError`` carrying ``ECONNREFUSED``) does not settle the
        race. Notifiers keep retrying in the background and the call waits
        for their ``connected`` or ``error`` signal. There is no timeout.

        Raises:
            Exception: The notifier's error if the first attempt fails for
                any other reason, if it emits ``error`` before connecting, or
                if listening to a trigger fails. The engine stays usable for
                another connect() call.
        """
        loop = asyncio.get_running_loop()
        outcome: asyncio.Future[None] = loop.create_future()
        setup_task: asyncio.Task[None] | None = None

        def settle(error: BaseException | None = None) -> None:
            if outcome.done():
                return
            if error is None:
                outcome.set_result(None)
            else:
                outcome.set_exception(error)

        def listened(task: asyncio.Task[Any]) -> None:
            if task.cancelled():
                if not outcome.done():
                    outcome.cancel()
                return
            settle(task.exception())

        def on_connected() -> None:
            nonlocal setup_task
            if outcome.done():
                return
            setup_task = loop.create_task(self._listen_to_triggers())
            setup_task.add_done_callback(listened)

        def on_error(error: BaseException) -> None:
            settle(error)

        self.state = ConnectionState.CONNECTING
        self.notifier.events.once("connected", on_connected)
        self.notifier.events.once("error", on_error)
        try:
            try:
                await self.notifier.connect()
            except Exception as err:
                if not _is_connection_refused(err):
                    settle(err)
                else:
                    LOGGER.warning(
                        "Initial connection refused, waiting for reconnection",
                        extra={"error": str(err)},
                    )
            await outcome
        except BaseException:
            self.state = ConnectionState.DISCONNECTED
            if setup_task is not None and not setup_task.done():
                setup_task.cancel()
            raise
        finally:
            self.notifier.events.off("connected", on_connected)
            self.notifier.events.off("error", on_error)

        self.state = ConnectionState.CONNECTED
        LOGGER.info("Connected", extra={"triggers": list(self.triggers)})

    async def _listen_to_triggers(self) -> None:
        await asyncio.gather(*(self.notifier.listen(trigger) for trigger in self.triggers))

    async def publish(self, channel: str, payload: Any) -> bool:
        """Publish ``payload`` to ``channel``.

        Returns False without contacting the notifier if the engine is not
        connected. Once connected it always returns True: a notifier failure
        (for example an oversized payload) is emitted on :attr:`events` as
        ``error`` instead of being raised.
        """
        if not self.connected:
            LOGGER.warning(
                "Attempted to publish before the notifier connected",
                extra={"channel": channel},
            )
            return False

        try:
            await self.notifier.notify(channel, payload)
        except Exception as err:
            LOGGER.error("Publish failed", extra={"channel": channel, "error": str(err)})
            self.notifier.events.emit("error", err)
        return True

    async def subscribe(
        self, channel: str, on_message: MessageHandler
    ) -> SubscriptionHandle:
        """Listen to ``channel`` and call ``on_message`` for each message.

        ``on_message`` may be a coroutine function; its coroutine is
        scheduled on the running loop. Handles increase monotonically and are
        never reused.
        """

        def callback(message: Any) -> Any:
            if isinstance(message, BaseException):
                return on_message(message)
            return on_message(self.common_message_handler(message))

        await self.notifier.listen(channel)
        self.notifier.notifications.on(channel, callback)
        self._handle_counter += 1
        handle = SubscriptionHandle(self._handle_counter)
        self._subscriptions[handle] = Subscription(handle, channel, callback)
        LOGGER.debug("Subscribed", extra={"channel": channel, "handle": handle})
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Remove the subscription identified by ``handle``.

        The notifier stops listening to the subscription's channel entirely,
        which also silences other subscriptions and iterators on that
        channel.

        Raises:
            SubscriptionNotFoundError: If ``handle`` is not active.
        """
        if not self.connected:
            LOGGER.warning(
                "Attempted to unsubscribe before the notifier connected",
                extra={"handle": handle},
            )

        try:
            subscription = self._subscriptions.pop(handle)
        except KeyError:
            raise SubscriptionNotFoundError(handle) from None

        self.notifier.notifications.off(subscription.channel, subscription.callback)
        await self.notifier.unlisten(subscription.channel)
        LOGGER.debug(
            "Unsubscribed", extra={"channel": subscription.channel, "handle": handle}
        )

    def async_iterator(self, channels: str | Iterable[str]) -> NotificationIterator[Any]:
        """Return an iterator over messages published to ``channels``.

        The notifier must already listen to the channels, typically because
        they were declared as ``topics``. Use :meth:`async_iterator_promised`
        for other channels.

        Raises:
            ValueError: If no channel is given.
        """
        channel_list = _as_channel_list(channels)
        if not channel_list:
            raise ValueError("at least one channel is required")
        return self._create_iterator(channel_list)

    async def async_iterator_promised(
        self, channels: str | Iterable[str]
    ) -> NotificationIterator[Any]:
        """Listen to ``channels`` and return an iterator over them.

        Unlike :meth:`async_iterator` the channels need not be declared
        topics, and the channel set may be empty.
        """
        channel_list = _as_channel_list(channels)
        for channel in channel_list:
            await self.notifier.listen(channel)
        return self._create_iterator(channel_list)

    def _create_iterator(self, channels: list[str]) -> NotificationIterator[Any]:
        iterator: NotificationIterator[Any] = NotificationIterator(
            self.notifier, channels, self.common_message_handler
        )
        self._iterators.add(iterator)
        return iterator

    async def close(self) -> None:
        """Unlisten every channel, end live iterators and close the notifier."""
        await self.notifier.unlisten_all()

        for iterator in list(self._iterators):
            await iterator.aclose()
        for subscription in self._subscriptions.values():
            self.notifier.notifications.off(subscription.channel, subscription.callback)
        self._subscriptions.clear()

        await self.notifier.close()
        self.state = ConnectionState.DISCONNECTED
        LOGGER.info("Closed")

    async def __aenter__(self) -> "NotificationPubSub":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
