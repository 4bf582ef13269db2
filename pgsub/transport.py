"""Notifier interface and in-memory implementation.

This module provides:
- Notifier: Abstract interface for a push-based notification broker
- InMemoryNotifier: Single-process implementation for testing
"""

import json
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from .emitter import EventEmitter
from .exceptions import NotifierClosedError, PayloadTooLargeError

DEFAULT_PAYLOAD_LIMIT = 8000


class Notifier(ABC):
    """Abstract interface for a push-based notification broker.

    A Notifier delivers named-channel messages asynchronously. It offers no
    buffering guarantee: a message is only seen by listeners registered, and
    channels being listened to, at the moment it arrives.

    Two emitters make up its event stream:
    - ``events`` emits ``connected`` (no arguments) once a connection is
      established and ``error`` (one exception argument) for failures
      outside of a direct call.
    - ``notifications`` emits one event per channel name whose single
      argument is the parsed payload (or an exception if parsing failed).

    Implementations might use:
    - Postgres LISTEN/NOTIFY (see pgsub.integrations.postgres)
    - In-memory fan-out (for testing or single-process apps)
    """

    def __init__(self) -> None:
        self.events = EventEmitter()
        self.notifications = EventEmitter()

    @abstractmethod
    async def connect(self) -> None:
        """Establish the connection and emit ``connected``.

        Raises:
            Exception: If the first attempt fails. Implementations may keep
                retrying in the background and emit ``connected`` later.
        """
        ...

    @abstractmethod
    async def listen(self, channel: str) -> None:
        """Start receiving notifications for ``channel``.

        Listening to a channel that is already listened to is a no-op.
        """
        ...

    @abstractmethod
    async def unlisten(self, channel: str) -> None:
        """Stop receiving notifications for ``channel``."""
        ...

    @abstractmethod
    async def unlisten_all(self) -> None:
        """Stop receiving notifications for every channel."""
        ...

    @abstractmethod
    async def notify(self, channel: str, payload: Any) -> None:
        """Send ``payload`` to every listener of ``channel``.

        Raises:
            NotifierClosedError: If there is no live connection.
            PayloadTooLargeError: If the serialized payload exceeds the
                transport's size limit.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the connection and release background resources."""
        ...


class InMemoryNotifier(Notifier):
    """Single-process notifier for testing.

    Payloads go through ``serialize``/``parse`` on the way out and back so
    listeners receive a copy, and the size limit is enforced the way
    Postgres does. Delivery to listeners happens synchronously inside
    :meth:`notify`.

    Failures can be scripted:
    - ``connect_errors``: errors raised by successive :meth:`connect` calls
    - ``listen_errors``: errors raised by :meth:`listen`, keyed by channel

    Attributes:
        connected: Whether the notifier currently has a connection
        channels: Channels currently listened to
        sent: Every ``(channel, payload)`` accepted by :meth:`notify`
    """

    def __init__(
        self,
        payload_limit: int = DEFAULT_PAYLOAD_LIMIT,
        parse: Callable[[str], Any] = json.loads,
        serialize: Callable[[Any], str] = json.dumps,
    ) -> None:
        """Initialize a disconnected notifier.

        Args:
            payload_limit: Serialized payloads of this many bytes or more
                are rejected
            parse: Decoder applied to payloads before delivery
            serialize: Encoder applied to payloads on notify
        """
        super().__init__()
        self.payload_limit = payload_limit
        self.parse = parse
        self.serialize = serialize
        self.connected = False
        self.channels: set[str] = set()
        self.sent: list[tuple[str, Any]] = []
        self.connect_errors: list[Exception] = []
        self.listen_errors: dict[str, Exception] = {}

    async def connect(self) -> None:
        if self.connect_errors:
            raise self.connect_errors.pop(0)
        self.simulate_connected()

    def simulate_connected(self) -> None:
        """Mark the notifier connected and emit ``connected``.

        Stands in for a background reconnection succeeding.
        """
        self.connected = True
        self.events.emit("connected")

    def simulate_error(self, error: Exception) -> None:
        """Emit ``error`` as if the connection failed in the background."""
        self.events.emit("error", error)

    async def listen(self, channel: str) -> None:
        error = self.listen_errors.get(channel)
        if error is not None:
            raise error
        self.channels.add(channel)

    async def unlisten(self, channel: str) -> None:
        self.channels.discard(channel)

    async def unlisten_all(self) -> None:
        self.channels.clear()

    async def notify(self, channel: str, payload: Any) -> None:
        if not self.connected:
            raise NotifierClosedError("notifier is not connected")

        serialized = self.serialize(payload)
        if len(serialized.encode("utf-8")) >= self.payload_limit:
            raise PayloadTooLargeError("payload string too long")

        self.sent.append((channel, payload))
        if channel in self.channels:
            self.notifications.emit(channel, self.parse(serialized))

    async def close(self) -> None:
        self.connected = False
