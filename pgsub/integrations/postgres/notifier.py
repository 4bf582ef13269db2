"""Postgres LISTEN/NOTIFY notifier.

This module provides a Notifier on top of a single dedicated asyncpg
connection, with background reconnection and optional health checks.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from contextlib import suppress
from typing import Any

try:
    import asyncpg
except ImportError as err:
    raise ImportError(
        "asyncpg package is required for Postgres integration. "
        "Install it with: pip install pgsub[postgres]"
    ) from err

from ...exceptions import (
    NotifierClosedError,
    NotifierConnectionError,
    PayloadTooLargeError,
)
from ...transport import Notifier
from .config import PostgresConfiguration

LOGGER = logging.getLogger(__name__)


class PostgresNotifier(Notifier):
    """Notifier backed by Postgres LISTEN/NOTIFY.

    The notifier keeps one connection for both LISTEN and NOTIFY. asyncpg
    runs one operation at a time per connection, so every use of it goes
    through a lock. Channels passed to :meth:`listen` are remembered, so they
    are listened to again after every (re)connection.

    Calling :meth:`connect` again stops any background reconnection and
    replaces the current connection, closing the old one.

    Reconnection:
    - If the first :meth:`connect` attempt fails, the error is raised and a
      background loop keeps retrying. A later success emits ``connected``.
    - If an established connection is lost (or fails a paranoid health
      check), the same loop starts.
    - The loop waits ``retry_interval`` between attempts and gives up after
      ``retry_limit`` attempts or ``retry_timeout`` seconds, emitting
      ``error`` with a :class:`NotifierConnectionError`.

    Payloads are encoded with ``serialize`` before NOTIFY and decoded with
    ``parse`` on arrival. A payload that cannot be parsed is delivered to the
    channel's listeners as the exception raised by ``parse``.

    Examples:
        >>> config = PostgresConfiguration(dsn="postgresql://localhost/app")
        >>> notifier = PostgresNotifier(config)
        >>> _ = notifier.events.on("connected", lambda: print("up"))
        >>> await notifier.connect()
        up
        >>> await notifier.listen("orders")
        >>> await notifier.notify("orders", {"id": 1})
        >>> await notifier.close()
    """

    def __init__(
        self,
        config: PostgresConfiguration | None = None,
        *,
        parse: Callable[[str], Any] = json.loads,
        serialize: Callable[[Any], str] = json.dumps,
    ) -> None:
        """Initialize a disconnected notifier.

        Args:
            config: Connection settings; read from the environment if omitted
            parse: Decoder for incoming payloads
            serialize: Encoder for outgoing payloads
        """
        super().__init__()
        self.config = config or PostgresConfiguration()
        self.parse = parse
        self.serialize = serialize
        self._connection: asyncpg.Connection | None = None
        self._channels: set[str] = set()
        self._reconnect_task: asyncio.Task[None] | None = None
        self._health_task: asyncio.Task[None] | None = None
        self._closing = False
        self._lock = asyncio.Lock()
        self._listener = self._on_notification

    @property
    def connected(self) -> bool:
        return self._connection is not None and not self._connection.is_closed()

    @property
    def channels(self) -> frozenset[str]:
        """Channels listened to, including ones waiting for a connection."""
        return frozenset(self._channels)

    async def connect(self) -> None:
        self._closing = False
        await self._stop_reconnect()
        try:
            await self._open()
        except Exception as err:
            LOGGER.warning(
                "Initial connection failed, retrying in background",
                extra={"error": str(err)},
            )
            self._start_reconnect()
            raise

    async def _open(self) -> None:
        connection = await asyncpg.connect(
            self.config.dsn, timeout=self.config.connect_timeout
        )
        async with self._lock:
            try:
                for channel in list(self._channels):
                    await connection.add_listener(channel, self._listener)
            except BaseException:
                connection.terminate()
                raise

            previous = self._connection
            self._drop_connection()
            connection.add_termination_listener(self._on_termination)
            self._connection = connection
            if previous is not None:
                LOGGER.info("Replacing existing connection")
                try:
                    await previous.close()
                except Exception as err:
                    LOGGER.warning(
                        "Could not close replaced connection",
                        extra={"error": str(err)},
                    )
                    previous.terminate()

        if self.config.paranoid_checking is not None:
            self._health_task = asyncio.create_task(self._check_health(connection))

        LOGGER.info("Connected", extra={"channels": sorted(self._channels)})
        self.events.emit("connected")

    def _start_reconnect(self) -> None:
        if self._closing:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _stop_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def _reconnect(self) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        attempts = 0
        last_error: BaseException | None = None

        while not self._closing:
            limit = self.config.retry_limit
            timeout = self.config.retry_timeout
            if (limit is not None and attempts >= limit) or (
                timeout is not None and loop.time() - started >= timeout
            ):
                error = NotifierConnectionError(
                    f"giving up on reconnection after {attempts} attempts"
                )
                error.__cause__ = last_error
                LOGGER.error("Reconnection failed", extra={"attempts": attempts})
                self.events.emit("error", error)
                return

            await asyncio.sleep(self.config.retry_interval)
            attempts += 1
            try:
                await self._open()
            except Exception as err:
                last_error = err
                LOGGER.warning(
                    "Reconnection attempt failed",
                    extra={"attempt": attempts, "error": str(err)},
                )
            else:
                return

    def _on_termination(self, connection: "asyncpg.Connection") -> None:
        if self._closing or connection is not self._connection:
            return
        LOGGER.warning("Connection lost, reconnecting")
        self._drop_connection()
        self._start_reconnect()

    async def _check_health(self, connection: "asyncpg.Connection") -> None:
        while True:
            await asyncio.sleep(self.config.paranoid_checking)
            try:
                async with self._lock:
                    await connection.execute("SELECT 1")
            except Exception as err:
                if connection is not self._connection:
                    return
                LOGGER.warning("Health check failed", extra={"error": str(err)})
                self._drop_connection()
                connection.terminate()
                self._start_reconnect()
                return

    def _drop_connection(self) -> None:
        self._connection = None
        task, self._health_task = self._health_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _on_notification(
        self,
        connection: "asyncpg.Connection",
        pid: int,
        channel: str,
        payload: str,
    ) -> None:
        try:
            message = self.parse(payload)
        except Exception as err:
            LOGGER.warning("Could not parse notification", extra={"channel": channel})
            message = err
        self.notifications.emit(channel, message)

    async def listen(self, channel: str) -> None:
        async with self._lock:
            if channel in self._channels:
                return
            if self._connection is not None:
                await self._connection.add_listener(channel, self._listener)
            self._channels.add(channel)

    async def unlisten(self, channel: str) -> None:
        async with self._lock:
            if channel not in self._channels:
                return
            self._channels.discard(channel)
            if self._connection is not None:
                await self._connection.remove_listener(channel, self._listener)

    async def unlisten_all(self) -> None:
        for channel in list(self._channels):
            await self.unlisten(channel)

    async def notify(self, channel: str, payload: Any) -> None:
        if self._connection is None:
            raise NotifierClosedError("notifier is not connected")

        serialized = self.serialize(payload)
        if len(serialized.encode("utf-8")) >= self.config.payload_limit:
            raise PayloadTooLargeError("payload string too long")

        async with self._lock:
            # The connection may have been lost while waiting for the lock.
            connection = self._connection
            if connection is None:
                raise NotifierClosedError("notifier is not connected")
            await connection.execute("SELECT pg_notify($1, $2)", channel, serialized)

    async def close(self) -> None:
        self._closing = True
        await self._stop_reconnect()

        async with self._lock:
            connection = self._connection
            self._drop_connection()
            if connection is not None:
                await connection.close()
        LOGGER.info("Closed")
