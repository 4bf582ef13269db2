"""In-process fan-out event emitter.

Notifiers expose two emitters: ``events`` for lifecycle signals
(``connected``, ``error``) and ``notifications`` keyed by channel name.
Every listener registered for an event receives its own call.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

LOGGER = logging.getLogger(__name__)

Listener = Callable[..., Any]


class _Once:
    """Wrapper that unregisters itself before the first call."""

    __slots__ = ("emitter", "event", "listener")

    def __init__(self, emitter: "EventEmitter", event: str, listener: Listener):
        self.emitter = emitter
        self.event = event
        self.listener = listener

    def __call__(self, *args: Any) -> Any:
        self.emitter.off(self.event, self)
        return self.listener(*args)


class EventEmitter:
    """Named-event emitter with fan-out delivery.

    Listeners are called synchronously in registration order. A listener
    that raises is logged and skipped so the remaining listeners still see
    the event. Listeners returning an awaitable (``async def`` callbacks)
    have it scheduled on the running event loop.

    Examples:
        >>> emitter = EventEmitter()
        >>> _ = emitter.on("orders", print)
        >>> emitter.emit("orders", {"id": 1})
        {'id': 1}
        True
    """

    def __init__(self) -> None:
        self._listeners: defaultdict[str, list[Listener]] = defaultdict(list)
        self._tasks: set[asyncio.Future[Any]] = set()

    def on(self, event: str, listener: Listener) -> Listener:
        """Register ``listener`` for every future ``event``.

        Returns:
            The listener, so this can be used as a decorator.
        """
        self._listeners[event].append(listener)
        return listener

    def once(self, event: str, listener: Listener) -> Listener:
        """Register ``listener`` for the next ``event`` only."""
        self._listeners[event].append(_Once(self, event, listener))
        return listener

    def off(self, event: str, listener: Listener) -> None:
        """Remove one registration of ``listener`` for ``event``.

        Listeners registered with :meth:`once` can be removed by passing the
        original callable. Unknown listeners are ignored.
        """
        listeners = self._listeners.get(event)
        if not listeners:
            return
        for index, registered in enumerate(listeners):
            if registered == listener or (
                isinstance(registered, _Once) and registered.listener == listener
            ):
                del listeners[index]
                break
        if not listeners:
            del self._listeners[event]

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener currently registered for ``event``.

        Returns:
            True if at least one listener was called.
        """
        listeners = list(self._listeners.get(event, ()))
        if not listeners:
            if event == "error":
                LOGGER.error("Unhandled error event", extra={"error": repr(args)})
            return False

        for listener in listeners:
            try:
                result = listener(*args)
            except Exception:
                LOGGER.exception("Listener failed", extra={"event": event})
                continue
            if inspect.isawaitable(result):
                self._schedule(event, result)
        return True

    def listener_count(self, event: str) -> int:
        """Number of listeners registered for ``event``."""
        return len(self._listeners.get(event, ()))

    def remove_all_listeners(self, event: str | None = None) -> None:
        """Drop the listeners of ``event``, or of every event if None."""
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def _schedule(self, event: str, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def finished(task: asyncio.Future[Any]) -> None:
            self._tasks.discard(task)
            if not task.cancelled() and task.exception() is not None:
                LOGGER.error(
                    "Async listener failed",
                    exc_info=task.exception(),
                    extra={"event": event},
                )

        task.add_done_callback(finished)
