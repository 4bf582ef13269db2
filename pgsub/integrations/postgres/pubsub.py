"""NotificationPubSub wired to a PostgresNotifier."""

import json
from collections.abc import Callable, Iterable
from typing import Any

from ...pubsub import MessageHandler, NotificationPubSub
from .config import PostgresConfiguration
from .notifier import PostgresNotifier


class PostgresPubSub(NotificationPubSub):
    """Pub/sub engine over Postgres LISTEN/NOTIFY.

    Builds its own :class:`PostgresNotifier` from ``config``.

    Example:
        >>> pubsub = PostgresPubSub(
        ...     PostgresConfiguration(dsn="postgresql://localhost/app"),
        ...     topics=["orders"],
        ...     common_message_handler=Order.model_validate,
        ... )
        >>> async with pubsub:
        ...     async for order in pubsub.async_iterator("orders"):
        ...         ...
    """

    notifier: PostgresNotifier

    def __init__(
        self,
        config: PostgresConfiguration | None = None,
        *,
        topics: Iterable[str] = (),
        common_message_handler: MessageHandler | None = None,
        parse: Callable[[str], Any] = json.loads,
        serialize: Callable[[Any], str] = json.dumps,
    ) -> None:
        """Initialize the engine and its notifier.

        Args:
            config: Connection settings; read from the environment if omitted
            topics: Channels to listen to as part of connect()
            common_message_handler: Transform applied to every non-error
                message before delivery
            parse: Decoder for incoming payloads
            serialize: Encoder for outgoing payloads
        """
        super().__init__(
            PostgresNotifier(config, parse=parse, serialize=serialize),
            topics=topics,
            common_message_handler=common_message_handler,
        )
