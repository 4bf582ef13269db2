"""Postgres LISTEN/NOTIFY integration for pgsub.

Installation:
    pip install pgsub[postgres]

Usage:
    >>> from pgsub.integrations.postgres import (
    ...     PostgresConfiguration,
    ...     PostgresPubSub,
    ... )
    >>>
    >>> pubsub = PostgresPubSub(
    ...     PostgresConfiguration(dsn="postgresql://localhost:5432/app"),
    ...     topics=["orders"],
    ... )
    >>> await pubsub.connect()
    >>> await pubsub.publish("orders", {"id": 1})
"""

from .config import PostgresConfiguration
from .notifier import PostgresNotifier
from .pubsub import PostgresPubSub

__all__ = [
    "PostgresConfiguration",
    "PostgresNotifier",
    "PostgresPubSub",
]
