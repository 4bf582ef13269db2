"""pgsub - pull-style pub/sub over push-based notification brokers.

This module provides the public API. Broker-specific notifiers live under
``pgsub.integrations``.
"""

from .emitter import EventEmitter
from .exceptions import (
    NotifierClosedError,
    NotifierConnectionError,
    PayloadTooLargeError,
    PubSubError,
    SubscriptionNotFoundError,
)
from .iterator import NotificationIterator
from .pubsub import (
    ConnectionState,
    NotificationPubSub,
    PubSubEngine,
    Subscription,
    SubscriptionHandle,
)
from .transport import InMemoryNotifier, Notifier

__all__ = [
    # Engine
    "PubSubEngine",
    "NotificationPubSub",
    "ConnectionState",
    "Subscription",
    "SubscriptionHandle",
    "NotificationIterator",
    # Notifiers
    "Notifier",
    "InMemoryNotifier",
    "EventEmitter",
    # Errors
    "PubSubError",
    "NotifierClosedError",
    "NotifierConnectionError",
    "PayloadTooLargeError",
    "SubscriptionNotFoundError",
]
