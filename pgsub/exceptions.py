"""Exceptions raised by the pub/sub engine and its notifiers."""


class PubSubError(Exception):
    """Base class for every error raised by pgsub."""

    pass


class NotifierClosedError(PubSubError):
    """Raised when a notifier operation needs a live connection and has none."""

    pass


class NotifierConnectionError(PubSubError):
    """Raised when a notifier gives up on (re)establishing its connection.

    Notifiers emit this on their ``error`` event once their retry budget
    (attempt limit or elapsed time) is spent.
    """

    pass


class PayloadTooLargeError(PubSubError):
    """Raised when a serialized payload exceeds the transport's size limit.

    Postgres rejects NOTIFY payloads of 8000 bytes or more, so notifiers
    check the limit before sending.
    """

    pass


class SubscriptionNotFoundError(PubSubError, KeyError):
    """Raised when unsubscribing a handle the engine does not know about."""

    pass
