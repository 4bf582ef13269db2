"""Central test fixtures."""

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from pgsub import InMemoryNotifier, NotificationPubSub


@pytest.fixture
def notifier() -> InMemoryNotifier:
    """Create a disconnected in-memory notifier."""
    return InMemoryNotifier()


@pytest.fixture
def topics() -> list[str]:
    """Channels declared as topics on the pubsub fixture."""
    return ["orders", "a", "b"]


@pytest.fixture
def pubsub(notifier: InMemoryNotifier, topics: list[str]) -> NotificationPubSub:
    """Create a disconnected engine over the in-memory notifier."""
    return NotificationPubSub(notifier, topics=topics)


@pytest_asyncio.fixture
async def connected_pubsub(pubsub: NotificationPubSub) -> AsyncIterator[NotificationPubSub]:
    """Create a connected engine and close it afterwards."""
    await pubsub.connect()
    try:
        yield pubsub
    finally:
        await pubsub.close()
