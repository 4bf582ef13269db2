"""Integration tests for PostgresPubSub against a live server."""

import asyncio

import pytest

from pgsub import PayloadTooLargeError
from pgsub.integrations.postgres import PostgresNotifier, PostgresPubSub

pytestmark = pytest.mark.integration


@pytest.mark.asyncio
async def test_subscribe_receives_published_message(postgres_pubsub):
    """Test a message round-trips through NOTIFY to a subscriber."""
    received = asyncio.Queue()
    await postgres_pubsub.subscribe("orders", received.put_nowait)

    assert await postgres_pubsub.publish("orders", {"id": 1, "total": 9.5}) is True

    message = await asyncio.wait_for(received.get(), timeout=5)
    assert message == {"id": 1, "total": 9.5}


@pytest.mark.asyncio
async def test_iterator_yields_messages_in_order(postgres_pubsub):
    """Test an iterator over a topic yields messages in publish order."""
    iterator = postgres_pubsub.async_iterator("orders")

    for index in range(3):
        await postgres_pubsub.publish("orders", {"seq": index})

    messages = [await asyncio.wait_for(anext(iterator), timeout=5) for _ in range(3)]
    assert messages == [{"seq": 0}, {"seq": 1}, {"seq": 2}]
    await iterator.aclose()


@pytest.mark.asyncio
async def test_promised_iterator_listens_to_new_channel(postgres_pubsub):
    """Test async_iterator_promised() LISTENs before returning."""
    iterator = await postgres_pubsub.async_iterator_promised("refunds")

    await postgres_pubsub.publish("refunds", {"id": 7})

    assert await asyncio.wait_for(anext(iterator), timeout=5) == {"id": 7}
    await iterator.aclose()


@pytest.mark.asyncio
async def test_oversized_payload_is_reported_as_error_event(postgres_pubsub):
    """Test an oversized payload surfaces on the error event."""
    errors = []
    postgres_pubsub.events.on("error", errors.append)

    assert await postgres_pubsub.publish("orders", "a" * 9000) is True

    assert len(errors) == 1
    assert isinstance(errors[0], PayloadTooLargeError)


@pytest.mark.asyncio
async def test_messages_cross_connections(postgres_config):
    """Test two engines on separate connections see each other's messages."""
    async with PostgresPubSub(postgres_config, topics=["orders"]) as consumer:
        async with PostgresPubSub(postgres_config) as producer:
            iterator = consumer.async_iterator("orders")

            await producer.publish("orders", "hello")

            assert await asyncio.wait_for(anext(iterator), timeout=5) == "hello"


@pytest.mark.asyncio
async def test_notifier_reconnects_after_termination(postgres_config):
    """Test a terminated backend is replaced and channels are listened again."""
    notifier = PostgresNotifier(postgres_config)
    received = asyncio.Queue()
    notifier.notifications.on("orders", received.put_nowait)
    await notifier.connect()
    await notifier.listen("orders")

    reconnected = asyncio.Event()
    notifier.events.on("connected", reconnected.set)
    notifier._connection.terminate()
    await asyncio.wait_for(reconnected.wait(), timeout=5)

    await notifier.notify("orders", {"after": "reconnect"})
    assert await asyncio.wait_for(received.get(), timeout=5) == {"after": "reconnect"}
    await notifier.close()
