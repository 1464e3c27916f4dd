import pytest

from fieldops.broadcaster import ResponseBroadcaster
from fieldops.schemas.events import NormalizedResponse
from fieldops.schemas.intents import SessionKey

KEY = SessionKey("tenant-a", "officer-1")


def _response(content="ok", tenant_id="tenant-a"):
    return NormalizedResponse(tenant_id=tenant_id, user_id="officer-1", content=content)


@pytest.mark.asyncio
async def test_delivers_in_subscription_order_to_sync_and_async_listeners():
    broadcaster = ResponseBroadcaster()
    received = []

    def first(response):
        received.append(("first", response.content))

    async def second(response):
        received.append(("second", response.content))

    broadcaster.subscribe(KEY, first)
    broadcaster.subscribe(KEY, second)

    delivered = await broadcaster.publish(_response("hello"))

    assert delivered == 2
    assert received == [("first", "hello"), ("second", "hello")]


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others():
    broadcaster = ResponseBroadcaster()
    received = []

    def broken(response):
        raise RuntimeError("socket closed")

    broadcaster.subscribe(KEY, broken)
    broadcaster.subscribe(KEY, received.append)

    assert await broadcaster.publish(_response()) == 1
    assert len(received) == 1


@pytest.mark.asyncio
async def test_no_buffering_and_tenant_isolation():
    broadcaster = ResponseBroadcaster()
    received = []

    assert await broadcaster.publish(_response("early")) == 0
    broadcaster.subscribe(KEY, received.append)
    await broadcaster.publish(_response("other tenant", tenant_id="tenant-b"))
    await broadcaster.publish(_response("late"))

    assert [response.content for response in received] == ["late"]


@pytest.mark.asyncio
async def test_unsubscribe_during_delivery_uses_snapshot():
    broadcaster = ResponseBroadcaster()
    received = []

    def unsubscribing(response):
        broadcaster.unsubscribe(KEY, unsubscribing)
        received.append("unsubscribing")

    broadcaster.subscribe(KEY, unsubscribing)
    broadcaster.subscribe(KEY, lambda response: received.append("other"))

    await broadcaster.publish(_response())
    await broadcaster.publish(_response())

    assert received == ["unsubscribing", "other", "other"]
    assert broadcaster.subscriber_count(KEY) == 1
