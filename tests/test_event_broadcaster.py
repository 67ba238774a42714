import asyncio

import pytest

from avatarcore.pools.event_broadcaster import EventBroadcaster


@pytest.mark.asyncio
async def test_publish_reaches_only_scope_subscribers(recorder):
    broadcaster = EventBroadcaster()
    other = []

    async def other_listener(event, data):
        other.append(event)

    await broadcaster.subscribe("session-a", recorder)
    await broadcaster.subscribe("session-b", other_listener)

    delivered = await broadcaster.publish("session-a", "message", {"content": "hi"})

    assert delivered == 1
    assert recorder.events == [("message", {"content": "hi"})]
    assert other == []


@pytest.mark.asyncio
async def test_publish_without_subscribers_is_a_noop():
    broadcaster = EventBroadcaster()
    assert await broadcaster.publish("nobody", "message", {}) == 0


@pytest.mark.asyncio
async def test_late_subscriber_misses_earlier_events(recorder):
    broadcaster = EventBroadcaster()
    await broadcaster.publish("job-1", "job_progress", {"progress": 10})
    await broadcaster.subscribe("job-1", recorder)
    await broadcaster.publish("job-1", "job_progress", {"progress": 30})

    assert recorder.of("job_progress") == [{"progress": 30}]


@pytest.mark.asyncio
async def test_fifo_per_scope_under_concurrent_publishers():
    broadcaster = EventBroadcaster()
    seen = []

    async def slow_listener(event, data):
        # yield so concurrent publishes would interleave without the scope lock
        await asyncio.sleep(0)
        seen.append(data["n"])

    await broadcaster.subscribe("scope", slow_listener)
    await asyncio.gather(
        *(broadcaster.publish("scope", "tick", {"n": n}) for n in range(20))
    )

    assert seen == list(range(20))


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others(recorder):
    broadcaster = EventBroadcaster()

    async def broken(event, data):
        raise RuntimeError("listener exploded")

    await broadcaster.subscribe("s", broken)
    await broadcaster.subscribe("s", recorder)

    delivered = await broadcaster.publish("s", "message", {"x": 1})

    assert delivered == 1
    assert recorder.names() == ["message"]


@pytest.mark.asyncio
async def test_subscriber_id_deduplicates_and_drops_together(recorder):
    broadcaster = EventBroadcaster()
    first = await broadcaster.subscribe("s1", recorder, subscriber_id="conn-1")
    again = await broadcaster.subscribe("s1", recorder, subscriber_id="conn-1")
    await broadcaster.subscribe("job-1", recorder, subscriber_id="conn-1")

    assert first == again
    assert await broadcaster.subscriber_count("s1") == 1
    assert sorted(await broadcaster.scopes_for("conn-1")) == ["job-1", "s1"]

    assert await broadcaster.drop_subscriber("conn-1") == 2
    assert await broadcaster.publish("s1", "message", {}) == 0
    assert await broadcaster.publish("job-1", "job_progress", {}) == 0


@pytest.mark.asyncio
async def test_unsubscribe_and_close_scope(recorder):
    broadcaster = EventBroadcaster()
    sub_id = await broadcaster.subscribe("s", recorder)
    assert await broadcaster.unsubscribe("s", sub_id)
    assert not await broadcaster.unsubscribe("s", sub_id)

    await broadcaster.subscribe("s", recorder)
    await broadcaster.subscribe("s", recorder)
    assert await broadcaster.close_scope("s") == 2
    assert await broadcaster.publish("s", "message", {}) == 0
