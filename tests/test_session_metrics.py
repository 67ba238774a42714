import asyncio

import pytest

from avatarcore.pools.session_metrics import ThreadSafeSessionMetrics


@pytest.mark.asyncio
async def test_empty_snapshot_has_zero_rates():
    metrics = ThreadSafeSessionMetrics()
    snapshot = await metrics.snapshot()

    assert snapshot.total_requests == 0
    assert snapshot.cache_hit_rate == 0.0
    assert snapshot.sub200ms_rate == 0.0


@pytest.mark.asyncio
async def test_hit_rate_and_sub200_rate():
    metrics = ThreadSafeSessionMetrics()
    await metrics.record_request(50, cache_hit=True)
    await metrics.record_request(150, cache_hit=False)
    await metrics.record_request(450, cache_hit=False)
    await metrics.record_request(199.9, cache_hit=True)

    snapshot = await metrics.snapshot(active_sessions=2)

    assert snapshot.cache_hits == 2
    assert snapshot.cache_misses == 2
    assert snapshot.cache_hit_rate == 0.5
    assert snapshot.sub200ms_responses == 3
    assert snapshot.sub200ms_rate == 0.75
    assert snapshot.to_dict()["activeSessions"] == 2


@pytest.mark.asyncio
async def test_average_moves_halfway_towards_each_sample():
    metrics = ThreadSafeSessionMetrics()
    await metrics.record_request(100, cache_hit=False)
    assert (await metrics.snapshot()).avg_response_time_ms == 100

    await metrics.record_request(300, cache_hit=False)
    assert (await metrics.snapshot()).avg_response_time_ms == 200

    await metrics.record_request(0, cache_hit=True)
    assert (await metrics.snapshot()).avg_response_time_ms == 100


@pytest.mark.asyncio
async def test_concurrent_records_are_not_lost():
    metrics = ThreadSafeSessionMetrics()
    await asyncio.gather(
        *(metrics.record_request(10, cache_hit=i % 2 == 0) for i in range(100))
    )
    snapshot = await metrics.snapshot()

    assert snapshot.total_requests == 100
    assert snapshot.cache_hits + snapshot.cache_misses == 100


@pytest.mark.asyncio
async def test_connection_counters_never_go_negative():
    metrics = ThreadSafeSessionMetrics()
    assert await metrics.increment_connected() == 1
    assert await metrics.increment_disconnected() == 0
    assert await metrics.increment_disconnected() == 0

    snapshot = await metrics.connection_snapshot()
    assert snapshot["total_connected"] == 1
    assert snapshot["total_disconnected"] == 2


def test_smoothing_must_be_in_range():
    with pytest.raises(ValueError):
        ThreadSafeSessionMetrics(smoothing=0)
