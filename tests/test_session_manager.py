import pytest

from avatarcore.enums.orchestration import Priority
from avatarcore.exceptions import InvalidRequestError
from avatarcore.pools.event_broadcaster import EventBroadcaster
from avatarcore.pools.session_manager import AvatarConfig, ThreadSafeSessionManager

from conftest import T0


@pytest.fixture
def broadcaster():
    return EventBroadcaster()


@pytest.fixture
def sessions(broadcaster, clock):
    return ThreadSafeSessionManager(broadcaster, clock=clock)


@pytest.mark.asyncio
async def test_create_session_builds_id_and_defaults(sessions):
    session = await sessions.create_session("u1", "a1", None, connection_id="conn-1")

    assert session.session_id == f"u1-a1-{int(T0 * 1000)}"
    assert session.priority is Priority.NORMAL
    assert session.avatar_config == AvatarConfig.default("a1")
    assert session.created_at == session.last_activity_at == T0
    assert await sessions.get_session_count() == 1


@pytest.mark.asyncio
async def test_same_millisecond_sessions_get_distinct_ids(sessions):
    first = await sessions.create_session("u1", "a1")
    second = await sessions.create_session("u1", "a1")

    assert first.session_id != second.session_id
    assert await sessions.get_session_count() == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("user_id,avatar_id,field", [("", "a1", "userId"), ("u1", None, "avatarId")])
async def test_missing_ids_are_rejected(sessions, user_id, avatar_id, field):
    with pytest.raises(InvalidRequestError) as info:
        await sessions.create_session(user_id, avatar_id)
    assert info.value.field == field
    assert await sessions.get_session_count() == 0


@pytest.mark.asyncio
async def test_touch_never_moves_activity_backwards(sessions, clock):
    session = await sessions.create_session("u1", "a1")
    clock.advance(10)
    await sessions.touch(session.session_id)
    assert session.last_activity_at == T0 + 10

    clock.now = T0 + 5
    await sessions.touch(session.session_id)
    assert session.last_activity_at == T0 + 10


@pytest.mark.asyncio
async def test_record_message_counts_and_touches(sessions, clock):
    session = await sessions.create_session("u1", "a1")
    clock.advance(3)
    await sessions.record_message(session.session_id)
    await sessions.record_message(session.session_id)

    assert session.message_count == 2
    assert session.last_activity_at == T0 + 3
    assert await sessions.record_message("missing") is None


@pytest.mark.asyncio
async def test_remove_publishes_one_session_ended(sessions, broadcaster, recorder):
    session = await sessions.create_session("u1", "a1")
    await broadcaster.subscribe(session.session_id, recorder)

    assert await sessions.remove(session.session_id)
    assert not await sessions.remove(session.session_id)

    assert recorder.events == [
        ("session_ended", {"sessionId": session.session_id, "reason": "ended"})
    ]
    assert await broadcaster.subscriber_count(session.session_id) == 0


@pytest.mark.asyncio
async def test_idle_sweep_removes_only_sessions_past_threshold(sessions, broadcaster, recorder, clock):
    stale = await sessions.create_session("u1", "a1")
    await broadcaster.subscribe(stale.session_id, recorder)

    clock.advance(200)
    fresh = await sessions.create_session("u2", "a1")

    clock.now = T0 + 301
    removed = await sessions.sweep_idle(300)

    assert removed == [stale.session_id]
    assert await sessions.get(fresh.session_id) is not None
    assert recorder.of("session_ended") == [
        {"sessionId": stale.session_id, "reason": "idle"}
    ]

    # a second sweep at the same instant finds nothing new
    assert await sessions.sweep_idle(300) == []
    assert len(recorder.of("session_ended")) == 1


@pytest.mark.asyncio
async def test_idle_threshold_is_strict(sessions, clock):
    session = await sessions.create_session("u1", "a1")
    clock.advance(300)
    assert await sessions.sweep_idle(300) == []
    clock.advance(0.001)
    assert await sessions.sweep_idle(300) == [session.session_id]


@pytest.mark.asyncio
async def test_remove_for_connection_only_touches_owned_sessions(sessions):
    mine = await sessions.create_session("u1", "a1", connection_id="conn-1")
    theirs = await sessions.create_session("u2", "a1", connection_id="conn-2")

    removed = await sessions.remove_for_connection("conn-1")

    assert removed == [mine.session_id]
    assert await sessions.get(theirs.session_id) is not None
    snapshot = await sessions.get_all_sessions_snapshot()
    assert list(snapshot) == [theirs.session_id]
    assert snapshot[theirs.session_id]["userId"] == "u2"
