import asyncio
import base64

import pytest

from avatarcore.backends.ports import SpeechResult, TranscriptionResult
from avatarcore.exceptions import BackendCallError, InvalidRequestError
from avatarcore.orchestration.engine import OrchestrationEngine, decode_audio
from avatarcore.pools.session_manager import AvatarConfig
from conftest import EventRecorder

AUDIO_B64 = base64.b64encode(b"\x01\x00" * 64).decode()


@pytest.mark.asyncio
async def test_start_session_resolves_profile_and_joins_room(backends, clock, recorder):
    coach = AvatarConfig(avatar_id="coach", name="Coach", personality="Upbeat coach", voice_id="nova")
    engine = OrchestrationEngine(backends, clock=clock, avatar_profiles={"coach": coach})

    session = await engine.start_session("u1", "coach", "high", connection_id="c1", listener=recorder)

    assert session.avatar_config == coach
    assert session.priority.value == "high"
    assert await engine.broadcaster.scopes_for("c1") == [session.session_id]


@pytest.mark.asyncio
async def test_unknown_avatar_uses_loader_then_default(backends, clock):
    loaded = AvatarConfig(avatar_id="remote", name="Remote")

    async def loader(avatar_id):
        return loaded if avatar_id == "remote" else None

    engine = OrchestrationEngine(backends, clock=clock, avatar_loader=loader)

    assert (await engine.start_session("u1", "remote")).avatar_config == loaded
    assert (await engine.start_session("u1", "other")).avatar_config == AvatarConfig.default("other")


@pytest.mark.asyncio
async def test_start_session_requires_ids(engine):
    with pytest.raises(InvalidRequestError):
        await engine.start_session("", "a1")


@pytest.mark.asyncio
async def test_audio_message_transcribes_then_runs_turn(engine, backends, recorder):
    session = await engine.start_session("u1", "a1", listener=recorder)

    result = await engine.handle_message(session.session_id, AUDIO_B64, "audio")

    assert result.content == "It is noon."
    assert recorder.names() == ["transcription", "message", "message", "audio_stream"]
    assert recorder.of("transcription")[0]["text"] == "what time is it"
    backends.stt.transcribe.assert_awaited_once()


@pytest.mark.asyncio
async def test_audio_message_with_failed_recognition(engine, backends, recorder):
    backends.stt.transcribe.side_effect = BackendCallError("stt", "noise")
    session = await engine.start_session("u1", "a1", listener=recorder)

    assert await engine.handle_message(session.session_id, AUDIO_B64, "audio") is None
    assert recorder.events == [("error", {"message": "Speech recognition failed"})]


@pytest.mark.asyncio
async def test_message_validation(engine):
    session = await engine.start_session("u1", "a1")
    with pytest.raises(InvalidRequestError):
        await engine.handle_message(session.session_id, "")
    with pytest.raises(InvalidRequestError):
        await engine.handle_message(session.session_id, "hi", "video")
    with pytest.raises(InvalidRequestError):
        await engine.handle_message(session.session_id, "%%%not-base64%%%", "audio")


def test_decode_audio_accepts_data_urls():
    assert decode_audio("data:audio/wav;base64," + AUDIO_B64) == b"\x01\x00" * 64


@pytest.mark.asyncio
async def test_confident_stream_chunk_runs_high_priority_turn(engine, backends, recorder):
    session = await engine.start_session("u1", "a1", listener=recorder)

    result = await engine.stream_audio(session.session_id, AUDIO_B64, 7)

    assert result is not None
    transcription = recorder.of("audio_transcription")[0]
    assert transcription["sequence"] == 7
    assert transcription["confidence"] == 0.92


@pytest.mark.asyncio
async def test_stream_chunk_at_threshold_is_dropped(engine, backends, recorder):
    backends.stt.transcribe.return_value = TranscriptionResult(text="maybe", confidence=0.7)
    session = await engine.start_session("u1", "a1", listener=recorder)

    assert await engine.stream_audio(session.session_id, AUDIO_B64, 1) is None
    assert recorder.events == []
    backends.llm.generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_stream_chunk_for_unknown_session_is_ignored(engine, backends):
    assert await engine.stream_audio("missing", AUDIO_B64, 1) is None
    backends.stt.transcribe.assert_not_awaited()


@pytest.mark.asyncio
async def test_disconnect_ends_owned_sessions(engine, recorder):
    first = await engine.start_session("u1", "a1", connection_id="c1", listener=recorder)
    second = await engine.start_session("u1", "a2", connection_id="c1", listener=recorder)
    other = await engine.start_session("u2", "a1", connection_id="c2")

    removed = await engine.disconnect("c1")

    assert sorted(removed) == sorted([first.session_id, second.session_id])
    assert [e["reason"] for e in recorder.of("session_ended")] == ["disconnected", "disconnected"]
    assert await engine.sessions.get(other.session_id) is not None
    assert await engine.broadcaster.scopes_for("c1") == []


@pytest.mark.asyncio
async def test_end_session_unknown_returns_false(engine):
    assert not await engine.end_session("missing")


@pytest.mark.asyncio
async def test_subscribe_job_unknown_returns_none(engine, recorder):
    assert await engine.subscribe_job("missing", recorder) is None


@pytest.mark.asyncio
async def test_late_job_subscriber_receives_remaining_progress(engine, backends, recorder):
    gate = asyncio.Event()

    async def gated_synthesize(*args, **kwargs):
        await gate.wait()
        return SpeechResult(audio_url="data:audio/mpeg;base64,AAAA")

    backends.tts.synthesize.side_effect = gated_synthesize
    job_id = await engine.submit_video("u1", "Hello there.")
    await asyncio.sleep(0.01)

    assert await engine.subscribe_job(job_id, recorder) is not None
    gate.set()
    await engine.wait_for_jobs()

    progress = [e["progress"] for e in recorder.of("job_progress")]
    assert 10 not in progress
    assert progress[-1] == 100


@pytest.mark.asyncio
async def test_voice_clone_lookup_and_test_synthesis(engine, backends):
    assert await engine.get_voice_clone("u1") is None
    assert await engine.test_cloned_voice("u1", "hi there") is None

    await engine.submit_voice_clone("u1", b"\x10\x00" * 100)
    await engine.wait_for_jobs()

    clone = await engine.get_voice_clone("u1")
    assert clone["voiceProfile"]["voiceId"] == "custom-u1"

    speech = await engine.test_cloned_voice("u1", "Testing my voice")
    assert speech.audio_url == "data:audio/mpeg;base64,AAAA"
    _, kwargs = backends.tts.synthesize.call_args
    assert kwargs["voice_id"] == "custom-u1"


@pytest.mark.asyncio
async def test_cloned_voice_synthesis_failure_raises_backend_error(engine, backends):
    await engine.submit_voice_clone("u1", b"\x10\x00" * 100)
    await engine.wait_for_jobs()
    backends.tts.synthesize.side_effect = RuntimeError("tts offline")

    with pytest.raises(BackendCallError):
        await engine.test_cloned_voice("u1", "Testing my voice")


@pytest.mark.asyncio
async def test_job_submission_validation(engine):
    with pytest.raises(InvalidRequestError):
        await engine.submit_likeness("u1", b"")
    with pytest.raises(InvalidRequestError):
        await engine.submit_voice_clone("", b"audio")
    with pytest.raises(InvalidRequestError):
        await engine.submit_video("u1", "   ")


@pytest.mark.asyncio
async def test_trained_models_expire_after_retention(engine, clock):
    await engine.submit_voice_clone("u1", b"\x10\x00" * 100)
    await engine.wait_for_jobs()

    clock.advance(engine.config.model_retention_s + 1)
    removed = await engine.sweep_cache()

    assert removed["voice-clones"] == 1
    assert await engine.get_voice_clone("u1") is None


@pytest.mark.asyncio
async def test_sweeps(engine, clock):
    session = await engine.start_session("u1", "a1")
    job_id = await engine.submit_voice_clone("u1", b"\x10\x00" * 100)
    await engine.wait_for_jobs()

    clock.advance(engine.config.session_idle_threshold_s + 1)
    assert await engine.sweep_idle_sessions() == [session.session_id]
    assert (await engine.sweep_stale_jobs())["purged"] == [job_id]


@pytest.mark.asyncio
async def test_stop_cancels_running_jobs(engine, backends):
    async def never_finishes(*args, **kwargs):
        await asyncio.Event().wait()

    backends.tts.synthesize.side_effect = never_finishes
    await engine.start()
    assert engine.started

    job_id = await engine.submit_video("u1", "Hello there.")
    await asyncio.sleep(0.01)
    await engine.stop()

    view = await engine.job_progress(job_id)
    assert view["status"] == "failed"
    assert view["error"] == "Job cancelled"
    assert not engine.started


@pytest.mark.asyncio
async def test_stop_fails_job_cancelled_before_first_step(engine):
    job_id = await engine.submit_voice_clone("u1", b"\x10\x00" * 100)
    await engine.stop()

    view = await engine.job_progress(job_id)
    assert view["status"] == "failed"
    assert view["error"] == "Job cancelled"


@pytest.mark.asyncio
async def test_voice_clone_stages_and_no_replay_after_completion(engine, recorder):
    job_id = await engine.submit_voice_clone("u1", b"\x10\x00" * 100, listener=recorder)
    await engine.wait_for_jobs()

    stages = [e["stage"] for e in recorder.of("job_progress")]
    assert stages == [
        "analyzing-voice",
        "training",
        "generating-samples",
        "finalizing",
        "completed",
    ]
    assert recorder.of("job_progress")[-1]["status"] == "completed"

    late = EventRecorder()
    assert await engine.subscribe_job(job_id, late) is not None
    await asyncio.sleep(0)
    assert late.events == []


@pytest.mark.asyncio
async def test_performance_snapshot_and_health(engine):
    session = await engine.start_session("u1", "a1")
    await engine.handle_message(session.session_id, "What is the weather like today?")

    snapshot = await engine.performance_snapshot()
    assert snapshot["totalRequests"] == 1
    assert snapshot["activeSessions"] == 1

    health = await engine.health()
    assert health["status"] == "idle"
    assert health["activeSessions"] == 1
    assert set(health["cache"]) == {"response", "speech", "transcription"}
