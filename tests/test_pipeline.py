import asyncio

import pytest

from avatarcore.backends.ports import GenerationResult, TranscriptionResult
from avatarcore.enums.orchestration import Priority
from avatarcore.exceptions import BackendCallError
from avatarcore.orchestration.engine import OrchestrationEngine
from avatarcore.orchestration.engine_config import EngineConfig

QUESTION = "What is the weather like today?"


async def _start(engine, recorder=None, **kwargs):
    return await engine.start_session("u1", "a1", listener=recorder, **kwargs)


@pytest.mark.asyncio
async def test_canned_intent_skips_backends_and_cache(engine, backends, recorder):
    session = await _start(engine, recorder)

    result = await engine.pipeline.run_turn(session.session_id, "thanks a lot")

    assert result.intent == "thanks"
    assert result.content.startswith("You're welcome")
    assert result.audio_url is None
    assert not result.cached
    backends.llm.generate.assert_not_awaited()
    backends.tts.synthesize.assert_not_awaited()

    assert recorder.names() == ["message", "message"]
    user, assistant = recorder.of("message")
    assert user["messageType"] == "user"
    assert assistant["messageType"] == "assistant"

    snapshot = await engine.metrics.snapshot()
    assert snapshot.cache_misses == 1


@pytest.mark.asyncio
async def test_full_turn_publishes_reply_and_audio(engine, backends, recorder):
    session = await _start(engine, recorder)

    result = await engine.pipeline.run_turn(session.session_id, QUESTION)

    assert result.content == "It is noon."
    assert result.audio_url == "data:audio/mpeg;base64,AAAA"
    assert not result.degraded
    assert recorder.names() == ["message", "message", "audio_stream"]
    assert recorder.of("audio_stream")[0]["audioUrl"] == result.audio_url
    assert session.message_count == 1


@pytest.mark.asyncio
async def test_generation_failure_uses_fallback_and_keeps_audio(engine, backends):
    backends.llm.generate.side_effect = BackendCallError("llm", "quota exceeded")
    session = await _start(engine)

    result = await engine.pipeline.respond(session, QUESTION)

    assert result.content == engine.config.fallback_reply
    assert result.audio_url == "data:audio/mpeg;base64,AAAA"
    assert result.degraded
    assert not result.error


@pytest.mark.asyncio
async def test_synthesis_failure_replies_text_only(engine, backends):
    backends.tts.synthesize.side_effect = RuntimeError("tts offline")
    session = await _start(engine)

    result = await engine.pipeline.respond(session, QUESTION)

    assert result.content == "It is noon."
    assert result.audio_url is None
    assert result.degraded


@pytest.mark.asyncio
async def test_slow_generation_times_out_without_losing_audio(backends, clock):
    async def slow_generate(*args, **kwargs):
        await asyncio.sleep(1)
        return GenerationResult(content="too late")

    backends.llm.generate.side_effect = slow_generate
    engine = OrchestrationEngine(backends, EngineConfig(llm_timeout_s=0.05), clock=clock)
    session = await _start(engine)

    result = await engine.pipeline.respond(session, QUESTION)

    assert result.content == engine.config.fallback_reply
    assert result.audio_url is not None


@pytest.mark.asyncio
async def test_repeat_question_hits_response_cache(engine, backends):
    session = await _start(engine)

    first = await engine.pipeline.respond(session, QUESTION)
    second = await engine.pipeline.respond(session, "  what is THE weather like today?")

    assert not first.cached
    assert second.cached
    assert second.content == first.content
    assert backends.llm.generate.await_count == 1

    snapshot = await engine.metrics.snapshot()
    assert snapshot.cache_hits == 1
    assert snapshot.total_requests == 2


@pytest.mark.asyncio
async def test_response_cache_is_scoped_per_session(engine, backends):
    first = await _start(engine)
    second = await engine.start_session("u2", "a1")

    await engine.pipeline.respond(first, QUESTION)
    result = await engine.pipeline.respond(second, QUESTION)

    assert not result.cached
    assert backends.llm.generate.await_count == 2
    # the speech tier is shared, so the second turn reuses the audio
    assert backends.tts.synthesize.await_count == 1
    assert result.audio_url == "data:audio/mpeg;base64,AAAA"


@pytest.mark.asyncio
async def test_reply_dropped_when_session_ends_mid_turn(engine, backends, recorder):
    session = await _start(engine, recorder)

    async def generate_then_end(*args, **kwargs):
        await engine.end_session(session.session_id)
        return GenerationResult(content="nobody is listening")

    backends.llm.generate.side_effect = generate_then_end

    result = await engine.pipeline.run_turn(session.session_id, QUESTION)

    assert result is None
    assert recorder.names() == ["message", "session_ended"]


@pytest.mark.asyncio
async def test_run_turn_unknown_session_returns_none(engine, backends):
    assert await engine.pipeline.run_turn("missing", QUESTION) is None
    backends.llm.generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_high_priority_halves_timeouts(engine_config):
    assert engine_config.timeout_for("llm", Priority.HIGH) == engine_config.llm_timeout_s / 2
    assert engine_config.timeout_for("stt") == engine_config.stt_timeout_s


@pytest.mark.asyncio
async def test_short_transcripts_are_cached(engine, backends):
    first = await engine.pipeline.transcribe(b"\x01\x02" * 50)
    second = await engine.pipeline.transcribe(b"\x01\x02" * 50)

    assert first.text == second.text == "what time is it"
    assert second.cached
    assert backends.stt.transcribe.await_count == 1


@pytest.mark.asyncio
async def test_long_transcripts_are_not_cached(engine, backends):
    backends.stt.transcribe.return_value = TranscriptionResult(text="word " * 30, confidence=0.9)

    await engine.pipeline.transcribe(b"audio")
    second = await engine.pipeline.transcribe(b"audio")

    assert not second.cached
    assert backends.stt.transcribe.await_count == 2


@pytest.mark.asyncio
async def test_transcription_failure_is_reported_not_raised(engine, backends):
    backends.stt.transcribe.side_effect = BackendCallError("stt", "bad audio")

    outcome = await engine.pipeline.transcribe(b"audio")

    assert outcome.error
    assert outcome.text == ""
