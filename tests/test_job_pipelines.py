import io

import pytest
from PIL import Image

from avatarcore.backends.ports import ImageResult, SpeechResult
from avatarcore.exceptions import BackendCallError, JobStageError
from avatarcore.orchestration.job_pipelines import (
    PLACEHOLDER_FRAME_URL,
    analyze_voice,
    detect_expression,
    extract_face_features,
    sentence_duration_ms,
    split_sentences,
)


def _png_bytes(color=(200, 180, 160), size=(64, 48)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, "PNG")
    return buffer.getvalue()


def _progress(recorder):
    return [event["progress"] for event in recorder.of("job_progress")]


def test_face_features_from_real_image():
    features = extract_face_features(_png_bytes())

    assert features["image"]["originalSize"] == [64, 48]
    assert features["image"]["normalizedSize"] == [512, 512]
    assert features["skinTone"] == "light"


def test_unreadable_image_is_a_stage_error():
    with pytest.raises(JobStageError) as info:
        extract_face_features(b"not an image")
    assert info.value.stage == "extracting-features"


def test_empty_voice_sample_is_a_stage_error():
    with pytest.raises(JobStageError):
        analyze_voice(b"")


def test_script_helpers():
    assert split_sentences("Hi there. Is this important? Yes!") == [
        "Hi there",
        "Is this important",
        "Yes",
    ]
    assert detect_expression("I am so happy") == "happy"
    assert detect_expression("This is important") == "serious"
    assert detect_expression("ok") == "neutral"
    assert sentence_duration_ms("short") == 2000
    assert sentence_duration_ms("x" * 20) == 3000


@pytest.mark.asyncio
async def test_voice_clone_progress_sequence(engine, backends, recorder):
    job_id = await engine.submit_voice_clone("u1", b"\x10\x00" * 4000, listener=recorder)
    await engine.wait_for_jobs()

    assert _progress(recorder) == [10, 50, 80, 95, 100]
    final = recorder.of("job_progress")[-1]
    assert final["status"] == "completed"
    assert final["jobId"] == job_id
    assert len(final["result"]["samples"]) == 3
    assert backends.tts.synthesize.await_count == 3


@pytest.mark.asyncio
async def test_voice_clone_tolerates_failed_samples(engine, backends):
    backends.tts.synthesize.side_effect = [
        SpeechResult(audio_url="data:audio/mpeg;base64,AA"),
        BackendCallError("tts", "throttled"),
        SpeechResult(audio_url="data:audio/mpeg;base64,BB"),
    ]
    job_id = await engine.submit_voice_clone("u1", b"\x10\x00" * 10)
    await engine.wait_for_jobs()

    view = await engine.job_progress(job_id)
    assert view["status"] == "completed"
    assert len(view["result"]["samples"]) == 2


@pytest.mark.asyncio
async def test_likeness_progress_and_result(engine, backends, recorder):
    job_id = await engine.submit_likeness(
        "u1", _png_bytes(), {"style": "casual"}, listener=recorder
    )
    await engine.wait_for_jobs()

    assert _progress(recorder) == [10, 30, 50, 60, 70, 80, 85, 87, 89, 91, 93, 95, 100]
    result = (await engine.job_progress(job_id))["result"]
    assert len(result["baseAvatars"]) == 3
    assert [e["expression"] for e in result["expressions"]] == [
        "neutral",
        "smiling",
        "talking",
        "thoughtful",
    ]
    assert "casual style" in result["baseAvatars"][0]["prompt"]
    assert result["accuracy"] == 0.9


@pytest.mark.asyncio
async def test_likeness_fails_when_no_variation_succeeds(engine, backends):
    backends.images.generate_image.side_effect = BackendCallError("images", "blocked")
    job_id = await engine.submit_likeness("u1", _png_bytes())
    await engine.wait_for_jobs()

    view = await engine.job_progress(job_id)
    assert view["status"] == "failed"
    assert view["progress"] == 80
    assert "No avatar variation" in view["error"]
    assert await engine.get_likeness_model("u1") is None


@pytest.mark.asyncio
async def test_likeness_with_unreadable_image_fails_at_first_stage(engine):
    job_id = await engine.submit_likeness("u1", b"garbage")
    await engine.wait_for_jobs()

    view = await engine.job_progress(job_id)
    assert view["status"] == "failed"
    assert view["progress"] == 10
    assert view["error"] == "extracting-features: Failed to extract face features"


@pytest.mark.asyncio
async def test_video_frames_fall_back_to_placeholders(engine, backends, recorder):
    backends.images.generate_image.side_effect = [
        ImageResult(image_url="https://images.example/frame-0.png"),
        BackendCallError("images", "content filter"),
    ]
    job_id = await engine.submit_video(
        "u1",
        "I am happy to see you. This is important!",
        {"name": "Ava", "voiceId": "alloy"},
        {"resolution": "720p"},
        job_id="video-1",
        listener=recorder,
    )
    await engine.wait_for_jobs()

    assert job_id == "video-1"
    assert _progress(recorder) == [10, 30, 49, 69, 70, 90, 100]
    result = (await engine.job_progress(job_id))["result"]
    assert result["frameCount"] == 2
    assert result["frames"][0]["expression"] == "happy"
    assert result["frames"][1]["imageUrl"] == PLACEHOLDER_FRAME_URL
    assert result["frames"][1]["placeholder"] is True
    assert result["resolution"] == "720p"
    assert result["videoUrl"] == "/api/videos/generated/video-1.mp4"
    assert result["audioUrl"] == "data:audio/mpeg;base64,AAAA"


@pytest.mark.asyncio
async def test_video_fails_when_speech_fails(engine, backends):
    backends.tts.synthesize.side_effect = BackendCallError("tts", "down")
    job_id = await engine.submit_video("u1", "Just one sentence.")
    await engine.wait_for_jobs()

    view = await engine.job_progress(job_id)
    assert view["status"] == "failed"
    assert view["progress"] == 10
    backends.images.generate_image.assert_not_awaited()
