"""
Multi-stage job pipelines.

Each pipeline drives a fixed ordered sequence of stages through the job
registry. Sub-item failures inside a stage (one expression image, one voice
sample, one video frame) are tolerated: the item is dropped or replaced and the
stage carries on. Anything else that goes wrong raises, and the caller marks the
job failed.

Stage progress:

* likeness: extracting-features 10, analyzing-features 30,
  generating-base-avatar 50, generating-variation-1..3 60/70/80,
  creating-expressions 85 then +2 per expression, finalizing 95
* voice clone: analyzing-voice 10, training 50, generating-samples 80,
  finalizing 95
* video: generating-speech 10, creating-frames 30 and one step per frame up to
  69, assembling-video 70, finalizing 90
"""

from __future__ import annotations

import array
import io
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from PIL import Image, ImageOps, ImageStat, UnidentifiedImageError

from avatarcore.backends.ports import BackendSuite
from avatarcore.enums.orchestration import Priority
from avatarcore.exceptions import BackendCallError, JobStageError
from avatarcore.orchestration.engine_config import EngineConfig
from avatarcore.orchestration.settle import settle
from avatarcore.pools.job_manager import JobManager
from utils.ml_logging import get_logger

logger = get_logger(__name__)

LIKENESS_FACE_SIZE = (512, 512)
LIKENESS_VARIATIONS = 3
LIKENESS_EXPRESSIONS = ("neutral", "smiling", "talking", "thoughtful")
VOICE_SAMPLE_RATE = 44_100
VOICE_TEST_PHRASES = (
    "Hello, this is my cloned voice.",
    "I can speak naturally with this technology.",
    "The quality is quite impressive.",
)
PLACEHOLDER_FRAME_URL = "/api/placeholder/1024/1024"

_EXPRESSION_KEYWORDS = (
    ("happy", ("happy", "excited", "great")),
    ("sad", ("sad", "sorry")),
    ("curious", ("question", "?")),
    ("serious", ("important", "serious")),
)
_EXPRESSION_DESCRIPTIONS = {
    "happy": "smiling warmly, joyful expression",
    "sad": "concerned expression, empathetic look",
    "curious": "inquiring expression, slightly raised eyebrows",
    "serious": "professional, focused expression",
    "neutral": "calm, neutral expression",
}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# --------------------------------------------------------------------------- #
# Likeness helpers
# --------------------------------------------------------------------------- #
def extract_face_features(image_bytes: bytes) -> Dict[str, Any]:
    """
    Normalise the upload to a 512x512 RGB face crop and derive features.

    Raises:
        JobStageError: the bytes are not a readable image.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as src:
            original_size = src.size
            face = ImageOps.fit(src.convert("RGB"), LIKENESS_FACE_SIZE, Image.LANCZOS)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise JobStageError("extracting-features", "Failed to extract face features") from exc

    stat = ImageStat.Stat(face)
    brightness = sum(stat.mean) / len(stat.mean)
    if brightness < 85:
        skin_tone = "deep"
    elif brightness < 170:
        skin_tone = "medium"
    else:
        skin_tone = "light"

    return {
        "faceShape": "oval",
        "eyeColor": "brown",
        "skinTone": skin_tone,
        "hairColor": "dark",
        "facialStructure": {
            "jawline": "defined",
            "cheekbones": "high",
            "nose": "straight",
            "lips": "medium",
        },
        "uniqueFeatures": [],
        "confidence": 0.85,
        "image": {
            "originalSize": list(original_size),
            "normalizedSize": list(face.size),
            "meanBrightness": round(brightness, 2),
        },
    }


def build_likeness_prompt(features: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> str:
    options = options or {}
    style = options.get("style", "professional")
    background = options.get("background", "studio")
    lighting = options.get("lighting", "soft")
    structure = features["facialStructure"]
    return (
        "Photorealistic portrait of a person with "
        f"{features['faceShape']} face shape, "
        f"{structure['jawline']} jawline, "
        f"{structure['cheekbones']} cheekbones, "
        f"{structure['nose']} nose, "
        f"{structure['lips']} lips. "
        f"{features['skinTone']} skin tone, "
        f"{features['hairColor']} hair, "
        f"{features['eyeColor']} eyes. "
        f"{style} style, {background} background, {lighting} lighting, "
        "high detail, ultra realistic, 8k, professional photography, "
        "perfect likeness, identical features, same person"
    )


def likeness_accuracy(features: Dict[str, Any]) -> float:
    accuracy = 0.75
    if features.get("confidence", 0) > 0.8:
        accuracy += 0.10
    if features.get("uniqueFeatures"):
        accuracy += 0.05
    structure = features.get("facialStructure", {})
    if structure.get("jawline") == "defined":
        accuracy += 0.03
    if structure.get("cheekbones") == "high":
        accuracy += 0.02
    return round(min(accuracy, 0.98), 4)


# --------------------------------------------------------------------------- #
# Voice helpers
# --------------------------------------------------------------------------- #
def _pcm16le_rms(audio_bytes: bytes) -> float:
    sample_count = len(audio_bytes) // 2
    if sample_count <= 0:
        return 0.0
    samples = array.array("h")
    samples.frombytes(audio_bytes[: sample_count * 2])
    accum = 0.0
    for value in samples:
        accum += float(value * value)
    return math.sqrt(accum / sample_count)


def analyze_voice(audio_bytes: bytes) -> Dict[str, Any]:
    if not audio_bytes:
        raise JobStageError("analyzing-voice", "Audio sample is empty")
    rms = _pcm16le_rms(audio_bytes)
    # full scale for signed 16-bit
    loudness = rms / 32768.0
    return {
        "pitch": "medium",
        "tone": "warm",
        "speed": "normal",
        "accent": "neutral",
        "gender": "auto-detected",
        "age_range": "adult",
        "loudness": round(loudness, 4),
        "characteristics": {
            "resonance": "rich",
            "clarity": "high" if loudness > 0.01 else "low",
            "emotion_range": "wide",
            "volume_consistency": "stable",
        },
        "confidence": 0.87,
    }


def voice_accuracy(analysis: Dict[str, Any]) -> float:
    accuracy = 0.80
    if analysis.get("confidence", 0) > 0.85:
        accuracy += 0.10
    traits = analysis.get("characteristics", {})
    if traits.get("clarity") == "high":
        accuracy += 0.05
    if traits.get("resonance") == "rich":
        accuracy += 0.03
    return round(min(accuracy, 0.96), 4)


def cloned_voice_options(profile: Dict[str, Any]) -> Dict[str, Any]:
    """Synthesis knobs derived from a trained voice profile."""
    traits = profile.get("characteristics", {})
    return {
        "voice_id": profile.get("voiceId", "custom"),
        "language": "en",
        "speed": 1.0,
        "pitch_adjustment": 1.2 if traits.get("pitch") == "high" else 1.0,
        "tone": traits.get("tone"),
    }


# --------------------------------------------------------------------------- #
# Video helpers
# --------------------------------------------------------------------------- #
def split_sentences(script: str) -> List[str]:
    return [s.strip() for s in re.split(r"[.!?]+", script or "") if s.strip()]


def detect_expression(sentence: str) -> str:
    lowered = sentence.lower()
    for expression, keywords in _EXPRESSION_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return expression
    return "neutral"


def sentence_duration_ms(sentence: str) -> int:
    return max(2000, len(sentence) * 150)


def build_frame_prompt(avatar_config: Dict[str, Any], expression: str) -> str:
    name = avatar_config.get("name") or "a person"
    return (
        f"Professional portrait of {name}, {_EXPRESSION_DESCRIPTIONS[expression]}, "
        "speaking, mouth slightly open as if talking, high quality, "
        "professional lighting, clean background"
    )


class JobPipelines:
    """Stage drivers for likeness, voice clone and video jobs."""

    def __init__(
        self,
        *,
        backends: BackendSuite,
        jobs: JobManager,
        config: EngineConfig,
    ):
        self._backends = backends
        self._jobs = jobs
        self._config = config

    def _image_timeout(self) -> float:
        return self._config.timeout_for("images", Priority.NORMAL)

    def _tts_timeout(self) -> float:
        # job synthesis is not latency-bound
        return max(self._config.tts_timeout_s, self._config.image_timeout_s)

    async def run_likeness(
        self,
        job_id: str,
        user_id: str,
        image_bytes: bytes,
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        await self._jobs.advance(job_id, "extracting-features", 10, "Extracting face features")
        features = extract_face_features(image_bytes)

        await self._jobs.advance(job_id, "analyzing-features", 30, "Analyzing facial features")
        prompt = build_likeness_prompt(features, options)

        await self._jobs.advance(job_id, "generating-base-avatar", 50, "Generating base avatar")
        variations = []
        for index in range(1, LIKENESS_VARIATIONS + 1):
            variation_prompt = f"{prompt}, variation {index}, slightly different angle"
            outcome = (
                await settle(
                    {
                        "images": self._backends.images.generate_image(
                            variation_prompt,
                            size="1024x1024",
                            quality="ultra",
                            style="photorealistic",
                        )
                    },
                    timeouts=self._image_timeout(),
                )
            )["images"]
            if outcome.ok:
                variations.append(
                    {
                        "variation": index,
                        "imageUrl": outcome.value.image_url,
                        "imageData": outcome.value.image_data,
                        "prompt": variation_prompt,
                    }
                )
            else:
                logger.warning(
                    "Variation %s failed for job %s: %s",
                    index,
                    job_id,
                    outcome.error,
                    extra={"job_id": job_id},
                )
            await self._jobs.advance(
                job_id,
                f"generating-variation-{index}",
                50 + index * 10,
                f"Generated variation {index} of {LIKENESS_VARIATIONS}",
            )
        if not variations:
            raise JobStageError("generating-base-avatar", "No avatar variation could be generated")

        await self._jobs.advance(job_id, "creating-expressions", 85, "Creating expressions")
        outcomes = await settle(
            {
                expression: self._backends.images.generate_image(
                    f"{prompt}, {expression} expression, natural pose",
                    size="1024x1024",
                    quality="high",
                    style="photorealistic",
                )
                for expression in LIKENESS_EXPRESSIONS
            },
            timeouts=self._image_timeout(),
        )
        expressions = []
        for index, expression in enumerate(LIKENESS_EXPRESSIONS, start=1):
            outcome = outcomes[expression]
            if outcome.ok:
                expressions.append(
                    {
                        "expression": expression,
                        "imageUrl": outcome.value.image_url,
                        "imageData": outcome.value.image_data,
                    }
                )
            else:
                logger.warning(
                    "Dropping %s expression for job %s: %s",
                    expression,
                    job_id,
                    outcome.error,
                    extra={"job_id": job_id},
                )
            await self._jobs.advance(
                job_id, "creating-expressions", 85 + index * 2, f"Processed {expression} expression"
            )

        await self._jobs.advance(job_id, "finalizing", 95, "Finalizing likeness model")
        return {
            "jobId": job_id,
            "userId": user_id,
            "faceFeatures": features,
            "baseAvatars": variations,
            "expressions": expressions,
            "accuracy": likeness_accuracy(features),
            "createdAt": _utc_now_iso(),
            "metadata": {
                "originalImageSize": len(image_bytes),
                "modelVersion": "1.0",
            },
        }

    async def run_voice_clone(
        self, job_id: str, user_id: str, audio_bytes: bytes
    ) -> Dict[str, Any]:
        await self._jobs.advance(job_id, "analyzing-voice", 10, "Analyzing voice characteristics")
        analysis = analyze_voice(audio_bytes)

        await self._jobs.advance(job_id, "training", 50, "Training voice model")
        profile = {
            "userId": user_id,
            "voiceId": f"custom-{user_id}",
            "characteristics": analysis,
            "sampleRate": VOICE_SAMPLE_RATE,
            "duration": round(len(audio_bytes) / 2 / VOICE_SAMPLE_RATE, 3),
            "quality": "high",
        }

        await self._jobs.advance(job_id, "generating-samples", 80, "Generating voice samples")
        options = cloned_voice_options(profile)
        outcomes = await settle(
            {
                phrase: self._backends.tts.synthesize(phrase, **options)
                for phrase in VOICE_TEST_PHRASES
            },
            timeouts=self._tts_timeout(),
        )
        samples = []
        for phrase in VOICE_TEST_PHRASES:
            outcome = outcomes[phrase]
            if outcome.ok:
                samples.append(
                    {
                        "phrase": phrase,
                        "audioUrl": outcome.value.audio_url,
                        "audioData": outcome.value.audio_data,
                    }
                )
            else:
                logger.warning(
                    "Dropping voice sample for job %s: %s",
                    job_id,
                    outcome.error,
                    extra={"job_id": job_id},
                )

        await self._jobs.advance(job_id, "finalizing", 95, "Finalizing voice clone")
        return {
            "jobId": job_id,
            "userId": user_id,
            "voiceProfile": profile,
            "samples": samples,
            "accuracy": voice_accuracy(analysis),
            "createdAt": _utc_now_iso(),
            "metadata": {
                "originalAudioSize": len(audio_bytes),
                "modelVersion": "1.0",
            },
        }

    async def synthesize_with_profile(self, profile: Dict[str, Any], text: str):
        """One-off synthesis with a trained voice profile; raises on failure."""
        outcome = (
            await settle(
                {"tts": self._backends.tts.synthesize(text, **cloned_voice_options(profile))},
                timeouts=self._tts_timeout(),
            )
        )["tts"]
        if not outcome.ok:
            if isinstance(outcome.error, BackendCallError):
                raise outcome.error
            raise BackendCallError("tts", str(outcome.error)) from outcome.error
        return outcome.value

    async def run_video(
        self,
        job_id: str,
        script: str,
        avatar_config: Optional[Dict[str, Any]] = None,
        video_config: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        avatar_config = avatar_config or {}
        video_config = video_config or {}
        sentences = split_sentences(script)
        if not sentences:
            raise JobStageError("generating-speech", "Script has no sentences")

        await self._jobs.advance(job_id, "generating-speech", 10, "Generating speech...")
        speech = (
            await settle(
                {
                    "tts": self._backends.tts.synthesize(
                        script,
                        voice_id=avatar_config.get("voiceId", "default"),
                        language=video_config.get("language", "en"),
                        speed=video_config.get("speechSpeed", 1.0),
                    )
                },
                timeouts=self._tts_timeout(),
            )
        )["tts"]
        if not speech.ok:
            raise JobStageError("generating-speech", f"Speech synthesis failed: {speech.error}")

        await self._jobs.advance(
            job_id, "creating-frames", 30, "Speech generated. Creating avatar frames..."
        )
        expressions = [detect_expression(sentence) for sentence in sentences]
        outcomes = await settle(
            {
                str(index): self._backends.images.generate_image(
                    build_frame_prompt(avatar_config, expression),
                    size="1024x1024",
                    quality="high",
                    style="realistic",
                )
                for index, expression in enumerate(expressions)
            },
            timeouts=self._image_timeout(),
        )
        frames = []
        for index, sentence in enumerate(sentences):
            outcome = outcomes[str(index)]
            if outcome.ok:
                frames.append(
                    {
                        "imageUrl": outcome.value.image_url,
                        "imageData": outcome.value.image_data,
                        "expression": expressions[index],
                        "duration": sentence_duration_ms(sentence),
                    }
                )
            else:
                logger.warning(
                    "Frame %s failed for job %s, using placeholder: %s",
                    index,
                    job_id,
                    outcome.error,
                    extra={"job_id": job_id},
                )
                frames.append(
                    {
                        "imageUrl": PLACEHOLDER_FRAME_URL,
                        "expression": "neutral",
                        "duration": sentence_duration_ms(sentence),
                        "placeholder": True,
                    }
                )
            await self._jobs.advance(
                job_id,
                "creating-frames",
                30 + (39 * (index + 1)) // len(sentences),
                f"Created frame {index + 1} of {len(sentences)}",
            )

        await self._jobs.advance(job_id, "assembling-video", 70, "Frames generated. Assembling video...")
        video = self._assemble_video(job_id, frames, video_config)
        video["audioUrl"] = speech.value.audio_url

        await self._jobs.advance(job_id, "finalizing", 90, "Video assembled. Finalizing...")
        return video

    @staticmethod
    def _assemble_video(
        job_id: str, frames: List[Dict[str, Any]], video_config: Dict[str, Any]
    ) -> Dict[str, Any]:
        if not frames:
            raise JobStageError("assembling-video", "No frames to assemble")
        return {
            "jobId": job_id,
            "videoUrl": f"/api/videos/generated/{job_id}.mp4",
            "thumbnailUrl": f"/api/videos/generated/{job_id}_thumb.jpg",
            "duration": sum(frame["duration"] for frame in frames),
            "resolution": video_config.get("resolution", "1080p"),
            "frameCount": len(frames),
            "frames": frames,
        }
