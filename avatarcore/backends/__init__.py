from .ports import (
    BackendSuite,
    GenerationResult,
    ImageGenerator,
    ImageResult,
    SpeechResult,
    SpeechToText,
    TextGenerator,
    TextToSpeech,
    TranscriptionResult,
)

__all__ = [
    "BackendSuite",
    "GenerationResult",
    "ImageGenerator",
    "ImageResult",
    "SpeechResult",
    "SpeechToText",
    "TextGenerator",
    "TextToSpeech",
    "TranscriptionResult",
]
