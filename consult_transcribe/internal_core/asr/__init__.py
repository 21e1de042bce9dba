from __future__ import annotations

from .base import ProviderError, ProviderTranscription, TranscriptionProvider
from .factory import build_provider
from .groq import GroqWhisperProvider
from .mock import MockTranscriptionProvider

__all__ = [
    "GroqWhisperProvider",
    "MockTranscriptionProvider",
    "ProviderError",
    "ProviderTranscription",
    "TranscriptionProvider",
    "build_provider",
]
