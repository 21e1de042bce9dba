from __future__ import annotations

from typing import Optional

import httpx

from ..config import TranscribeConfig
from .base import TranscriptionProvider
from .groq import GroqWhisperProvider
from .mock import MockTranscriptionProvider

_SUPPORTED_PROVIDERS = {"groq", "mock"}


def build_provider(cfg: TranscribeConfig, *, client: Optional[httpx.Client] = None) -> TranscriptionProvider:
    name = (cfg.TRANSCRIBE_PROVIDER or "").strip().lower()
    if name not in _SUPPORTED_PROVIDERS:
        raise ValueError(f"Unsupported transcription provider: {name or '<empty>'}")
    if name == "mock":
        return MockTranscriptionProvider()
    return GroqWhisperProvider(
        cfg.GROQ_API_KEY,
        base_url=cfg.GROQ_BASE_URL,
        model=cfg.GROQ_MODEL,
        client=client,
    )
