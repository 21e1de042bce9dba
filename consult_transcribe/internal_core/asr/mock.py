from __future__ import annotations

from typing import Optional

from .base import ProviderTranscription, TranscriptionProvider

# 16kHz mono 16-bit PCM; only used to fake a plausible duration.
_MOCK_BYTES_PER_SEC = 32000.0


class MockTranscriptionProvider(TranscriptionProvider):
    def transcribe(
        self,
        audio: bytes,
        *,
        mime_type: str,
        language: str = "nl",
        prompt: Optional[str] = None,
        temperature: float = 0.0,
        response_format: str = "verbose_json",
        timeout_sec: float = 120.0,
        model: Optional[str] = None,
    ) -> ProviderTranscription:
        return ProviderTranscription(
            text=f"(mock) simulated transcript for {len(audio)} bytes of {mime_type}.",
            duration_sec=round(len(audio) / _MOCK_BYTES_PER_SEC, 3),
            confidence=1.0,
        )

    def name(self) -> str:
        return "mock"

    def model(self) -> str:
        return "mock"
