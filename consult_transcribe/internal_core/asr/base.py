from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal, Optional

ProviderErrorKind = Literal[
    "network",
    "timeout",
    "rate_limit",
    "malformed_input",
    "auth",
    "server",
    "unknown",
]

_RETRYABLE_KINDS = {"network", "timeout", "rate_limit", "server"}


class ProviderError(RuntimeError):
    def __init__(
        self,
        code: str,
        message: str,
        provider_name: str,
        kind: ProviderErrorKind = "unknown",
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.provider_name = provider_name
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind in _RETRYABLE_KINDS


@dataclass(frozen=True)
class ProviderTranscription:
    text: str
    duration_sec: Optional[float] = None
    confidence: Optional[float] = None


class TranscriptionProvider(ABC):
    @abstractmethod
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
    ) -> ProviderTranscription: ...

    @abstractmethod
    def name(self) -> str: ...

    def model(self) -> str:
        return ""

    def configured(self) -> bool:
        return True
