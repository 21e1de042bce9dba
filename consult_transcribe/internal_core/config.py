from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from typing import Optional

DEFAULT_MAX_SEGMENT_BYTES = 25 * 1024 * 1024
DEFAULT_MAX_UPLOAD_BYTES = 100 * 1024 * 1024
DEFAULT_SUPPORTED_MIME_TYPES = (
    "audio/wav",
    "audio/mpeg",
    "audio/webm",
    "audio/ogg",
    "audio/flac",
    "audio/m4a",
    "audio/mp4",
    "audio/aac",
)


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _getenv_csv(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    items = [part.strip().lower() for part in value.split(",")]
    return tuple(item for item in items if item)


def _default_ffmpeg_bin() -> str:
    return shutil.which("ffmpeg") or ""


@dataclass(frozen=True)
class TranscribeConfig:
    TRANSCRIBE_MAX_SEGMENT_BYTES: int = DEFAULT_MAX_SEGMENT_BYTES
    TRANSCRIBE_MAX_UPLOAD_BYTES: int = DEFAULT_MAX_UPLOAD_BYTES
    TRANSCRIBE_SUPPORTED_MIME_TYPES: tuple[str, ...] = DEFAULT_SUPPORTED_MIME_TYPES
    TRANSCRIBE_DEFAULT_LANGUAGE: str = "nl"
    TRANSCRIBE_DEFAULT_TEMPERATURE: float = 0.0
    TRANSCRIBE_PROVIDER: str = "groq"
    GROQ_API_KEY: str = ""
    GROQ_BASE_URL: str = "https://api.groq.com/openai/v1"
    GROQ_MODEL: str = "whisper-large-v3-turbo"
    TRANSCRIBE_TIMEOUT_SECONDS: float = 120.0
    TRANSCRIBE_RETRY_ATTEMPTS: int = 3
    TRANSCRIBE_RETRY_BACKOFF_SECONDS: float = 2.0
    TRANSCRIBE_MAX_CONCURRENCY: int = 1
    TRANSCRIBE_TRANSCODE_UNSPLITTABLE: bool = True
    TRANSCRIBE_FFMPEG_BIN: str = ""
    TRANSCRIBE_SILENCE_RMS: float = 0.0
    TRANSCRIBE_CACHE_TTL_SECONDS: int = 0
    TRANSCRIBE_LOG_LEVEL: str = "INFO"

    def transcoder_bin(self) -> Optional[str]:
        if not self.TRANSCRIBE_TRANSCODE_UNSPLITTABLE:
            return None
        return self.TRANSCRIBE_FFMPEG_BIN or None


def load_config() -> TranscribeConfig:
    return TranscribeConfig(
        TRANSCRIBE_MAX_SEGMENT_BYTES=_getenv_int(
            "TRANSCRIBE_MAX_SEGMENT_BYTES", DEFAULT_MAX_SEGMENT_BYTES
        ),
        TRANSCRIBE_MAX_UPLOAD_BYTES=_getenv_int(
            "TRANSCRIBE_MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES
        ),
        TRANSCRIBE_SUPPORTED_MIME_TYPES=_getenv_csv(
            "TRANSCRIBE_SUPPORTED_MIME_TYPES", DEFAULT_SUPPORTED_MIME_TYPES
        ),
        TRANSCRIBE_DEFAULT_LANGUAGE=_getenv_str("TRANSCRIBE_DEFAULT_LANGUAGE", "nl"),
        TRANSCRIBE_DEFAULT_TEMPERATURE=_getenv_float("TRANSCRIBE_DEFAULT_TEMPERATURE", 0.0),
        TRANSCRIBE_PROVIDER=_getenv_str("TRANSCRIBE_PROVIDER", "groq").strip().lower(),
        GROQ_API_KEY=_getenv_str("GROQ_API_KEY", "").strip(),
        GROQ_BASE_URL=_getenv_str("GROQ_BASE_URL", "https://api.groq.com/openai/v1"),
        GROQ_MODEL=_getenv_str("GROQ_MODEL", "whisper-large-v3-turbo"),
        TRANSCRIBE_TIMEOUT_SECONDS=_getenv_float("TRANSCRIBE_TIMEOUT_SECONDS", 120.0),
        TRANSCRIBE_RETRY_ATTEMPTS=max(1, _getenv_int("TRANSCRIBE_RETRY_ATTEMPTS", 3)),
        TRANSCRIBE_RETRY_BACKOFF_SECONDS=_getenv_float("TRANSCRIBE_RETRY_BACKOFF_SECONDS", 2.0),
        TRANSCRIBE_MAX_CONCURRENCY=max(1, _getenv_int("TRANSCRIBE_MAX_CONCURRENCY", 1)),
        TRANSCRIBE_TRANSCODE_UNSPLITTABLE=_getenv_bool("TRANSCRIBE_TRANSCODE_UNSPLITTABLE", True),
        TRANSCRIBE_FFMPEG_BIN=_getenv_str("TRANSCRIBE_FFMPEG_BIN", _default_ffmpeg_bin()),
        TRANSCRIBE_SILENCE_RMS=_getenv_float("TRANSCRIBE_SILENCE_RMS", 0.0),
        TRANSCRIBE_CACHE_TTL_SECONDS=_getenv_int("TRANSCRIBE_CACHE_TTL_SECONDS", 0),
        TRANSCRIBE_LOG_LEVEL=_getenv_str("TRANSCRIBE_LOG_LEVEL", "INFO"),
    )
