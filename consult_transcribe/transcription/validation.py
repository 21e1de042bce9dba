from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from ..internal_core.audio_utils import format_file_size
from ..internal_core.config import TranscribeConfig
from .errors import ValidationError
from .models import AudioAsset

_MIME_ALIASES = {
    "audio/x-wav": "audio/wav",
    "audio/wave": "audio/wav",
    "audio/vnd.wave": "audio/wav",
    "audio/mp3": "audio/mpeg",
    "audio/mpeg3": "audio/mpeg",
    "audio/x-mpeg": "audio/mpeg",
    "audio/x-m4a": "audio/m4a",
    "audio/x-flac": "audio/flac",
    "audio/x-aac": "audio/aac",
}

_DISPLAY_NAMES = {
    "audio/wav": "WAV",
    "audio/mpeg": "MP3",
    "audio/mp4": "MP4",
    "audio/webm": "WebM",
    "audio/ogg": "OGG",
    "audio/flac": "FLAC",
    "audio/m4a": "M4A",
    "audio/aac": "AAC",
}


@dataclass(frozen=True)
class FormatCheck:
    ok: bool
    mime_type: str
    reason: Optional[str] = None


def normalize_mime_type(mime_type: str) -> str:
    """Lowercase, drop parameters such as `;codecs=opus` and resolve aliases."""
    base = (mime_type or "").split(";", 1)[0].strip().lower()
    return _MIME_ALIASES.get(base, base)


def supported_formats_label(allowed: Iterable[str]) -> str:
    return ", ".join(_DISPLAY_NAMES.get(m, m) for m in allowed)


def validate_mime_type(mime_type: str, allowed: Iterable[str]) -> FormatCheck:
    allowed = tuple(allowed)
    normalized = normalize_mime_type(mime_type)
    if normalized and normalized in allowed:
        return FormatCheck(ok=True, mime_type=normalized)
    shown = (mime_type or "").strip() or "<missing>"
    return FormatCheck(
        ok=False,
        mime_type=normalized,
        reason=f"Unsupported audio format: {shown}. Supported formats: {supported_formats_label(allowed)}",
    )


def validate_asset(asset: AudioAsset, cfg: TranscribeConfig) -> str:
    """Return the normalized MIME type or raise ValidationError."""
    check = validate_mime_type(asset.mime_type, cfg.TRANSCRIBE_SUPPORTED_MIME_TYPES)
    if not check.ok:
        raise ValidationError("UNSUPPORTED_FORMAT", check.reason or "Unsupported audio format")
    if asset.size_bytes == 0:
        raise ValidationError("EMPTY_AUDIO", "Audio file is empty (0 bytes); record or upload the consultation again.")
    if asset.size_bytes > cfg.TRANSCRIBE_MAX_UPLOAD_BYTES:
        raise ValidationError(
            "TOO_LARGE",
            f"Audio file too large ({format_file_size(asset.size_bytes)}), "
            f"max allowed is {format_file_size(cfg.TRANSCRIBE_MAX_UPLOAD_BYTES)}",
        )
    return check.mime_type


def needs_splitting(asset: AudioAsset, max_bytes: int) -> bool:
    return asset.size_bytes > max_bytes
