import pytest

from consult_transcribe.internal_core.config import TranscribeConfig
from consult_transcribe.transcription.errors import ValidationError
from consult_transcribe.transcription.models import AudioAsset
from consult_transcribe.transcription.validation import (
    needs_splitting,
    normalize_mime_type,
    validate_asset,
    validate_mime_type,
)


def test_normalize_mime_type_drops_parameters_and_resolves_aliases() -> None:
    assert normalize_mime_type("audio/webm;codecs=opus") == "audio/webm"
    assert normalize_mime_type(" Audio/X-WAV ") == "audio/wav"
    assert normalize_mime_type("audio/mp3") == "audio/mpeg"
    assert normalize_mime_type("") == ""


def test_validate_mime_type_lists_supported_formats_on_rejection() -> None:
    check = validate_mime_type("video/mp4", TranscribeConfig().TRANSCRIBE_SUPPORTED_MIME_TYPES)

    assert check.ok is False
    assert check.reason is not None
    assert "Unsupported audio format: video/mp4" in check.reason
    assert "WAV" in check.reason and "MP3" in check.reason


def test_validate_asset_rejects_empty_audio() -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_asset(AudioAsset(data=b"", mime_type="audio/wav"), TranscribeConfig())
    assert excinfo.value.code == "EMPTY_AUDIO"


def test_validate_asset_checks_format_before_size() -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_asset(AudioAsset(data=b"", mime_type="text/plain"), TranscribeConfig())
    assert excinfo.value.code == "UNSUPPORTED_FORMAT"


def test_validate_asset_rejects_uploads_above_hard_limit() -> None:
    cfg = TranscribeConfig(TRANSCRIBE_MAX_UPLOAD_BYTES=1024)
    with pytest.raises(ValidationError, match="too large") as excinfo:
        validate_asset(AudioAsset(data=b"\x01" * 2048, mime_type="audio/mpeg"), cfg)
    assert excinfo.value.code == "TOO_LARGE"
    assert "2.0 KB" in excinfo.value.message


def test_validate_asset_returns_normalized_mime_type() -> None:
    mime = validate_asset(AudioAsset(data=b"\x01" * 10, mime_type="audio/x-m4a"), TranscribeConfig())
    assert mime == "audio/m4a"


def test_needs_splitting_is_strictly_greater_than_ceiling() -> None:
    asset = AudioAsset(data=b"\x00" * 100, mime_type="audio/mpeg")
    assert needs_splitting(asset, 100) is False
    assert needs_splitting(asset, 99) is True
