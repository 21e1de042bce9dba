from consult_transcribe.internal_core.asr.base import ProviderError, ProviderTranscription, TranscriptionProvider
from consult_transcribe.transcription.models import Segment, TranscribeOptions
from consult_transcribe.transcription.transcriber import SegmentTranscriber


class _ScriptedProvider(TranscriptionProvider):
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    def transcribe(self, audio, *, mime_type, **kwargs):
        self.calls.append((len(audio), mime_type, kwargs))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    def name(self) -> str:
        return "scripted"


def _segment(size: int = 100, duration: float = 2.5) -> Segment:
    return Segment(
        index=3,
        byte_start=0,
        byte_end=size,
        duration_sec=duration,
        data=b"\x00" * size,
        mime_type="audio/mpeg",
    )


def test_transcriber_passes_options_and_trims_text() -> None:
    provider = _ScriptedProvider(ProviderTranscription(text="  Hello\n\n\nthere ", duration_sec=None, confidence=1.7))
    transcriber = SegmentTranscriber(provider, max_segment_bytes=1000)

    result = transcriber.transcribe(_segment(), TranscribeOptions(language="nl", prompt="huisarts", temperature=0.2))

    assert result.ok is True
    assert result.index == 3
    assert result.text == "Hello\n\n\nthere"
    assert result.duration_sec == 2.5
    assert result.confidence == 1.0
    size, mime, kwargs = provider.calls[0]
    assert (size, mime) == (100, "audio/mpeg")
    assert kwargs["language"] == "nl"
    assert kwargs["prompt"] == "huisarts"
    assert kwargs["temperature"] == 0.2
    assert kwargs["response_format"] == "verbose_json"


def test_transcriber_defaults_missing_confidence_to_one() -> None:
    provider = _ScriptedProvider(ProviderTranscription(text="ok", duration_sec=4.0))
    result = SegmentTranscriber(provider, 1000).transcribe(_segment(), TranscribeOptions())

    assert result.confidence == 1.0
    assert result.duration_sec == 4.0


def test_transcriber_refuses_oversized_segment_without_calling_provider() -> None:
    provider = _ScriptedProvider(ProviderTranscription(text="unused"))
    result = SegmentTranscriber(provider, max_segment_bytes=50).transcribe(_segment(size=100), TranscribeOptions())

    assert result.ok is False
    assert result.error_code == "SEGMENT_TOO_LARGE"
    assert result.attempts == 0
    assert provider.calls == []


def test_transcriber_converts_provider_error_to_result() -> None:
    provider = _ScriptedProvider(
        ProviderError("PROVIDER_RATE_LIMITED", "HTTP 429: slow down", "scripted", kind="rate_limit", status_code=429)
    )
    result = SegmentTranscriber(provider, 1000).transcribe(_segment(), TranscribeOptions())

    assert result.ok is False
    assert result.text == ""
    assert result.error == "HTTP 429: slow down"
    assert result.error_code == "PROVIDER_RATE_LIMITED"
    assert result.retryable is True


def test_transcriber_marks_auth_errors_not_retryable() -> None:
    provider = _ScriptedProvider(ProviderError("PROVIDER_AUTH_FAILED", "HTTP 401", "scripted", kind="auth"))
    result = SegmentTranscriber(provider, 1000).transcribe(_segment(), TranscribeOptions())

    assert result.retryable is False


def test_transcriber_contains_unexpected_exceptions() -> None:
    provider = _ScriptedProvider(KeyError("text"))
    result = SegmentTranscriber(provider, 1000).transcribe(_segment(), TranscribeOptions())

    assert result.ok is False
    assert result.error_code == "PROVIDER_UNKNOWN"
    assert result.retryable is False
