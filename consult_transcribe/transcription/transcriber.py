from __future__ import annotations

import logging
from typing import Optional

from ..internal_core.asr.base import ProviderError, TranscriptionProvider
from .models import Segment, SegmentResult, TranscribeOptions

logger = logging.getLogger(__name__)


class SegmentTranscriber:
    """
    Adapter between one Segment and one provider call.

    Failures come back as SegmentResult data with empty text; nothing is
    raised past this layer and no retries happen here.
    """

    def __init__(self, provider: TranscriptionProvider, max_segment_bytes: int):
        self._provider = provider
        self._max_segment_bytes = max_segment_bytes

    @property
    def provider_name(self) -> str:
        return self._provider.name()

    def transcribe(self, segment: Segment, options: TranscribeOptions) -> SegmentResult:
        if segment.size_bytes > self._max_segment_bytes:
            return SegmentResult(
                index=segment.index,
                error=(
                    f"Segment {segment.index} is {segment.size_bytes} bytes, "
                    f"above the {self._max_segment_bytes} byte provider ceiling"
                ),
                error_code="SEGMENT_TOO_LARGE",
                attempts=0,
            )

        try:
            out = self._provider.transcribe(
                segment.data,
                mime_type=segment.mime_type,
                language=options.language,
                prompt=options.prompt,
                temperature=options.temperature,
                response_format=options.response_format,
                timeout_sec=options.timeout_sec,
                model=options.model,
            )
        except ProviderError as e:
            return SegmentResult(
                index=segment.index,
                error=e.message or e.code,
                error_code=e.code,
                retryable=e.retryable,
            )
        except Exception as e:
            logger.exception("unexpected provider failure on segment %s", segment.index)
            return SegmentResult(index=segment.index, error=str(e) or type(e).__name__, error_code="PROVIDER_UNKNOWN")

        return SegmentResult(
            index=segment.index,
            text=(out.text or "").strip(),
            duration_sec=_duration(out.duration_sec, segment.duration_sec),
            confidence=_clip_confidence(out.confidence),
        )


def _duration(reported: Optional[float], estimated: float) -> float:
    if reported is None or reported < 0:
        return float(estimated)
    return float(reported)


def _clip_confidence(value: Optional[float]) -> float:
    if value is None:
        return 1.0
    return min(1.0, max(0.0, float(value)))
