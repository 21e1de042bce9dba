"""
Transcription module boundary.

Design intent:
- Validate, gate, split, transcribe and merge recordings in one ordered pass.
- Return a uniform outcome envelope whether the run was clean, partial or failed.
"""
from __future__ import annotations

from .aggregator import combine, normalize_transcript_text
from .errors import AggregationError, SegmentationError, TranscriptionPipelineError, ValidationError
from .models import AudioAsset, Segment, SegmentError, SegmentResult, TranscribeOptions, TranscriptionOutcome
from .pipeline import TranscriptionPipeline
from .segmenter import split
from .validation import needs_splitting, validate_asset, validate_mime_type

__all__ = [
    "AggregationError",
    "AudioAsset",
    "Segment",
    "SegmentError",
    "SegmentResult",
    "SegmentationError",
    "TranscribeOptions",
    "TranscriptionOutcome",
    "TranscriptionPipeline",
    "TranscriptionPipelineError",
    "ValidationError",
    "combine",
    "needs_splitting",
    "normalize_transcript_text",
    "split",
    "validate_asset",
    "validate_mime_type",
]
