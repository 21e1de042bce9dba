from __future__ import annotations


class TranscriptionPipelineError(RuntimeError):
    """Base for failures that stop a transcription run before or after the provider calls."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class ValidationError(TranscriptionPipelineError):
    """Unsupported format, empty or oversized asset; nothing is sent to the provider."""


class SegmentationError(TranscriptionPipelineError):
    """The container cannot be cut into independently decodable pieces."""


class AggregationError(TranscriptionPipelineError):
    """Segment results are incomplete, duplicated or out of range."""
