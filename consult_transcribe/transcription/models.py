from __future__ import annotations

"""
Typed contracts for one transcription run.

Design intent:
- AudioAsset is immutable and borrowed read-only by the pipeline.
- Segment/SegmentResult are scoped to a single run and never persisted.
- Every segment index produces exactly one SegmentResult, success or failure.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

OutcomeState = Literal["done", "failed"]
FailureReason = Literal["VALIDATION_ERROR", "SEGMENTATION_ERROR", "AGGREGATE_FAILURE"]


class AudioAsset(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    data: bytes
    mime_type: str
    duration_sec: float | None = Field(default=None, ge=0.0)

    @property
    def size_bytes(self) -> int:
        return len(self.data)


class TranscribeOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    language: str = Field(default="nl", min_length=2, max_length=16)
    prompt: str | None = None
    temperature: float = Field(default=0.0, ge=0.0, le=1.0)
    response_format: Literal["json", "verbose_json", "text"] = "verbose_json"
    model: str | None = None
    timeout_sec: float = Field(default=120.0, gt=0.0)


class Segment(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    index: int = Field(ge=0)
    byte_start: int = Field(ge=0)
    byte_end: int = Field(ge=0)
    duration_sec: float = Field(ge=0.0)
    data: bytes
    mime_type: str

    @model_validator(mode="after")
    def _validate_range(self) -> "Segment":
        if self.byte_end <= self.byte_start:
            raise ValueError("Segment.byte_end must be > Segment.byte_start")
        return self

    @property
    def size_bytes(self) -> int:
        return len(self.data)


class SegmentResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    index: int = Field(ge=0)
    text: str = ""
    duration_sec: float = Field(default=0.0, ge=0.0)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    error: str | None = None
    error_code: str | None = None
    attempts: int = Field(default=1, ge=0)
    retryable: bool = False
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class SegmentError(BaseModel):
    model_config = ConfigDict(extra="forbid")

    index: int = Field(ge=0)
    message: str
    code: str | None = None


class TranscriptionOutcome(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool
    state: OutcomeState
    text: str = ""
    total_duration_sec: float = 0.0
    aggregate_confidence: float = 0.0
    segmented: bool = False
    errors: list[SegmentError] = Field(default_factory=list)
    segment_count: int = 0
    failure_reason: FailureReason | None = None
    failure_message: str | None = None
    notice: str | None = None
    file_size_bytes: int = 0
    meta: dict[str, Any] = Field(default_factory=dict)

    @property
    def partial(self) -> bool:
        return self.success and bool(self.errors)
