from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

PipelineState = Literal[
    "validating",
    "direct",
    "splitting",
    "transcribing",
    "aggregating",
    "done",
    "failed",
]


AuditEventType = Literal[
    "PIPELINE_STARTED",
    "STATE_CHANGED",
    "VALIDATION_FAILED",
    "SEGMENTATION_FAILED",
    "SEGMENT_DONE",
    "SEGMENT_RETRY",
    "SEGMENT_FAILED",
    "SEGMENT_SKIPPED",
    "CACHE_HIT",
    "PIPELINE_DONE",
    "PIPELINE_FAILED",
]


class AuditEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ts_iso: str
    type: AuditEventType
    code: str
    detail: str
    state: Optional[PipelineState] = None
    duration_ms: Optional[int] = None
