from __future__ import annotations

import datetime as _dt
import logging
from typing import List, Optional

from .contracts import AuditEvent, AuditEventType, PipelineState

logger = logging.getLogger(__name__)

_WARNING_TYPES = {"VALIDATION_FAILED", "SEGMENTATION_FAILED", "SEGMENT_RETRY", "SEGMENT_FAILED", "PIPELINE_FAILED"}


def _ts_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


def _sanitize_detail(detail: str) -> str:
    # IMPORTANT: Never include transcript text or audio bytes in detail.
    detail = (detail or "").replace("\n", " ").strip()
    if len(detail) > 200:
        detail = detail[:200] + "…"
    return detail


def log_event(
    trail: List[AuditEvent],
    event_type: AuditEventType,
    code: str,
    detail: str,
    *,
    state: Optional[PipelineState] = None,
    duration_ms: Optional[int] = None,
) -> AuditEvent:
    event = AuditEvent(
        ts_iso=_ts_iso(),
        type=event_type,
        code=code,
        detail=_sanitize_detail(detail),
        state=state,
        duration_ms=duration_ms,
    )
    trail.append(event)
    level = logging.WARNING if event_type in _WARNING_TYPES else logging.INFO
    logger.log(level, "transcribe_event type=%s code=%s state=%s %s", event_type, code, state or "-", event.detail)
    return event
