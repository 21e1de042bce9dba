from __future__ import annotations

import re
from typing import Any, Dict, Optional, Sequence

from .errors import AggregationError
from .models import SegmentError, SegmentResult, TranscriptionOutcome

_HORIZONTAL_WS_RE = re.compile(r"[^\S\n]+")
_SPACE_AROUND_NEWLINE_RE = re.compile(r" *\n *")
_BLANK_LINE_RUN_RE = re.compile(r"\n{3,}")


def normalize_transcript_text(text: str) -> str:
    """Collapse whitespace runs and cap blank lines at one; never edits words."""
    text = (text or "").replace("\r\n", "\n").replace("\r", "\n")
    text = _HORIZONTAL_WS_RE.sub(" ", text)
    text = _SPACE_AROUND_NEWLINE_RE.sub("\n", text)
    text = _BLANK_LINE_RUN_RE.sub("\n\n", text)
    return text.strip()


def _ordered(results: Sequence[SegmentResult], expected_count: Optional[int]) -> list[SegmentResult]:
    ordered = sorted(results, key=lambda r: r.index)
    count = len(ordered) if expected_count is None else expected_count
    if len(ordered) != count:
        raise AggregationError(
            "INCOMPLETE_RESULTS", f"Expected {count} segment results, received {len(ordered)}"
        )
    for expected, result in enumerate(ordered):
        if result.index != expected:
            raise AggregationError(
                "RESULT_INDEX_GAP",
                f"Segment results must cover indices 0..{count - 1}; found {result.index} at position {expected}",
            )
    return ordered


def _notice(failed: int, succeeded: int) -> Optional[str]:
    if failed == 0:
        return None
    if succeeded == 0:
        return (
            f"Transcription failed: none of the {failed} segment(s) could be transcribed. "
            "Please try again in a moment."
        )
    return f"Partially transcribed: {failed} segment(s) failed."


def combine(
    results: Sequence[SegmentResult],
    *,
    segmented: bool,
    expected_count: Optional[int] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> TranscriptionOutcome:
    ordered = _ordered(results, expected_count)
    if not ordered:
        raise AggregationError("INCOMPLETE_RESULTS", "No segment results to combine")

    succeeded = [r for r in ordered if r.ok]
    errors = [
        SegmentError(index=r.index, message=r.error or "unknown error", code=r.error_code)
        for r in ordered
        if not r.ok
    ]
    text = normalize_transcript_text(" ".join(r.text for r in succeeded if r.text))
    total_duration = sum(r.duration_sec for r in ordered if r.ok)
    # Silent segments were never sent to the provider, so they carry no score.
    scored = [r.confidence for r in succeeded if r.confidence is not None and not r.skipped]
    confidence = sum(scored) / len(scored) if scored else 0.0

    success = bool(succeeded)
    return TranscriptionOutcome(
        success=success,
        state="done" if success else "failed",
        text=text,
        total_duration_sec=float(total_duration),
        aggregate_confidence=float(confidence),
        segmented=segmented,
        errors=errors,
        segment_count=len(ordered),
        failure_reason=None if success else "AGGREGATE_FAILURE",
        failure_message=None if success else _notice(len(errors), 0),
        notice=_notice(len(errors), len(succeeded)),
        meta=dict(meta or {}),
    )
