from __future__ import annotations

"""
Pipeline orchestrator: validating -> (direct | splitting) -> transcribing -> aggregating -> done | failed.

Design intent:
- Make every suspension point and state transition explicit and audited.
- Issue provider calls strictly in index order, one in flight, unless a bounded
  worker pool is configured; ordering is restored before aggregation either way.
- Only validation and segmentation stop a run early; segment failures are
  accumulated and reported together.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..internal_core import audit
from ..internal_core.asr.base import TranscriptionProvider
from ..internal_core.audio_utils import compute_rms_pcm16, parse_pcm_wav, transcode_to_wav16k_mono
from ..internal_core.config import TranscribeConfig
from ..internal_core.contracts import AuditEvent, PipelineState
from ..internal_core.outcome_cache import InMemoryOutcomeCache, cache_key
from .aggregator import combine
from .errors import SegmentationError, TranscriptionPipelineError, ValidationError
from .models import AudioAsset, Segment, SegmentResult, TranscribeOptions, TranscriptionOutcome
from .segmenter import Transcoder, split, whole_asset_segment
from .transcriber import SegmentTranscriber
from .validation import needs_splitting, validate_asset


class _Run:
    def __init__(self) -> None:
        self.trail: List[AuditEvent] = []
        self.states: List[PipelineState] = []
        self.started = time.monotonic()
        self.lock = threading.Lock()

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    def enter(self, state: PipelineState, detail: str = "") -> None:
        self.states.append(state)
        self.log("STATE_CHANGED", state.upper(), detail or f"state={state}", state=state)

    def log(self, event_type, code: str, detail: str, *, state: Optional[PipelineState] = None, duration_ms=None) -> None:
        with self.lock:
            audit.log_event(
                self.trail,
                event_type,
                code,
                detail,
                state=state or (self.states[-1] if self.states else None),
                duration_ms=duration_ms,
            )


@dataclass(frozen=True)
class AuditedRun:
    """One outcome plus the wall-clock audit trail and timing of the run that produced it."""

    outcome: TranscriptionOutcome
    trail: List[AuditEvent]
    elapsed_ms: int


class TranscriptionPipeline:
    def __init__(
        self,
        cfg: TranscribeConfig,
        provider: TranscriptionProvider,
        *,
        cache: Optional[InMemoryOutcomeCache] = None,
        sleep: Callable[[float], None] = time.sleep,
        transcode: Transcoder = transcode_to_wav16k_mono,
    ):
        self._cfg = cfg
        self._provider = provider
        self._cache = cache
        self._sleep = sleep
        self._transcode = transcode
        self._transcriber = SegmentTranscriber(provider, cfg.TRANSCRIBE_MAX_SEGMENT_BYTES)

    @property
    def config(self) -> TranscribeConfig:
        return self._cfg

    @property
    def provider(self) -> TranscriptionProvider:
        return self._provider

    def default_options(
        self,
        *,
        language: Optional[str] = None,
        prompt: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> TranscribeOptions:
        return TranscribeOptions(
            language=language or self._cfg.TRANSCRIBE_DEFAULT_LANGUAGE,
            prompt=prompt or None,
            temperature=self._cfg.TRANSCRIBE_DEFAULT_TEMPERATURE if temperature is None else temperature,
            timeout_sec=self._cfg.TRANSCRIBE_TIMEOUT_SECONDS,
        )

    def run(
        self,
        asset: AudioAsset,
        options: Optional[TranscribeOptions] = None,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> TranscriptionOutcome:
        return self.run_audited(asset, options, cancel_event=cancel_event).outcome

    def run_audited(
        self,
        asset: AudioAsset,
        options: Optional[TranscribeOptions] = None,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> AuditedRun:
        run = _Run()
        outcome = self._execute(run, asset, options or self.default_options(), cancel_event)
        return AuditedRun(outcome=outcome, trail=list(run.trail), elapsed_ms=run.elapsed_ms())

    def _execute(
        self,
        run: _Run,
        asset: AudioAsset,
        options: TranscribeOptions,
        cancel_event: Optional[threading.Event],
    ) -> TranscriptionOutcome:
        run.log(
            "PIPELINE_STARTED",
            "PIPELINE_START",
            f"provider={self._provider.name()} size_bytes={asset.size_bytes} mime={asset.mime_type} "
            f"ceiling={self._cfg.TRANSCRIBE_MAX_SEGMENT_BYTES}",
        )

        run.enter("validating")
        try:
            mime = validate_asset(asset, self._cfg)
        except ValidationError as e:
            run.log("VALIDATION_FAILED", e.code, e.message)
            return self._failed(run, asset, "VALIDATION_ERROR", e)

        key = None
        if self._cache is not None:
            key = cache_key(asset.data, mime, tuple(sorted(options.model_dump().items())))
            cached = self._cache.get(key)
            if cached is not None:
                run.log("CACHE_HIT", "CACHE_HIT", f"segments={cached.segment_count}")
                return cached.model_copy(deep=True)

        segments: List[Segment]
        if needs_splitting(asset, self._cfg.TRANSCRIBE_MAX_SEGMENT_BYTES):
            run.enter("splitting")
            try:
                segments = split(
                    asset,
                    self._cfg.TRANSCRIBE_MAX_SEGMENT_BYTES,
                    transcoder_bin=self._cfg.transcoder_bin(),
                    transcode=self._transcode,
                    decode_fallback=self._cfg.TRANSCRIBE_TRANSCODE_UNSPLITTABLE,
                )
            except SegmentationError as e:
                run.log("SEGMENTATION_FAILED", e.code, e.message)
                return self._failed(run, asset, "SEGMENTATION_ERROR", e)
        else:
            run.enter("direct")
            segments = [whole_asset_segment(asset, mime)]

        run.enter("transcribing", f"segments={len(segments)}")
        results = self._transcribe_all(run, segments, options, cancel_event)

        run.enter("aggregating")
        outcome = combine(
            results,
            segmented=len(segments) > 1,
            expected_count=len(segments),
        )
        final_state: PipelineState = "done" if outcome.success else "failed"
        run.enter(final_state)
        run.log(
            "PIPELINE_DONE" if outcome.success else "PIPELINE_FAILED",
            "PIPELINE_OK" if outcome.success else "AGGREGATE_FAILURE",
            f"segments={len(segments)} failed={len(outcome.errors)}",
            duration_ms=run.elapsed_ms(),
        )
        outcome = outcome.model_copy(
            update={"file_size_bytes": asset.size_bytes, "meta": self._meta(run, segments_count=len(segments))}
        )

        if key is not None and outcome.success and not outcome.errors:
            self._cache.put(key, outcome)
        return outcome

    def _transcribe_all(
        self,
        run: _Run,
        segments: List[Segment],
        options: TranscribeOptions,
        cancel_event: Optional[threading.Event],
    ) -> List[SegmentResult]:
        workers = min(self._cfg.TRANSCRIBE_MAX_CONCURRENCY, len(segments))
        if workers <= 1:
            return [self._transcribe_segment(run, seg, options, cancel_event) for seg in segments]

        by_index: Dict[int, SegmentResult] = {}
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="segment") as pool:
            futures = {
                pool.submit(self._transcribe_segment, run, seg, options, cancel_event): seg.index
                for seg in segments
            }
            for future, index in futures.items():
                by_index[index] = future.result()
        return [by_index[seg.index] for seg in segments]

    def _is_silent(self, segment: Segment) -> bool:
        threshold = self._cfg.TRANSCRIBE_SILENCE_RMS
        if threshold <= 0 or segment.mime_type != "audio/wav":
            return False
        try:
            info = parse_pcm_wav(segment.data)
        except ValueError:
            return False
        if info.sample_width != 2:
            return False
        rms = compute_rms_pcm16(segment.data[info.data_offset : info.data_offset + info.data_length])
        return rms is not None and rms < threshold

    def _transcribe_segment(
        self,
        run: _Run,
        segment: Segment,
        options: TranscribeOptions,
        cancel_event: Optional[threading.Event],
    ) -> SegmentResult:
        start = time.monotonic()
        if self._is_silent(segment):
            run.log("SEGMENT_SKIPPED", "SEGMENT_SILENCE", f"index={segment.index}")
            return SegmentResult(
                index=segment.index,
                duration_sec=segment.duration_sec,
                attempts=0,
                skipped=True,
            )

        max_attempts = max(1, self._cfg.TRANSCRIBE_RETRY_ATTEMPTS)
        result: Optional[SegmentResult] = None
        attempt = 0
        while attempt < max_attempts:
            if cancel_event is not None and cancel_event.is_set():
                break
            attempt += 1
            result = self._transcriber.transcribe(segment, options).model_copy(update={"attempts": attempt})
            if result.ok:
                run.log(
                    "SEGMENT_DONE",
                    "SEGMENT_OK",
                    f"index={segment.index} attempts={attempt} size_bytes={segment.size_bytes}",
                    duration_ms=int((time.monotonic() - start) * 1000),
                )
                return result
            if not result.retryable or attempt >= max_attempts:
                break
            wait = self._cfg.TRANSCRIBE_RETRY_BACKOFF_SECONDS * attempt
            run.log(
                "SEGMENT_RETRY",
                result.error_code or "SEGMENT_ERROR",
                f"index={segment.index} attempt={attempt} wait_sec={wait:.1f}",
            )
            self._sleep(wait)

        if result is None:
            result = SegmentResult(
                index=segment.index,
                error="Cancelled before this segment was transcribed",
                error_code="CANCELLED",
                attempts=0,
            )
        run.log(
            "SEGMENT_FAILED",
            result.error_code or "SEGMENT_ERROR",
            f"index={segment.index} attempts={result.attempts} provider={self._provider.name()}",
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        return result

    def _meta(self, run: _Run, *, segments_count: int, error_code: Optional[str] = None) -> dict:
        meta = {
            "provider": self._provider.name(),
            "model": self._provider.model(),
            "max_segment_bytes": self._cfg.TRANSCRIBE_MAX_SEGMENT_BYTES,
            "segments": segments_count,
            "states": list(run.states),
        }
        if error_code:
            meta["error_code"] = error_code
        return meta

    def _failed(
        self,
        run: _Run,
        asset: AudioAsset,
        reason: str,
        error: TranscriptionPipelineError,
    ) -> TranscriptionOutcome:
        run.enter("failed")
        run.log("PIPELINE_FAILED", error.code, reason, duration_ms=run.elapsed_ms())
        return TranscriptionOutcome(
            success=False,
            state="failed",
            failure_reason=reason,
            failure_message=error.message,
            notice=error.message,
            file_size_bytes=asset.size_bytes,
            meta=self._meta(run, segments_count=0, error_code=error.code),
        )
