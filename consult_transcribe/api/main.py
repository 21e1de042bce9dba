from __future__ import annotations

"""
HTTP surface for consultation transcription.

Design intent:
- Keep the route thin: build an AudioAsset, run the pipeline, map the outcome.
- Pipeline-level failures come back as the envelope with success=false,
  never as an HTTPException.
- Pipeline, provider and cache are resolved from app.state so tests can inject them.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from consult_transcribe.internal_core.asr import build_provider
from consult_transcribe.internal_core.audio_utils import format_duration, format_file_size
from consult_transcribe.internal_core.config import TranscribeConfig, load_config
from consult_transcribe.internal_core.outcome_cache import InMemoryOutcomeCache
from consult_transcribe.transcription.models import AudioAsset, TranscriptionOutcome
from consult_transcribe.transcription.pipeline import TranscriptionPipeline
from consult_transcribe.transcription.validation import supported_formats_label

# Roughly what fits in the upload limit at a typical speech bitrate.
_RECORDING_BITRATE_BPS = 128_000

_STATUS_BY_FAILURE = {
    "VALIDATION_ERROR": 400,
    "SEGMENTATION_ERROR": 422,
    "AGGREGATE_FAILURE": 502,
}


class SegmentErrorItem(BaseModel):
    index: int
    message: str


class TranscribeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    transcript: str = ""
    duration: float = 0.0
    confidence: float = 0.0
    segmented: bool = False
    errors: list[SegmentErrorItem] = Field(default_factory=list)
    file_size: str = Field(default="0 B", alias="fileSize")
    notice: Optional[str] = None
    error: Optional[str] = None
    debug: dict[str, Any] = Field(default_factory=dict)


class TranscribeStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider: str
    model: str
    supported_formats: list[str] = Field(alias="supportedFormats")
    supported_formats_label: str = Field(alias="supportedFormatsLabel")
    max_segment_size: str = Field(alias="maxSegmentSize")
    max_upload_size: str = Field(alias="maxUploadSize")
    splitting_enabled: bool = Field(alias="splittingEnabled")
    transcoding_available: bool = Field(alias="transcodingAvailable")
    max_recording_time: str = Field(alias="maxRecordingTime")
    provider_configured: bool = Field(alias="providerConfigured")


app = FastAPI(title="consult transcribe service")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_config() -> TranscribeConfig:
    existing = getattr(app.state, "transcribe_config", None)
    if isinstance(existing, TranscribeConfig):
        return existing
    created = load_config()
    logging.basicConfig(level=getattr(logging, created.TRANSCRIBE_LOG_LEVEL.upper(), logging.INFO))
    setattr(app.state, "transcribe_config", created)
    return created


def _get_pipeline() -> TranscriptionPipeline:
    existing = getattr(app.state, "transcription_pipeline", None)
    if isinstance(existing, TranscriptionPipeline):
        return existing
    cfg = _get_config()
    cache = InMemoryOutcomeCache(cfg.TRANSCRIBE_CACHE_TTL_SECONDS) if cfg.TRANSCRIBE_CACHE_TTL_SECONDS > 0 else None
    created = TranscriptionPipeline(cfg, build_provider(cfg), cache=cache)
    setattr(app.state, "transcription_pipeline", created)
    return created


def _to_response(outcome: TranscriptionOutcome) -> TranscribeResponse:
    return TranscribeResponse(
        success=outcome.success,
        transcript=outcome.text,
        duration=round(outcome.total_duration_sec, 3),
        confidence=round(outcome.aggregate_confidence, 4),
        segmented=outcome.segmented,
        errors=[SegmentErrorItem(index=e.index, message=e.message) for e in outcome.errors],
        fileSize=format_file_size(outcome.file_size_bytes),
        notice=outcome.notice,
        error=None if outcome.success else (outcome.failure_message or outcome.failure_reason),
        debug={
            "provider": outcome.meta.get("provider"),
            "segments": outcome.segment_count,
            "states": outcome.meta.get("states", []),
            "error_code": outcome.meta.get("error_code"),
        },
    )


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/transcribe", response_model=TranscribeStatusResponse, response_model_by_alias=True)
async def transcribe_status() -> TranscribeStatusResponse:
    pipeline = _get_pipeline()
    cfg = pipeline.config
    max_recording_sec = cfg.TRANSCRIBE_MAX_UPLOAD_BYTES * 8 / float(_RECORDING_BITRATE_BPS)
    return TranscribeStatusResponse(
        provider=pipeline.provider.name(),
        model=pipeline.provider.model(),
        supportedFormats=list(cfg.TRANSCRIBE_SUPPORTED_MIME_TYPES),
        supportedFormatsLabel=supported_formats_label(cfg.TRANSCRIBE_SUPPORTED_MIME_TYPES),
        maxSegmentSize=format_file_size(cfg.TRANSCRIBE_MAX_SEGMENT_BYTES),
        maxUploadSize=format_file_size(cfg.TRANSCRIBE_MAX_UPLOAD_BYTES),
        splittingEnabled=True,
        transcodingAvailable=cfg.transcoder_bin() is not None,
        maxRecordingTime=format_duration(max_recording_sec),
        providerConfigured=pipeline.provider.configured(),
    )


@app.post("/transcribe", response_model=TranscribeResponse, response_model_by_alias=True)
async def transcribe(
    request: Request,
    language: Optional[str] = Query(default=None),
    prompt: Optional[str] = Query(default=None, max_length=1000),
    temperature: Optional[float] = Query(default=None),
    duration_sec: Optional[float] = Query(default=None, ge=0.0),
) -> JSONResponse:
    pipeline = _get_pipeline()
    payload = await request.body()
    mime_type = str(request.headers.get("content-type", "") or "")

    try:
        asset = AudioAsset(data=payload, mime_type=mime_type, duration_sec=duration_sec)
        options = pipeline.default_options(language=language, prompt=prompt, temperature=temperature)
    except PydanticValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid transcription request: {exc}") from exc

    audited = await run_in_threadpool(pipeline.run_audited, asset, options)
    outcome = audited.outcome
    status_code = 200 if outcome.success else _STATUS_BY_FAILURE.get(outcome.failure_reason or "", 500)
    if not outcome.success:
        logger.warning(
            "transcribe failed reason=%s code=%s size=%s elapsed_ms=%s",
            outcome.failure_reason,
            outcome.meta.get("error_code"),
            format_file_size(outcome.file_size_bytes),
            audited.elapsed_ms,
        )
    else:
        logger.info(
            "transcribe ok segments=%s errors=%s elapsed_ms=%s",
            outcome.segment_count,
            len(outcome.errors),
            audited.elapsed_ms,
        )
    body = _to_response(outcome)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", by_alias=True))
