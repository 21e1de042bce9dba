from __future__ import annotations

import json
import logging
import math
from typing import Any, Optional

import httpx

from .base import ProviderError, ProviderErrorKind, ProviderTranscription, TranscriptionProvider

logger = logging.getLogger(__name__)

_USER_AGENT = "ConsultTranscribe/1.0 (Medical Software; Python)"
_MALFORMED_STATUSES = {400, 413, 415, 422}
_AUTH_STATUSES = {401, 403}


def audio_extension(mime_type: str) -> str:
    mime = (mime_type or "").lower()
    if "m4a" in mime:
        return "m4a"
    if "mp4" in mime:
        return "mp4"
    if "mpeg" in mime or "mp3" in mime:
        return "mp3"
    if "webm" in mime:
        return "webm"
    if "ogg" in mime:
        return "ogg"
    if "flac" in mime:
        return "flac"
    if "aac" in mime:
        return "aac"
    if "wav" in mime or "wave" in mime:
        return "wav"
    return "m4a"


def _classify_status(status_code: int) -> tuple[str, ProviderErrorKind]:
    if status_code == 429:
        return "PROVIDER_RATE_LIMITED", "rate_limit"
    if status_code in _AUTH_STATUSES:
        return "PROVIDER_AUTH_FAILED", "auth"
    if status_code in _MALFORMED_STATUSES:
        return "PROVIDER_REJECTED_AUDIO", "malformed_input"
    if status_code >= 500:
        return "PROVIDER_SERVER_ERROR", "server"
    return "PROVIDER_HTTP_ERROR", "unknown"


def _confidence_from_segments(segments: Any) -> float:
    if not isinstance(segments, list):
        return 1.0
    probs: list[float] = []
    for seg in segments:
        if not isinstance(seg, dict):
            continue
        logprob = seg.get("avg_logprob")
        if isinstance(logprob, (int, float)):
            probs.append(min(1.0, max(0.0, math.exp(float(logprob)))))
    if not probs:
        # Whisper-style APIs return no per-segment scores for plain json.
        return 1.0
    return sum(probs) / len(probs)


class GroqWhisperProvider(TranscriptionProvider):
    """
    Whisper transcription over Groq's OpenAI-compatible audio endpoint.

    Exactly one HTTP request is issued per call; retry policy lives in the
    pipeline so this adapter stays a thin translation layer.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.groq.com/openai/v1",
        model: str = "whisper-large-v3-turbo",
        client: Optional[httpx.Client] = None,
    ):
        self._api_key = (api_key or "").strip()
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._client = client

    def name(self) -> str:
        return "groq"

    def model(self) -> str:
        return self._model

    def configured(self) -> bool:
        return bool(self._api_key)

    def _post(self, url: str, *, files: dict, data: dict, headers: dict, timeout_sec: float) -> httpx.Response:
        if self._client is not None:
            return self._client.post(url, files=files, data=data, headers=headers, timeout=timeout_sec)
        with httpx.Client(timeout=timeout_sec) as client:
            return client.post(url, files=files, data=data, headers=headers)

    @staticmethod
    def _extract_http_error(response: httpx.Response) -> str:
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                payload = response.json()
            except json.JSONDecodeError:
                return response.text or "Invalid JSON response"
            if isinstance(payload, dict):
                error = payload.get("error")
                if isinstance(error, dict):
                    return str(error.get("message") or error)
                return str(error or payload.get("message") or payload)
            return str(payload)
        return (response.text or "").strip()[:200] or f"HTTP {response.status_code}"

    def transcribe(
        self,
        audio: bytes,
        *,
        mime_type: str,
        language: str = "nl",
        prompt: Optional[str] = None,
        temperature: float = 0.0,
        response_format: str = "verbose_json",
        timeout_sec: float = 120.0,
        model: Optional[str] = None,
    ) -> ProviderTranscription:
        if not self._api_key:
            raise ProviderError(
                "GROQ_API_KEY_MISSING",
                "Groq API key is not configured (set GROQ_API_KEY).",
                self.name(),
                kind="auth",
            )

        files = {"file": (f"audio.{audio_extension(mime_type)}", audio, mime_type)}
        data: dict[str, str] = {
            "model": model or self._model,
            "language": language,
            "response_format": response_format,
            "temperature": str(temperature),
        }
        if prompt:
            data["prompt"] = prompt
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "User-Agent": _USER_AGENT,
            "Accept": "application/json",
        }

        try:
            response = self._post(
                f"{self._base_url}/audio/transcriptions",
                files=files,
                data=data,
                headers=headers,
                timeout_sec=timeout_sec,
            )
        except httpx.TimeoutException as exc:
            raise ProviderError(
                "PROVIDER_TIMEOUT", f"Request timed out after {timeout_sec:.0f}s: {exc}", self.name(), kind="timeout"
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError("PROVIDER_NETWORK_ERROR", f"Network error: {exc}", self.name(), kind="network") from exc

        if response.status_code >= 400:
            code, kind = _classify_status(response.status_code)
            reason = self._extract_http_error(response)
            logger.warning("groq transcription rejected status=%s code=%s", response.status_code, code)
            raise ProviderError(
                code,
                f"HTTP {response.status_code}: {reason}",
                self.name(),
                kind=kind,
                status_code=response.status_code,
            )

        if response_format not in {"json", "verbose_json"}:
            return ProviderTranscription(text=(response.text or "").strip(), duration_sec=None, confidence=1.0)

        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise ProviderError(
                "PROVIDER_INVALID_RESPONSE", f"Invalid response JSON: {exc}", self.name(), kind="server"
            ) from exc
        if not isinstance(payload, dict):
            raise ProviderError(
                "PROVIDER_INVALID_RESPONSE", "Response JSON is not an object", self.name(), kind="server"
            )

        duration = payload.get("duration")
        return ProviderTranscription(
            text=str(payload.get("text") or "").strip(),
            duration_sec=float(duration) if isinstance(duration, (int, float)) else None,
            confidence=_confidence_from_segments(payload.get("segments")),
        )
