from __future__ import annotations

"""
Cut oversized recordings into provider-sized, independently decodable segments.

Design intent:
- Never slice a container blindly: WAV is cut on PCM frame boundaries with a
  fresh header per segment. MP3 is cut at frame starts found by walking the
  frame chain, never at stray sync-like bytes.
- Containers that cannot be cut safely (webm/ogg/flac/mp4/aac) are re-encoded
  to PCM WAV when a transcoder is available, otherwise rejected.
- Use the fewest segments that fit, spread near-equally.
"""

import bisect
import logging
import math
from typing import Callable, List, Optional

from ..internal_core.audio_utils import (
    DECODABLE_WITHOUT_FFMPEG,
    WAV_HEADER_BYTES,
    PcmWavInfo,
    build_pcm_wav,
    estimate_duration_sec,
    format_file_size,
    mpeg_frame_offsets,
    parse_pcm_wav,
    skip_id3v2,
    transcode_to_wav16k_mono,
)
from .errors import SegmentationError
from .models import AudioAsset, Segment
from .validation import normalize_mime_type

logger = logging.getLogger(__name__)

_WAV = "audio/wav"
_MPEG = "audio/mpeg"
_MPEG_EXTRA_ATTEMPTS = 8

_SUFFIX_BY_MIME = {
    "audio/webm": ".webm",
    "audio/ogg": ".ogg",
    "audio/flac": ".flac",
    "audio/m4a": ".m4a",
    "audio/mp4": ".mp4",
    "audio/aac": ".aac",
    _WAV: ".wav",
}

Transcoder = Callable[..., bytes]


def whole_asset_segment(asset: AudioAsset, mime: str) -> Segment:
    duration = asset.duration_sec
    if duration is None and mime == _WAV:
        try:
            duration = parse_pcm_wav(asset.data).duration_sec
        except ValueError:
            duration = None
    if duration is None:
        duration = estimate_duration_sec(asset.size_bytes, mime)
    return Segment(
        index=0,
        byte_start=0,
        byte_end=asset.size_bytes,
        duration_sec=float(duration),
        data=asset.data,
        mime_type=mime,
    )


def _split_wav(data: bytes, info: PcmWavInfo, max_segment_bytes: int) -> List[Segment]:
    # wave pads odd-length payloads with one byte.
    overhead = WAV_HEADER_BYTES + (info.block_align & 1)
    capacity_frames = (max_segment_bytes - overhead) // info.block_align
    if capacity_frames < 1:
        raise SegmentationError(
            "DEGENERATE_BOUNDARY",
            f"Segment ceiling of {max_segment_bytes} bytes cannot hold a WAV header plus one audio frame",
        )
    total_frames = info.total_frames
    if total_frames == 0:
        raise SegmentationError("NO_AUDIO_FRAMES", "WAV data chunk contains no complete audio frames")

    count = math.ceil(total_frames / capacity_frames)
    frames_per_segment = math.ceil(total_frames / count)
    leftover = info.data_length - total_frames * info.block_align
    if leftover:
        logger.warning(
            "dropping %s trailing bytes after the last whole PCM frame (block_align=%s)", leftover, info.block_align
        )

    segments: List[Segment] = []
    start_frame = 0
    idx = 0
    while start_frame < total_frames:
        end_frame = min(total_frames, start_frame + frames_per_segment)
        byte_start = info.data_offset + start_frame * info.block_align
        byte_end = info.data_offset + end_frame * info.block_align
        payload = build_pcm_wav(
            data[byte_start:byte_end],
            channels=info.channels,
            sample_rate=info.sample_rate,
            sample_width=info.sample_width,
        )
        segments.append(
            Segment(
                index=idx,
                byte_start=byte_start,
                byte_end=byte_end,
                duration_sec=(end_frame - start_frame) / float(info.sample_rate),
                data=payload,
                mime_type=_WAV,
            )
        )
        start_frame = end_frame
        idx += 1
    return segments


def _mpeg_boundaries(
    size: int, frames: List[int], count: int, max_segment_bytes: int, audio_start: int
) -> Optional[List[int]]:
    bounds = [0]
    prev = 0
    for k in range(count - 1):
        remaining = count - k
        target = prev + min(max_segment_bytes, math.ceil((size - prev) / remaining))
        # Segment 0 must reach into the first frame, not stop at the end of the ID3 tag.
        lower = max(prev + 1, audio_start + 1)
        pick = bisect.bisect_right(frames, target) - 1
        cut = frames[pick] if pick >= 0 else None
        if cut is None or cut < lower:
            raise SegmentationError(
                "NO_FRAME_BOUNDARY",
                f"No MPEG frame boundary found between byte {lower} and {target}",
            )
        bounds.append(cut)
        prev = cut
    if size - prev > max_segment_bytes:
        return None
    bounds.append(size)
    return bounds


def _split_mpeg(data: bytes, max_segment_bytes: int, total_duration: float) -> List[Segment]:
    audio_start = skip_id3v2(data)
    if audio_start >= max_segment_bytes:
        raise SegmentationError(
            "DEGENERATE_BOUNDARY",
            f"ID3 tag ({format_file_size(audio_start)}) does not fit in one segment",
        )
    frames = mpeg_frame_offsets(data, audio_start)
    if not frames:
        raise SegmentationError("NO_FRAME_BOUNDARY", "No MPEG audio frames found; the file cannot be cut safely")
    size = len(data)
    base_count = math.ceil(size / max_segment_bytes)
    bounds: Optional[List[int]] = None
    # Backing cuts up to frame starts can push the tail over the ceiling; add a segment and retry.
    for count in range(base_count, base_count + _MPEG_EXTRA_ATTEMPTS):
        bounds = _mpeg_boundaries(size, frames, count, max_segment_bytes, audio_start)
        if bounds is not None:
            break
    if bounds is None:
        raise SegmentationError("DEGENERATE_BOUNDARY", "Could not place MPEG frame boundaries under the ceiling")

    segments: List[Segment] = []
    for idx, (start, end) in enumerate(zip(bounds, bounds[1:])):
        segments.append(
            Segment(
                index=idx,
                byte_start=start,
                byte_end=end,
                duration_sec=total_duration * (end - start) / float(size),
                data=data[start:end],
                mime_type=_MPEG,
            )
        )
    return segments


def _split_transcoded(
    asset: AudioAsset,
    mime: str,
    max_segment_bytes: int,
    transcoder_bin: Optional[str],
    transcode: Transcoder,
) -> List[Segment]:
    try:
        wav_bytes = transcode(asset.data, transcoder_bin, suffix=_SUFFIX_BY_MIME.get(mime, ".bin"))
        info = parse_pcm_wav(wav_bytes)
    except ValueError as e:
        raise SegmentationError("TRANSCODE_FAILED", f"Could not convert {mime} to a splittable format: {e}") from e
    logger.info(
        "transcoded %s (%s) to PCM WAV (%s) before splitting",
        mime,
        format_file_size(asset.size_bytes),
        format_file_size(len(wav_bytes)),
    )
    if len(wav_bytes) <= max_segment_bytes:
        return [
            Segment(
                index=0,
                byte_start=0,
                byte_end=len(wav_bytes),
                duration_sec=info.duration_sec,
                data=wav_bytes,
                mime_type=_WAV,
            )
        ]
    return _split_wav(wav_bytes, info, max_segment_bytes)


def _check_segments(segments: List[Segment], max_segment_bytes: int) -> None:
    if not segments:
        raise SegmentationError("NO_SEGMENTS", "Splitting produced no segments")
    for expected, seg in enumerate(segments):
        if seg.index != expected:
            raise SegmentationError("SEGMENT_ORDER", f"Segment index {seg.index} found at position {expected}")
        if seg.size_bytes == 0:
            raise SegmentationError("EMPTY_SEGMENT", f"Segment {seg.index} is empty")
        if seg.size_bytes > max_segment_bytes:
            raise SegmentationError(
                "SEGMENT_TOO_LARGE",
                f"Segment {seg.index} is {seg.size_bytes} bytes, above the {max_segment_bytes} byte ceiling",
            )


def split(
    asset: AudioAsset,
    max_segment_bytes: int,
    *,
    transcoder_bin: Optional[str] = None,
    transcode: Transcoder = transcode_to_wav16k_mono,
    decode_fallback: bool = False,
) -> List[Segment]:
    """
    Split `asset` into ordered segments no larger than `max_segment_bytes`.

    For WAV and transcoded input the byte range refers to the PCM data the
    segment carries (header excluded); for MP3 it is the exact slice of the
    original bytes.

    `decode_fallback` lets ogg/flac be decoded in-process when no ffmpeg
    binary is configured.
    """
    if max_segment_bytes <= 0:
        raise SegmentationError("INVALID_CEILING", "max_segment_bytes must be > 0")
    if asset.size_bytes == 0:
        raise SegmentationError("EMPTY_AUDIO", "Cannot split an empty recording")

    mime = normalize_mime_type(asset.mime_type)
    if asset.size_bytes <= max_segment_bytes:
        return [whole_asset_segment(asset, mime)]

    segments: List[Segment]
    if mime == _WAV:
        try:
            info = parse_pcm_wav(asset.data)
        except ValueError as e:
            if not transcoder_bin:
                raise SegmentationError("UNSPLITTABLE_WAV", f"WAV file cannot be split safely: {e}") from e
            segments = _split_transcoded(asset, mime, max_segment_bytes, transcoder_bin, transcode)
        else:
            segments = _split_wav(asset.data, info, max_segment_bytes)
    elif mime == _MPEG:
        total = asset.duration_sec if asset.duration_sec is not None else estimate_duration_sec(asset.size_bytes, mime)
        segments = _split_mpeg(asset.data, max_segment_bytes, total)
    elif transcoder_bin or (decode_fallback and mime in DECODABLE_WITHOUT_FFMPEG):
        segments = _split_transcoded(asset, mime, max_segment_bytes, transcoder_bin, transcode)
    else:
        raise SegmentationError(
            "UNSPLITTABLE_CONTAINER",
            f"{mime} recordings above {format_file_size(max_segment_bytes)} cannot be split safely "
            "without ffmpeg; upload WAV or MP3, or a shorter recording.",
        )

    _check_segments(segments, max_segment_bytes)
    logger.info(
        "split %s (%s) into %s segments (ceiling %s)",
        mime,
        format_file_size(asset.size_bytes),
        len(segments),
        format_file_size(max_segment_bytes),
    )
    return segments
