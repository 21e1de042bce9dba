from __future__ import annotations

import io
import struct
import subprocess
import tempfile
import wave
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import miniaudio
import numpy as np

WAV_HEADER_BYTES = 44
_WAVE_FORMAT_PCM = 0x0001
_WAVE_FORMAT_EXTENSIBLE = 0xFFFE
_UNKNOWN_CHUNK_SIZE = 0xFFFFFFFF

# Rough average bitrates used when a recording's duration is unknown.
_BITRATE_BY_MIME = {
    "audio/wav": 1_411_200,
    "audio/flac": 800_000,
    "audio/mp4": 256_000,
    "audio/m4a": 256_000,
    "audio/aac": 256_000,
    "audio/ogg": 192_000,
    "audio/webm": 192_000,
    "audio/mpeg": 192_000,
}
_DEFAULT_BITRATE = 128_000
_MIN_ESTIMATED_SEC = 1.0
_MAX_ESTIMATED_SEC = 4 * 60 * 60.0

# Containers miniaudio can decode in-process when ffmpeg is missing.
DECODABLE_WITHOUT_FFMPEG = frozenset({"audio/ogg", "audio/flac"})


@dataclass(frozen=True)
class PcmWavInfo:
    channels: int
    sample_rate: int
    sample_width: int
    block_align: int
    data_offset: int
    data_length: int

    @property
    def total_frames(self) -> int:
        return self.data_length // self.block_align

    @property
    def duration_sec(self) -> float:
        return self.total_frames / float(self.sample_rate) if self.sample_rate else 0.0


def parse_pcm_wav(data: bytes) -> PcmWavInfo:
    """
    Walk the RIFF chunk list and locate the PCM `fmt ` and `data` chunks.

    A `data` chunk whose declared size is unknown or larger than the payload
    (streamed encoders write 0xFFFFFFFF) is clamped to the end of the buffer.
    Raises ValueError for anything that is not integer PCM.
    """
    if len(data) < 12 or data[0:4] != b"RIFF" or data[8:12] != b"WAVE":
        raise ValueError("not a RIFF/WAVE stream")

    fmt: Optional[tuple[int, int, int, int, int]] = None
    pos = 12
    while pos + 8 <= len(data):
        chunk_id = data[pos : pos + 4]
        (chunk_size,) = struct.unpack("<I", data[pos + 4 : pos + 8])
        body = pos + 8
        if chunk_id == b"fmt ":
            if chunk_size < 16 or body + 16 > len(data):
                raise ValueError("truncated fmt chunk")
            audio_format, channels, sample_rate, _byte_rate, block_align, bits = struct.unpack(
                "<HHIIHH", data[body : body + 16]
            )
            fmt = (audio_format, channels, sample_rate, block_align, bits)
        elif chunk_id == b"data":
            if fmt is None:
                raise ValueError("data chunk precedes fmt chunk")
            audio_format, channels, sample_rate, block_align, bits = fmt
            if audio_format not in {_WAVE_FORMAT_PCM, _WAVE_FORMAT_EXTENSIBLE}:
                raise ValueError(f"unsupported WAV encoding (format tag {audio_format:#06x})")
            if bits not in {8, 16, 24, 32} or channels <= 0 or sample_rate <= 0 or block_align <= 0:
                raise ValueError("invalid PCM parameters in fmt chunk")
            available = len(data) - body
            if chunk_size == _UNKNOWN_CHUNK_SIZE or chunk_size > available:
                chunk_size = available
            return PcmWavInfo(
                channels=channels,
                sample_rate=sample_rate,
                sample_width=bits // 8,
                block_align=block_align,
                data_offset=body,
                data_length=chunk_size,
            )
        if chunk_size == _UNKNOWN_CHUNK_SIZE:
            break
        pos = body + chunk_size + (chunk_size & 1)
    raise ValueError("no data chunk found")


def build_pcm_wav(pcm: bytes, *, channels: int, sample_rate: int, sample_width: int) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buf.getvalue()


def compute_rms_pcm16(pcm: bytes) -> Optional[float]:
    usable = len(pcm) - (len(pcm) % 2)
    if usable <= 0:
        return None
    audio = np.frombuffer(pcm[:usable], dtype="<i2").astype(np.float32) / 32768.0
    return float(np.sqrt(np.mean(audio * audio)))


def skip_id3v2(data: bytes) -> int:
    if len(data) < 10 or data[0:3] != b"ID3":
        return 0
    size_bytes = data[6:10]
    size = 0
    for b in size_bytes:
        size = (size << 7) | (b & 0x7F)
    footer = 10 if data[5] & 0x10 else 0
    return min(len(data), 10 + size + footer)


# Bitrates in kbps keyed by the header layer bits (1=III, 2=II, 3=I).
_MPEG1_BITRATES = {
    3: (0, 32, 64, 96, 128, 160, 192, 224, 256, 288, 320, 352, 384, 416, 448),
    2: (0, 32, 48, 56, 64, 80, 96, 112, 128, 160, 192, 224, 256, 320, 384),
    1: (0, 32, 40, 48, 56, 64, 80, 96, 112, 128, 160, 192, 224, 256, 320),
}
_MPEG2_BITRATES = {
    3: (0, 32, 48, 56, 64, 80, 96, 112, 128, 144, 160, 176, 192, 224, 256),
    2: (0, 8, 16, 24, 32, 40, 48, 56, 64, 80, 96, 112, 128, 144, 160),
    1: (0, 8, 16, 24, 32, 40, 48, 56, 64, 80, 96, 112, 128, 144, 160),
}
_MPEG_SAMPLE_RATES = {
    0b11: (44100, 48000, 32000),
    0b10: (22050, 24000, 16000),
    0b00: (11025, 12000, 8000),
}


def mpeg_frame_length(data: bytes, pos: int) -> Optional[int]:
    """
    Byte length of the MPEG audio frame whose header starts at `pos`, or None
    when the 4 bytes there are not a usable header (free-format included).
    """
    if pos < 0 or pos + 4 > len(data):
        return None
    b0, b1, b2 = data[pos], data[pos + 1], data[pos + 2]
    if b0 != 0xFF or (b1 & 0xE0) != 0xE0:
        return None
    version = (b1 >> 3) & 0x03
    layer = (b1 >> 1) & 0x03
    bitrate_idx = (b2 >> 4) & 0x0F
    rate_idx = (b2 >> 2) & 0x03
    if version == 0x01 or layer == 0x00 or bitrate_idx in (0x00, 0x0F) or rate_idx == 0x03:
        return None
    padding = (b2 >> 1) & 0x01
    table = _MPEG1_BITRATES if version == 0x03 else _MPEG2_BITRATES
    bitrate = table[layer][bitrate_idx] * 1000
    sample_rate = _MPEG_SAMPLE_RATES[version][rate_idx]
    if layer == 0x03:
        return (12 * bitrate // sample_rate + padding) * 4
    if layer == 0x01 and version != 0x03:
        return 72 * bitrate // sample_rate + padding
    return 144 * bitrate // sample_rate + padding


def _confirmed_frame(data: bytes, pos: int, depth: int = 2) -> bool:
    # A header counts only when the frames it chains into are headers too.
    for _ in range(depth + 1):
        length = mpeg_frame_length(data, pos)
        if length is None:
            return False
        pos += length
        if pos >= len(data):
            return True
    return True


def mpeg_frame_offsets(data: bytes, start: int = 0) -> list[int]:
    """
    Offsets of every MPEG audio frame from `start`, found by following frame
    lengths rather than scanning for sync bytes, so header-like bytes inside
    frame payloads are never reported. Junk between frames (ID3v1 trailers,
    damaged regions) is skipped by resyncing on a confirmed header chain.
    """
    offsets: list[int] = []
    pos = start
    size = len(data)
    while pos + 4 <= size:
        length = mpeg_frame_length(data, pos)
        if length is not None and (offsets or _confirmed_frame(data, pos)):
            offsets.append(pos)
            pos += length
            continue
        nxt = data.find(b"\xff", pos + 1)
        while nxt != -1 and not _confirmed_frame(data, nxt):
            nxt = data.find(b"\xff", nxt + 1)
        if nxt == -1:
            break
        pos = nxt
    return offsets


def estimate_duration_sec(size_bytes: int, mime_type: str) -> float:
    bitrate = _BITRATE_BY_MIME.get(mime_type, _DEFAULT_BITRATE)
    seconds = (size_bytes * 8) / float(bitrate)
    return max(_MIN_ESTIMATED_SEC, min(seconds, _MAX_ESTIMATED_SEC))


def decode_to_wav16k_mono(data: bytes) -> bytes:
    try:
        decoded = miniaudio.decode(
            data,
            output_format=miniaudio.SampleFormat.SIGNED16,
            nchannels=1,
            sample_rate=16000,
        )
    except miniaudio.MiniaudioError as e:
        raise ValueError(f"Audio conversion failed via miniaudio: {e}") from e
    return build_pcm_wav(decoded.samples.tobytes(), channels=1, sample_rate=16000, sample_width=2)


def transcode_to_wav16k_mono(
    data: bytes,
    ffmpeg_bin: Optional[str],
    *,
    suffix: str = ".bin",
    timeout_sec: float = 300.0,
) -> bytes:
    """
    Re-encode an arbitrary container to 16kHz mono PCM WAV.
    Prefers ffmpeg; without it, falls back to an in-process `miniaudio` decode.
    Temp files are used instead of pipes so containers with trailing indexes
    (mp4/m4a moov atoms) still decode.
    """
    if not ffmpeg_bin:
        return decode_to_wav16k_mono(data)
    with tempfile.TemporaryDirectory(prefix="transcode_") as tmp_dir:
        in_path = Path(tmp_dir) / f"input{suffix}"
        out_path = Path(tmp_dir) / "output.wav"
        in_path.write_bytes(data)
        cmd = [
            ffmpeg_bin,
            "-hide_banner",
            "-loglevel",
            "error",
            "-y",
            "-i",
            str(in_path),
            "-ac",
            "1",
            "-ar",
            "16000",
            "-acodec",
            "pcm_s16le",
            str(out_path),
        ]
        try:
            subprocess.run(
                cmd,
                check=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=timeout_sec,
            )
        except subprocess.TimeoutExpired as e:
            raise ValueError("Audio conversion via ffmpeg timed out") from e
        except subprocess.CalledProcessError as e:
            stderr = (
                e.stderr.decode("utf-8", "ignore")
                if isinstance(e.stderr, (bytes, bytearray))
                else str(e.stderr)
            )
            raise ValueError(
                f"Audio conversion failed via ffmpeg: {stderr.strip() or 'unknown error'}"
            ) from e
        except OSError as e:
            raise ValueError(f"Audio conversion failed: {e}") from e
        return out_path.read_bytes()


def format_file_size(size_bytes: int) -> str:
    if size_bytes < 1024:
        return f"{max(0, size_bytes)} B"
    value = float(size_bytes)
    for unit in ("KB", "MB", "GB"):
        value /= 1024.0
        if value < 1024.0 or unit == "GB":
            break
    return f"{value:.1f} {unit}"


def format_duration(seconds: float) -> str:
    total = max(0, int(seconds))
    return f"{total // 60}:{total % 60:02d}"
