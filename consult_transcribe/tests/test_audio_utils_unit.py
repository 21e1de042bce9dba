import os
import stat
import struct
import sys

import pytest

from consult_transcribe.internal_core.audio_utils import (
    build_pcm_wav,
    compute_rms_pcm16,
    decode_to_wav16k_mono,
    estimate_duration_sec,
    format_duration,
    format_file_size,
    mpeg_frame_length,
    mpeg_frame_offsets,
    parse_pcm_wav,
    skip_id3v2,
    transcode_to_wav16k_mono,
)
from consult_transcribe.internal_core.outcome_cache import InMemoryOutcomeCache, cache_key


def test_parse_pcm_wav_reads_built_header() -> None:
    data = build_pcm_wav(b"\x01\x00" * 800, channels=2, sample_rate=8000, sample_width=2)
    info = parse_pcm_wav(data)

    assert info.channels == 2
    assert info.sample_rate == 8000
    assert info.block_align == 4
    assert info.data_offset == 44
    assert info.total_frames == 400
    assert info.duration_sec == pytest.approx(0.05)


def test_parse_pcm_wav_clamps_streaming_data_size() -> None:
    data = bytearray(build_pcm_wav(b"\x00\x00" * 100, channels=1, sample_rate=16000, sample_width=2))
    data[40:44] = struct.pack("<I", 0xFFFFFFFF)
    info = parse_pcm_wav(bytes(data))
    assert info.data_length == 200


def test_parse_pcm_wav_rejects_non_pcm() -> None:
    data = bytearray(build_pcm_wav(b"\x00\x00" * 10, channels=1, sample_rate=16000, sample_width=2))
    data[20:22] = struct.pack("<H", 0x0055)
    with pytest.raises(ValueError, match="unsupported WAV encoding"):
        parse_pcm_wav(bytes(data))
    with pytest.raises(ValueError):
        parse_pcm_wav(b"ID3\x04" + b"\x00" * 40)


def test_compute_rms_pcm16_measures_level() -> None:
    assert compute_rms_pcm16(b"") is None
    assert compute_rms_pcm16(b"\x00\x00" * 10) == 0.0
    assert compute_rms_pcm16(struct.pack("<h", 16384) * 10) == pytest.approx(0.5)


def test_skip_id3v2_and_walk_mpeg_frames() -> None:
    data = b"ID3\x04\x00\x00\x00\x00\x00\x05" + b"\x00" * 5 + b"\xff\xfb\x90\x64" + b"\x00" * 20
    assert skip_id3v2(data) == 15
    assert skip_id3v2(b"\xff\xfb\x90\x64") == 0
    assert mpeg_frame_offsets(data) == [15]
    assert mpeg_frame_offsets(data, 16) == []


def test_mpeg_frame_length_follows_header_fields() -> None:
    assert mpeg_frame_length(b"\xff\xfb\x90\x64", 0) == 417
    assert mpeg_frame_length(b"\xff\xfb\x92\x64", 0) == 418
    assert mpeg_frame_length(b"\xff\xf3\x90\x64", 0) == 261
    assert mpeg_frame_length(b"\xff\xfb\x00\x64", 0) is None
    assert mpeg_frame_length(b"\xff\xfb\x90", 0) is None


def test_mpeg_frame_offsets_resyncs_past_junk() -> None:
    frame = b"\xff\xfb\x90\x64" + b"\x00" * 413
    data = frame * 3 + b"TAG\xff\xfb" + b"\x00" * 20 + frame * 3

    offsets = mpeg_frame_offsets(data)

    resumed = 3 * 417 + 25
    assert offsets == [0, 417, 834, resumed, resumed + 417, resumed + 834]


def test_estimate_duration_sec_is_clamped() -> None:
    assert estimate_duration_sec(24_000, "audio/mpeg") == pytest.approx(1.0)
    assert estimate_duration_sec(2_400_000, "audio/mpeg") == pytest.approx(100.0)
    assert estimate_duration_sec(10**12, "audio/mpeg") == pytest.approx(4 * 3600.0)


def test_format_file_size_and_duration() -> None:
    assert format_file_size(0) == "0 B"
    assert format_file_size(512) == "512 B"
    assert format_file_size(1536) == "1.5 KB"
    assert format_file_size(40 * 1024 * 1024) == "40.0 MB"
    assert format_duration(0) == "0:00"
    assert format_duration(125.9) == "2:05"


def test_outcome_cache_expires_entries() -> None:
    now = [1000.0]
    cache = InMemoryOutcomeCache(30, clock=lambda: now[0])
    key = cache_key(b"audio", "audio/wav", ("language", "nl"))

    cache.put(key, "outcome")
    assert cache.get(key) == "outcome"
    assert key != cache_key(b"audio", "audio/wav", ("language", "en"))

    now[0] += 31
    assert cache.get(key) is None
    assert len(cache) == 0


def test_outcome_cache_with_zero_ttl_stores_nothing() -> None:
    cache = InMemoryOutcomeCache(0)
    cache.put("k", "v")
    assert len(cache) == 0
    assert cache.purge_expired() == 0


def _crc8(data: bytes) -> int:
    crc = 0
    for byte in data:
        crc ^= byte
        for _ in range(8):
            crc = ((crc << 1) ^ 0x07) & 0xFF if crc & 0x80 else (crc << 1) & 0xFF
    return crc


def _crc16(data: bytes) -> int:
    crc = 0
    for byte in data:
        crc ^= byte << 8
        for _ in range(8):
            crc = ((crc << 1) ^ 0x8005) & 0xFFFF if crc & 0x8000 else (crc << 1) & 0xFFFF
    return crc


def _tiny_flac(samples: list[int]) -> bytes:
    """8 kHz mono 16-bit FLAC with a single verbatim-coded frame."""
    n = len(samples)
    info = struct.pack(">HH", n, n) + b"\x00" * 6
    info += ((8000 << 44) | (0 << 41) | (15 << 36) | n).to_bytes(8, "big") + b"\x00" * 16
    stream = b"fLaC" + b"\x80" + len(info).to_bytes(3, "big") + info
    # Fixed blocksize, 8-bit (blocksize-1) trailer, 8 kHz, mono, 16 bit, frame 0.
    frame = bytes([0xFF, 0xF8, 0x64, 0x08, 0x00, n - 1])
    frame += bytes([_crc8(frame)])
    frame += b"\x02" + struct.pack(f">{n}h", *samples)
    frame += struct.pack(">H", _crc16(frame))
    return stream + frame


def test_decode_to_wav16k_mono_decodes_flac_in_process() -> None:
    flac = _tiny_flac([((i * 97) % 2000) - 1000 for i in range(256)])

    info = parse_pcm_wav(decode_to_wav16k_mono(flac))

    assert info.channels == 1
    assert info.sample_rate == 16000
    assert info.sample_width == 2
    assert info.duration_sec == pytest.approx(256 / 8000.0, abs=0.005)
    assert parse_pcm_wav(transcode_to_wav16k_mono(flac, None)).sample_rate == 16000


def test_decode_to_wav16k_mono_maps_decoder_errors() -> None:
    with pytest.raises(ValueError, match="miniaudio"):
        decode_to_wav16k_mono(b"not audio at all" * 8)


def _stub_ffmpeg(tmp_path, body: str) -> str:
    script = tmp_path / "ffmpeg"
    script.write_text("#!/bin/sh\n" + body)
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return str(script)


@pytest.mark.skipif(sys.platform == "win32", reason="shell stub binary")
def test_transcode_reports_ffmpeg_failure_output(tmp_path) -> None:
    ffmpeg = _stub_ffmpeg(tmp_path, 'echo "input.ogg: Invalid data found when processing input" >&2\nexit 1\n')

    with pytest.raises(ValueError, match="Audio conversion failed via ffmpeg: .*Invalid data found"):
        transcode_to_wav16k_mono(b"\x00" * 64, ffmpeg, suffix=".ogg")


@pytest.mark.skipif(sys.platform == "win32", reason="shell stub binary")
def test_transcode_reads_ffmpeg_output_file(tmp_path) -> None:
    wav = build_pcm_wav(b"\x00\x00" * 1600, channels=1, sample_rate=16000, sample_width=2)
    prepared = tmp_path / "prepared.wav"
    prepared.write_bytes(wav)
    ffmpeg = _stub_ffmpeg(tmp_path, f'for last; do :; done\ncp "{prepared}" "$last"\n')

    assert transcode_to_wav16k_mono(b"\x00" * 64, ffmpeg, suffix=".webm") == wav


def test_transcode_reports_missing_ffmpeg_binary(tmp_path) -> None:
    with pytest.raises(ValueError, match="Audio conversion failed"):
        transcode_to_wav16k_mono(b"\x00" * 64, os.fspath(tmp_path / "no-such-ffmpeg"))
