"""
longscribe.extract.audio - FFmpeg decoding and overlap-window splitting.

Decodes a recording to mono float PCM, resamples it to the target rate,
and cuts it into fixed windows that each carry a trailing overlap buffer.
Every window is re-encoded as a standalone 16-bit WAV so the transcription
client can send it as an opaque blob.
"""

from __future__ import annotations

import io
import json
import logging
import math
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np
import soundfile as sf

from longscribe.exceptions import SegmentationError
from longscribe.models import Segment

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 16000
DEFAULT_WINDOW_SECONDS = 600.0
DEFAULT_OVERLAP_SECONDS = 10.0

ProgressCallback = Callable[[str], None]


@dataclass
class DecodedAudio:
    """Mono float32 PCM at a known sample rate."""

    samples: np.ndarray
    sample_rate: int

    @property
    def total_samples(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        return self.total_samples / self.sample_rate


def _run_ffmpeg(cmd: list[str], input_data: bytes | None = None) -> bytes:
    """Run an ffmpeg/ffprobe command and return its stdout."""
    try:
        proc = subprocess.run(cmd, input=input_data, capture_output=True)
    except FileNotFoundError as e:
        raise SegmentationError(f"{cmd[0]} not found in PATH") from e

    if proc.returncode != 0:
        stderr = proc.stderr.decode("utf-8", errors="replace").strip()
        raise SegmentationError(f"{cmd[0]} failed: {stderr or 'no error output'}")
    return proc.stdout


def probe_audio(path: Path) -> dict[str, Any]:
    """Probe the first audio stream of a file using ffprobe."""
    cmd = [
        "ffprobe",
        "-v",
        "quiet",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        "-select_streams",
        "a:0",
        str(path),
    ]
    output = _run_ffmpeg(cmd)
    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise SegmentationError(f"ffprobe returned invalid output for {path}") from e

    streams = data.get("streams", [])
    if not streams:
        raise SegmentationError(f"No audio stream found in {path}")

    stream = streams[0]
    fmt = data.get("format", {})
    return {
        "sample_rate": int(stream.get("sample_rate", 0)),
        "channels": int(stream.get("channels", 0)),
        "codec": stream.get("codec_name"),
        "duration_seconds": float(fmt.get("duration", 0.0) or 0.0),
        "size_bytes": int(fmt.get("size", 0) or 0),
    }


def decode_audio(path: Path, sample_rate: int) -> np.ndarray:
    """Decode a file to mono float32 PCM at its native sample rate."""
    cmd = [
        "ffmpeg",
        "-hide_banner",
        "-loglevel",
        "error",
        "-i",
        str(path),
        "-vn",
        "-ac",
        "1",
        "-ar",
        str(sample_rate),
        "-f",
        "f32le",
        "pipe:1",
    ]
    raw = _run_ffmpeg(cmd)
    return np.frombuffer(raw, dtype="<f4").copy()


def resample_audio(samples: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """Resample mono float32 PCM with ffmpeg's resampler.

    Returns the input unchanged when the rates already match.
    """
    if source_rate == target_rate:
        return samples

    cmd = [
        "ffmpeg",
        "-hide_banner",
        "-loglevel",
        "error",
        "-f",
        "f32le",
        "-ar",
        str(source_rate),
        "-ac",
        "1",
        "-i",
        "pipe:0",
        "-f",
        "f32le",
        "-ar",
        str(target_rate),
        "-ac",
        "1",
        "pipe:1",
    ]
    raw = _run_ffmpeg(cmd, input_data=samples.astype("<f4").tobytes())
    return np.frombuffer(raw, dtype="<f4").copy()


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """Encode mono float PCM as a self-contained 16-bit WAV."""
    buffer = io.BytesIO()
    sf.write(buffer, np.clip(samples, -1.0, 1.0), sample_rate, format="WAV", subtype="PCM_16")
    return buffer.getvalue()


def split_samples(
    samples: np.ndarray,
    sample_rate: int,
    window_seconds: float = DEFAULT_WINDOW_SECONDS,
    overlap_seconds: float = DEFAULT_OVERLAP_SECONDS,
    encoder: Callable[[np.ndarray, int], bytes] = encode_wav,
) -> list[Segment]:
    """Cut PCM into windows of ``window_seconds`` plus a trailing overlap.

    Window i covers ``[i*W, min(total, i*W + W + O))``. The last window is
    clamped to the end of the recording, so it carries no overlap tail.

    Args:
        samples: Mono PCM samples
        sample_rate: Sample rate of ``samples``
        window_seconds: Nominal window length W
        overlap_seconds: Overlap buffer length O
        encoder: Turns a PCM slice into the segment payload

    Returns:
        Ordered list of Segments
    """
    if window_seconds <= 0:
        raise ValueError("window_seconds must be positive")
    if overlap_seconds < 0:
        raise ValueError("overlap_seconds must not be negative")

    total_samples = int(samples.shape[0])
    if total_samples == 0:
        return []

    window_samples = int(round(window_seconds * sample_rate))
    overlap_samples = int(round(overlap_seconds * sample_rate))
    total_count = math.ceil(total_samples / window_samples)

    segments = []
    for i in range(total_count):
        start_sample = i * window_samples
        end_sample = min(total_samples, start_sample + window_samples + overlap_samples)
        pcm = samples[start_sample:end_sample]

        segments.append(
            Segment(
                index=i,
                total_count=total_count,
                absolute_start=i * window_seconds,
                absolute_end=end_sample / sample_rate,
                payload=encoder(pcm, sample_rate),
            )
        )

    return segments


def segment_audio(
    source: Path,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    window_seconds: float = DEFAULT_WINDOW_SECONDS,
    overlap_seconds: float = DEFAULT_OVERLAP_SECONDS,
    progress: ProgressCallback | None = None,
) -> list[Segment]:
    """Decode, resample and split a recording into transcription segments.

    Args:
        source: Path to any audio/video file FFmpeg can read
        sample_rate: Target sample rate for the payloads
        window_seconds: Nominal window length
        overlap_seconds: Trailing overlap appended to each window
        progress: Optional callback receiving human-readable phase messages

    Returns:
        Ordered list of Segments

    Raises:
        SegmentationError: If the file cannot be read, decoded or split.
            Nothing is returned on failure.
    """

    def notify(message: str) -> None:
        logger.debug(message)
        if progress:
            progress(message)

    try:
        notify("Reading file...")
        if not source.is_file():
            raise SegmentationError(f"Audio file not found: {source}")
        info = probe_audio(source)
        source_rate = info["sample_rate"] or sample_rate

        notify("Decoding audio data (this may take a moment)...")
        decoded = decode_audio(source, source_rate)

        notify(f"Resampling to {sample_rate / 1000:g}kHz mono...")
        audio = DecodedAudio(resample_audio(decoded, source_rate, sample_rate), sample_rate)
        if audio.total_samples == 0:
            raise SegmentationError(f"No audio samples decoded from {source}")

        notify("Splitting audio into chunks...")
        segments = split_samples(audio.samples, sample_rate, window_seconds, overlap_seconds)

    except SegmentationError:
        raise
    except Exception as e:
        raise SegmentationError(f"Audio segmentation failed: {e}") from e

    logger.info(
        "Segmented %s (%.1fs) into %d chunk(s)", source.name, audio.duration, len(segments)
    )
    notify(f"Prepared {len(segments)} chunks.")
    return segments


def format_size(path: Path) -> str:
    """Format file size in human-readable format."""
    if not path.exists():
        return "-"
    size = path.stat().st_size
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"
