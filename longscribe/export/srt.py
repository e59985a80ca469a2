"""
longscribe.export.srt - SubRip subtitle generation.

Serializes accumulated subtitle lines one-for-one into numbered SRT
blocks and writes them to disk atomically.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Iterable
from pathlib import Path

from longscribe.exceptions import ExportError
from longscribe.export.timecode import seconds_to_srt_timestamp
from longscribe.models import SubtitleLine


def format_srt_block(number: int, line: SubtitleLine) -> str:
    start = seconds_to_srt_timestamp(line.start_time)
    end = seconds_to_srt_timestamp(line.end_time)
    return f"{number}\n{start} --> {end}\n{line.text}\n"


def generate_srt_content(lines: Iterable[SubtitleLine]) -> str:
    """Render lines as SRT text.

    Blocks are numbered 1..N in id order and separated by one blank line.
    """
    ordered = sorted(lines, key=lambda line: line.id)
    return "\n".join(format_srt_block(i + 1, line) for i, line in enumerate(ordered))


def write_srt(lines: Iterable[SubtitleLine], output_path: Path) -> Path:
    """Write lines to an SRT file.

    The content goes to a sibling temp file that then replaces
    ``output_path``, so an interrupted write never leaves a truncated file.

    Raises:
        ExportError: If the file cannot be written
    """
    content = generate_srt_content(lines)
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{output_path.stem}.", suffix=".srt.tmp", dir=output_path.parent
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
                f.write(content)
            tmp_path.replace(output_path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
    except OSError as e:
        raise ExportError(f"Could not write SRT file {output_path}: {e}") from e
    return output_path


def default_output_path(audio_path: Path) -> Path:
    """SRT path next to the audio file, named after it."""
    return audio_path.with_suffix(".srt")
