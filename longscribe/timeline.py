"""
longscribe.timeline - Segment-relative to absolute timeline reconciliation.

Converts the model's per-chunk timestamps into recording time and drops
lines that start inside a chunk's trailing overlap buffer. Those lines are
transcribed again at the head of the next chunk, with the previous chunk's
summary as context and without being cut off by the window boundary, so
only that second pass is kept. This is a heuristic: if the second pass
omits or mis-times something, the first pass is not used as a fallback.
"""

from __future__ import annotations

import logging
import math

from longscribe.exceptions import ParseError
from longscribe.models import Segment, SubtitleLine, TranscriptionResult

logger = logging.getLogger(__name__)


def parse_timestamp(timestamp: str) -> float:
    """Parse "MM:SS.mmm" or "HH:MM:SS.mmm" into seconds.

    Every field may be fractional; a comma is accepted as decimal separator.

    Raises:
        ParseError: If the timestamp has the wrong shape
    """
    parts = timestamp.strip().replace(",", ".").split(":")
    if len(parts) not in (2, 3):
        raise ParseError(f"Unsupported timestamp format: {timestamp!r}")

    try:
        values = [float(part) for part in parts]
    except ValueError as e:
        raise ParseError(f"Unsupported timestamp format: {timestamp!r}") from e

    if not all(math.isfinite(v) for v in values):
        raise ParseError(f"Non-finite timestamp: {timestamp!r}")

    if any(v < 0 for v in values):
        raise ParseError(f"Negative timestamp: {timestamp!r}")

    if len(values) == 3:
        hours, minutes, seconds = values
        return hours * 3600 + minutes * 60 + seconds
    minutes, seconds = values
    return minutes * 60 + seconds


def reconcile(
    result: TranscriptionResult,
    segment: Segment,
    is_final_segment: bool,
    window_seconds: float,
    first_id: int = 1,
) -> list[SubtitleLine]:
    """Place a chunk's lines on the absolute timeline.

    A line is kept when its start offset is below the nominal window length,
    or when this is the final chunk (nothing follows to claim its tail).
    Kept lines get consecutive ids starting at ``first_id``.

    Args:
        result: Parsed service result for the chunk
        segment: The chunk the result belongs to
        is_final_segment: Whether this is the last chunk of the recording
        window_seconds: Nominal window length W, excluding the overlap
        first_id: Id for the first kept line

    Returns:
        Kept lines in the order the service emitted them

    Raises:
        ParseError: If any timestamp cannot be parsed
    """
    lines = []
    next_id = first_id
    dropped = 0

    for line in result.lines:
        start_offset = parse_timestamp(line.start)
        end_offset = parse_timestamp(line.end)

        if not is_final_segment and start_offset >= window_seconds:
            dropped += 1
            continue

        lines.append(
            SubtitleLine(
                id=next_id,
                start_time=segment.absolute_start + start_offset,
                end_time=segment.absolute_start + end_offset,
                text=line.text,
            )
        )
        next_id += 1

    if dropped:
        logger.debug(
            "Chunk %d: dropped %d line(s) starting in the overlap buffer",
            segment.index + 1,
            dropped,
        )
    return lines
