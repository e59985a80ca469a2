"""
longscribe.models - Data model for one transcription run.

Segments produced by the splitter, per-segment service results, the
accumulated subtitle lines, and the RunState owned by the Orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from longscribe.exceptions import RunFailure


@dataclass(frozen=True)
class Segment:
    """One slice of the recording, sent to the service as a unit.

    ``absolute_end - absolute_start`` may exceed the nominal window because
    the slice carries the trailing overlap buffer.
    """

    index: int
    total_count: int
    absolute_start: float
    absolute_end: float
    payload: bytes = field(repr=False)
    mime_type: str = "audio/wav"

    @property
    def duration(self) -> float:
        return self.absolute_end - self.absolute_start

    @property
    def is_final(self) -> bool:
        return self.index == self.total_count - 1


@dataclass(frozen=True)
class TimedLine:
    """A line as reported by the service, with segment-relative timestamps."""

    start: str
    end: str
    text: str


@dataclass(frozen=True)
class TranscriptionResult:
    """Structured service response for one segment."""

    lines: tuple[TimedLine, ...]
    summary: str


@dataclass
class SubtitleLine:
    """A reconciled line on the absolute timeline. Text is user-editable."""

    id: int
    start_time: float
    end_time: float
    text: str


class RunPhase(str, Enum):
    IDLE = "idle"
    SEGMENTING = "segmenting"
    TRANSCRIBING = "transcribing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RunState:
    """Process-wide state for one pipeline execution.

    Mutation rights: only the Orchestrator changes ``phase``, ``segments``,
    ``cursor`` and appends to ``accumulated_lines``. Users may overwrite
    ``running_context`` and the ``text`` of an accumulated line.
    """

    phase: RunPhase = RunPhase.IDLE
    segments: tuple[Segment, ...] = ()
    cursor: int = 0
    running_context: str = ""
    context_override: bool = False
    accumulated_lines: list[SubtitleLine] = field(default_factory=list)
    failure: RunFailure | None = None

    @property
    def total_segments(self) -> int:
        return len(self.segments)

    @property
    def is_resumable(self) -> bool:
        return self.phase in (RunPhase.FAILED, RunPhase.PAUSED) and bool(self.segments)

    @property
    def progress(self) -> float:
        """Fraction of segments completed, 0.0 to 1.0."""
        if not self.segments:
            return 0.0
        if self.phase == RunPhase.COMPLETED:
            return 1.0
        return self.cursor / len(self.segments)

    def next_line_id(self) -> int:
        """Next free line id, continuing from the highest id accumulated."""
        if not self.accumulated_lines:
            return 1
        return max(line.id for line in self.accumulated_lines) + 1
