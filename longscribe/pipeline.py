"""
longscribe.pipeline - Run orchestration: segment, transcribe, reconcile.

The Orchestrator owns a single RunState and drives it through
idle -> segmenting -> transcribing -> completed | failed | paused.
Chunks are transcribed strictly one after another because every request
carries the summary produced by the previous one. A failed or cancelled
run keeps its lines, cursor and running context so it can be resumed at
the chunk that stopped it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from longscribe.config import ScribeConfig
from longscribe.exceptions import (
    CancellationError,
    RequestError,
    RunFailure,
    RunStateError,
    SegmentationError,
)
from longscribe.extract.audio import segment_audio
from longscribe.llm.client import CancelToken, TranscriptionClient
from longscribe.models import RunPhase, RunState, Segment, SubtitleLine
from longscribe.timeline import reconcile

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[Any]]

# Backoff is slept in steps this long so a cancel takes effect promptly.
BACKOFF_STEP = 0.25


class PipelineObserver:
    """Receives run events. All hooks are no-ops; override the ones you need."""

    def on_phase_change(self, phase: RunPhase) -> None:
        pass

    def on_progress(self, message: str) -> None:
        pass

    def on_segment_start(self, segment: Segment) -> None:
        pass

    def on_partial(self, text: str) -> None:
        pass

    def on_reasoning(self, text: str) -> None:
        pass

    def on_attempt_failed(self, segment: Segment, attempt: int, error: Exception) -> None:
        pass

    def on_segment_complete(self, segment: Segment, lines: list[SubtitleLine]) -> None:
        pass


class Orchestrator:
    """Drives one transcription run and owns its RunState."""

    def __init__(
        self,
        client: TranscriptionClient,
        config: ScribeConfig,
        instructions: str | None = None,
        model_id: str | None = None,
        observer: PipelineObserver | None = None,
        segmenter: Callable[..., list[Segment]] | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.client = client
        self.config = config
        self.instructions = instructions if instructions is not None else config.instructions
        self.model_id = model_id
        self.observer = observer or PipelineObserver()
        self.cancel_token = CancelToken()
        self.state = RunState()
        self.source: Path | None = None
        self._segmenter = segmenter or segment_audio
        self._sleep = sleep

    # Run control

    async def start(self, source: Path) -> RunState:
        """Start a fresh run, discarding any previous state.

        Raises:
            SegmentationError: If the audio cannot be segmented (run -> failed)
            RunFailure: If a chunk exhausts its attempts (run -> failed)
        """
        self._ensure_not_running()
        self.source = source
        self.state = RunState()
        self.cancel_token = CancelToken()

        self._set_phase(RunPhase.SEGMENTING)
        try:
            segments = await asyncio.to_thread(
                self._segmenter,
                source,
                sample_rate=self.config.sample_rate,
                window_seconds=self.config.window_seconds,
                overlap_seconds=self.config.overlap_seconds,
                progress=self.observer.on_progress,
            )
        except SegmentationError:
            self._set_phase(RunPhase.FAILED)
            raise
        except Exception as e:
            self._set_phase(RunPhase.FAILED)
            raise SegmentationError(f"Failed to process audio file: {e}") from e

        if not segments:
            self._set_phase(RunPhase.FAILED)
            raise SegmentationError(f"No audio to transcribe in {source}")

        self.state.segments = tuple(segments)
        return await self._transcribe_from(0)

    async def restart(self, source: Path | None = None) -> RunState:
        """Discard everything and run again from segmentation."""
        source = source or self.source
        if source is None:
            raise RunStateError("Nothing to restart: no audio source has been run")
        return await self.start(source)

    async def resume(self) -> RunState:
        """Continue a failed or paused run at the chunk that stopped it.

        Accumulated lines and the running context are kept.
        """
        if not self.state.is_resumable:
            raise RunStateError(f"Cannot resume a run in phase '{self.state.phase.value}'")

        self.cancel_token.reset()
        self.state.failure = None
        self.observer.on_progress(
            f"Resuming at part {self.state.cursor + 1} of {self.state.total_segments}..."
        )
        return await self._transcribe_from(self.state.cursor)

    def cancel(self) -> None:
        """Stop before the next request; in-flight streams abort at their next fragment."""
        self.cancel_token.cancel()

    # User edits

    def edit_context(self, text: str) -> None:
        """Overwrite the running context used for the next chunk sent."""
        self.state.running_context = text
        self.state.context_override = True

    def edit_line(self, line_id: int, text: str) -> SubtitleLine:
        """Overwrite the text of an accumulated line.

        Raises:
            KeyError: If no line has this id
        """
        for line in self.state.accumulated_lines:
            if line.id == line_id:
                line.text = text
                return line
        raise KeyError(line_id)

    async def rewrite_context(self, guidance: str = "") -> str:
        """Have the model rewrite the running context and apply it as a user edit."""
        rewritten = await self.client.rewrite_summary(
            self.state.running_context,
            self.instructions,
            guidance=guidance,
            model_id=self.model_id,
        )
        self.edit_context(rewritten)
        return rewritten

    # Internals

    def _ensure_not_running(self) -> None:
        if self.state.phase in (RunPhase.SEGMENTING, RunPhase.TRANSCRIBING):
            raise RunStateError("A run is already in progress")

    def _set_phase(self, phase: RunPhase) -> None:
        self.state.phase = phase
        logger.debug("Run phase -> %s", phase.value)
        self.observer.on_phase_change(phase)

    async def _transcribe_from(self, start_index: int) -> RunState:
        state = self.state
        total = state.total_segments
        self._set_phase(RunPhase.TRANSCRIBING)

        for i in range(start_index, total):
            segment = state.segments[i]
            state.cursor = i

            if self.cancel_token.cancelled:
                self._pause()
                return state

            self.observer.on_progress(f"Transcribing part {i + 1} of {total}...")
            self.observer.on_segment_start(segment)

            try:
                summary, lines = await self._transcribe_with_retry(segment, i == total - 1)
            except CancellationError:
                self._pause()
                return state
            except RunFailure as failure:
                state.failure = failure
                self._set_phase(RunPhase.FAILED)
                logger.error("%s", failure)
                raise
            except Exception as e:
                failure = RunFailure(i, e)
                state.failure = failure
                self._set_phase(RunPhase.FAILED)
                raise failure from e

            if state.context_override:
                logger.debug("Keeping user-edited context for the next chunk")
            else:
                state.running_context = summary
            state.accumulated_lines.extend(lines)
            state.cursor = i + 1
            self.observer.on_segment_complete(segment, lines)

        self._set_phase(RunPhase.COMPLETED)
        self.observer.on_progress("Transcription complete!")
        return state

    def _pause(self) -> None:
        logger.info("Run paused at chunk %d", self.state.cursor + 1)
        self._set_phase(RunPhase.PAUSED)

    async def _transcribe_with_retry(
        self,
        segment: Segment,
        is_final: bool,
    ) -> tuple[str, list[SubtitleLine]]:
        """Transcribe and reconcile one chunk, retrying request and parse errors."""
        max_attempts = self.config.max_attempts
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            self.cancel_token.raise_if_cancelled()

            # Read at dispatch; an edit arriving after this point carries to the next send.
            context = self.state.running_context
            self.state.context_override = False

            try:
                result = await self.client.transcribe(
                    segment.payload,
                    self.instructions,
                    context,
                    model_id=self.model_id,
                    on_partial=self.observer.on_partial,
                    on_reasoning_partial=self.observer.on_reasoning,
                    cancel_token=self.cancel_token,
                    mime_type=segment.mime_type,
                )
                lines = reconcile(
                    result,
                    segment,
                    is_final,
                    self.config.window_seconds,
                    first_id=self.state.next_line_id(),
                )
                return result.summary, lines

            except RequestError as e:
                last_error = e
                logger.warning(
                    "Chunk %d attempt %d/%d failed: %s",
                    segment.index + 1,
                    attempt,
                    max_attempts,
                    e,
                )
                self.observer.on_attempt_failed(segment, attempt, e)
                if attempt < max_attempts:
                    await self._backoff(self.config.retry_delay)

        raise RunFailure(segment.index, last_error)

    async def _backoff(self, delay: float) -> None:
        remaining = delay
        while remaining > 0:
            self.cancel_token.raise_if_cancelled()
            step = min(BACKOFF_STEP, remaining)
            await self._sleep(step)
            remaining -= step
