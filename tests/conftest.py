"""
Test configuration and shared fixtures.
"""

from __future__ import annotations

import shutil
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from longscribe.config import ScribeConfig
from longscribe.models import Segment, TimedLine, TranscriptionResult

requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg not installed",
)


def make_segments(count: int, window: float = 600.0, overlap: float = 10.0) -> list[Segment]:
    """Segments laid out the way the splitter lays them out, with fake payloads."""
    total = count * window
    return [
        Segment(
            index=i,
            total_count=count,
            absolute_start=i * window,
            absolute_end=min(total, i * window + window + overlap),
            payload=f"chunk-{i}".encode(),
        )
        for i in range(count)
    ]


def make_result(*lines: tuple[str, str, str], summary: str = "summary") -> TranscriptionResult:
    return TranscriptionResult(
        lines=tuple(TimedLine(start, end, text) for start, end, text in lines),
        summary=summary,
    )


class FakeClient:
    """Stands in for TranscriptionClient. Responses are keyed by payload.

    A response may be a TranscriptionResult, an exception to raise, or a
    callable taking the call record and returning either.
    """

    def __init__(self, responses: dict[bytes, list[Any]] | None = None) -> None:
        self.responses = responses or {}
        self.calls: list[dict[str, Any]] = []
        self.rewrites: list[dict[str, Any]] = []
        self.rewrite_result = "rewritten summary"

    def default_result(self, payload: bytes) -> TranscriptionResult:
        name = payload.decode()
        return make_result(
            ("00:01.000", "00:03.000", f"{name} first"),
            ("05:00.000", "05:04.000", f"{name} second"),
            summary=f"after {name}",
        )

    async def transcribe(
        self,
        payload: bytes,
        instructions: str,
        prior_context: str,
        model_id: str | None = None,
        on_partial: Callable[[str], None] | None = None,
        on_reasoning_partial: Callable[[str], None] | None = None,
        cancel_token: Any = None,
        mime_type: str = "audio/wav",
    ) -> TranscriptionResult:
        call = {
            "payload": payload,
            "instructions": instructions,
            "prior_context": prior_context,
            "model_id": model_id,
            "cancel_token": cancel_token,
        }
        self.calls.append(call)

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        queue = self.responses.get(payload)
        response: Any = queue.pop(0) if queue else self.default_result(payload)
        if callable(response) and not isinstance(response, TranscriptionResult):
            response = response(call)
        if isinstance(response, BaseException):
            raise response
        return response

    async def rewrite_summary(
        self,
        current_summary: str,
        instructions: str,
        guidance: str = "",
        model_id: str | None = None,
    ) -> str:
        self.rewrites.append(
            {"current_summary": current_summary, "instructions": instructions, "guidance": guidance}
        )
        return self.rewrite_result


@pytest.fixture
def config() -> ScribeConfig:
    return ScribeConfig(instructions="Transcribe to English subtitles", retry_delay=0.0)


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def no_sleep() -> Callable[[float], Any]:
    delays: list[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays  # type: ignore[attr-defined]
    return sleep


@pytest.fixture
def sample_audio(tmp_path: Path) -> Path:
    """A non-empty file standing in for a recording."""
    path = tmp_path / "talk.mp3"
    path.write_bytes(b"\x00" * 128)
    return path
