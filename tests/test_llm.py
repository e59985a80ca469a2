"""Tests for longscribe.llm modules."""

from __future__ import annotations

import base64
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import litellm
import pytest

from longscribe.config import ScribeConfig
from longscribe.exceptions import CancellationError, ParseError, RequestError
from longscribe.llm.client import (
    CONTENT,
    REASONING,
    CancelToken,
    TranscriptionClient,
    audio_format_from_mime,
    create_client_from_config,
    stream_fragments,
)
from longscribe.llm.parsing import (
    extract_json_from_response,
    parse_chunk_response,
    parse_llm_json,
    validate_chunk_response,
)
from longscribe.llm.templates import (
    BEGINNING_OF_AUDIO,
    DEFAULT_REWRITE_GUIDANCE,
    PromptTemplateManager,
    chunk_response_schema,
)

CHUNK_JSON = (
    '{"lines": [{"start": "00:01.000", "end": "00:02.500", "text": "Hello"}], '
    '"summary": "A greeting."}'
)


def stream_chunk(content: str | None = None, reasoning: str | None = None) -> SimpleNamespace:
    delta = SimpleNamespace(content=content, reasoning_content=reasoning)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta)])


class FakeStream:
    def __init__(self, chunks: list[Any], on_chunk: Any = None) -> None:
        self.chunks = chunks
        self.on_chunk = on_chunk
        self.closed = False

    def __aiter__(self) -> FakeStream:
        self._index = 0
        return self

    async def __anext__(self) -> Any:
        if self._index >= len(self.chunks):
            raise StopAsyncIteration
        chunk = self.chunks[self._index]
        self._index += 1
        if self.on_chunk:
            self.on_chunk(self._index)
        return chunk

    async def aclose(self) -> None:
        self.closed = True


class FakeCompletion:
    """Replaces litellm.acompletion; returns or raises ``response``."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.response: Any = FakeStream([stream_chunk(CHUNK_JSON)])

    async def __call__(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if isinstance(self.response, BaseException):
            raise self.response
        return self.response


@pytest.fixture
def completion(monkeypatch: pytest.MonkeyPatch) -> FakeCompletion:
    fake = FakeCompletion()
    monkeypatch.setattr(litellm, "acompletion", fake)
    return fake


class TestParseLLMJson:
    def test_parse_clean_json(self) -> None:
        result = parse_llm_json(CHUNK_JSON)
        assert result["summary"] == "A greeting."

    def test_parse_json_with_markdown(self) -> None:
        result = parse_llm_json(f"```json\n{CHUNK_JSON}\n```")
        assert result["lines"][0]["text"] == "Hello"

    def test_parse_json_with_trailing_commas(self) -> None:
        response = '{"lines": [{"start": "00:01.000", "end": "00:02.000", "text": "A",},], "summary": "s",}'
        result = parse_llm_json(response)
        assert len(result["lines"]) == 1

    def test_parse_json_with_surrounding_text(self) -> None:
        result = parse_llm_json(f"Here is the result:\n{CHUNK_JSON}\nDone.")
        assert result["summary"] == "A greeting."

    def test_parse_truncated_json(self) -> None:
        response = '{"lines": [{"start": "00:01.000", "end": "00:02.000", "text": "A"}'
        result = parse_llm_json(response)
        assert result["lines"][0]["text"] == "A"

    def test_parse_reply_cut_mid_string(self) -> None:
        result = parse_llm_json('{"lines": [], "summary": "The speaker introduces')
        assert result["summary"] == "The speaker introduces"

    def test_nested_closers_in_order(self) -> None:
        result = parse_llm_json('{"lines": [{"start": "00:01.000", "end": "00:02.000", "text": "A"}, {"start": "00')
        assert len(result["lines"]) == 1

    def test_no_json_raises(self) -> None:
        with pytest.raises(ParseError):
            extract_json_from_response("I could not transcribe this audio.")

    def test_garbage_raises(self) -> None:
        with pytest.raises(ParseError):
            parse_llm_json('{"lines": [nope]}')


class TestValidateChunkResponse:
    def test_valid_response(self) -> None:
        result = validate_chunk_response(
            {
                "lines": [
                    {"start": " 00:01.000 ", "end": "00:02.000", "text": "first"},
                    {"start": "00:00.500", "end": "00:01.000", "text": "second"},
                ],
                "summary": "two lines",
            }
        )
        assert [line.text for line in result.lines] == ["first", "second"]
        assert result.lines[0].start == "00:01.000"
        assert result.summary == "two lines"

    def test_empty_lines_are_valid(self) -> None:
        result = validate_chunk_response({"lines": [], "summary": "silence"})
        assert result.lines == ()

    def test_missing_lines(self) -> None:
        with pytest.raises(ParseError, match="lines"):
            validate_chunk_response({"summary": "s"})

    def test_missing_summary(self) -> None:
        with pytest.raises(ParseError, match="summary"):
            validate_chunk_response({"lines": []})

    def test_line_missing_field(self) -> None:
        with pytest.raises(ParseError, match="end"):
            validate_chunk_response({"lines": [{"start": "00:01.000", "text": "x"}], "summary": ""})

    def test_line_not_object(self) -> None:
        with pytest.raises(ParseError):
            validate_chunk_response({"lines": ["00:01.000 hello"], "summary": ""})

    def test_parse_chunk_response(self) -> None:
        result = parse_chunk_response(CHUNK_JSON)
        assert result.lines[0].end == "00:02.500"


class TestPromptTemplates:
    def test_transcribe_prompt_includes_instructions_and_context(self) -> None:
        prompt = PromptTemplateManager().render_transcribe_prompt(
            "Japanese to English", "Two hosts discuss tea."
        )
        assert "Japanese to English" in prompt
        assert "Two hosts discuss tea." in prompt
        assert "MM:SS.mmm" in prompt

    def test_empty_context_marks_beginning(self) -> None:
        prompt = PromptTemplateManager().render_transcribe_prompt("English", "  ")
        assert BEGINNING_OF_AUDIO in prompt

    def test_summary_rewrite_default_guidance(self) -> None:
        prompt = PromptTemplateManager().render_summary_rewrite_prompt("old summary", "English")
        assert DEFAULT_REWRITE_GUIDANCE in prompt
        assert "old summary" in prompt

    def test_summary_rewrite_custom_guidance(self) -> None:
        prompt = PromptTemplateManager().render_summary_rewrite_prompt(
            "old summary", "English", "drop the violence"
        )
        assert "drop the violence" in prompt
        assert DEFAULT_REWRITE_GUIDANCE not in prompt

    def test_custom_prompts_dir(self, tmp_path: Path) -> None:
        (tmp_path / "transcribe.txt").write_text("{{ INSTRUCTIONS }}|{{ PREVIOUS_CONTEXT }}")
        manager = PromptTemplateManager(tmp_path)
        assert manager.render_transcribe_prompt("A", "B") == "A|B"

    def test_missing_template(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            PromptTemplateManager(tmp_path).get_template("transcribe.txt")

    def test_schema_requires_lines_and_summary(self) -> None:
        schema = chunk_response_schema()
        assert schema["required"] == ["lines", "summary"]
        assert schema["properties"]["lines"]["items"]["required"] == ["start", "end", "text"]


class TestCancelToken:
    def test_cancel_and_reset(self) -> None:
        token = CancelToken()
        assert not token.cancelled
        token.cancel()
        assert token.cancelled
        with pytest.raises(CancellationError):
            token.raise_if_cancelled()
        token.reset()
        token.raise_if_cancelled()


class TestStreamFragments:
    @pytest.mark.asyncio
    async def test_splits_reasoning_and_content(self) -> None:
        stream = FakeStream(
            [
                stream_chunk(reasoning="thinking"),
                stream_chunk(content='{"lines"'),
                SimpleNamespace(choices=[]),
                stream_chunk(content=": []}"),
            ]
        )

        fragments = [f async for f in stream_fragments(stream)]

        assert [(f.kind, f.text) for f in fragments] == [
            (REASONING, "thinking"),
            (CONTENT, '{"lines"'),
            (CONTENT, ": []}"),
        ]

    @pytest.mark.asyncio
    async def test_cancel_stops_stream(self) -> None:
        token = CancelToken()
        stream = FakeStream(
            [stream_chunk(content="a"), stream_chunk(content="b")],
            on_chunk=lambda i: token.cancel() if i == 2 else None,
        )
        received = []

        with pytest.raises(CancellationError):
            async for fragment in stream_fragments(stream, token):
                received.append(fragment.text)

        assert received == ["a"]


class TestTranscriptionClient:
    @pytest.mark.asyncio
    async def test_transcribe_returns_result(self, completion: FakeCompletion) -> None:
        client = TranscriptionClient(model="gemini/gemini-2.5-flash")

        result = await client.transcribe(b"RIFFdata", "English", "")

        assert result.summary == "A greeting."
        assert result.lines[0].text == "Hello"
        assert completion.response.closed
        kwargs = completion.calls[0]
        assert kwargs["model"] == "gemini/gemini-2.5-flash"
        assert kwargs["stream"] is True
        assert kwargs["temperature"] == 0.2
        assert kwargs["max_tokens"] == 65536
        assert kwargs["response_format"]["type"] == "json_schema"

    @pytest.mark.asyncio
    async def test_request_carries_audio_and_prompt(
        self, completion: FakeCompletion
    ) -> None:
        client = TranscriptionClient()

        await client.transcribe(b"RIFFdata", "French subtitles", "Earlier: a storm.")

        content = completion.calls[0]["messages"][0]["content"]
        audio_part, text_part = content
        assert audio_part["type"] == "input_audio"
        assert base64.b64decode(audio_part["input_audio"]["data"]) == b"RIFFdata"
        assert audio_part["input_audio"]["format"] == "wav"
        assert "French subtitles" in text_part["text"]
        assert "Earlier: a storm." in text_part["text"]

    @pytest.mark.asyncio
    async def test_model_override_and_blank_fallback(
        self, completion: FakeCompletion
    ) -> None:
        client = TranscriptionClient(model="gemini/gemini-2.5-pro")

        await client.transcribe(b"x", "English", "", model_id="openai/gpt-4o-audio-preview")
        await client.transcribe(b"x", "English", "", model_id="   ")

        assert completion.calls[0]["model"] == "openai/gpt-4o-audio-preview"
        assert completion.calls[1]["model"] == "gemini/gemini-2.5-pro"

    @pytest.mark.asyncio
    async def test_partials_are_routed(self, completion: FakeCompletion) -> None:
        completion.response = FakeStream(
            [
                stream_chunk(reasoning="Listening..."),
                stream_chunk(content=CHUNK_JSON[:20]),
                stream_chunk(content=CHUNK_JSON[20:]),
            ]
        )
        content: list[str] = []
        reasoning: list[str] = []

        result = await TranscriptionClient().transcribe(
            b"x",
            "English",
            "",
            on_partial=content.append,
            on_reasoning_partial=reasoning.append,
        )

        assert "".join(content) == CHUNK_JSON
        assert reasoning == ["Listening..."]
        assert result.summary == "A greeting."

    @pytest.mark.asyncio
    async def test_empty_content_raises(self, completion: FakeCompletion) -> None:
        completion.response = FakeStream([stream_chunk(reasoning="hmm")])

        with pytest.raises(RequestError, match="No content produced"):
            await TranscriptionClient().transcribe(b"x", "English", "")

    @pytest.mark.asyncio
    async def test_malformed_content_raises_parse_error(
        self, completion: FakeCompletion
    ) -> None:
        completion.response = FakeStream([stream_chunk(content="no json here")])

        with pytest.raises(ParseError):
            await TranscriptionClient().transcribe(b"x", "English", "")

    @pytest.mark.asyncio
    async def test_provider_error_wrapped(self, completion: FakeCompletion) -> None:
        completion.response = ConnectionError("connection reset")

        with pytest.raises(RequestError, match="connection reset"):
            await TranscriptionClient().transcribe(b"x", "English", "")

    @pytest.mark.asyncio
    async def test_cancelled_before_dispatch(self, completion: FakeCompletion) -> None:
        token = CancelToken()
        token.cancel()

        with pytest.raises(CancellationError):
            await TranscriptionClient().transcribe(b"x", "English", "", cancel_token=token)

        assert completion.calls == []

    @pytest.mark.asyncio
    async def test_cancelled_mid_stream(self, completion: FakeCompletion) -> None:
        token = CancelToken()
        completion.response = FakeStream(
            [stream_chunk(content="{"), stream_chunk(content='"lines": []}')],
            on_chunk=lambda i: token.cancel() if i == 2 else None,
        )

        with pytest.raises(CancellationError):
            await TranscriptionClient().transcribe(b"x", "English", "", cancel_token=token)

        assert completion.response.closed

    @pytest.mark.asyncio
    async def test_rewrite_summary(self, completion: FakeCompletion) -> None:
        message = SimpleNamespace(content="  A calm summary.  ")
        completion.response = SimpleNamespace(choices=[SimpleNamespace(message=message)])

        rewritten = await TranscriptionClient().rewrite_summary("grim summary", "English")

        assert rewritten == "A calm summary."
        assert "stream" not in completion.calls[0]
        assert "grim summary" in completion.calls[0]["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_rewrite_summary_empty(self, completion: FakeCompletion) -> None:
        message = SimpleNamespace(content="")
        completion.response = SimpleNamespace(choices=[SimpleNamespace(message=message)])

        with pytest.raises(RequestError, match="Auto-fix"):
            await TranscriptionClient().rewrite_summary("summary", "English")


class TestClientHelpers:
    def test_audio_format_from_mime(self) -> None:
        assert audio_format_from_mime("audio/wav") == "wav"
        assert audio_format_from_mime("audio/x-wav") == "wav"
        assert audio_format_from_mime("audio/mpeg") == "mp3"
        assert audio_format_from_mime("audio/flac") == "flac"

    def test_create_client_from_config(self) -> None:
        config = ScribeConfig(model="openai/gpt-4o-audio-preview", temperature=0.5, reasoning=False)
        client = create_client_from_config(config)
        assert client.model == "openai/gpt-4o-audio-preview"
        assert client.temperature == 0.5
        assert client.max_tokens == 65536
        assert client.reasoning is False
