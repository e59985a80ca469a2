"""
longscribe.llm.client - Streaming transcription client using litellm.

Sends one audio window with instructions and the prior context summary,
consumes the streamed reply fragment by fragment, and returns the parsed
TranscriptionResult. Retrying is left to the caller.
"""

from __future__ import annotations

import base64
import logging
import threading
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

from longscribe.exceptions import CancellationError, RequestError
from longscribe.llm.parsing import parse_chunk_response
from longscribe.llm.templates import PromptTemplateManager, chunk_response_schema
from longscribe.models import TranscriptionResult

logger = logging.getLogger(__name__)

REASONING = "reasoning"
CONTENT = "content"

TextCallback = Callable[[str], None]


class CancelToken:
    """Cooperative cancellation flag shared between the caller and in-flight work.

    Thread-safe, so it can be set from a signal handler or another thread.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def reset(self) -> None:
        self._event.clear()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError("Transcription aborted by user")


@dataclass(frozen=True)
class Fragment:
    """One piece of a streamed reply: model reasoning or response content."""

    kind: str
    text: str


async def stream_fragments(
    response: Any,
    cancel_token: CancelToken | None = None,
) -> AsyncIterator[Fragment]:
    """Turn a litellm streaming response into reasoning/content fragments.

    The cancel token is checked as each chunk arrives, before anything from
    that chunk is yielded.
    """
    async for chunk in response:
        if cancel_token:
            cancel_token.raise_if_cancelled()

        choices = getattr(chunk, "choices", None) or []
        if not choices:
            continue
        delta = getattr(choices[0], "delta", None)
        if delta is None:
            continue

        reasoning = getattr(delta, "reasoning_content", None)
        if reasoning:
            yield Fragment(REASONING, reasoning)

        content = getattr(delta, "content", None)
        if content:
            yield Fragment(CONTENT, content)


async def close_stream(response: Any) -> None:
    """Release a streaming response's connection, if the wrapper supports it."""
    aclose = getattr(response, "aclose", None)
    if aclose is not None:
        await aclose()


def audio_format_from_mime(mime_type: str) -> str:
    """Map a MIME type such as audio/wav to the input_audio format name."""
    subtype = mime_type.split("/")[-1].lower()
    return {"x-wav": "wav", "wave": "wav", "mpeg": "mp3"}.get(subtype, subtype)


class TranscriptionClient:
    """Generative transcription client for one audio window at a time."""

    def __init__(
        self,
        model: str = "gemini/gemini-2.5-pro",
        api_base: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 65536,
        timeout: int = 600,
        reasoning: bool = True,
        template_manager: PromptTemplateManager | None = None,
    ) -> None:
        self.model = model
        self.api_base = api_base
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.reasoning = reasoning
        self.templates = template_manager or PromptTemplateManager()

    def _resolve_model(self, model_id: str | None) -> str:
        if model_id and model_id.strip():
            return model_id.strip()
        return self.model

    def _build_messages(self, payload: bytes, mime_type: str, prompt: str) -> list[dict[str, Any]]:
        encoded = base64.b64encode(payload).decode("ascii")
        return [
            {
                "role": "user",
                "content": [
                    {
                        "type": "input_audio",
                        "input_audio": {"data": encoded, "format": audio_format_from_mime(mime_type)},
                    },
                    {"type": "text", "text": prompt},
                ],
            }
        ]

    def _completion_kwargs(self, model: str, messages: list[dict[str, Any]]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": True,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "timeout": self.timeout,
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": "chunk_result", "schema": chunk_response_schema()},
            },
            "drop_params": True,
        }
        if self.reasoning:
            kwargs["reasoning_effort"] = "medium"
        if self.api_base:
            kwargs["api_base"] = self.api_base
        return kwargs

    async def transcribe(
        self,
        payload: bytes,
        instructions: str,
        prior_context: str,
        model_id: str | None = None,
        on_partial: TextCallback | None = None,
        on_reasoning_partial: TextCallback | None = None,
        cancel_token: CancelToken | None = None,
        mime_type: str = "audio/wav",
    ) -> TranscriptionResult:
        """Transcribe one audio window.

        Args:
            payload: Encoded audio bytes for the window
            instructions: User transcription/translation instructions
            prior_context: Running context summary ("" for the first window)
            model_id: Model override; blank falls back to the client default
            on_partial: Receives each content fragment as it streams in
            on_reasoning_partial: Receives each reasoning fragment
            cancel_token: Checked before dispatch and at every stream chunk
            mime_type: MIME type of ``payload``

        Returns:
            Parsed TranscriptionResult

        Raises:
            CancellationError: If the token is set before or during streaming
            ParseError: If the content is not a valid chunk result
            RequestError: For provider/network failures or empty content
        """
        if cancel_token:
            cancel_token.raise_if_cancelled()

        try:
            import litellm
        except ImportError as e:
            raise RequestError("litellm not installed. Install with: pip install litellm") from e

        litellm.telemetry = False

        model = self._resolve_model(model_id)
        prompt = self.templates.render_transcribe_prompt(instructions, prior_context)
        kwargs = self._completion_kwargs(model, self._build_messages(payload, mime_type, prompt))

        buffer: list[str] = []
        try:
            response = await litellm.acompletion(**kwargs)
            try:
                async for fragment in stream_fragments(response, cancel_token):
                    if fragment.kind == REASONING:
                        if on_reasoning_partial:
                            on_reasoning_partial(fragment.text)
                        continue
                    buffer.append(fragment.text)
                    if on_partial:
                        on_partial(fragment.text)
            finally:
                await close_stream(response)
        except (CancellationError, RequestError):
            raise
        except Exception as e:
            raise RequestError(f"Transcription request failed: {e}") from e

        full_text = "".join(buffer)
        if not full_text.strip():
            raise RequestError("No content produced")

        logger.debug("Received %d chars from %s", len(full_text), model)
        return parse_chunk_response(full_text)

    async def rewrite_summary(
        self,
        current_summary: str,
        instructions: str,
        guidance: str = "",
        model_id: str | None = None,
    ) -> str:
        """Ask the model to rewrite a context summary that trips safety filters.

        Returns:
            The rewritten summary text

        Raises:
            RequestError: If the request fails or returns no text
        """
        try:
            import litellm
        except ImportError as e:
            raise RequestError("litellm not installed. Install with: pip install litellm") from e

        litellm.telemetry = False

        prompt = self.templates.render_summary_rewrite_prompt(current_summary, instructions, guidance)
        kwargs: dict[str, Any] = {
            "model": self._resolve_model(model_id),
            "messages": [{"role": "user", "content": prompt}],
            "temperature": 0.3,
            "max_tokens": 8192,
            "timeout": self.timeout,
        }
        if self.api_base:
            kwargs["api_base"] = self.api_base

        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            raise RequestError(f"Summary rewrite failed: {e}") from e

        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        content = (getattr(message, "content", None) or "").strip()
        if not content:
            raise RequestError("Auto-fix did not return a summary")
        return content


def create_client_from_config(config: Any) -> TranscriptionClient:
    """Create a TranscriptionClient from a ScribeConfig."""
    return TranscriptionClient(
        model=config.model,
        api_base=config.api_base,
        temperature=config.temperature,
        max_tokens=config.max_output_tokens,
        timeout=config.timeout,
        reasoning=config.reasoning,
    )
