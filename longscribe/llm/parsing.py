"""
longscribe.llm.parsing - Model output JSON parsing with validation.

Handles parsing streamed model replies into a TranscriptionResult with
error recovery for the usual JSON damage.
"""

from __future__ import annotations

import json
import re
from typing import Any

from longscribe.exceptions import ParseError
from longscribe.models import TimedLine, TranscriptionResult


def extract_json_from_response(response: str) -> str:
    """Extract JSON from a model response.

    Args:
        response: Raw model response text

    Returns:
        Extracted JSON string

    Raises:
        ParseError: If no JSON found
    """
    text = response.strip()

    # Remove markdown code blocks
    if "```" in text:
        text = re.sub(r"```json\s*", "", text)
        text = re.sub(r"```\s*", "", text)
        text = text.strip()

    json_match = re.search(r"\{[\s\S]*\}", text)
    if json_match:
        return json_match.group(0)

    # Truncated output: an opening brace with nothing closing it
    start = text.find("{")
    if start >= 0:
        return text[start:]

    raise ParseError("No JSON object found in response")


def repair_json(text: str) -> str:
    """Close whatever a truncated or sloppy reply left open.

    A stream can stop mid-line when the output budget runs out. Trailing
    commas are dropped and an open string is terminated. Missing closers are
    appended in nesting order.
    """
    text = re.sub(r",(\s*[}\]])", r"\1", text)

    closers: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            closers.append("}")
        elif ch == "[":
            closers.append("]")
        elif ch in "}]" and closers:
            closers.pop()

    if in_string:
        if escaped:
            text = text[:-1]
        text += '"'

    text = text.rstrip()
    if text.endswith(","):
        text = text[:-1]
    return text + "".join(reversed(closers))


def parse_llm_json(response: str) -> dict[str, Any]:
    """Parse JSON from a model response with error recovery.

    Handles common issues:
    - Markdown code blocks (```json ... ```)
    - Trailing commas
    - Missing braces
    - Text before/after JSON

    Args:
        response: Raw model response text

    Returns:
        Parsed JSON dict

    Raises:
        ParseError: If parsing fails
    """
    text = extract_json_from_response(response)

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        try:
            data = json.loads(repair_json(text))
        except json.JSONDecodeError as e:
            raise ParseError(
                f"Failed to parse model response as JSON: {e}\n\n"
                f"Response (first 500 chars):\n{text[:500]}"
            ) from e

    if not isinstance(data, dict):
        raise ParseError("Model response is not a JSON object")
    return data


def validate_chunk_response(data: dict[str, Any]) -> TranscriptionResult:
    """Validate a parsed chunk response and convert it to a TranscriptionResult.

    Expected shape: ``{"lines": [{"start", "end", "text"}], "summary"}``.
    Line order is kept as emitted.

    Raises:
        ParseError: If a required field is missing or has the wrong type
    """
    if "lines" not in data:
        raise ParseError("Chunk response missing 'lines' key")
    if not isinstance(data["lines"], list):
        raise ParseError("Chunk response 'lines' is not a list")

    summary = data.get("summary")
    if not isinstance(summary, str):
        raise ParseError("Chunk response missing 'summary' string")

    lines = []
    for i, item in enumerate(data["lines"]):
        if not isinstance(item, dict):
            raise ParseError(f"Line {i} is not an object")
        for key in ("start", "end", "text"):
            if not isinstance(item.get(key), str):
                raise ParseError(f"Line {i} missing '{key}' string")
        lines.append(TimedLine(start=item["start"].strip(), end=item["end"].strip(), text=item["text"]))

    return TranscriptionResult(lines=tuple(lines), summary=summary)


def parse_chunk_response(response: str) -> TranscriptionResult:
    """Parse and validate a full chunk response body."""
    return validate_chunk_response(parse_llm_json(response))
