"""
longscribe.llm.templates - Prompt template loading and rendering.

Uses Jinja2 to load and render the prompt templates shipped in the
package's prompts/ directory, or a user-supplied directory overriding them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, Template, TemplateNotFound

PROMPTS_DIR = Path(__file__).parent.parent / "prompts"

TRANSCRIBE_TEMPLATE = "transcribe.txt"
SUMMARY_REWRITE_TEMPLATE = "summary_rewrite.txt"

BEGINNING_OF_AUDIO = "This is the beginning of the audio."
DEFAULT_REWRITE_GUIDANCE = (
    "Rewrite the summary so it avoids triggering safety filters but still "
    "preserves the key context for the next chunk."
)


class PromptTemplateManager:
    """Manages loading and rendering of prompt templates."""

    def __init__(self, prompts_dir: Path | None = None) -> None:
        self.prompts_dir = prompts_dir or PROMPTS_DIR
        self.env = Environment(
            loader=FileSystemLoader(str(self.prompts_dir)),
            autoescape=False,
            keep_trailing_newline=True,
        )

    def get_template(self, name: str) -> Template:
        """Load a template by name.

        Raises:
            FileNotFoundError: If the prompts directory has no such template
        """
        try:
            return self.env.get_template(name)
        except TemplateNotFound as e:
            raise FileNotFoundError(f"Template not found: {self.prompts_dir / name}") from e

    def render(self, template_name: str, variables: dict[str, Any]) -> str:
        return self.get_template(template_name).render(**variables)

    def render_transcribe_prompt(self, instructions: str, previous_context: str) -> str:
        """Render the per-chunk transcription prompt.

        An empty context is replaced by an explicit beginning-of-audio marker.
        """
        return self.render(
            TRANSCRIBE_TEMPLATE,
            {
                "INSTRUCTIONS": instructions,
                "PREVIOUS_CONTEXT": previous_context.strip() or BEGINNING_OF_AUDIO,
            },
        )

    def render_summary_rewrite_prompt(
        self,
        current_summary: str,
        instructions: str,
        guidance: str = "",
    ) -> str:
        return self.render(
            SUMMARY_REWRITE_TEMPLATE,
            {
                "GUIDANCE": guidance.strip() or DEFAULT_REWRITE_GUIDANCE,
                "INSTRUCTIONS": instructions.strip(),
                "CURRENT_SUMMARY": current_summary.strip(),
            },
        )


def chunk_response_schema() -> dict[str, Any]:
    """JSON schema for the per-chunk reply: timestamped lines plus a summary."""
    return {
        "type": "object",
        "properties": {
            "lines": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "start": {
                            "type": "string",
                            "description": "Start time (Format: MM:SS.mmm, e.g. 00:00.000)",
                        },
                        "end": {
                            "type": "string",
                            "description": "End time (Format: MM:SS.mmm, e.g. 00:05.123)",
                        },
                        "text": {"type": "string", "description": "The transcribed text"},
                    },
                    "required": ["start", "end", "text"],
                },
            },
            "summary": {
                "type": "string",
                "description": (
                    "A summary of the events and context in this audio segment, "
                    "to be used for the next segment's context."
                ),
            },
        },
        "required": ["lines", "summary"],
    }
