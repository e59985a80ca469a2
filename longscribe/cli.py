"""
longscribe.cli - Typer CLI entry point.

Provides the init, check and transcribe commands and the interactive
recovery loop for failed or interrupted runs.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Awaitable, Callable
from pathlib import Path

import click
import typer
from rich.console import Console
from rich.markup import escape

from longscribe import __version__
from longscribe.config import (
    CONFIG_FILENAME,
    ScribeConfig,
    build_config,
    create_default_config,
    find_config,
    load_config,
    merge_overrides,
    write_config,
)
from longscribe.exceptions import (
    ConfigError,
    DependencyError,
    ExportError,
    RequestError,
    RunFailure,
    ScribeError,
    SegmentationError,
    ValidationError,
)
from longscribe.export.srt import default_output_path, write_srt
from longscribe.extract.audio import format_size
from longscribe.llm.client import create_client_from_config
from longscribe.logging import configure_logging
from longscribe.models import RunPhase, RunState, Segment, SubtitleLine
from longscribe.pipeline import Orchestrator, PipelineObserver
from longscribe.utils import format_duration, truncate
from longscribe.validation import check_ffmpeg, validate_audio_file

app = typer.Typer(
    name="longscribe",
    help="Long-form audio transcription with context carry-over.\n\n"
    "Splits long recordings into overlapping chunks, transcribes each with a "
    "generative model while carrying a running summary forward, and writes "
    "one continuous SRT file.",
    add_completion=False,
)
console = Console()

RECOVERY_CHOICES = ["resume", "edit", "fix", "restart", "quit"]


class ConsoleObserver(PipelineObserver):
    """Prints run progress to a rich console."""

    def __init__(
        self,
        console: Console,
        max_attempts: int,
        show_stream: bool = False,
        show_reasoning: bool = False,
    ) -> None:
        self.console = console
        self.max_attempts = max_attempts
        self.show_stream = show_stream
        self.show_reasoning = show_reasoning

    def on_progress(self, message: str) -> None:
        self.console.print(f"[dim]  {message}[/dim]")

    def on_segment_start(self, segment: Segment) -> None:
        self.console.print(
            f"\n[cyan]--- Processing Chunk {segment.index + 1}/{segment.total_count} "
            f"({format_duration(segment.absolute_start)} - "
            f"{format_duration(segment.absolute_end)}) ---[/cyan]"
        )

    def on_partial(self, text: str) -> None:
        if self.show_stream:
            self.console.print(text, end="", markup=False, highlight=False)

    def on_reasoning(self, text: str) -> None:
        if self.show_reasoning:
            self.console.print(text, end="", style="dim italic", markup=False, highlight=False)

    def on_attempt_failed(self, segment: Segment, attempt: int, error: Exception) -> None:
        self.console.print(
            f"\n[yellow]  Attempt {attempt}/{self.max_attempts} failed for chunk "
            f"{segment.index + 1}: {escape(str(error))}[/yellow]"
        )

    def on_segment_complete(self, segment: Segment, lines: list[SubtitleLine]) -> None:
        self.console.print(
            f"\n[green]✓[/green] Chunk {segment.index + 1} completed ({len(lines)} lines)"
        )


def version_callback(value: bool) -> None:
    if value:
        console.print(f"longscribe {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Longscribe - long-form audio transcription with context carry-over."""
    pass


@app.command("init")
def init_config(
    path: str = typer.Option(".", "--path", "-d", help="Directory to write the config into"),
    model: str | None = typer.Option(None, "--model", "-m", help="Default model for this config"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing config"),
) -> None:
    """Write a default longscribe.yaml."""
    config_path = Path(path) / CONFIG_FILENAME

    if config_path.exists() and not force:
        console.print(f"[red]Error: {config_path} already exists[/red]")
        raise typer.Exit(1)

    write_config(create_default_config(model), config_path)
    console.print(f"[green]✓[/green] Wrote {config_path}")


@app.command("check")
def check_environment() -> None:
    """Check that FFmpeg and FFprobe are available."""
    try:
        versions = check_ffmpeg()
    except DependencyError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        if e.install_hint:
            console.print(f"[dim]  {e.install_hint}[/dim]")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] ffmpeg {versions['ffmpeg_version']}")
    console.print(f"[green]✓[/green] ffprobe {versions['ffprobe_version']}")


def resolve_config(
    config_path: Path | None,
    overrides: dict[str, object],
) -> ScribeConfig:
    """Load config from an explicit path, a discovered longscribe.yaml, or defaults."""
    path = config_path or find_config()
    if path is None:
        return build_config(merge_overrides({}, overrides))
    return load_config(path, overrides)


def resolve_instructions(instructions: str | None, instructions_file: Path | None) -> str | None:
    if instructions_file is not None:
        return instructions_file.read_text(encoding="utf-8").strip()
    return instructions


async def _drive(orchestrator: Orchestrator, action: Callable[[], Awaitable[RunState]]) -> RunState:
    """Run one orchestrator action with Ctrl-C mapped to cooperative cancellation."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
        installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        installed = False

    try:
        return await action()
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def _ask_recovery(orchestrator: Orchestrator, audio: Path) -> Callable[[], Awaitable[RunState]] | None:
    """Ask how to continue a failed or paused run. Returns the next action or None to stop."""
    state = orchestrator.state
    while True:
        choice = typer.prompt(
            f"Chunk {state.cursor + 1} of {state.total_segments}: "
            "resume, edit context, fix context with the model, restart, or quit?",
            default="resume",
            type=click.Choice(RECOVERY_CHOICES),
        )

        if choice == "resume":
            return orchestrator.resume
        if choice == "restart":
            return lambda: orchestrator.restart(audio)
        if choice == "quit":
            return None

        if choice == "edit":
            edited = typer.prompt("Context summary", default=state.running_context or "")
            orchestrator.edit_context(edited)
            console.print("[dim]  Context updated for the next chunk.[/dim]")
        elif choice == "fix":
            guidance = typer.prompt("Guidance for the rewrite", default="", show_default=False)
            try:
                rewritten = asyncio.run(orchestrator.rewrite_context(guidance))
            except RequestError as e:
                console.print(f"[red]  Rewrite failed: {escape(str(e))}[/red]")
                continue
            console.print(f"[dim]  New context: {escape(truncate(rewritten, 200))}[/dim]")


def run_with_recovery(orchestrator: Orchestrator, audio: Path, interactive: bool) -> RunState:
    """Run the pipeline, offering resume/restart after failure or Ctrl-C."""
    action: Callable[[], Awaitable[RunState]] | None = lambda: orchestrator.start(audio)

    while action is not None:
        try:
            state = asyncio.run(_drive(orchestrator, action))
        except RunFailure as e:
            console.print(f"\n[red]{escape(str(e))}[/red]")
        else:
            if state.phase == RunPhase.COMPLETED:
                return state
            console.print(f"\n[yellow]Paused at chunk {state.cursor + 1}.[/yellow]")

        if not interactive:
            break
        action = _ask_recovery(orchestrator, audio)

    return orchestrator.state


@app.command("transcribe")
def transcribe(
    audio: Path = typer.Argument(..., help="Audio or video file to transcribe"),
    instructions: str | None = typer.Option(
        None,
        "--instructions",
        "-i",
        help="How to transcribe, e.g. 'Japanese audio to Traditional Chinese subtitles'",
    ),
    instructions_file: Path | None = typer.Option(
        None, "--instructions-file", "-I", help="Read instructions from a text file"
    ),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="SRT output path (default: next to the audio)"
    ),
    model: str | None = typer.Option(None, "--model", "-m", help="litellm model string"),
    config_path: Path | None = typer.Option(
        None, "--config", "-c", help=f"Path to {CONFIG_FILENAME}"
    ),
    window: float | None = typer.Option(None, "--window", help="Chunk length in seconds"),
    overlap: float | None = typer.Option(None, "--overlap", help="Overlap buffer in seconds"),
    stream: bool = typer.Option(False, "--stream", "-s", help="Print the live model output"),
    show_reasoning: bool = typer.Option(
        False, "--show-reasoning", help="Print the model's reasoning stream"
    ),
    interactive: bool = typer.Option(
        True,
        "--interactive/--no-interactive",
        help="Ask how to recover when a chunk fails or the run is interrupted",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging"),
) -> None:
    """Transcribe a long recording into an SRT file."""
    configure_logging(verbose)

    try:
        validate_audio_file(audio)
        text = resolve_instructions(instructions, instructions_file)
        config = resolve_config(
            config_path,
            {
                "model": model,
                "instructions": text,
                "window_seconds": window,
                "overlap_seconds": overlap,
            },
        )
    except (ValidationError, ConfigError, OSError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    if not config.instructions.strip():
        console.print("[red]Error: transcription instructions are required (-i or -I)[/red]")
        raise typer.Exit(1)

    output_path = output or default_output_path(audio)
    client = create_client_from_config(config)
    observer = ConsoleObserver(
        console,
        max_attempts=config.max_attempts,
        show_stream=stream,
        show_reasoning=show_reasoning,
    )
    orchestrator = Orchestrator(client, config, observer=observer)

    console.print(
        f"[cyan]Transcribing {audio.name} ({format_size(audio)}) with {config.model}...[/cyan]"
    )

    try:
        state = run_with_recovery(orchestrator, audio, interactive)
    except SegmentationError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    if state.accumulated_lines:
        try:
            write_srt(state.accumulated_lines, output_path)
        except ExportError as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            raise typer.Exit(1)

    if state.phase == RunPhase.COMPLETED:
        console.print(
            f"\n[green]✓[/green] Wrote {len(state.accumulated_lines)} subtitle lines to {output_path}"
        )
        return

    if state.accumulated_lines:
        console.print(
            f"\n[yellow]Saved partial transcript ({len(state.accumulated_lines)} lines, "
            f"chunks 1-{state.cursor}, {state.progress:.0%} done) to {output_path}[/yellow]"
        )
    raise typer.Exit(1)


def run() -> None:
    """Console script entry point."""
    try:
        app()
    except ScribeError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise SystemExit(1) from e
