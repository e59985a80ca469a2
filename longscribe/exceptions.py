"""
longscribe.exceptions - Custom exception classes.

All Longscribe-specific exceptions inherit from ScribeError.
"""

from __future__ import annotations


class ScribeError(Exception):
    """Base exception for all Longscribe errors."""

    pass


class ConfigError(ScribeError):
    """Configuration loading or validation error."""

    pass


class SegmentationError(ScribeError):
    """Audio could not be read, decoded or split. Fatal to the run."""

    pass


class RequestError(ScribeError):
    """A transcription request failed (network, empty content, provider error)."""

    pass


class ParseError(RequestError):
    """Returned content could not be parsed as the expected structured result."""

    pass


class CancellationError(ScribeError):
    """Work was abandoned because the cancel token was set."""

    pass


class RunFailure(ScribeError):
    """A segment exhausted its attempts. The run can be resumed or restarted."""

    def __init__(self, segment_index: int, cause: BaseException | None = None):
        self.segment_index = segment_index
        self.cause = cause
        reason = str(cause) if cause is not None else "unknown error"
        super().__init__(f"Error processing chunk {segment_index + 1}: {reason}")


class RunStateError(ScribeError):
    """Operation not allowed in the current run phase."""

    pass


class ExportError(ScribeError):
    """Subtitle export error."""

    pass


class ValidationError(ScribeError):
    """Input validation error."""

    pass


class DependencyError(ScribeError):
    """Required dependency missing or misconfigured."""

    def __init__(self, dependency: str, message: str, install_hint: str | None = None):
        self.dependency = dependency
        self.message = message
        self.install_hint = install_hint
        super().__init__(f"{dependency}: {message}")
