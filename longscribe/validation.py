"""
longscribe.validation - Dependency checks and input validation.

Validates the environment and the input recording before a run starts.
"""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Any

from longscribe.exceptions import DependencyError, ValidationError

FFMPEG_INSTALL_HINT = "Install with: brew install ffmpeg (macOS) or apt install ffmpeg (Linux)"


def _tool_version(path: str) -> str:
    try:
        proc = subprocess.run(
            [path, "-version"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        version_line = proc.stdout.split("\n")[0]
        return version_line.split()[2] if version_line else "unknown"
    except (subprocess.TimeoutExpired, IndexError):
        return "unknown"


def check_ffmpeg() -> dict[str, str]:
    """Check if FFmpeg and FFprobe are installed and get versions.

    Returns:
        Dict with 'ffmpeg_version' and 'ffprobe_version'

    Raises:
        DependencyError: If FFmpeg or FFprobe not found
    """
    result = {}
    for tool in ("ffmpeg", "ffprobe"):
        tool_path = shutil.which(tool)
        if not tool_path:
            raise DependencyError(tool, f"{tool} not found in PATH", FFMPEG_INSTALL_HINT)
        result[f"{tool}_version"] = _tool_version(tool_path)
    return result


def validate_audio_file(path: Path) -> dict[str, Any]:
    """Validate an input recording exists and is a non-empty file.

    Raises:
        ValidationError: If file doesn't exist or is empty
    """
    if not path.exists():
        raise ValidationError(f"File not found: {path}")

    if not path.is_file():
        raise ValidationError(f"Not a file: {path}")

    size = path.stat().st_size
    if size == 0:
        raise ValidationError(f"File is empty: {path}")

    return {
        "path": str(path),
        "exists": True,
        "size_mb": size // (1024 * 1024),
    }
