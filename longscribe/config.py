"""
longscribe.config - YAML config loading, override merging, validation.

Handles loading longscribe.yaml, applying command-line overrides, and
validating all pipeline parameters.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from longscribe.exceptions import ConfigError

CONFIG_FILENAME = "longscribe.yaml"

DEFAULT_MODEL = "gemini/gemini-2.5-pro"

SUPPORTED_SAMPLE_RATES = {8000, 16000, 22050, 24000, 44100, 48000}


class ScribeConfig(BaseModel):
    """Resolved configuration for a transcription run."""

    model: str = DEFAULT_MODEL
    instructions: str = ""
    api_base: str | None = None

    sample_rate: int = 16000
    window_seconds: float = Field(default=600.0, gt=0.0)
    overlap_seconds: float = Field(default=10.0, ge=0.0)

    max_attempts: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=2.0, ge=0.0)

    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=65536, gt=0)
    timeout: int = Field(default=600, gt=0)
    reasoning: bool = True

    @field_validator("sample_rate")
    @classmethod
    def validate_sample_rate(cls, v: int) -> int:
        if v not in SUPPORTED_SAMPLE_RATES:
            raise ValueError(f"sample_rate must be one of: {sorted(SUPPORTED_SAMPLE_RATES)}")
        return v

    @field_validator("model")
    @classmethod
    def validate_model(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("model must not be empty")
        return v.strip()

    @model_validator(mode="after")
    def validate_overlap(self) -> ScribeConfig:
        if self.overlap_seconds >= self.window_seconds:
            raise ValueError("overlap_seconds must be smaller than window_seconds")
        return self


def merge_overrides(config: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Merge command-line overrides into a config dict. None values are ignored."""
    merged = config.copy()
    for key, value in overrides.items():
        if value is not None:
            merged[key] = value
    return merged


def build_config(raw_config: dict[str, Any]) -> ScribeConfig:
    """Validate a raw config dict, converting pydantic errors to ConfigError."""
    try:
        return ScribeConfig(**raw_config)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def load_config(path: Path, overrides: dict[str, Any] | None = None) -> ScribeConfig:
    """Load and validate configuration from a YAML file."""
    if not path.exists():
        raise FileNotFoundError(f"No {CONFIG_FILENAME} found at {path}")

    try:
        with open(path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_config, dict):
        raise ConfigError(f"Invalid YAML structure in {path}. Root must be a mapping.")

    return build_config(merge_overrides(raw_config, overrides or {}))


def find_config(start: Path | None = None) -> Path | None:
    """Find longscribe.yaml in the given directory or any parent."""
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.exists():
            return candidate
        if current == current.parent:
            return None
        current = current.parent


def create_default_config(model: str | None = None) -> dict[str, Any]:
    """Create a default config dict suitable for writing to disk."""
    defaults = ScribeConfig().model_dump()
    if model:
        defaults["model"] = model
    return defaults


def write_config(config: dict[str, Any], path: Path) -> None:
    """Write configuration to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)
