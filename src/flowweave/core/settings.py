"""Settings management for flowweave with environment variable override support."""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from flowweave.core.error_codes import WARNING_CODES

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "FLOWWEAVE_CONFIG_DIR"
STRICT_TYPES_ENV = "FLOWWEAVE_STRICT_TYPES"
EMIT_COMMENTS_ENV = "FLOWWEAVE_EMIT_COMMENTS"


class ValidationSettings(BaseModel):
    """Validator behavior."""

    strict_types: bool = Field(
        default=False, description="Report incompatible data types as TYPE_INCOMPATIBLE errors instead of warnings"
    )
    suppressed_warnings: list[str] = Field(default_factory=list)

    @field_validator("suppressed_warnings")
    @classmethod
    def validate_suppressed(cls, v: list[str]) -> list[str]:
        """Only advisory codes can be suppressed."""
        unknown = [code for code in v if code not in WARNING_CODES]
        if unknown:
            raise ValueError(f"Cannot suppress non-warning codes: {', '.join(unknown)}")
        return v


class GenerationSettings(BaseModel):
    """Code generator output options."""

    indent: int = Field(default=4, ge=1, le=8)
    emit_comments: bool = Field(default=True, description="Emit a comment line above each node call")


class FlowWeaveSettings(BaseModel):
    """Main settings configuration."""

    version: str = Field(default="1.0.0")
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)


def default_settings_path() -> Path:
    config_dir = os.getenv(CONFIG_DIR_ENV)
    base = Path(config_dir) if config_dir else Path.home() / ".flowweave"
    return base / "settings.json"


def _env_flag(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


class SettingsManager:
    """Manages flowweave settings with environment variable override support."""

    def __init__(self, settings_path: Optional[Path] = None):
        self.settings_path = settings_path or default_settings_path()
        self._settings: Optional[FlowWeaveSettings] = None
        # Lock for thread-safe load-modify-save operations
        self._lock = threading.Lock()

    def load(self) -> FlowWeaveSettings:
        """Load settings with environment variable overrides."""
        with self._lock:
            if self._settings is None:
                self._settings = self._load_from_file()
            settings = self._settings
        return self._apply_env_overrides(settings)

    def reload(self) -> FlowWeaveSettings:
        """Force reload settings from file."""
        self._settings = None
        return self.load()

    def _load_from_file(self) -> FlowWeaveSettings:
        """Load settings from file or return defaults."""
        if not self.settings_path.exists():
            return FlowWeaveSettings()
        try:
            with open(self.settings_path, encoding="utf-8") as f:
                data = json.load(f)
            return FlowWeaveSettings(**data)
        except Exception as e:
            # If file is corrupted, use defaults
            logger.warning(f"Failed to load settings from {self.settings_path} ({e}); using defaults")
            return FlowWeaveSettings()

    def _apply_env_overrides(self, settings: FlowWeaveSettings) -> FlowWeaveSettings:
        """Return a copy of ``settings`` with environment variable overrides applied.

        The cached file settings are never mutated so toggling an env var
        takes effect without a restart.
        """
        validation = settings.validation
        generation = settings.generation

        strict = os.getenv(STRICT_TYPES_ENV)
        if strict is not None:
            validation = validation.model_copy(update={"strict_types": _env_flag(strict)})

        comments = os.getenv(EMIT_COMMENTS_ENV)
        if comments is not None:
            generation = generation.model_copy(update={"emit_comments": _env_flag(comments)})

        return settings.model_copy(update={"validation": validation, "generation": generation})

    def save(self, settings: Optional[FlowWeaveSettings] = None) -> None:
        """Save settings to file with an atomic replace."""
        if settings is None:
            settings = self.load()

        self.settings_path.parent.mkdir(parents=True, exist_ok=True)

        # Atomic write pattern: write to temp file, then replace
        temp_fd, temp_path = tempfile.mkstemp(dir=self.settings_path.parent, prefix=".settings.", suffix=".tmp")

        try:
            with open(temp_fd, "w", encoding="utf-8") as f:
                json.dump(settings.model_dump(mode="json"), f, indent=2)

            os.replace(temp_path, self.settings_path)

            # Clear cache to force reload on next access
            with self._lock:
                self._settings = None

        except Exception:
            # Clean up temp file on failure
            Path(temp_path).unlink(missing_ok=True)
            raise
