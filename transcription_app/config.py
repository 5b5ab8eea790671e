"""Configuration loader and validation."""

import logging
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from transcription_app.engine import DEFAULT_LANGUAGE, default_thread_count
from transcription_app.writers import WRITERS

logger = logging.getLogger(__name__)

__all__ = [
    "ModelConfig",
    "TranscriptionConfig",
    "ProcessingConfig",
    "OutputConfig",
    "GeneralConfig",
    "Config",
    "ConfigError",
    "load_config",
]

CONFIG_ENV_VAR = "TRANSCRIPTION_CONFIG"
CONFIG_FILENAME = "transcription.toml"
DEFAULT_MODEL = "base.en"

_SECTIONS = ("model", "transcription", "processing", "output", "general")


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


@dataclass
class ModelConfig:
    """Whisper model configuration (for faster-whisper backend)."""

    name: str = DEFAULT_MODEL
    device: str = "cpu"
    compute_type: str = "int8"
    model_directory: str | None = None
    beam_size: int = 5


@dataclass
class TranscriptionConfig:
    """Per-request recognition settings."""

    language: str = DEFAULT_LANGUAGE
    translate: bool = False
    token_timestamps: bool = False
    print_special: bool = False
    word_threshold: float = 0.01
    max_context: int = -1
    max_len: int = 0
    speed_up: bool = False
    offset_ms: int = 0
    duration_ms: int = 0
    diarize: bool = False
    no_timestamps: bool = False


@dataclass
class ProcessingConfig:
    """Worker and threading settings."""

    n_threads: int = field(default_factory=default_thread_count)
    n_processors: int = 1
    timeout: float | None = None


@dataclass
class OutputConfig:
    """Transcript output settings."""

    format: str | None = None
    print_colors: bool = False
    trace: bool = False


@dataclass
class GeneralConfig:
    """General application settings."""

    verbose: bool = False


@dataclass
class Config:
    """Main configuration container."""

    model: ModelConfig = field(default_factory=ModelConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    general: GeneralConfig = field(default_factory=GeneralConfig)

    @classmethod
    def from_toml(
        cls,
        path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> "Config":
        """Load configuration from TOML file.

        Args:
            path: Explicit config file path. If None, searches in order:
                  1. TRANSCRIPTION_CONFIG env var
                  2. ./transcription.toml
                  3. ~/.config/transcription.toml
                  Defaults are used when none exists.
            env: Environment variables (defaults to os.environ)

        Returns:
            Loaded Config instance

        Raises:
            ConfigError: If an explicit file is missing or values are invalid
        """
        if env is None:
            import os

            env = os.environ

        resolved_path = _resolve_config_path(path, env)
        if resolved_path is None:
            logger.debug("No config file found, using defaults")
            return cls()

        raw_data = _load_toml_file(resolved_path)

        try:
            coerced = _coerce_config_values(raw_data)
            return cls(
                model=ModelConfig(**coerced["model"]),
                transcription=TranscriptionConfig(**coerced["transcription"]),
                processing=ProcessingConfig(**coerced["processing"]),
                output=OutputConfig(**coerced["output"]),
                general=GeneralConfig(**coerced["general"]),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration values: {e}") from e

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ConfigError: If any value is out of range
        """
        validate_model_config(self.model)
        validate_transcription_config(self.transcription)
        validate_processing_config(self.processing)
        validate_output_config(self.output)


def _resolve_config_path(
    cli_path: Path | None,
    env: Mapping[str, str],
) -> Path | None:
    """Resolve configuration file path following search order.

    Raises:
        ConfigError: If an explicitly given path does not exist
    """
    if cli_path:
        cli_path = Path(cli_path)
        if cli_path.exists():
            logger.info("Using config file: %s", cli_path.resolve())
            return cli_path.resolve()
        raise ConfigError(f"Config file not found: {cli_path}")

    candidates = []
    if env_path := env.get(CONFIG_ENV_VAR):
        candidates.append(Path(env_path))

    candidates.append(Path(CONFIG_FILENAME))
    candidates.append(Path.home() / ".config" / CONFIG_FILENAME)

    for candidate in candidates:
        if candidate.exists():
            logger.info("Using config file: %s", candidate.resolve())
            return candidate.resolve()

    return None


def _load_toml_file(path: Path) -> dict:
    """Load and parse TOML configuration file.

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except Exception as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e


def _coerce_config_values(raw_data: dict) -> dict:
    """Normalize raw TOML data for dataclass instantiation."""
    unknown = set(raw_data) - set(_SECTIONS)
    if unknown:
        raise ConfigError(f"Unknown config sections: {', '.join(sorted(unknown))}")

    coerced = {}
    for section in _SECTIONS:
        value = raw_data.get(section, {})
        if not isinstance(value, dict):
            raise ConfigError(f"Section [{section}] must be a table")
        coerced[section] = dict(value)

    # Zero in the file means "no timeout"
    if coerced["processing"].get("timeout") == 0:
        coerced["processing"]["timeout"] = None

    return coerced


def validate_model_config(model_cfg: ModelConfig) -> None:
    """Validate model configuration.

    Raises:
        ConfigError: If model configuration is invalid
    """
    if not model_cfg.name:
        raise ConfigError("model.name must not be empty")

    valid_compute_types = ("int8", "float16", "float32", "default")
    if model_cfg.compute_type not in valid_compute_types:
        raise ConfigError(
            f"Invalid compute_type '{model_cfg.compute_type}'. "
            f"Must be one of: {', '.join(valid_compute_types)}"
        )

    valid_devices = ("cpu", "cuda", "auto")
    if model_cfg.device not in valid_devices:
        raise ConfigError(
            f"Invalid device '{model_cfg.device}'. "
            f"Must be one of: {', '.join(valid_devices)}"
        )

    if model_cfg.beam_size <= 0:
        raise ConfigError(f"beam_size must be positive, got {model_cfg.beam_size}")


def validate_transcription_config(cfg: TranscriptionConfig) -> None:
    """Validate recognition settings.

    Raises:
        ConfigError: If a value is out of range or flags conflict
    """
    if not cfg.language:
        raise ConfigError("transcription.language must not be empty")

    if not 0.0 <= cfg.word_threshold <= 1.0:
        raise ConfigError(
            f"word_threshold must be within [0, 1], got {cfg.word_threshold}"
        )

    if cfg.offset_ms < 0:
        raise ConfigError(f"offset_ms must be non-negative, got {cfg.offset_ms}")

    if cfg.duration_ms < 0:
        raise ConfigError(f"duration_ms must be non-negative, got {cfg.duration_ms}")

    if cfg.max_len < 0:
        raise ConfigError(f"max_len must be non-negative, got {cfg.max_len}")


def validate_processing_config(cfg: ProcessingConfig) -> None:
    """Validate worker settings.

    Raises:
        ConfigError: If thread or processor counts are invalid
    """
    if cfg.n_threads < 1:
        raise ConfigError(f"n_threads must be at least 1, got {cfg.n_threads}")

    if cfg.n_processors < 1:
        raise ConfigError(f"n_processors must be at least 1, got {cfg.n_processors}")

    if cfg.timeout is not None and cfg.timeout <= 0:
        raise ConfigError(f"timeout must be positive, got {cfg.timeout}")


def validate_output_config(cfg: OutputConfig) -> None:
    valid_formats = tuple(w.ext for w in WRITERS)
    if cfg.format is not None and cfg.format not in valid_formats:
        raise ConfigError(
            f"Invalid output format '{cfg.format}'. "
            f"Must be one of: {', '.join(valid_formats)}"
        )


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from TOML file.

    Convenience wrapper around Config.from_toml().

    Raises:
        ConfigError: If config cannot be loaded
    """
    return Config.from_toml(path, env=env)
