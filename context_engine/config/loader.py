"""Engine configuration loading from YAML."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .models import EngineConfig


class ConfigLoadError(Exception):
    """Configuration could not be read, parsed or validated."""
    pass


def _format_validation_error(error: ValidationError, origin: str) -> str:
    lines = [f"Invalid engine configuration ({origin}):"]
    for item in error.errors():
        field = ".".join(str(part) for part in item["loc"]) or "<root>"
        lines.append(f"  - {field}: {item['msg']}")
    return "\n".join(lines)


def _build(raw: Any, origin: str) -> EngineConfig:
    # Empty document: every section takes its defaults
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigLoadError(
            f"Engine configuration ({origin}) must be a mapping, got {type(raw).__name__}"
        )
    try:
        return EngineConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigLoadError(_format_validation_error(e, origin)) from e


def _parse(text: str, origin: str) -> EngineConfig:
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Engine configuration ({origin}) is not valid YAML: {e}") from e
    return _build(raw, origin)


def load_config(config_path: Path) -> EngineConfig:
    """Read, parse and validate an engine configuration file.

    Raises:
        ConfigLoadError: If the file is missing, unreadable or invalid
    """
    config_path = Path(config_path)
    if not config_path.is_file():
        raise ConfigLoadError(f"Engine configuration not found: {config_path}")
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigLoadError(f"Cannot read engine configuration {config_path}: {e}") from e
    return _parse(text, str(config_path))


def load_config_from_string(yaml_content: str) -> EngineConfig:
    """Parse and validate an engine configuration given as YAML text."""
    return _parse(yaml_content, "<string>")
