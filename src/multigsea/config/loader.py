"""Configuration loading with YAML parsing and validation."""

from pathlib import Path
from typing import Any

import pydantic_yaml

from .schema import MultiGSEAConfig


def load_config(config_path: Path | str) -> MultiGSEAConfig:
    """
    Load and validate configuration from a YAML file.

    An empty file yields the default configuration.

    Raises:
        FileNotFoundError: If config file doesn't exist
        pydantic.ValidationError: If config is invalid
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    yaml_content = config_path.read_text()
    if not yaml_content.strip():
        return MultiGSEAConfig()
    return pydantic_yaml.parse_yaml_raw_as(MultiGSEAConfig, yaml_content)


def load_config_with_overrides(
    config_path: Path | str | None,
    overrides: dict[str, Any],
) -> MultiGSEAConfig:
    """
    Load config (or defaults) and apply CLI-style overrides.

    Args:
        config_path: Path to YAML configuration file, or None for defaults
        overrides: Values keyed by field name; dotted keys such as
            ``"conform.min_gs_size"`` address nested sections. None values
            mean "not given" and are skipped.

    Returns:
        Re-validated MultiGSEAConfig

    Raises:
        FileNotFoundError: If config file doesn't exist
        KeyError: If a dotted key names an unknown section
        pydantic.ValidationError: If final config is invalid
    """
    base = load_config(config_path) if config_path is not None else MultiGSEAConfig()
    merged = base.model_dump()

    for key, value in overrides.items():
        if value is not None:
            _set_dotted(merged, key.split("."), value)

    return MultiGSEAConfig.model_validate(merged)


def _set_dotted(section: dict[str, Any], path: list[str], value: Any) -> None:
    *parents, leaf = path
    for part in parents:
        section = section[part]
    section[leaf] = value
