"""
Configuration schema and loading for ordered processors.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from orderkeeper.contracts.enums import FailurePolicy


class ProcessorSettings(BaseModel):
    """Settings for one OrderedAsyncProcessor.

    Example YAML:
        name: enrichment
        maintain_order: true
        failure_policy: skip
        max_workers: 16
    """

    model_config = {"frozen": True}

    name: str = Field(
        default="ordered-processor",
        description="Processor name used in logs and worker thread names",
    )
    maintain_order: bool = Field(
        default=False,
        description="Publish outputs in submission order instead of completion order",
    )
    failure_policy: FailurePolicy = Field(
        default=FailurePolicy.STALL,
        description="Whether a failed slot stalls the stream or is skipped",
    )
    max_workers: int | None = Field(
        default=None,
        gt=0,
        description="Worker threads for the owned executor (None = executor default)",
    )

    @field_validator("name")
    @classmethod
    def validate_name_not_blank(cls, v: str) -> str:
        """Processor name must contain non-whitespace characters."""
        if not v.strip():
            raise ValueError("name must not be empty")
        return v


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values.

    Unresolvable references are left untouched so validation reports them.
    """

    def replacer(match: re.Match[str]) -> str:
        env_value = os.environ.get(match.group(1))
        if env_value is not None:
            return env_value
        default = match.group(2)
        if default is not None:
            return default
        return match.group(0)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _ENV_VAR_PATTERN.sub(replacer, value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def load_settings(config_path: Path) -> ProcessorSettings:
    """Load processor settings from YAML with environment variable overrides.

    Precedence:
    1. Environment variables (ORDERKEEPER_*) - highest priority
    2. Config file
    3. Defaults from the Pydantic schema - lowest priority

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated ProcessorSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="ORDERKEEPER",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; Pydantic fields are lowercase
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}

    raw_config = _expand_env_vars(raw_config)

    return ProcessorSettings(**raw_config)
