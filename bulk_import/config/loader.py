from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import ApiConfig, ImportConfig, ImportPolicy, ReaderOptions

"""Config loader.

Responsibilities:
- Load the YAML config (default config/import.yml)
- Validate it against the packaged JSON schema (config_schema.json)
- Apply defaults for every omitted section or key
- Apply environment overrides for the backend URL and token
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "ENV_API_URL",
    "ENV_API_TOKEN",
    "load_config",
    "config_from_dict",
]

SCHEMA_PATH = Path(__file__).parent / "config_schema.json"
DEFAULT_CONFIG_PATH = Path("config/import.yml")

ENV_API_URL = "BULK_IMPORT_API_URL"
ENV_API_TOKEN = "BULK_IMPORT_API_TOKEN"


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing or unreadable, or the data violates it.
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def config_from_dict(data: dict[str, Any], env: dict[str, str] | None = None) -> ImportConfig:
    """Build an ImportConfig from already-parsed data, applying defaults and env overrides."""
    if not isinstance(data, dict):
        raise ConfigError("config validation failed: top-level value must be a mapping")
    _validate_config_schema(data)
    env = os.environ if env is None else env

    api_raw = data.get("api") or {}
    api_defaults = ApiConfig()
    api = ApiConfig(
        base_url=env.get(ENV_API_URL) or api_raw.get("base_url", api_defaults.base_url),
        timeout_seconds=float(api_raw.get("timeout_seconds", api_defaults.timeout_seconds)),
        token=env.get(ENV_API_TOKEN) or api_raw.get("token"),
    )

    reader_raw = data.get("reader") or {}
    reader_defaults = ReaderOptions()
    reader = ReaderOptions(
        max_rows=reader_raw.get("max_rows", reader_defaults.max_rows),
        required_sheets=tuple(reader_raw.get("required_sheets", ())),
        skip_empty_rows=reader_raw.get("skip_empty_rows", reader_defaults.skip_empty_rows),
        trim=reader_raw.get("trim", reader_defaults.trim),
    )

    policy_raw = data.get("policy") or {}
    p = ImportPolicy()
    policy = ImportPolicy(
        batch_size=policy_raw.get("batch_size", p.batch_size),
        max_concurrency=policy_raw.get("max_concurrency", p.max_concurrency),
        retry_attempts=policy_raw.get("retry_attempts", p.retry_attempts),
        retry_delay_ms=policy_raw.get("retry_delay_ms", p.retry_delay_ms),
        continue_on_error=policy_raw.get("continue_on_error", p.continue_on_error),
        auto_correct=policy_raw.get("auto_correct", p.auto_correct),
        skip_invalid_rows=policy_raw.get("skip_invalid_rows", p.skip_invalid_rows),
        generate_report=policy_raw.get("generate_report", p.generate_report),
    )

    return ImportConfig(
        api=api,
        reader=reader,
        policy=policy,
        logs_dir=Path(data.get("logs_dir", "./logs")),
    )


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e

    return config_from_dict(data)
