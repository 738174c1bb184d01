"""Configuration discovery and validation."""

import json
import logging
import os
import re
import tomllib
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import ConfigDict, Field, SecretStr, ValidationError, field_validator

from flake_triage.errors import ConfigError
from flake_triage.models.base import Model

log = logging.getLogger(__name__)

type QuarantineMode = Literal["no_quarantine", "skip_tests", "ignore_failures"]

DEFAULT_API_BASE_URL = "https://app.unflakable.com"
CONFIG_FILE_NAMES = ("flake-triage.yaml", "flake-triage.yml", "flake-triage.json")
PYPROJECT_TABLE = "flake-triage"

ENV_ENABLED = "FLAKE_TRIAGE_ENABLED"
ENV_UPLOAD_RESULTS = "FLAKE_TRIAGE_UPLOAD_RESULTS"
ENV_API_BASE_URL = "FLAKE_TRIAGE_API_BASE_URL"
ENV_SUITE_ID = "FLAKE_TRIAGE_SUITE_ID"
ENV_API_KEY = "FLAKE_TRIAGE_API_KEY"


class FlakeTriageConfig(Model):
    """Run configuration.

    Loaded from a config file, then overridden by environment variables. The
    API key is only accepted from the environment.
    """

    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    failure_retries: int = Field(default=2, ge=0)
    git_auto_detect: bool = True
    quarantine_mode: QuarantineMode = "ignore_failures"
    test_suite_id: str | None = None
    upload_results: bool = True
    api_base_url: str = DEFAULT_API_BASE_URL
    api_key: SecretStr | None = None
    independent_failure_patterns: Sequence[str] = Field(
        default_factory=list,
        description="Regexes identifying failures caused by the environment",
    )

    @field_validator("independent_failure_patterns")
    @classmethod
    def _check_patterns(cls, patterns: Sequence[str]) -> Sequence[str]:
        for pattern in patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid pattern {pattern!r}: {e}") from e
        return patterns


def parse_env_bool(value: str) -> bool:
    """Interpret an environment flag; only "false" and "0" disable."""
    return value.strip().lower() not in {"false", "0"}


def env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    """Collect configuration overrides from environment variables."""
    overrides: dict[str, Any] = {}
    if value := env.get(ENV_ENABLED):
        overrides["enabled"] = parse_env_bool(value)
    if value := env.get(ENV_UPLOAD_RESULTS):
        overrides["upload_results"] = parse_env_bool(value)
    if value := env.get(ENV_API_BASE_URL):
        overrides["api_base_url"] = value
    if value := env.get(ENV_SUITE_ID):
        overrides["test_suite_id"] = value
    return overrides


def find_config_file(search_from: Path) -> Path | None:
    """Find the nearest config file in search_from or its parents.

    A pyproject.toml only counts when it has a [tool.flake-triage] table.
    """
    search_from = search_from.resolve()
    for directory in (search_from, *search_from.parents):
        for name in CONFIG_FILE_NAMES:
            if (candidate := directory / name).is_file():
                return candidate
        pyproject = directory / "pyproject.toml"
        if pyproject.is_file() and PYPROJECT_TABLE in (
            read_toml(pyproject).get("tool", {})
        ):
            return pyproject
    return None


def read_toml(path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(path.read_text())
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to read {path}: {e}") from e


def read_config_file(path: Path) -> dict[str, Any]:
    """Read raw configuration values from a config file."""
    if path.name == "pyproject.toml":
        data = read_toml(path)["tool"][PYPROJECT_TABLE]
    else:
        try:
            text = path.read_text()
            data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration in {path} must be a mapping")
    return data


def load_config(
    search_from: Path, env: Mapping[str, str] | None = None
) -> FlakeTriageConfig:
    """Load and validate the run configuration.

    Args:
        search_from: Directory to start searching for a config file from
        env: Environment variables, defaults to the process environment

    Raises:
        ConfigError: If the configuration is unreadable, invalid, or enabled
            without a test suite ID or API key

    """
    env = os.environ if env is None else env

    path = find_config_file(search_from)
    data = {} if path is None else read_config_file(path)
    if "api_key" in data:
        raise ConfigError(
            f"api_key must not be stored in {path}, set {ENV_API_KEY} instead"
        )

    data |= env_overrides(env)
    if api_key := env.get(ENV_API_KEY):
        data["api_key"] = api_key.strip()

    source = path or "defaults"
    try:
        config = FlakeTriageConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration ({source}): {e}") from e

    if config.enabled:
        if not config.test_suite_id:
            raise ConfigError(
                "test_suite_id is required: set it in the config file or "
                f"{ENV_SUITE_ID}"
            )
        if config.api_key is None:
            raise ConfigError(f"An API key is required: set {ENV_API_KEY}")

    log.info("Loaded configuration from %s", source)
    return config
