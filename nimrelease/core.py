from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import os
from pathlib import Path
import tomllib
from typing import Any

NIMRELEASE_VERSION = "0.3.0"

CONFIG_ENV_VAR = "NIM_RELEASE_CONFIG"
DEFAULT_CONFIG_NAME = "nimrelease.toml"


class ConfigError(ValueError):
    """Raised when the tool configuration is invalid."""


@dataclass(frozen=True)
class ToolConfig:
    """Settings read from ``nimrelease.toml``; ``None`` means not configured."""

    output_dir: Path | None = None
    deps_dir: Path | None = None
    log_level: str | None = None
    cc: str | None = None
    cflags: str | None = None
    ldflags: str | None = None


def find_config_path(
    env: Mapping[str, str] | None = None,
    cwd: Path | None = None,
) -> Path:
    """
    Return the config path from $NIM_RELEASE_CONFIG, or ./nimrelease.toml.
    """
    if env is None:
        env = os.environ
    explicit = env.get(CONFIG_ENV_VAR)
    if explicit:
        return Path(os.path.expanduser(explicit))
    return (cwd or Path.cwd()) / DEFAULT_CONFIG_NAME


def _str_option(section: dict[str, Any], key: str) -> str | None:
    value = section.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"'release.{key}' must be a string")
    return value


def load_config(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> ToolConfig:
    """
    Load the [release] table of the tool config, or defaults if the file is absent.
    """
    if path is None:
        path = find_config_path(env)
    if not path.exists():
        return ToolConfig()

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e

    section = data.get("release", {})
    if not isinstance(section, dict):
        raise ConfigError("'release' must be a table")

    def _dir(key: str) -> Path | None:
        value = _str_option(section, key)
        if value is None:
            return None
        # Relative directories are taken relative to where the tool runs.
        return Path(os.path.expanduser(value)).resolve()

    return ToolConfig(
        output_dir=_dir("output_dir"),
        deps_dir=_dir("deps_dir"),
        log_level=_str_option(section, "log_level"),
        cc=_str_option(section, "cc"),
        cflags=_str_option(section, "cflags"),
        ldflags=_str_option(section, "ldflags"),
    )
