"""Configuration loading: TOML files, env var overrides, merge logic.

Discovery order (later overrides earlier):
    1. Built-in defaults (Pydantic model defaults)
    2. User config: ``~/.config/tally/config.toml``
    3. Project-local config: ``./tally.toml``
    4. ``$TALLY_CONFIG`` environment variable (explicit path)
    5. Programmatic overrides (passed to ``load_config``)

Secrets come from the environment when not set in a file: each provider's
``api_key_env`` names the variable holding its key, and
``TALLY_JWT_SECRET`` supplies ``auth.jwt_secret``.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from tally.core.errors import ConfigError

from .schema import TallyConfig

_CONFIG_ENV = "TALLY_CONFIG"
_JWT_SECRET_ENV = "TALLY_JWT_SECRET"


def _default_files() -> list[Path]:
    """User then project config, whichever exist."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    user_dir = Path(xdg) if xdg else Path.home() / ".config"
    candidates = (user_dir / "tally" / "config.toml", Path.cwd() / "tally.toml")
    return [p for p in candidates if p.is_file()]


def _must_exist(raw: str | Path, label: str) -> Path:
    path = Path(raw)
    if not path.is_file():
        msg = f"{label} not found: {raw}"
        raise ConfigError(msg)
    return path


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        msg = f"Invalid TOML in {path}: {e}"
        raise ConfigError(msg) from e
    except OSError as e:
        msg = f"Cannot read config file {path}: {e}"
        raise ConfigError(msg) from e


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``; nested tables merge too."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = _deep_merge(current, value)
        merged[key] = value
    return merged


def _resolve_secrets(config: TallyConfig) -> None:
    for provider in config.providers.values():
        if provider.api_key is None and provider.api_key_env:
            provider.api_key = os.environ.get(provider.api_key_env)
    if not config.auth.jwt_secret:
        config.auth.jwt_secret = os.environ.get(_JWT_SECRET_ENV, "")


def load_config(
    path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> TallyConfig:
    """Load and validate configuration.

    Args:
        path: Explicit config file path (highest file priority).
        overrides: Dict of overrides merged last (highest overall priority).

    Raises:
        ConfigError: On invalid TOML, missing files, or validation failure.
    """
    files = _default_files()
    if env_path := os.environ.get(_CONFIG_ENV):
        files.append(_must_exist(env_path, f"{_CONFIG_ENV} file"))
    if path is not None:
        files.append(_must_exist(path, "Config file"))

    layers = [_read_toml(f) for f in files]
    if overrides:
        layers.append(overrides)
    merged: dict[str, Any] = {}
    for layer in layers:
        merged = _deep_merge(merged, layer)

    try:
        config = TallyConfig.model_validate(merged)
    except PydanticValidationError as e:
        msg = f"Configuration validation failed: {e}"
        raise ConfigError(msg) from e

    _resolve_secrets(config)
    return config
