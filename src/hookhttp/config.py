"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles persistent configuration for hookhttp clients:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.hookhttp/`` on macOS and Windows. See :func:`get_config_dir`.
* **User config** -- A single :class:`~hookhttp.models.ClientConfig` JSON
  file in the config directory. See :func:`load_config` and
  :func:`save_config`.
* **Project config** -- An optional ``./hookhttp.json`` holding a partial
  ``ClientConfig`` that overrides the user config for one project.
* **Precedence resolution** -- :func:`resolve_config` merges explicit
  overrides, environment variables, project config, and user config into
  the effective :class:`~hookhttp.models.ClientConfig`.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import logging
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from hookhttp.exceptions import ConfigError
from hookhttp.models import ClientConfig

logger = logging.getLogger(__name__)

_APP_NAME = "hookhttp"
_CONFIG_FILENAME = "config.json"
_PROJECT_CONFIG_FILENAME = "hookhttp.json"

# Environment variable -> dotted ClientConfig field.
_ENV_FIELDS: dict[str, tuple[str, ...]] = {
    "HOOKHTTP_BASE_URL": ("base_url",),
    "HOOKHTTP_TIMEOUT": ("timeout",),
    "HOOKHTTP_COMPRESSION_THRESHOLD": ("compression", "threshold"),
    "HOOKHTTP_BATCH_CONCURRENCY": ("batch", "concurrency_limit"),
}


# --- Config directory ---


def _uses_xdg() -> bool:
    """Linux and the BSDs keep per-user config under ``$XDG_CONFIG_HOME``."""
    system = platform.system()
    return system == "Linux" or system.endswith("BSD")


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/hookhttp/`` (default ``~/.config/hookhttp/``).
    On macOS/Windows: ``~/.hookhttp/``.
    """
    if _uses_xdg():
        config_home = os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config"
        path = Path(config_home) / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Replace *path* with *data* via a sibling temp file and ``os.replace``.

    Readers see either the old file or the complete new one. The temp file
    is removed if anything fails before the rename.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


# --- Loading and saving ---


def _read_json(path: Path, label: str) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid {label} at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid {label} at {path}: expected a JSON object")
    return data


def _user_config_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_config(path: Optional[Path] = None) -> ClientConfig:
    """Load a :class:`~hookhttp.models.ClientConfig` from a JSON file.

    Args:
        path: File to read. Defaults to ``<config_dir>/config.json``.

    Returns:
        The validated config, or a default instance if the file does not
        exist.

    Raises:
        ConfigError: If the file contains invalid JSON or fails validation.
    """
    path = path or _user_config_path()
    if not path.is_file():
        return ClientConfig()
    data = _read_json(path, "config")
    try:
        return ClientConfig.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_config(config: ClientConfig, path: Optional[Path] = None) -> Path:
    """Persist *config* atomically and return the path written."""
    path = path or _user_config_path()
    data = config.model_dump(mode="json")
    _atomic_write(path, json.dumps(data, indent=2) + "\n")
    return path


def load_project_config() -> Optional[dict[str, Any]]:
    """Load project-local configuration from ``./hookhttp.json``.

    Returns:
        The parsed JSON object, or ``None`` if the file does not exist.

    Raises:
        ConfigError: If the file exists but is not a valid JSON object.
    """
    path = Path.cwd() / _PROJECT_CONFIG_FILENAME
    if not path.is_file():
        return None
    return _read_json(path, "project config")


# --- Precedence resolution ---


def _deep_merge(base: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for var, field_path in _ENV_FIELDS.items():
        value = os.environ.get(var)
        if not value:
            continue
        target = overrides
        for segment in field_path[:-1]:
            target = target.setdefault(segment, {})
        target[field_path[-1]] = value
    return overrides


def resolve_config(
    overrides: Optional[dict[str, Any]] = None,
    path: Optional[Path] = None,
) -> ClientConfig:
    """Resolve the effective client config with the full precedence chain.

    Precedence (high to low):
        1. *overrides* (nested dict matching ``ClientConfig`` fields)
        2. Environment variables (``HOOKHTTP_BASE_URL``, ``HOOKHTTP_TIMEOUT``,
           ``HOOKHTTP_COMPRESSION_THRESHOLD``, ``HOOKHTTP_BATCH_CONCURRENCY``)
        3. Project config (``./hookhttp.json``)
        4. User config (*path*, default ``<config_dir>/config.json``)
        5. Defaults

    Raises:
        ConfigError: If any layer is invalid or the merged result fails
            validation (e.g. a non-numeric ``HOOKHTTP_TIMEOUT``).
    """
    data = load_config(path).model_dump(mode="json")

    project = load_project_config()
    if project is not None:
        data = _deep_merge(data, project)

    env = _env_overrides()
    if env:
        logger.debug("Applying environment overrides: %s", ", ".join(sorted(env)))
        data = _deep_merge(data, env)

    if overrides:
        data = _deep_merge(data, overrides)

    try:
        return ClientConfig.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigError(f"Invalid resolved config: {exc}") from exc
