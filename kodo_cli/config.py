"""Configuration management for kodo.

Settings are resolved with the following precedence (highest to lowest):
1. CLI option
2. Environment variable (QINIU_<KEY>, e.g. QINIU_ACCESS_KEY)
3. Settings file (YAML)
4. Built-in default

The settings file lives at ``<click app dir>/config.yaml`` (for example
``~/.config/kodo/config.yaml`` on Linux). Its location can be overridden
with the global ``--config`` option or the ``KODO_CONFIG`` environment
variable.

Usage:
    from kodo_cli.config import get_setting, set_setting, resolve_upload_config

    bucket = get_setting("bucket_name", cli_value=cli_bucket)
    set_setting("domain_name", "cdn.example.com")
    config = resolve_upload_config({"bucket_name": "media"})
"""

from __future__ import annotations

import os
from urllib.parse import urlparse
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click
import yaml

from kodo_cli.constants import (
    DEFAULT_MAX_WORKERS,
    DEFAULT_REGION,
    MAX_PART_SIZE,
    MIN_PART_SIZE,
)
from kodo_cli.errors import (
    ConfigInvalidStructureError,
    ConfigParseError,
    InvalidSettingError,
    MissingSettingError,
)

# Setting key -> value type ("str", "url", "int", "bool" or a tuple of allowed choices)
KNOWN_SETTINGS: dict[str, Any] = {
    "access_key": "str",
    "secret_key": "str",
    "bucket_name": "str",
    "region": "str",
    "endpoint": "url",
    "domain_name": "str",
    "part_size": "int",
    "threads": "int",
    "max_workers": "int",
    "lowercase_keys": "bool",
    "fail_on": ("never", "all", "any"),
}

DEFAULTS: dict[str, Any] = {
    "region": DEFAULT_REGION,
    "max_workers": DEFAULT_MAX_WORKERS,
    "lowercase_keys": True,
    "fail_on": "never",
}

# Secrets are masked by `kodo config list`
SECRET_SETTINGS: frozenset[str] = frozenset({"access_key", "secret_key"})

# Inclusive numeric bounds
_INT_RANGES: dict[str, tuple[int, int]] = {
    "part_size": (MIN_PART_SIZE, MAX_PART_SIZE),
    "threads": (1, 255),
    "max_workers": (1, 1000),
}

CONFIG_FILENAME = "config.yaml"
CONFIG_ENV_VAR = "KODO_CONFIG"
APP_NAME = "kodo"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def get_config_path(config_file: Path | None = None) -> Path:
    """Get the path to the settings file.

    Args:
        config_file: Explicit path (from --config); wins over everything.

    Returns:
        The explicit path, $KODO_CONFIG, or the per-user default.
    """
    if config_file is not None:
        return config_file
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return Path(click.get_app_dir(APP_NAME)) / CONFIG_FILENAME


def load_config(config_file: Path | None = None) -> dict[str, Any]:
    """Load the settings file.

    Returns:
        Settings dictionary. Empty if the file doesn't exist or is empty.

    Raises:
        ConfigParseError: If the file is not valid YAML.
        ConfigInvalidStructureError: If the top level is not a mapping.
    """
    path = get_config_path(config_file)

    if not path.exists():
        return {}

    content = path.read_text()
    if not content.strip():
        return {}

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise ConfigParseError(str(path), str(err)) from err

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigInvalidStructureError(
            str(path), f"expected a mapping, got {type(data).__name__}"
        )
    return data


def save_config(config: dict[str, Any], config_file: Path | None = None) -> None:
    """Write the settings file, creating its directory if needed."""
    path = get_config_path(config_file)
    path.parent.mkdir(parents=True, exist_ok=True)

    content = yaml.safe_dump(config, default_flow_style=False, sort_keys=False)
    path.write_text(content)


def _get_env_var_name(key: str) -> str:
    """Convert a setting key to its environment variable name.

    Example: "access_key" -> "QINIU_ACCESS_KEY"
    """
    return f"QINIU_{key.upper()}"


def coerce_setting(key: str, value: Any) -> Any:
    """Convert a raw setting value (often a string) to its declared type.

    Unknown keys are returned unchanged. None is passed through.

    Raises:
        InvalidSettingError: If the value cannot be converted or is out of range.
    """
    if value is None or key not in KNOWN_SETTINGS:
        return value

    kind = KNOWN_SETTINGS[key]

    if kind == "int":
        if isinstance(value, bool):
            raise InvalidSettingError(key, value, "expected an integer")
        try:
            number = int(value)
        except (TypeError, ValueError) as err:
            raise InvalidSettingError(key, value, "expected an integer") from err
        low, high = _INT_RANGES[key]
        if not low <= number <= high:
            raise InvalidSettingError(key, value, f"must be between {low} and {high}")
        return number

    if kind == "bool":
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise InvalidSettingError(key, value, "expected true or false")

    if kind == "url":
        text = str(value).strip()
        parsed = urlparse(text)
        if parsed.scheme not in ("http", "https") or not parsed.netloc or " " in text:
            raise InvalidSettingError(key, value, "expected an http:// or https:// URL")
        return text

    if isinstance(kind, tuple):
        text = str(value).strip().lower()
        if text not in kind:
            raise InvalidSettingError(key, value, f"expected one of: {', '.join(kind)}")
        return text

    return str(value)


def get_setting(
    key: str,
    cli_value: Any | None = None,
    config_file: Path | None = None,
) -> Any | None:
    """Resolve a setting with full precedence and coerce it to its type.

    Precedence (highest to lowest):
    1. CLI argument (cli_value)
    2. Environment variable (QINIU_<KEY>)
    3. Settings file
    4. Built-in default (DEFAULTS, else None)

    Args:
        key: Setting key (e.g., "bucket_name", "part_size")
        cli_value: Value passed via CLI option
        config_file: Explicit settings file path

    Returns:
        Resolved value, or None if not found at any level.
    """
    if cli_value is not None:
        return coerce_setting(key, cli_value)

    env_value = os.environ.get(_get_env_var_name(key))
    if env_value is not None and env_value != "":
        return coerce_setting(key, env_value)

    config = load_config(config_file)
    if config.get(key) is not None:
        return coerce_setting(key, config[key])

    return DEFAULTS.get(key)


def set_setting(key: str, value: Any, config_file: Path | None = None) -> Any:
    """Store a setting in the settings file.

    The value is validated and coerced before it is written.

    Returns:
        The coerced value that was stored.
    """
    coerced = coerce_setting(key, value)
    config = load_config(config_file)
    config[key] = coerced
    save_config(config, config_file)
    return coerced


def unset_setting(key: str, config_file: Path | None = None) -> bool:
    """Remove a setting from the settings file.

    Returns:
        True if the key existed and was removed, False otherwise.
    """
    config = load_config(config_file)
    if key not in config:
        return False
    del config[key]
    save_config(config, config_file)
    return True


def _get_setting_source(key: str, config_file: Path | None) -> str:
    """Return where a setting's value comes from: "env", "file" or "default"."""
    env_value = os.environ.get(_get_env_var_name(key))
    if env_value:
        return "env"
    if load_config(config_file).get(key) is not None:
        return "file"
    return "default"


def list_settings(config_file: Path | None = None) -> dict[str, dict[str, Any]]:
    """List resolved settings with their sources.

    Includes every known setting that has a value, plus any extra keys
    present in the settings file.

    Returns:
        Dict mapping setting keys to {"value": ..., "source": ...}
    """
    result: dict[str, dict[str, Any]] = {}
    all_keys = set(KNOWN_SETTINGS) | set(load_config(config_file))

    for key in sorted(all_keys):
        value = get_setting(key, config_file=config_file)
        if value is None:
            continue
        result[key] = {"value": value, "source": _get_setting_source(key, config_file)}

    return result


@dataclass(frozen=True)
class UploadConfig:
    """Immutable settings for one `kodo upload` invocation.

    Attributes:
        access_key: Kodo access key.
        secret_key: Kodo secret key.
        bucket_name: Target bucket.
        region: Kodo region code (z0, z1, ...) or S3 region name.
        endpoint: Explicit S3 endpoint URL; overrides the region's endpoint.
        object_name: Object key (single file) or destination prefix (directory).
        domain_name: Download domain; enables download links when set.
        part_size: Multipart part size in bytes.
        threads: Part-level parallelism for a single-file upload.
        max_workers: Maximum concurrent chunk workers for a directory.
        lowercase_keys: Lower-case derived keys in directory mode.
        fail_on: Exit policy: "never", "all" or "any".
    """

    access_key: str | None
    secret_key: str | None
    bucket_name: str | None
    region: str = DEFAULT_REGION
    endpoint: str | None = None
    object_name: str | None = None
    domain_name: str | None = None
    part_size: int | None = None
    threads: int | None = None
    max_workers: int = DEFAULT_MAX_WORKERS
    lowercase_keys: bool = True
    fail_on: str = "never"

    def require(self, *keys: str) -> None:
        """Raise MissingSettingError for the first key without a value."""
        for key in keys:
            if not getattr(self, key):
                hint = f"use --{key.replace('_', '-')} or set {_get_env_var_name(key)}"
                raise MissingSettingError(key, hint)


def resolve_upload_config(
    cli_values: dict[str, Any],
    config_file: Path | None = None,
) -> UploadConfig:
    """Build an UploadConfig from CLI values, environment and settings file.

    Args:
        cli_values: Values from CLI options keyed by setting name. None means
            "not given on the command line". "object_name" is CLI-only.
        config_file: Explicit settings file path.

    Returns:
        The resolved, validated configuration.
    """
    resolved = {
        key: get_setting(key, cli_value=cli_values.get(key), config_file=config_file)
        for key in KNOWN_SETTINGS
    }
    return UploadConfig(object_name=cli_values.get("object_name"), **resolved)
