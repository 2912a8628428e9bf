"""Configuration loader for argocd-strongbox-plugin."""
import os
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "ARGOCD_STRONGBOX_PLUGIN_CONFIG"
DEFAULT_CONFIG_PATH = Path("/etc/argocd-strongbox-plugin/config.yml")

DEFAULT_ALLOWED_NAMESPACES_ANNOTATION = "argocd-strongbox.plugin.io/allowed-namespaces"
DEFAULT_ANNOTATION_MARKER = "argocd-strongbox-plugin"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Settings:
    """Plugin settings, resolved once per invocation."""
    allowed_namespaces_annotation: str = DEFAULT_ALLOWED_NAMESPACES_ANNOTATION
    annotation_marker: str = DEFAULT_ANNOTATION_MARKER
    strongbox_binary: str = "strongbox"
    kustomize_binary: str = "kustomize"
    command_timeout: Optional[float] = 300.0
    log_level: str = "ERROR"


# section -> {yaml key -> Settings field}
_SECTIONS = {
    "secrets": {"allowed_namespaces_annotation": "allowed_namespaces_annotation"},
    "gitssh": {"annotation_marker": "annotation_marker"},
    "tools": {
        "strongbox": "strongbox_binary",
        "kustomize": "kustomize_binary",
        "command_timeout": "command_timeout",
    },
    "logging": {"level": "log_level"},
}

_ENV_OVERRIDES = {
    "STRONGBOX_ALLOWED_NAMESPACES_ANNOTATION": "allowed_namespaces_annotation",
    "STRONGBOX_BINARY": "strongbox_binary",
    "KUSTOMIZE_BINARY": "kustomize_binary",
    "STRONGBOX_COMMAND_TIMEOUT": "command_timeout",
    "STRONGBOX_PLUGIN_LOG_LEVEL": "log_level",
}


def _get_config_path(explicit_path: Optional[str] = None) -> Optional[Path]:
    """
    Get config file path.

    Priority order:
    1. Path given on the command line
    2. ARGOCD_STRONGBOX_PLUGIN_CONFIG environment variable
    3. Default location: /etc/argocd-strongbox-plugin/config.yml

    Returns:
        Path to config file, or None if no file is configured and the
        default location doesn't exist

    Raises:
        ConfigError: If an explicitly requested config file doesn't exist
    """
    requested = explicit_path or os.getenv(CONFIG_PATH_ENV)
    if requested:
        config_path = Path(requested)
        if not config_path.is_file():
            raise ConfigError(
                f"Configuration file not found at: {config_path}\n"
                f"Unset {CONFIG_PATH_ENV} or point it to an existing YAML file."
            )
        logger.info(f"Using config from: {config_path}")
        return config_path

    if DEFAULT_CONFIG_PATH.is_file():
        logger.info(f"Using default config location: {DEFAULT_CONFIG_PATH}")
        return DEFAULT_CONFIG_PATH

    logger.debug("No config file found, using built-in defaults")
    return None


def _parse_timeout(value: Any, source: str) -> Optional[float]:
    if value is None or value == "" or value == 0 or value == "0":
        return None
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid command_timeout in {source}: {value!r} (expected seconds)")
    if timeout < 0:
        raise ConfigError(f"Invalid command_timeout in {source}: {value!r} (must not be negative)")
    return timeout


def _validate(settings: Settings, source: str) -> Settings:
    if not settings.allowed_namespaces_annotation.strip():
        raise ConfigError(f"Empty allowed namespaces annotation in {source}")

    marker = settings.annotation_marker.strip()
    if not marker or any(c.isspace() for c in marker):
        raise ConfigError(
            f"Invalid annotation marker in {source}: {settings.annotation_marker!r}\n"
            f"The marker must be a single non-empty word, e.g. '{DEFAULT_ANNOTATION_MARKER}'."
        )

    level = settings.log_level.upper()
    if level not in _LOG_LEVELS:
        raise ConfigError(
            f"Unsupported log level in {source}: {settings.log_level}\n"
            f"Supported levels: {', '.join(_LOG_LEVELS)}"
        )
    return replace(settings, log_level=level)


def _settings_from_file(config_path: Path) -> Dict[str, Any]:
    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML config at {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read config file at {config_path}: {e}")

    if config is None:
        return {}

    if not isinstance(config, dict):
        raise ConfigError(f"Config file at {config_path} must contain a mapping")

    values: Dict[str, Any] = {}
    for section, body in config.items():
        if section not in _SECTIONS:
            raise ConfigError(
                f"Unknown section '{section}' in config at {config_path}\n"
                f"Supported sections: {', '.join(_SECTIONS)}"
            )
        if body is None:
            continue
        if not isinstance(body, dict):
            raise ConfigError(f"Section '{section}' in config at {config_path} must be a mapping")
        for key, value in body.items():
            field_name = _SECTIONS[section].get(key)
            if field_name is None:
                raise ConfigError(
                    f"Unknown key '{section}.{key}' in config at {config_path}\n"
                    f"Supported keys: {', '.join(f'{section}.{k}' for k in _SECTIONS[section])}"
                )
            values[field_name] = value

    if "command_timeout" in values:
        values["command_timeout"] = _parse_timeout(values["command_timeout"], str(config_path))
    for key, value in values.items():
        if key != "command_timeout" and not isinstance(value, str):
            raise ConfigError(f"Expected a string for '{key}' in config at {config_path}, got {value!r}")

    return values


def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load and validate plugin settings.

    Settings start from built-in defaults, are updated from the YAML config
    file (if any) and finally from environment variable overrides.

    Args:
        config_path: Explicit config file path (e.g. from --config)

    Returns:
        Validated Settings

    Raises:
        ConfigError: If the config file is missing, invalid, or a value is unsupported
    """
    settings = Settings()
    source = "defaults"

    path = _get_config_path(config_path)
    if path is not None:
        settings = replace(settings, **_settings_from_file(path))
        source = str(path)

    for env_name, field_name in _ENV_OVERRIDES.items():
        env_value = os.getenv(env_name)
        if env_value is None or env_value == "":
            continue
        logger.debug(f"Using {env_name} from environment")
        if field_name == "command_timeout":
            settings = replace(settings, command_timeout=_parse_timeout(env_value, env_name))
        else:
            settings = replace(settings, **{field_name: env_value})

    settings = _validate(settings, source)
    logger.debug(f"Settings loaded from {source}: {settings}")
    return settings
