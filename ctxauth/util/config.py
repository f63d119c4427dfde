"""
Configuration utilities for the ctxauth engine.
Provides environment lookup, type casting and JSON/YAML file loading.
"""

import json
import logging
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


logger = logging.getLogger(__name__)

TRUE_VALUES = ('true', '1', 'yes', 'on')
FALSE_VALUES = ('false', '0', 'no', 'off')


def parse_bool(value: Any, default: bool) -> bool:
    """
    Interpret a flag value. Anything that is not a recognised true or false
    word yields ``default``.
    """
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    logger.warning(f"Unrecognised boolean value {value!r}, using default {default}")
    return default


def get_config_value(key: str, default: Any = None,
                     cast_type: Optional[type] = None,
                     env_prefix: str = "") -> Any:
    """
    Get configuration value from environment or return default.
    Optionally cast to specified type.
    """
    env_key = f"{env_prefix}{key.upper()}"
    value = os.environ.get(env_key)

    if value is None or value.strip() == "":
        return default

    if cast_type is None:
        return value

    try:
        if cast_type == bool:
            return parse_bool(value, default)
        elif cast_type == list:
            return [item.strip() for item in value.split(',') if item.strip()]
        else:
            return cast_type(value)
    except (ValueError, TypeError):
        return default


def get_bool_config(key: str, default: bool = False,
                    env_prefix: str = "") -> bool:
    """Get boolean configuration value."""
    return get_config_value(key, default, bool, env_prefix)


def get_int_config(key: str, default: int = 0,
                   env_prefix: str = "") -> int:
    """Get integer configuration value."""
    return get_config_value(key, default, int, env_prefix)


def get_list_config(key: str, default: Optional[List[str]] = None,
                    env_prefix: str = "") -> List[str]:
    """Get list configuration value (comma-separated)."""
    if default is None:
        default = []
    return get_config_value(key, default, list, env_prefix)


def get_millis_config(key: str, default: timedelta,
                      env_prefix: str = "") -> timedelta:
    """Get a duration expressed in milliseconds."""
    value = get_config_value(key, None, int, env_prefix)
    if value is None:
        return default
    return timedelta(milliseconds=value)


def parse_duration_string(duration_str: str) -> timedelta:
    """
    Parse duration string like '500ms', '30s', '5m', '2h', '1d' into timedelta.
    """
    if not isinstance(duration_str, str):
        raise ValueError("Duration must be a string")

    duration_str = duration_str.strip().lower()

    pattern = r'^(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)$'
    match = re.match(pattern, duration_str)

    if not match:
        raise ValueError(f"Invalid duration format: {duration_str}")

    value, unit = match.groups()
    value = float(value)

    if unit == 'ms':
        return timedelta(milliseconds=value)
    elif unit == 's':
        return timedelta(seconds=value)
    elif unit == 'm':
        return timedelta(minutes=value)
    elif unit == 'h':
        return timedelta(hours=value)
    else:
        return timedelta(days=value)


def load_config_file(file_path: str) -> Dict[str, Any]:
    """Load configuration from a file (JSON or YAML)."""
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    file_ext = Path(file_path).suffix.lower()

    with open(file_path, 'r', encoding='utf-8') as f:
        if file_ext in ['.json']:
            return json.load(f) or {}
        elif file_ext in ['.yaml', '.yml']:
            return yaml.safe_load(f) or {}
        else:
            raise ValueError(f"Unsupported configuration file format: {file_ext}")
