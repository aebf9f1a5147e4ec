"""
Configuration for netdeadline.

Timeouts are resolved from a hierarchy: an explicit argument wins, then a
configuration mapping, then ``NETDEADLINE_*`` environment variables, then the
built-in defaults.
"""

import math
import os
from typing import Any, Dict, NamedTuple, Optional

from netdeadline.errors import ConfigurationError

ENV_PREFIX = "NETDEADLINE_"

DEFAULT_READ_TIMEOUT = 30.0


class Timeouts(NamedTuple):
    """Resolved per-operation timeouts, in seconds."""

    read: float
    write: float
    connect: float


def get_env_config(key: str) -> Optional[str]:
    """
    Get a configuration value from the environment.

    Args:
        key: The configuration key, e.g. ``"read_timeout"``

    Returns:
        The value of ``NETDEADLINE_<KEY>``, or None if it is unset or empty
    """
    value = os.environ.get(f"{ENV_PREFIX}{key.upper()}")
    if value is None or not value.strip():
        return None
    return value.strip()


def merge_configs(*configs: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Merge configuration mappings, later mappings taking precedence.

    None entries are skipped, and so are keys whose value is None.
    """
    merged: Dict[str, Any] = {}
    for config in configs:
        if not config:
            continue
        merged.update({k: v for k, v in config.items() if v is not None})
    return merged


def validate_timeout(name: str, value: Any) -> float:
    """
    Validate a timeout and return it as a float.

    Args:
        name: The name of the timeout, used in error messages
        value: The value to validate (number or numeric string)

    Returns:
        The timeout in seconds

    Raises:
        ConfigurationError: If the value is not a finite, non-negative number
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    try:
        timeout = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from e
    if math.isnan(timeout) or math.isinf(timeout):
        raise ConfigurationError(f"{name} must be finite, got {value!r}")
    if timeout < 0:
        raise ConfigurationError(f"{name} must be non-negative, got {value!r}")
    return timeout


TIMEOUT_KEYS = ("read_timeout", "write_timeout", "connect_timeout")


def apply_default_timeout(
    timeout: Optional[float], config: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Merge a shared ``timeout`` over ``config`` for every timeout key.

    Explicit per-operation timeouts passed to ``resolve_timeouts`` still win
    over the merged mapping.

    Raises:
        ConfigurationError: If ``timeout`` is invalid
    """
    if timeout is None:
        return merge_configs(config)
    timeout = validate_timeout("timeout", timeout)
    return merge_configs(config, dict.fromkeys(TIMEOUT_KEYS, timeout))


def _lookup(key: str, explicit: Any, config: Dict[str, Any]) -> Any:
    if explicit is not None:
        return explicit
    if key in config:
        return config[key]
    return get_env_config(key)


def resolve_timeouts(
    read_timeout: Optional[float] = None,
    write_timeout: Optional[float] = None,
    connect_timeout: Optional[float] = None,
    config: Optional[Dict[str, Any]] = None,
) -> Timeouts:
    """
    Resolve read, write and connect timeouts from the configuration hierarchy.

    The write timeout falls back to the read timeout, and so does the connect
    timeout, when they are not configured separately.

    Args:
        read_timeout: Explicit read timeout in seconds
        write_timeout: Explicit write timeout in seconds
        connect_timeout: Explicit connect timeout in seconds
        config: Optional mapping with ``read_timeout``, ``write_timeout``
            and ``connect_timeout`` keys

    Returns:
        The resolved timeouts

    Raises:
        ConfigurationError: If any resolved value is invalid
    """
    config = config or {}

    raw_read = _lookup("read_timeout", read_timeout, config)
    read = (
        DEFAULT_READ_TIMEOUT
        if raw_read is None
        else validate_timeout("read_timeout", raw_read)
    )

    raw_write = _lookup("write_timeout", write_timeout, config)
    write = read if raw_write is None else validate_timeout("write_timeout", raw_write)

    raw_connect = _lookup("connect_timeout", connect_timeout, config)
    connect = (
        read if raw_connect is None else validate_timeout("connect_timeout", raw_connect)
    )

    return Timeouts(read=read, write=write, connect=connect)
