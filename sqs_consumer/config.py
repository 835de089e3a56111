"""
Configuration loader.
Typed, immutable consumer settings validated on construction, plus a loader
that merges a YAML file with environment variable overrides.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import yaml

from .constants import (
    DEFAULT_AUTHENTICATION_ERROR_TIMEOUT_MS,
    DEFAULT_BATCH_SIZE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_POLLING_WAIT_TIME_MS,
    DEFAULT_WAIT_TIME_SECONDS,
    MAX_BATCH_SIZE,
    MAX_WAIT_TIME_SECONDS,
    MIN_BATCH_SIZE,
    SQS_MAX_VISIBILITY,
)
from .errors import ConfigurationError


# ============================================================================
# CONFIG SCHEMA
# ============================================================================

@dataclass(frozen=True)
class ConsumerConfig:
    """
    Complete consumer configuration. Immutable once built.

    Units: visibility_timeout and heartbeat_interval are seconds (SQS units);
    everything suffixed _ms is milliseconds.
    """
    queue_url: str
    region: Optional[str] = None
    batch_size: int = DEFAULT_BATCH_SIZE
    wait_time_seconds: int = DEFAULT_WAIT_TIME_SECONDS
    visibility_timeout: Optional[int] = None  # None -> queue default
    heartbeat_interval: Optional[float] = None
    handle_message_timeout_ms: Optional[int] = None
    authentication_error_timeout_ms: int = DEFAULT_AUTHENTICATION_ERROR_TIMEOUT_MS
    polling_wait_time_ms: int = DEFAULT_POLLING_WAIT_TIME_MS
    attribute_names: Tuple[str, ...] = ()
    message_attribute_names: Tuple[str, ...] = ()
    terminate_visibility_timeout: bool = False
    should_delete_messages: bool = True
    max_retries: int = DEFAULT_MAX_RETRIES

    def __post_init__(self):
        # Sequences may arrive as lists (YAML, kwargs); store tuples
        object.__setattr__(self, "attribute_names", parse_name_list(self.attribute_names))
        object.__setattr__(self, "message_attribute_names", parse_name_list(self.message_attribute_names))
        validate_config(self)

    @property
    def heartbeat_enabled(self) -> bool:
        return self.heartbeat_interval is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# VALIDATION FUNCTIONS
# ============================================================================

def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require_non_negative(name: str, value: Any) -> None:
    if not _is_number(value) or value < 0:
        raise ConfigurationError(f"{name} must be a non-negative number, got {value!r}")


def validate_config(config: ConsumerConfig) -> None:
    """
    Enforce construction-time invariants. Never coerces.

    Raises:
        ConfigurationError on the first violated rule
    """
    if not isinstance(config.queue_url, str) or not config.queue_url.strip():
        raise ConfigurationError("Missing SQS consumer option [ queue_url ].")

    if not _is_int(config.batch_size) or not MIN_BATCH_SIZE <= config.batch_size <= MAX_BATCH_SIZE:
        raise ConfigurationError(
            f"batch_size must be between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}, got {config.batch_size!r}"
        )

    if not _is_int(config.wait_time_seconds) or not 0 <= config.wait_time_seconds <= MAX_WAIT_TIME_SECONDS:
        raise ConfigurationError(
            f"wait_time_seconds must be between 0 and {MAX_WAIT_TIME_SECONDS}, got {config.wait_time_seconds!r}"
        )

    if config.visibility_timeout is not None:
        if not _is_int(config.visibility_timeout) or not 0 <= config.visibility_timeout <= SQS_MAX_VISIBILITY:
            raise ConfigurationError(
                f"visibility_timeout must be an integer between 0 and {SQS_MAX_VISIBILITY}, "
                f"got {config.visibility_timeout!r}"
            )

    if config.heartbeat_interval is not None:
        if not _is_number(config.heartbeat_interval) or config.heartbeat_interval <= 0:
            raise ConfigurationError(
                f"heartbeat_interval must be a positive number, got {config.heartbeat_interval!r}"
            )
        if config.visibility_timeout is None:
            raise ConfigurationError("heartbeat_interval requires visibility_timeout to be set.")
        if config.heartbeat_interval >= config.visibility_timeout:
            raise ConfigurationError("heartbeat_interval must be less than visibility_timeout.")

    if config.handle_message_timeout_ms is not None:
        _require_non_negative("handle_message_timeout_ms", config.handle_message_timeout_ms)
    _require_non_negative("authentication_error_timeout_ms", config.authentication_error_timeout_ms)
    _require_non_negative("polling_wait_time_ms", config.polling_wait_time_ms)

    if not _is_int(config.max_retries) or config.max_retries < 1:
        raise ConfigurationError(f"max_retries must be a positive integer, got {config.max_retries!r}")


# ============================================================================
# ENVIRONMENT VARIABLE NAMES
# ============================================================================

CONFIG_PATH_ENV_VAR = "SQS_CONSUMER_CONFIG"

# env var -> (field, parser)
ENV_OVERRIDES: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "SQS_QUEUE_URL": ("queue_url", str),
    "AWS_REGION": ("region", str),
    "SQS_BATCH_SIZE": ("batch_size", int),
    "SQS_WAIT_TIME_SECONDS": ("wait_time_seconds", int),
    "SQS_VISIBILITY_TIMEOUT": ("visibility_timeout", int),
    "SQS_HEARTBEAT_INTERVAL": ("heartbeat_interval", float),
    "SQS_HANDLE_MESSAGE_TIMEOUT_MS": ("handle_message_timeout_ms", int),
    "SQS_POLLING_WAIT_TIME_MS": ("polling_wait_time_ms", int),
    "SQS_AUTHENTICATION_ERROR_TIMEOUT_MS": ("authentication_error_timeout_ms", int),
    "SQS_ATTRIBUTE_NAMES": ("attribute_names", lambda v: parse_name_list(v)),
    "SQS_MESSAGE_ATTRIBUTE_NAMES": ("message_attribute_names", lambda v: parse_name_list(v)),
}


# ============================================================================
# LOADING FUNCTIONS
# ============================================================================

def load_yaml_file(filepath: str) -> Dict[str, Any]:
    """
    Parse a YAML config file and return its `consumer:` section.
    A file without that section is treated as the section itself.

    Raises:
        FileNotFoundError if the file is missing
        ConfigurationError if the document is not a mapping
    """
    with open(filepath, "r") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file {filepath} must contain a mapping")
    section = raw.get("consumer", raw)
    if not isinstance(section, dict):
        raise ConfigurationError(f"'consumer' section in {filepath} must be a mapping")
    return dict(section)


def load_env_overrides(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Read the SQS_* / AWS_REGION overrides that are set and non-empty."""
    environ = os.environ if environ is None else environ
    out: Dict[str, Any] = {}
    for var, (field_name, parse) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value is None or value == "":
            continue
        try:
            out[field_name] = parse(value)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {var}: {value!r}") from e
    return out


def build_config(options: Dict[str, Any]) -> ConsumerConfig:
    """Build ConsumerConfig from a plain dict, rejecting unknown keys."""
    known = {f.name for f in fields(ConsumerConfig)}
    unknown = sorted(set(options) - known)
    if unknown:
        raise ConfigurationError(f"Unknown consumer option(s): {', '.join(unknown)}")
    try:
        # a missing queue_url is reported by validate_config, not as a TypeError
        return ConsumerConfig(**{"queue_url": None, **options})
    except TypeError as e:
        raise ConfigurationError(str(e)) from e


def load_config(
    path: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
) -> ConsumerConfig:
    """
    Main entry point.

    Priority (highest to lowest):
    1. Environment variables (ENV_OVERRIDES)
    2. YAML file: explicit path, else $SQS_CONSUMER_CONFIG, else none
    3. ConsumerConfig defaults

    Example:
        export SQS_CONSUMER_CONFIG=config/orders.yaml
        export SQS_BATCH_SIZE=10
    """
    environ = os.environ if environ is None else environ
    path = path or environ.get(CONFIG_PATH_ENV_VAR)

    options: Dict[str, Any] = {}
    if path:
        options.update(load_yaml_file(path))
    options.update(load_env_overrides(environ))
    return build_config(options)


def parse_name_list(value: Optional[Sequence[str]]) -> Tuple[str, ...]:
    """Accept a list or a comma separated string of attribute names."""
    if not value:
        return ()
    if isinstance(value, str):
        return tuple(v.strip() for v in value.split(",") if v.strip())
    return tuple(value)


__all__ = [
    "ConsumerConfig",
    "validate_config",
    "load_config",
    "load_yaml_file",
    "load_env_overrides",
    "build_config",
    "parse_name_list",
]
