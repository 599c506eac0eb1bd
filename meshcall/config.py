"""
Configuration settings for a meshcall service
"""
import json
import os
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional

from meshcall.errors import ConfigError

ENV_PREFIX = "MESHCALL_"

LOG_LEVELS = ("off", "error", "warn", "info", "debug", "trace")

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


class TransportType(Enum):
    """Supported transport adapters"""
    NATS = "nats"
    MEMORY = "memory"


def parse_servers(value: Any) -> List[str]:
    """Parse a server list given as a list, a JSON array or a comma separated string"""
    if isinstance(value, (list, tuple)):
        servers = [str(url).strip() for url in value]
    elif isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError:
                raise ConfigError(f"servers should be a JSON array or a comma separated list of urls: {value}")
            if not isinstance(parsed, list):
                raise ConfigError(f"servers should be a JSON array or a comma separated list of urls: {value}")
            servers = [str(url).strip() for url in parsed]
        else:
            servers = [url.strip() for url in text.split(",")]
    else:
        raise ConfigError(f"servers should be a list or a string, got {type(value).__name__}")

    servers = [url for url in servers if url]
    if not servers:
        raise ConfigError("at least one server url is required")
    return servers


def _parse_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer number of milliseconds")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be an integer number of milliseconds, got {value!r}")
    if number < 0:
        raise ConfigError(f"{key} must not be negative")
    return number


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigError(f"{key} must be a boolean, got {value!r}")


def _parse_log_level(key: str, value: Any) -> Optional[str]:
    if value is None:
        return None
    level = str(value).strip().lower()
    if level not in LOG_LEVELS:
        raise ConfigError(f"{key} must be one of [ {', '.join(LOG_LEVELS)} ]")
    return level


def _parse_transport(key: str, value: Any) -> TransportType:
    if isinstance(value, TransportType):
        return value
    try:
        return TransportType(str(value).strip().lower())
    except ValueError:
        raise ConfigError(f"{key} must be one of [ {', '.join(t.value for t in TransportType)} ]")


# field name -> (environment variable suffix, parser)
_FIELDS = {
    "name": ("NAME", None),
    "namespace": ("NAMESPACE", None),
    "servers": ("SERVERS", lambda key, value: parse_servers(value)),
    "transport": ("TRANSPORT", _parse_transport),
    "timeout_ms": ("TIMEOUT", _parse_int),
    "connect_timeout_ms": ("CONNECT_TIMEOUT", _parse_int),
    "drain_timeout_ms": ("DRAIN_TIMEOUT", _parse_int),
    "log_level": ("LOG_LEVEL", _parse_log_level),
    "enable_expose_log": ("ENABLE_EXPOSE_LOG", _parse_bool),
    "enable_request_log": ("ENABLE_REQUEST_LOG", _parse_bool),
    "enable_observe_log": ("ENABLE_OBSERVE_LOG", _parse_bool),
    "otlp_endpoint": ("OTLP_ENDPOINT", None),
}


@dataclass(frozen=True)
class ServiceConfig:
    """Resolved, immutable configuration of one service instance"""
    name: str
    namespace: str = ""
    servers: List[str] = field(default_factory=lambda: ["nats://localhost:4222"])
    transport: TransportType = TransportType.NATS
    timeout_ms: int = 5000
    connect_timeout_ms: int = 2000
    drain_timeout_ms: int = 1000
    log_level: Optional[str] = None
    enable_expose_log: bool = True
    enable_request_log: bool = True
    enable_observe_log: bool = True
    otlp_endpoint: Optional[str] = None

    @classmethod
    def resolve(cls, environ: Optional[Dict[str, str]] = None, **overrides) -> "ServiceConfig":
        """Create config from explicit values, environment variables and defaults

        Precedence is explicit argument > environment variable > default. Explicit
        arguments set to None count as absent.

        Args:
            environ: Environment mapping, ``os.environ`` when omitted
            **overrides: Explicit field values

        Raises:
            ConfigError: Unknown field, missing name or invalid value
        """
        if environ is None:
            environ = os.environ

        unknown = set(overrides) - set(_FIELDS)
        if unknown:
            raise ConfigError(f"Unknown configuration option(s): {', '.join(sorted(unknown))}")

        values: Dict[str, Any] = {}
        for key, (env_suffix, parser) in _FIELDS.items():
            value = overrides.get(key)
            if value is None:
                value = environ.get(ENV_PREFIX + env_suffix)
            if value is None:
                continue
            values[key] = parser(key, value) if parser else value

        if not values.get("name"):
            raise ConfigError("name is required to initialize a Service")

        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging"""
        data = asdict(self)
        data["transport"] = self.transport.value
        return data
