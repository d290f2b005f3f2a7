"""Configuration settings for the announcement stream service."""

import os
import yaml
from dataclasses import dataclass, field
from typing import List, Optional


class ConfigurationError(ValueError):
    """Raised when the service configuration is missing or invalid."""


@dataclass
class BinanceConfig:
    """Binance announcement stream configuration."""
    api_key: str
    api_secret: str
    ws_base_url: str = "wss://api.binance.com/sapi/wss"
    rest_base_url: str = "https://api.binance.com"
    topics: List[str] = field(default_factory=lambda: ["com_announcement_en"])
    recv_window_ms: int = 30000
    proxy_url: Optional[str] = None
    server_time_timeout_seconds: float = 10.0


@dataclass
class StreamConfig:
    """Connection lifecycle timing."""
    ping_interval_seconds: float = 30.0
    probe_ack_timeout_seconds: float = 0.0  # 0 disables the ack timeout
    rotation_interval_seconds: float = 23 * 60 * 60
    min_viable_session_seconds: float = 30.0
    close_timeout_seconds: float = 10.0
    max_message_size: int = 2**20


@dataclass
class RetryConfig:
    """Reconnect backoff configuration."""
    # consecutive failures, the initial open included, before giving up
    max_attempts: int = 10
    initial_backoff_seconds: float = 5.0
    max_backoff_seconds: float = 30.0


@dataclass
class NotifierConfig:
    """Webhook notifier configuration."""
    enabled: bool = True
    access_token: Optional[str] = None
    webhook_url: str = "https://oapi.dingtalk.com/robot/send"
    max_attempts: int = 3
    initial_backoff_seconds: float = 1.0
    request_timeout_seconds: float = 10.0
    announcement_url: str = "https://www.binance.com/en/support/announcement"


@dataclass
class DeduplicationConfig:
    """Seen-announcement cache configuration."""
    window_seconds: int = 24 * 60 * 60
    max_entries: int = 1000


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "text"
    output: str = "stdout"


@dataclass
class HealthConfig:
    """Health check configuration."""
    enabled: bool = True
    port: int = 8080
    host: str = "0.0.0.0"


@dataclass
class MetricsConfig:
    """Prometheus metrics configuration."""
    enabled: bool = False
    port: int = 8081
    refresh_interval_seconds: float = 15.0


@dataclass
class AnnouncementStreamConfig:
    """Main configuration for the announcement stream service."""
    binance: BinanceConfig
    stream: StreamConfig
    retry: RetryConfig
    notifier: NotifierConfig
    deduplication: DeduplicationConfig
    logging: LoggingConfig
    health: HealthConfig
    metrics: MetricsConfig


_SECTIONS = {
    'stream': StreamConfig,
    'retry': RetryConfig,
    'notifier': NotifierConfig,
    'deduplication': DeduplicationConfig,
    'logging': LoggingConfig,
    'health': HealthConfig,
    'metrics': MetricsConfig,
}


def load_config(config_file: str) -> AnnouncementStreamConfig:
    """Load configuration from YAML file."""

    # Load YAML file
    with open(config_file, 'r') as f:
        config_data = yaml.safe_load(f) or {}

    return build_config(config_data)


def build_config(config_data: dict) -> AnnouncementStreamConfig:
    """Build configuration objects from already-parsed YAML data."""

    # Environment variable substitution
    config_data = _substitute_env_vars(config_data)

    binance_data = config_data.get('binance') or {}
    if not binance_data.get('api_key') or not binance_data.get('api_secret'):
        raise ConfigurationError(
            "binance.api_key and binance.api_secret are required "
            "(set BINANCE_API_KEY and BINANCE_SECRET_KEY)"
        )

    topics = binance_data.get('topics')
    if isinstance(topics, str):
        binance_data['topics'] = [t for t in topics.split(',') if t]

    try:
        binance_config = BinanceConfig(**_coerce(BinanceConfig, binance_data))
        sections = {
            name: cls(**_coerce(cls, config_data.get(name) or {}))
            for name, cls in _SECTIONS.items()
        }
    except TypeError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    if not binance_config.topics:
        raise ConfigurationError("binance.topics must name at least one topic")

    return AnnouncementStreamConfig(binance=binance_config, **sections)


def _coerce(cls, data: dict) -> dict:
    """Convert env-substituted strings to the field types declared on cls."""
    coerced = dict(data)
    for name, f in cls.__dataclass_fields__.items():
        value = coerced.get(name)
        if not isinstance(value, str):
            continue
        if f.type in (int, 'int'):
            coerced[name] = int(value)
        elif f.type in (float, 'float'):
            coerced[name] = float(value)
        elif f.type in (bool, 'bool'):
            coerced[name] = value.strip().lower() in ('1', 'true', 'yes', 'on')
        elif value == '' and name.endswith(('_url', '_token')):
            coerced[name] = None
    return coerced


def _substitute_env_vars(data):
    """Recursively substitute environment variables in configuration."""
    if isinstance(data, dict):
        return {key: _substitute_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    elif isinstance(data, str) and data.startswith('${') and data.endswith('}'):
        # Extract environment variable name and default value
        env_spec = data[2:-1]  # Remove ${ and }

        if ':' in env_spec:
            env_name, default_value = env_spec.split(':', 1)
        else:
            env_name, default_value = env_spec, None

        return os.getenv(env_name, default_value)
    else:
        return data
