"""Structured logging setup for the announcement stream service."""

import json
import logging
import sys
from datetime import datetime, timezone

from ..config.settings import LoggingConfig


_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName',
    'created', 'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'taskName', 'message',
])

# Transport libraries log every frame at DEBUG
_NOISY_LOGGERS = {
    'websockets': logging.INFO,
    'aiohttp.access': logging.WARNING,
    'python_socks': logging.WARNING,
}


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, timezone.utc)


class JSONFormatter(logging.Formatter):
    """One JSON object per line; extra record attributes become fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': _record_time(record).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in log_data:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Console formatter, coloured by level when attached to a terminal."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        level = record.levelname
        if self.use_colors and level in self.COLORS:
            level = f"{self.COLORS[level]}{level}{self.RESET}"

        timestamp = _record_time(record).strftime('%Y-%m-%d %H:%M:%S')
        formatted = f"{timestamp} [{level}] {record.name}: {record.getMessage()}"

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)
        return formatted


class ServiceContextFilter(logging.Filter):
    """Stamp every record with the owning service name."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service_name
        return True


def _build_handler(config: LoggingConfig) -> logging.Handler:
    output = config.output.lower()
    if output == 'stdout':
        return logging.StreamHandler(sys.stdout)
    if output == 'stderr':
        return logging.StreamHandler(sys.stderr)
    return logging.FileHandler(config.output)


def setup_logging(config: LoggingConfig, service_name: str = "announcement-stream") -> None:
    """
    Install a single root handler for the service.

    Args:
        config: Logging configuration (level, `json`/`text` format, and
            `stdout`, `stderr` or a file path as output)
        service_name: Value of the `service` field on every record
    """
    handler = _build_handler(config)
    handler.setFormatter(JSONFormatter() if config.format.lower() == 'json' else TextFormatter())
    handler.addFilter(ServiceContextFilter(service_name))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name, level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    logging.getLogger(__name__).info(
        f"Logging configured: level={config.level}, format={config.format}, "
        f"output={config.output}, service={service_name}"
    )
