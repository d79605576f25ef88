"""
Logging utilities for HealthChain Notify.
"""

import logging
import logging.handlers
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
import structlog
from structlog.stdlib import LoggerFactory

from ..core.config import LoggingConfig

ROOT_LOGGER = "healthchain_notify"

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'taskName',
}


class NotifyFormatter(logging.Formatter):
    """JSON formatter that carries `extra` fields under `data`."""

    def format(self, record: logging.LogRecord) -> str:
        extra_data = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }

        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if extra_data:
            log_entry['data'] = extra_data

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': self.formatException(record.exc_info),
            }

        return json.dumps(log_entry, default=str)


class DeliveryLogger:
    """Structured events for the notification lifecycle."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(f"{ROOT_LOGGER}.delivery")

    def log_notification_queued(self, notification_id: str, recipient_id: str,
                                channel: str, template_key: str, job_id: str) -> None:
        self.logger.info(
            f"Notification queued: {channel}",
            extra={
                'event_type': 'notification_queued',
                'notification_id': notification_id,
                'recipient_id': recipient_id,
                'channel': channel,
                'template_key': template_key,
                'job_id': job_id,
            }
        )

    def log_delivery_attempt(self, notification_id: str, channel: str, attempt: int,
                             success: bool, duration_ms: float, error: Optional[str] = None) -> None:
        level = logging.INFO if success else logging.WARNING
        self.logger.log(
            level,
            f"Delivery attempt {attempt} {'succeeded' if success else 'failed'}: {channel}",
            extra={
                'event_type': 'delivery_attempt',
                'notification_id': notification_id,
                'channel': channel,
                'attempt': attempt,
                'success': success,
                'duration_ms': round(duration_ms, 2),
                'error': error,
            }
        )

    def log_retry_scheduled(self, notification_id: str, channel: str,
                            next_attempt: int, available_at: datetime) -> None:
        self.logger.info(
            f"Delivery retry scheduled: {channel}",
            extra={
                'event_type': 'delivery_retry_scheduled',
                'notification_id': notification_id,
                'channel': channel,
                'next_attempt': next_attempt,
                'available_at': available_at.isoformat(),
            }
        )

    def log_notification_sent(self, notification_id: str, channel: str, attempt: int) -> None:
        self.logger.info(
            f"Notification sent: {channel}",
            extra={
                'event_type': 'notification_sent',
                'notification_id': notification_id,
                'channel': channel,
                'attempt': attempt,
            }
        )

    def log_dead_lettered(self, notification_id: str, channel: str, attempts: int, error: str) -> None:
        self.logger.error(
            f"Delivery failed permanently: {channel}",
            extra={
                'event_type': 'delivery_dead_lettered',
                'notification_id': notification_id,
                'channel': channel,
                'attempts': attempts,
                'error': error,
            }
        )


def setup_logging(config: LoggingConfig) -> tuple[logging.Logger, DeliveryLogger]:
    """
    Setup logging for HealthChain Notify.

    Args:
        config: Logging configuration

    Returns:
        Tuple of (main_logger, delivery_logger)
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, config.level.upper()))
    logger.handlers.clear()

    if config.format == 'json':
        formatter = NotifyFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if config.file:
        file_path = Path(config.file)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            file_path,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    delivery_logger = DeliveryLogger(logging.getLogger(f"{ROOT_LOGGER}.delivery"))

    logger.info("Logging system initialized", extra={
        'log_level': config.level,
        'log_format': config.format,
        'log_file': str(config.file) if config.file else None
    })

    return logger, delivery_logger
