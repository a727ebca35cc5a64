"""
Structured JSON logging configuration.

Every record carries:
- timestamp (ISO 8601)
- level
- service (service name)
- trace_id (OpenTelemetry trace ID for correlation)
- request_id (per-request identifier, when logged from a request)
- message

Usage:
    import logging

    logger = logging.getLogger(__name__)
    logger.info("Message sent", extra={"chat_id": chat_id, "user_id": user_id})
"""
import logging
import sys
from datetime import datetime, timezone
from typing import Dict, Any

from opentelemetry import trace
from pythonjsonlogger import jsonlogger


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding the mandatory observability fields."""

    def __init__(self, service_name: str = "chatline", *args, **kwargs):
        self.service_name = service_name
        super().__init__(*args, **kwargs)

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        log_record['level'] = record.levelname
        log_record['service'] = self.service_name
        log_record['logger'] = record.name
        log_record['message'] = record.getMessage()
        log_record['trace_id'] = getattr(record, 'trace_id', 'no-trace')
        log_record['request_id'] = getattr(record, 'request_id', 'no-request')

        if record.exc_info:
            log_record['exception'] = self.formatException(record.exc_info)

        log_record['module'] = record.module
        log_record['function'] = record.funcName
        log_record['line'] = record.lineno


class LogContextFilter(logging.Filter):
    """Injects the current OpenTelemetry trace id into each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            record.trace_id = format(span_context.trace_id, '032x')
        else:
            record.trace_id = 'no-trace'

        # Set by RequestIDMiddleware through `extra`
        if not hasattr(record, 'request_id'):
            record.request_id = 'no-request'

        return True


def configure_logging(
    service_name: str = "chatline",
    level: str = "INFO",
    enable_json: bool = True
) -> None:
    """
    Configure root logging for the application.

    Args:
        service_name: Name stamped on every JSON record
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_json: JSON output for production, plain text for development
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.addFilter(LogContextFilter())

    if enable_json:
        formatter = CustomJsonFormatter(
            service_name=service_name,
            fmt='%(timestamp)s %(level)s %(service)s %(trace_id)s %(request_id)s %(message)s'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Suppress noisy third-party loggers
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('multipart').setLevel(logging.WARNING)
