"""
logging_config.py - Centralized JSON Logging Configuration

PURPOSE:
    Provides structured JSON logging for every ViralDeals service with
    timezone-aware timestamps, correlation tracking, and service-specific
    context injection.

JSON LOG FIELDS:
    - timestamp: ISO 8601 in India Standard Time (e.g., "2026-10-18T14:02:11.001014+05:30")
    - level: Log level (INFO, ERROR, WARNING, DEBUG, CRITICAL)
    - logger: Module name where the log originated (e.g., "services.cart_service.cart_store")
    - message: The actual log message
    - service_name: Added to every record by ServiceFilter
    - correlation_id / event_type / session_id: Present when passed via `extra=`
    - exception: Formatted stack trace when exc_info is set

USAGE:
    setup_logging("cart-service", level="INFO")

    logger = logging.getLogger(__name__)
    logger.info("Cart hydrated", extra={"session_id": "sess-42"})

EXAMPLE JSON OUTPUT:
    {
        "timestamp": "2026-10-18T14:02:11.001014+05:30",
        "level": "INFO",
        "logger": "services.cart_service.cart_repository",
        "message": "Saved 2 cart items",
        "service_name": "cart-service",
        "session_id": "sess-42"
    }
"""

import json
import logging
import sys
from datetime import datetime
from typing import Any, Dict
from zoneinfo import ZoneInfo

LOG_TIMEZONE = ZoneInfo("Asia/Kolkata")

# Optional record attributes copied into the JSON payload when present
CONTEXT_FIELDS = ("service_name", "correlation_id", "event_type", "event_id", "session_id", "order_id")


class JsonFormatter(logging.Formatter):
    """Custom formatter that outputs JSON logs with correlation context."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(LOG_TIMEZONE).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ServiceFilter(logging.Filter):
    """Stamps every record with the owning service's name."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self.service_name
        return True


def setup_logging(service_name: str, level: str = "INFO") -> None:
    """Setup JSON logging for a service. Safe to call more than once."""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Re-imports in tests must not stack handlers
    for handler in list(logger.handlers):
        if isinstance(handler.formatter, JsonFormatter):
            logger.removeHandler(handler)
    for existing in list(logger.filters):
        if isinstance(existing, ServiceFilter):
            logger.removeFilter(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(ServiceFilter(service_name))
    logger.addHandler(handler)
