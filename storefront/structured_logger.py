"""
Structured JSON logger for order lifecycle events.

One JSON object per line, so placements, verifications and cancellations can
be reconstructed from logs during incident review:
- request / response pairs per endpoint
- order events (order_placed, stock_conflict, payment_verified, ...)
- errors with stack traces
"""

from datetime import datetime, timezone
from enum import Enum
import json
import logging
import sys
from typing import Any, Dict, Optional


class LogLevel(str, Enum):
    """Log levels matching Python logging."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StructuredLogger:
    """
    JSON structured logger.

    Each log entry includes:
    - timestamp (ISO 8601)
    - level
    - event_type (request, response, order, error)
    - message (human-readable)
    - context (request_id, order_number, endpoint, ...)
    """

    def __init__(self, name: str = "storefront.events", log_level: str = "INFO"):
        self.name = name
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, log_level))

        # Console handler emitting the JSON line as-is
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(getattr(logging, log_level))
        handler.setFormatter(logging.Formatter('%(message)s'))

        self.logger.handlers = [handler]
        self.logger.propagate = False

    def _log(
        self,
        level: LogLevel,
        event_type: str,
        message: str,
        context: Optional[Dict[str, Any]] = None
    ):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level.value,
            "logger": self.name,
            "event_type": event_type,
            "message": message,
        }
        if context:
            log_entry["context"] = context

        # default=str keeps Decimal amounts and datetimes serializable
        self.logger.log(getattr(logging, level.value), json.dumps(log_entry, default=str))

    def info(self, event_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        self._log(LogLevel.INFO, event_type, message, context)

    def warning(self, event_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        self._log(LogLevel.WARNING, event_type, message, context)

    def error(self, event_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        self._log(LogLevel.ERROR, event_type, message, context)

    def log_request(
        self,
        endpoint: str,
        request_id: str,
        method: str = "POST",
        params: Optional[Dict[str, Any]] = None
    ):
        """Log an incoming request."""
        self.info(
            "request",
            f"{method} {endpoint}",
            {
                "request_id": request_id,
                "endpoint": endpoint,
                "method": method,
                "params": params or {}
            }
        )

    def log_response(
        self,
        endpoint: str,
        request_id: str,
        status: int,
        latency_ms: float
    ):
        """Log a response."""
        self.info(
            "response",
            f"Response {status} for {endpoint}",
            {
                "request_id": request_id,
                "endpoint": endpoint,
                "status": status,
                "latency_ms": round(latency_ms, 2)
            }
        )

    def log_order_event(self, event: str, order_number: Optional[str], **context):
        """Log an order lifecycle event (order_placed, order_cancelled, ...)."""
        payload = {"order_number": order_number, **context}
        if event in ("stock_conflict", "signature_rejected"):
            self.warning("order", event, payload)
        else:
            self.info("order", event, payload)

    def log_error(
        self,
        error_type: str,
        error_message: str,
        request_id: Optional[str] = None,
        stack_trace: Optional[str] = None
    ):
        """Log an error."""
        context = {
            "error_type": error_type,
            "error_message": error_message
        }
        if request_id:
            context["request_id"] = request_id
        if stack_trace:
            context["stack_trace"] = stack_trace

        self.error("error", f"{error_type}: {error_message}", context)


# Global structured logger instance
structured_logger = StructuredLogger()


def log_request(endpoint: str, request_id: str, **kwargs):
    """Log an incoming request."""
    structured_logger.log_request(endpoint, request_id, **kwargs)


def log_response(endpoint: str, request_id: str, status: int, latency_ms: float):
    """Log a response."""
    structured_logger.log_response(endpoint, request_id, status, latency_ms)


def log_order_event(event: str, order_number: Optional[str], **context):
    """Log an order lifecycle event."""
    structured_logger.log_order_event(event, order_number, **context)


def log_error(error_type: str, error_message: str, **kwargs):
    """Log an error."""
    structured_logger.log_error(error_type, error_message, **kwargs)
