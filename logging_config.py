# logging_config.py

import logging
import structlog
import sys
from typing import Any, Dict
from flask import has_request_context, request, g

# Keys whose values must never reach a log line
SENSITIVE_KEYS = frozenset({'access_token', 'refresh_token', 'code', 'client_secret', 'authorization'})


def add_request_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add Flask request context to log entries"""
    if has_request_context():
        event_dict["request_id"] = getattr(g, 'request_id', None)
        event_dict.setdefault("business_id", getattr(g, 'business_id', None))
        event_dict["method"] = request.method
        event_dict["path"] = request.path
    return event_dict


def redact_secrets(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask OAuth credentials passed as log keywords"""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = '[REDACTED]'
    return event_dict


def setup_logging(app_name: str = "promopal", log_level: str = "INFO") -> None:
    """
    Configure structured JSON logging

    Args:
        app_name: Application name for log identification
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = getattr(logging, log_level.upper())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_request_context,
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    logging.getLogger(app_name).setLevel(level)

    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)


def get_logger(name: str = None) -> structlog.BoundLogger:
    """
    Get a structured logger instance

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name or __name__)


class SecurityLogger:
    """Dedicated security event logger"""

    def __init__(self):
        self.logger = get_logger("security")

    def log_oauth_state_rejected(self, provider: str, reason: str):
        """Log a callback whose state parameter failed verification"""
        self.logger.warning(
            "OAuth state rejected",
            provider=provider,
            reason=reason,
            event_type="oauth_state_rejected"
        )

    def log_integration_change(self, business_id: int, provider: str, action: str):
        """Log a connect or disconnect of a provider account"""
        self.logger.info(
            "Integration changed",
            business_id=business_id,
            provider=provider,
            action=action,
            event_type="integration_change"
        )


class PerformanceLogger:
    """Performance and monitoring logger"""

    def __init__(self):
        self.logger = get_logger("performance")

    def log_api_call(self, service: str, endpoint: str, duration_ms: float, status_code: int = None):
        """Log external API call performance"""
        self.logger.info(
            "External API call",
            service=service,
            endpoint=endpoint,
            duration_ms=round(duration_ms, 1),
            status_code=status_code,
            event_type="api_call"
        )


# Global logger instances
security_logger = SecurityLogger()
performance_logger = PerformanceLogger()
