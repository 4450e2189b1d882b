import json
import os
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from loguru import logger as _logger

from toolhub.config import PROJECT_ROOT, config

# Context variables for correlation tracking
correlation_id_var: ContextVar[Optional[str]] = ContextVar(
    "correlation_id", default=None
)
operation_var: ContextVar[Optional[str]] = ContextVar("operation", default=None)

_sensitive_fields = {
    "password",
    "token",
    "key",
    "secret",
    "credential",
    "auth",
    "api_key",
    "access_token",
    "refresh_token",
    "private_key",
}

_sensitive_patterns = [
    re.compile(r"sk-[A-Za-z0-9]{32,}"),  # OpenAI-style API keys
    re.compile(r"Bearer [A-Za-z0-9\-._~+/]+=*"),  # Bearer tokens
    re.compile(r"Basic [A-Za-z0-9+/]+=*"),  # Basic auth
]


class StructuredLogger:
    """Logger emitting JSON records with correlation context and redaction"""

    def __init__(self, logger_instance, prefix: str = "", extra: Optional[Dict[str, Any]] = None):
        self._logger = logger_instance
        self.prefix = prefix
        self.default_extra = extra or {}

    def bind(self, prefix: str = "", **extra) -> "StructuredLogger":
        """Return a logger that prepends ``prefix`` and carries ``extra`` on every record"""
        return StructuredLogger(
            self._logger,
            prefix=self.prefix + prefix,
            extra={**self.default_extra, **extra},
        )

    def _get_context(self) -> Dict[str, Any]:
        return {
            "correlation_id": correlation_id_var.get(),
            "operation": operation_var.get(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "process_id": os.getpid(),
        }

    def _sanitize_data(self, data: Any) -> Any:
        """Remove sensitive information from log data"""
        if isinstance(data, dict):
            sanitized = {}
            for key, value in data.items():
                key_lower = str(key).lower()
                if any(sensitive in key_lower for sensitive in _sensitive_fields):
                    sanitized[key] = "[REDACTED]"
                else:
                    sanitized[key] = self._sanitize_data(value)
            return sanitized
        elif isinstance(data, (list, tuple)):
            return [self._sanitize_data(item) for item in data]
        elif isinstance(data, str):
            if any(pattern.search(data) for pattern in _sensitive_patterns):
                return "[REDACTED]"
            elif len(data) > 1000:
                return data[:997] + "..."
        return data

    def _format_message(
        self, message: str, extra: Optional[Dict[str, Any]] = None, level: str = "info"
    ) -> str:
        log_data = {
            "message": f"{self.prefix}{message}",
            "level": level,
            "context": self._get_context(),
        }
        merged = {**self.default_extra, **(extra or {})}
        if merged:
            log_data["extra"] = self._sanitize_data(merged)
        return json.dumps(log_data, default=str)

    def debug(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self._logger.debug(self._format_message(message, extra, "debug"))

    def info(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self._logger.info(self._format_message(message, extra, "info"))

    def warning(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self._logger.warning(self._format_message(message, extra, "warning"))

    def error(self, message: str, extra: Optional[Dict[str, Any]] = None):
        """Log error message with structured data"""
        self._logger.error(self._format_message(message, extra, "error"))


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID"""
    return correlation_id_var.get()


def generate_correlation_id() -> str:
    """Generate a new correlation ID"""
    return str(uuid4())


class LoggingContext:
    """Context manager for logging with correlation IDs"""

    def __init__(
        self,
        correlation_id: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        self.correlation_id = correlation_id or get_correlation_id() or generate_correlation_id()
        self.operation = operation
        self._tokens = []

    def __enter__(self):
        self._tokens.append(correlation_id_var.set(self.correlation_id))
        if self.operation:
            self._tokens.append(operation_var.set(self.operation))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # Restore previous values
        for token in reversed(self._tokens):
            token.var.reset(token)
        self._tokens.clear()


def define_log_level(print_level="INFO", logfile_level="DEBUG", name: str = None):
    """Adjust the log level to above level"""
    current_date = datetime.now()
    formatted_date = current_date.strftime("%Y%m%d%H%M%S")
    log_name = (
        f"{name}_{formatted_date}" if name else formatted_date
    )  # name a log with prefix name

    logs_dir = PROJECT_ROOT / "logs"
    logs_dir.mkdir(exist_ok=True)

    _logger.remove()
    _logger.add(sys.stderr, level=print_level)
    _logger.add(logs_dir / f"{log_name}.log", level=logfile_level)

    return StructuredLogger(_logger)


logger = define_log_level(
    print_level=config.log_config.print_level.value,
    logfile_level=config.log_config.logfile_level.value,
    name=config.log_config.name,
)


__all__ = [
    "logger",
    "StructuredLogger",
    "LoggingContext",
    "define_log_level",
    "get_correlation_id",
    "generate_correlation_id",
]
