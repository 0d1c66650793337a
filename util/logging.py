"""
Structured operation logging for the retrieval service.
Query text is truncated and credentials are redacted before anything is written.
"""

import logging
import os
from typing import Any, Dict, List

from dotenv import load_dotenv

load_dotenv()

SENSITIVE_FIELDS = ['authorization', 'apikey', 'api_key', 'key', 'token', 'secret', 'password']


class StructuredLogger:
    """Structured logger for search legs, fusion and hydration."""

    def __init__(self, name: str = "knowledge_search"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(resolve_level(os.getenv("LOG_LEVEL", "INFO")))

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {sanitize_payload(details)}"

        self.logger.log(level, message)

    def log_request(self, request_type: str, query: str, details: Dict[str, Any] = None):
        """Log an inbound retrieval request."""
        log_details = {"query": truncate(query, 100)}
        if details:
            log_details.update(details)

        self.log_operation(f"request.{request_type}", "received", log_details)

    def log_search_leg(self, pool: str, threshold: float, max_count: int, found: int, duration_ms: float):
        """Log one similarity search against a pool."""
        self.log_operation(f"search.{pool}", "success", {
            "threshold": threshold,
            "max_count": max_count,
            "found": found,
            "duration_ms": round(duration_ms, 2),
        })

    def log_fusion(self, request_type: str, matched: Dict[str, int], returned: int, count: int):
        """Log the outcome of result fusion."""
        self.log_operation(f"fusion.{request_type}", "success", {
            "matched": matched,
            "returned": returned,
            "count": count,
        })

    def log_hydration(self, table: str, requested: int, hydrated: int, status: str = "success", error: str = None):
        """Log a bulk detail fetch. A failed fetch is logged as a warning, not an error."""
        log_details = {"table": table, "requested": requested, "hydrated": hydrated}
        if error:
            log_details["error"] = truncate(error, 200)

        level = logging.WARNING if status != "success" else logging.INFO
        self.log_operation(f"hydration.{table}", status, log_details, level=level)

    def log_upstream_failure(self, leg: str, error: Exception, max_attempts: int = 1):
        """Log an outbound leg failure that aborts the request."""
        self.log_operation(f"upstream.{leg}", "failed", {
            "error_type": type(error).__name__,
            "error": truncate(str(error), 200),
            "max_attempts": max_attempts,
        }, level=logging.ERROR)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


def resolve_level(name: str) -> int:
    """Numeric level for a level name, INFO when the name is unknown."""
    level = logging.getLevelName(str(name).strip().upper())
    return level if isinstance(level, int) else logging.INFO


def truncate(text: str, limit: int) -> str:
    """Truncate text for log output."""
    if text is None:
        return ""
    return text[:limit] + "..." if len(text) > limit else text


def sanitize_payload(payload: Any, sensitive_fields: List[str] = None) -> Any:
    """Redact credential-bearing fields and truncate long strings."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if str(k).lower() in sensitive_fields:
                sanitized[k] = "[REDACTED]"
            else:
                sanitized[k] = sanitize_payload(v, sensitive_fields)
        return sanitized
    elif isinstance(payload, str):
        return truncate(payload, 100)
    elif isinstance(payload, list):
        return [sanitize_payload(item, sensitive_fields) for item in payload]
    else:
        return payload


# Global logger instance
logger = StructuredLogger()
