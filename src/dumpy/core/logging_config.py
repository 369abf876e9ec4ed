"""
Logging Configuration for the Dumpy connection server
Structured logging plus an audit trail of connection lifecycle events.

- Console output uses structlog's dev renderer, files get JSON lines
- Credentials are redacted before anything is logged
- Query text is truncated in audit records
"""

import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

SENSITIVE_KEYS = {"password", "secret", "token", "key", "credential"}
QUERY_PREVIEW_LENGTH = 200
AUDIT_LOGGER_NAME = "dumpy.audit"


def _file_handler(path: str, level: int) -> logging.Handler:
    """Plain-message file handler; creates the parent directory."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    console_logging: bool = True
) -> structlog.BoundLogger:
    """
    Configure structured logging for the server process.

    Args:
        level: DEBUG, INFO, WARNING or ERROR
        log_file: Optional path to a JSON-lines log file
        console_logging: Whether to also log to stdout

    Returns:
        The ``dumpy`` logger
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handlers: List[logging.Handler] = []
    if console_logging:
        stream = logging.StreamHandler(sys.stdout)
        stream.setLevel(numeric_level)
        stream.setFormatter(logging.Formatter("%(message)s"))
        handlers.append(stream)
    if log_file:
        handlers.append(_file_handler(log_file, numeric_level))

    logging.basicConfig(
        level=numeric_level,
        handlers=handlers or [logging.NullHandler()],
        force=True
    )

    renderer = (
        structlog.processors.JSONRenderer() if log_file else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger("dumpy")


def redact(data: Dict[str, Any]) -> Dict[str, Any]:
    """Replace values of credential-like keys, recursing into nested dicts."""
    clean: Dict[str, Any] = {}
    for name, value in data.items():
        if any(marker in name.lower() for marker in SENSITIVE_KEYS):
            clean[name] = "***"
        elif isinstance(value, dict):
            clean[name] = redact(value)
        else:
            clean[name] = value
    return clean


def query_preview(query: str) -> str:
    if len(query) <= QUERY_PREVIEW_LENGTH:
        return query
    return f"{query[:QUERY_PREVIEW_LENGTH]}..."


class AuditLogger:
    """
    Records connection lifecycle events and query executions.

    Events go to the ``dumpy.audit`` logger so they can be routed to a
    dedicated file.
    """

    def __init__(self, audit_file: Optional[str] = None, enabled: bool = True):
        self.enabled = enabled
        self.logger = structlog.get_logger(AUDIT_LOGGER_NAME)
        if audit_file:
            stdlib_logger = logging.getLogger(AUDIT_LOGGER_NAME)
            path = os.path.abspath(audit_file)
            attached = any(
                isinstance(handler, logging.FileHandler) and handler.baseFilename == path
                for handler in stdlib_logger.handlers
            )
            if not attached:
                stdlib_logger.addHandler(_file_handler(path, logging.INFO))
            stdlib_logger.setLevel(logging.INFO)

    def log_connection_event(
        self,
        event: str,  # connect, disconnect, health_check, reap
        connection_id: str,
        engine: Optional[str] = None,
        success: bool = True,
        error: Optional[str] = None,
        **details: Any
    ) -> None:
        if not self.enabled:
            return
        emit = self.logger.info if success else self.logger.warning
        emit(
            f"connection_{event}",
            event_type="connection",
            connection_id=connection_id,
            engine=engine,
            success=success,
            error=error,
            **redact(details)
        )

    def log_query(
        self,
        connection_id: str,
        engine: str,
        query: str,
        execution_time_ms: float,
        rows: int = 0,
        success: bool = True,
        error: Optional[str] = None
    ) -> None:
        if not self.enabled:
            return
        self.logger.info(
            "query_executed",
            event_type="query",
            connection_id=connection_id,
            engine=engine,
            query_preview=query_preview(query),
            execution_time_ms=round(execution_time_ms, 3),
            rows=rows,
            success=success,
            error=error
        )


class QueryMetrics:
    """Running query totals, overall and per engine."""

    def __init__(self):
        self.reset()

    def record_query(
        self,
        engine: str,
        execution_time_ms: float,
        rows: int = 0,
        success: bool = True
    ) -> None:
        for bucket in (self._totals, self._by_engine.setdefault(engine, self._empty())):
            bucket["queries"] += 1
            bucket["time_ms"] += execution_time_ms
            bucket["rows"] += rows
            if not success:
                bucket["errors"] += 1

    def get_metrics(self) -> Dict[str, Any]:
        """Snapshot of the current totals."""
        count = self._totals["queries"]
        return {
            "total_queries": count,
            "average_execution_time_ms": self._totals["time_ms"] / count if count else 0,
            "total_rows_returned": self._totals["rows"],
            "error_count": self._totals["errors"],
            "error_rate": self._totals["errors"] / count if count else 0,
            "queries_by_engine": {
                engine: bucket["queries"] for engine, bucket in self._by_engine.items()
            },
        }

    def reset(self) -> None:
        self._totals = self._empty()
        self._by_engine: Dict[str, Dict[str, float]] = {}

    @staticmethod
    def _empty() -> Dict[str, float]:
        return {"queries": 0, "time_ms": 0.0, "rows": 0, "errors": 0}
