"""
Asset Pivot — Structured Logging System

JSON log entries with correlation IDs and request tracing, an in-memory
ring buffer for inspection, and a timing context manager for queries.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Callable
from datetime import datetime, timezone
from enum import Enum
import contextvars
import json
import uuid
import time
from collections import deque
import traceback
import sys
import os


class LogLevel(str, Enum):
    """Log severity levels"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def numeric(self) -> int:
        levels = {"debug": 10, "info": 20, "warning": 30, "error": 40, "critical": 50}
        return levels.get(self.value, 20)

    @classmethod
    def from_name(cls, name: Optional[str], default: Optional["LogLevel"] = None) -> "LogLevel":
        try:
            return cls((name or "").strip().lower())
        except ValueError:
            return default or cls.INFO


class LogCategory(str, Enum):
    """Log categories for filtering"""
    REQUEST = "request"
    RESPONSE = "response"
    DATABASE = "database"
    QUERY = "query"
    PAGINATION = "pagination"
    AUTH = "auth"
    PERFORMANCE = "performance"
    AUDIT = "audit"
    SYSTEM = "system"


@dataclass
class LogEntry:
    """A structured log entry"""
    id: str
    timestamp: str
    level: LogLevel
    category: LogCategory
    message: str
    service: str
    correlation_id: Optional[str] = None
    request_id: Optional[str] = None
    user_id: Optional[str] = None
    duration_ms: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    error: Optional[Dict[str, Any]] = None
    stack_trace: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "level": self.level.value,
            "category": self.category.value,
            "message": self.message,
            "service": self.service,
            "correlation_id": self.correlation_id,
            "request_id": self.request_id,
            "user_id": self.user_id,
            "duration_ms": self.duration_ms,
            "metadata": self.metadata,
            "tags": self.tags,
            "error": self.error,
            "stack_trace": self.stack_trace,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


@dataclass
class RequestContext:
    """Context for request tracing"""
    request_id: str
    correlation_id: str
    user_id: Optional[str] = None

    @staticmethod
    def create(
        correlation_id: Optional[str] = None,
        request_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> "RequestContext":
        return RequestContext(
            request_id=request_id or str(uuid.uuid4())[:12],
            correlation_id=correlation_id or str(uuid.uuid4())[:16],
            user_id=user_id,
        )


# Async-safe context var (works with FastAPI/asyncio)
_context_var: contextvars.ContextVar[Optional[RequestContext]] = contextvars.ContextVar(
    "request_context", default=None
)


def get_current_context() -> Optional[RequestContext]:
    return _context_var.get()


def set_current_context(context: RequestContext) -> contextvars.Token:
    return _context_var.set(context)


def reset_current_context(token: contextvars.Token) -> None:
    _context_var.reset(token)


class LogBuffer:
    """Bounded in-memory ring of recent entries"""

    def __init__(self, max_size: int = 10000):
        self.max_size = max_size
        self._buffer: deque = deque(maxlen=max_size)

    def append(self, entry: LogEntry) -> None:
        self._buffer.append(entry)

    def get_all(self) -> List[LogEntry]:
        return list(self._buffer)

    def filter(
        self,
        level: Optional[LogLevel] = None,
        category: Optional[LogCategory] = None,
        correlation_id: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 100,
    ) -> List[LogEntry]:
        results = []
        for entry in reversed(self._buffer):
            if level and entry.level.numeric < level.numeric:
                continue
            if category and entry.category != category:
                continue
            if correlation_id and entry.correlation_id != correlation_id:
                continue
            if search and search.lower() not in entry.message.lower():
                continue
            results.append(entry)
            if len(results) >= limit:
                break
        return results


class StructuredLogger:
    """Structured JSON logger for the pivot service"""

    def __init__(
        self,
        service_name: str = "asset-pivot",
        min_level: LogLevel = LogLevel.INFO,
        buffer_size: int = 10000,
        output_handlers: List[Callable[[LogEntry], None]] = None,
        emit: bool = True,
    ):
        self.service_name = service_name
        self.min_level = min_level
        self.buffer = LogBuffer(buffer_size)
        self.output_handlers = output_handlers or []
        self.emit = emit

    def _create_entry(
        self,
        level: LogLevel,
        category: LogCategory,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
        error: Optional[BaseException] = None,
        duration_ms: Optional[float] = None,
    ) -> LogEntry:
        context = get_current_context()

        entry = LogEntry(
            id=str(uuid.uuid4())[:12],
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            category=category,
            message=message,
            service=self.service_name,
            correlation_id=context.correlation_id if context else None,
            request_id=context.request_id if context else None,
            user_id=context.user_id if context else None,
            duration_ms=duration_ms,
            metadata=metadata or {},
            tags=tags or [],
        )

        if error:
            entry.error = {
                "type": type(error).__name__,
                "message": str(error),
            }
            entry.stack_trace = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )

        return entry

    def _log(self, level: LogLevel, category: LogCategory, message: str, **kwargs) -> Optional[LogEntry]:
        if level.numeric < self.min_level.numeric:
            return None

        entry = self._create_entry(level, category, message, **kwargs)
        self.buffer.append(entry)

        if self.emit:
            # JSON output to stderr for errors, stdout otherwise
            out = sys.stderr if level.numeric >= LogLevel.ERROR.numeric else sys.stdout
            print(entry.to_json(), file=out)

        for handler in self.output_handlers:
            try:
                handler(entry)
            except Exception as exc:
                print(f"log handler {handler!r} failed: {exc}", file=sys.stderr)

        return entry

    def debug(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.DEBUG, category, message, **kwargs)

    def info(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.INFO, category, message, **kwargs)

    def warning(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.WARNING, category, message, **kwargs)

    def error(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.ERROR, category, message, **kwargs)

    def critical(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.CRITICAL, category, message, **kwargs)

    # Convenience methods
    def response(self, status_code: int, duration_ms: float, **kwargs) -> Optional[LogEntry]:
        level = LogLevel.INFO if status_code < 400 else LogLevel.WARNING if status_code < 500 else LogLevel.ERROR
        return self._log(
            level,
            LogCategory.RESPONSE,
            f"Response {status_code}",
            duration_ms=duration_ms,
            metadata={"status_code": status_code, **kwargs.get("metadata", {})},
            **{k: v for k, v in kwargs.items() if k != "metadata"},
        )

    def audit(self, action: str, resource: str, **kwargs) -> Optional[LogEntry]:
        return self.info(
            f"Audit: {action} on {resource}",
            category=LogCategory.AUDIT,
            tags=["audit"],
            metadata={"action": action, "resource": resource, **kwargs.get("metadata", {})},
            **{k: v for k, v in kwargs.items() if k != "metadata"},
        )

    def performance(self, operation: str, duration_ms: float, **kwargs) -> Optional[LogEntry]:
        level = LogLevel.INFO if duration_ms < 1000 else LogLevel.WARNING if duration_ms < 5000 else LogLevel.ERROR
        return self._log(
            level,
            kwargs.pop("category", LogCategory.PERFORMANCE),
            f"Performance: {operation}",
            duration_ms=duration_ms,
            **kwargs,
        )

    def get_logs(
        self,
        level: Optional[LogLevel] = None,
        category: Optional[LogCategory] = None,
        correlation_id: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 100,
    ) -> List[LogEntry]:
        return self.buffer.filter(
            level=level,
            category=category,
            correlation_id=correlation_id,
            search=search,
            limit=limit,
        )

    def get_stats(self) -> Dict[str, Any]:
        logs = self.buffer.get_all()
        level_counts: Dict[str, int] = {}
        category_counts: Dict[str, int] = {}

        for log in logs:
            level_counts[log.level.value] = level_counts.get(log.level.value, 0) + 1
            category_counts[log.category.value] = category_counts.get(log.category.value, 0) + 1

        return {
            "total_logs": len(logs),
            "level_distribution": level_counts,
            "category_distribution": category_counts,
            "buffer_size": self.buffer.max_size,
        }


class TimedOperation:
    """Context manager for timing operations"""

    def __init__(
        self,
        logger: StructuredLogger,
        operation: str,
        category: LogCategory = LogCategory.PERFORMANCE,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self.logger = logger
        self.operation = operation
        self.category = category
        self.metadata = metadata or {}
        self.start_time: Optional[float] = None
        self.duration_ms: Optional[float] = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.time() - self.start_time) * 1000
        if exc_type:
            self.logger.error(
                f"Operation failed: {self.operation}",
                category=self.category,
                duration_ms=self.duration_ms,
                error=exc_val,
                metadata=self.metadata,
            )
        else:
            self.logger.performance(
                self.operation, duration_ms=self.duration_ms,
                category=self.category, metadata=self.metadata,
            )
        return False


# Global singleton
_logger: Optional[StructuredLogger] = None


def get_logger() -> StructuredLogger:
    """Get or create the global service logger"""
    global _logger
    if _logger is None:
        default = LogLevel.DEBUG if os.getenv("DEBUG") else LogLevel.INFO
        _logger = StructuredLogger(
            service_name="asset-pivot",
            min_level=LogLevel.from_name(os.getenv("LOG_LEVEL"), default),
            emit=os.getenv("STRUCTURED_LOG_STDOUT", "true").lower() == "true",
        )
    return _logger


def log_audit(action: str, resource: str, **kwargs) -> Optional[LogEntry]:
    return get_logger().audit(action, resource, **kwargs)
