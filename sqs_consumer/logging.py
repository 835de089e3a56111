from __future__ import annotations
import json
import sys
import time
import traceback
from typing import Any, Dict, Optional, TextIO


LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40}


class StructuredLogger:
    """JSON-lines logger used by the consumer, gateway and runner."""

    def __init__(
        self,
        name: str = "sqs_consumer",
        level: str = "INFO",
        stream: Optional[TextIO] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        level = level.upper()
        if level not in LEVELS:
            raise ValueError(f"Unknown log level: {level}")
        self.name = name
        self.level = level
        self._stream = stream
        self._context: Dict[str, Any] = dict(context or {})

    # ----------------------------------------------------------------------
    # Core logging method
    # ----------------------------------------------------------------------
    def is_enabled_for(self, level: str) -> bool:
        return LEVELS.get(level, 100) >= LEVELS[self.level]

    def _log(self, level: str, msg: str, extra: Optional[Dict[str, Any]] = None):
        """Format one record and write it as a single JSON line."""
        if not self.is_enabled_for(level):
            return

        try:
            record = {
                "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
                "level": level,
                "logger": self.name,
                "msg": str(msg),
            }

            fields = dict(self._context)
            if extra:
                fields.update(extra)
            for k, v in fields.items():
                # Core keys win
                if k not in record:
                    record[k] = v

            line = json.dumps(record, ensure_ascii=False, default=str)
            print(line, file=self._stream or sys.stdout, flush=True)

        except Exception as e:
            # Never crash the poll loop due to logging errors
            print(f"[logger-error] failed to log: {e}", file=sys.stderr, flush=True)

    # ----------------------------------------------------------------------
    # Public convenience methods
    # ----------------------------------------------------------------------
    def debug(self, msg: str, extra: Optional[Dict[str, Any]] = None):
        self._log("DEBUG", msg, extra)

    def info(self, msg: str, extra: Optional[Dict[str, Any]] = None):
        self._log("INFO", msg, extra)

    def warning(self, msg: str, extra: Optional[Dict[str, Any]] = None):
        self._log("WARNING", msg, extra)

    def error(self, msg: Any, extra: Optional[Dict[str, Any]] = None):
        # Exception objects carry their type and, when raised, a traceback
        if isinstance(msg, BaseException):
            extra = dict(extra or {}, error_type=type(msg).__name__)
            if msg.__traceback__ is not None:
                extra["traceback"] = "".join(
                    traceback.format_exception(type(msg), msg, msg.__traceback__)
                )
            self._log("ERROR", str(msg), extra)
        else:
            self._log("ERROR", msg, extra)

    # ----------------------------------------------------------------------
    # Context binding
    # ----------------------------------------------------------------------
    def bind(self, **context: Any) -> "StructuredLogger":
        """
        Return a child logger with context attached to every record.
        Example:
            log = get_logger("consumer").bind(queue_url=url)
        """
        merged = dict(self._context)
        merged.update(context)
        return StructuredLogger(
            name=self.name, level=self.level, stream=self._stream, context=merged
        )


# ----------------------------------------------------------------------
# Module-level logger registry (one logger per name)
# ----------------------------------------------------------------------

_loggers: Dict[str, StructuredLogger] = {}


def get_logger(name: str = "sqs_consumer", level: Optional[str] = None) -> StructuredLogger:
    """Get or create a logger for the given name; a given level updates it."""
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name=name, level=level or "INFO")
    elif level is not None:
        _loggers[name] = StructuredLogger(name=name, level=level)
    return _loggers[name]


__all__ = ["StructuredLogger", "get_logger", "LEVELS"]
