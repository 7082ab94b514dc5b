"""
Structured logging for the agent.

Provides:
- JSONFormatter: one JSON object per record, carrying the run mode and the
  active decision trace
- StructuredLogger: keyword fields on every call (symbol=..., intent_id=...)
- TraceContext: ties together the records of one decision tick for one
  symbol (decide, gate, plan, execute)

Library modules log through `logging.getLogger(__name__)`; the orchestrator
uses StructuredLogger for lifecycle records.
"""

import json
import logging
import sys
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional


_trace: ContextVar[Optional[Dict[str, str]]] = ContextVar("agent_trace", default=None)


def current_trace() -> Dict[str, str]:
    """Fields of the active decision trace ({} outside a TraceContext)."""
    return dict(_trace.get() or {})


class JSONFormatter(logging.Formatter):
    """Render records as JSON lines."""

    def __init__(self, service_name: str, mode: str = "dry"):
        super().__init__()
        self.service_name = service_name
        self.mode = mode

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "mode": self.mode,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(current_trace())
        payload.update(getattr(record, "fields", {}))

        if record.exc_info and record.exc_info[0] is not None:
            payload["error"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }
        return json.dumps(payload, default=str)


class StructuredLogger:
    """
    Logger taking keyword fields.

    Usage:
        log = init_structured_logger("agent", mode="paper")
        log.info("Agent started", symbols=["PEPE"])
    """

    def __init__(
        self,
        name: str,
        service_name: str,
        mode: str = "dry",
        level: int = logging.INFO,
        json_output: bool = True,
        stream=None,
    ):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.service_name = service_name
        self.mode = mode

        self.logger.handlers.clear()
        handler = logging.StreamHandler(stream or sys.stdout)
        handler.setLevel(level)
        if json_output:
            handler.setFormatter(JSONFormatter(service_name, mode))
        else:
            handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        self.logger.addHandler(handler)
        self.logger.propagate = False

    def _log(self, level: int, msg: str, fields: Dict[str, Any], exc_info: bool = False) -> None:
        self.logger.log(level, msg, extra={"fields": fields}, exc_info=exc_info)

    def debug(self, msg: str, **fields):
        self._log(logging.DEBUG, msg, fields)

    def info(self, msg: str, **fields):
        self._log(logging.INFO, msg, fields)

    def warning(self, msg: str, **fields):
        self._log(logging.WARNING, msg, fields)

    def error(self, msg: str, exc_info: bool = False, **fields):
        self._log(logging.ERROR, msg, fields, exc_info=exc_info)


class TraceContext:
    """
    Decision trace for one symbol tick.

    Every record logged inside the block, by any logger using JSONFormatter,
    carries `trace_id` (and `symbol` when given).
    """

    def __init__(self, symbol: Optional[str] = None, trace_id: Optional[str] = None):
        self.trace_id = trace_id or uuid.uuid4().hex[:16]
        self.symbol = symbol
        self._token = None

    def __enter__(self):
        fields = {"trace_id": self.trace_id}
        if self.symbol:
            fields["symbol"] = self.symbol
        self._token = _trace.set(fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _trace.reset(self._token)
        self._token = None


_loggers: Dict[str, StructuredLogger] = {}


def init_structured_logger(
    service_name: str,
    mode: str = "dry",
    level: int = logging.INFO,
    json_output: bool = True,
) -> StructuredLogger:
    """Structured logger for a service, created once per (service, mode)."""
    key = f"{service_name}:{mode}"
    if key not in _loggers:
        _loggers[key] = StructuredLogger(
            name=f"structured.{service_name}",
            service_name=service_name,
            mode=mode,
            level=level,
            json_output=json_output,
        )
    return _loggers[key]
