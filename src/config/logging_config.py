"""
Logging configuration for the role hierarchy engine.

Records carry their structured fields in ``record.extra_data``; the
request and tenant being served are picked up from context variables so
every line of one request can be correlated:

    with bind_log_context(request_id="req-1", tenant_id="tenant-a"):
        await service.assign_role(...)
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
tenant_id_var: ContextVar[Optional[str]] = ContextVar('tenant_id', default=None)


@contextmanager
def bind_log_context(
    request_id: Optional[str] = None, tenant_id: Optional[str] = None
) -> Iterator[None]:
    """Attach request/tenant ids to every record logged inside the block."""
    request_token = request_id_var.set(request_id)
    tenant_token = tenant_id_var.set(tenant_id)
    try:
        yield
    finally:
        request_id_var.reset(request_token)
        tenant_id_var.reset(tenant_token)


class _StructuredFormatter(logging.Formatter):
    """Base formatter that knows where structured fields come from."""

    def fields(self, record: logging.LogRecord) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for name, var in (("request_id", request_id_var), ("tenant_id", tenant_id_var)):
            value = var.get()
            if value:
                data[name] = value
        data.update(getattr(record, 'extra_data', None) or {})
        return data


class JsonFormatter(_StructuredFormatter):
    """One JSON object per line, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        payload.update(self.fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ReadableFormatter(_StructuredFormatter):
    """Single-line console format for development."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.now().strftime('%H:%M:%S.%f')[:-3]
        line = f"{stamp} {record.levelname:<8} [{record.name}] {record.getMessage()}"
        extras = self.fields(record)
        if extras:
            line += " | " + " ".join(f"{k}={v}" for k, v in extras.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class ContextLogger(logging.LoggerAdapter):
    """
    Adapter that turns ``extra={...}`` into ``record.extra_data``.

    Keys bound through get_logger() apply to every call; call-site keys
    win on conflict. Nesting under one attribute keeps keys such as
    ``message`` or ``name`` from clashing with LogRecord attributes.
    """

    def process(self, msg: str, kwargs: Dict) -> tuple:
        extra_data = dict(self.extra)
        extra_data.update(kwargs.get('extra') or {})
        kwargs['extra'] = {'extra_data': extra_data}
        return msg, kwargs


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[Path] = None,
) -> None:
    """
    Install handlers on the root logger.

    Args:
        level: Root log level name
        json_output: Use JsonFormatter on the console instead of ReadableFormatter
        log_file: Optional file that always receives JSON lines
    """
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(JsonFormatter() if json_output else ReadableFormatter())
    root.addHandler(console)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JsonFormatter())
        root.addHandler(file_handler)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def get_logger(name: str, **extra) -> ContextLogger:
    """Context-aware logger; ``extra`` is bound to every record."""
    return ContextLogger(logging.getLogger(name), extra)
