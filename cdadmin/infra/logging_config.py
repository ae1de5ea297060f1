"""
Log setup for the admin service.

Records may carry dispatch ids (``task_id``, ``app_id``, ``org_id``,
``request_id``) as ``extra`` attributes; both formatters surface them.
JSON lines in prod, one coloured line per record in dev.
"""
import logging
import sys
import json
from datetime import datetime, timezone


# attribute -> short label used on console lines
_CONTEXT_FIELDS = {
    "task_id": "task",
    "app_id": "app",
    "org_id": "org",
    "request_id": "req",
}


def _context(record: logging.LogRecord) -> dict:
    return {f: getattr(record, f) for f in _CONTEXT_FIELDS if hasattr(record, f)}


class JSONFormatter(logging.Formatter):
    """One JSON object per line for log shipping"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(_context(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Coloured single-line output for local runs"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        stamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S")
        ids = " ".join(f"{_CONTEXT_FIELDS[k]}={v}" for k, v in _context(record).items())

        line = f"{color}{stamp} {record.levelname:<8}{self.RESET} {record.name}"
        if ids:
            line += f" [{ids}]"
        line += f" - {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "INFO", use_json: bool = False) -> None:
    """Replace root handlers with one stdout handler (JSON when ``use_json``)."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if use_json else ConsoleFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name, lib_level in (
        ("uvicorn.access", logging.WARNING),
        ("aiohttp.access", logging.WARNING),
        ("asyncpg", logging.WARNING),
    ):
        logging.getLogger(name).setLevel(lib_level)

    logging.info(f"Logging configured: level={level}, json={use_json}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext(logging.LoggerAdapter):
    """Logger adapter stamping dispatch ids onto every record it emits."""

    def __init__(
            self,
            logger: logging.Logger,
            task_id: str | None = None,
            app_id: str | None = None,
            org_id: str | None = None,
            request_id: str | None = None,
    ):
        ids = {"task_id": task_id, "app_id": app_id, "org_id": org_id, "request_id": request_id}
        super().__init__(logger, {k: v for k, v in ids.items() if v is not None})

    def process(self, msg, kwargs):
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs


def mask_token(token: str | None) -> str:
    """``ghp_abcdef123456`` -> ``ghp_****56``; short tokens are fully hidden."""
    if not token:
        return ""
    if len(token) <= 6:
        return "****"
    return token[:4] + "****" + token[-2:]
