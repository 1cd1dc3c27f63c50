"""
Logging setup for sasforge.

Every handler carries a ``SensitiveDataFilter``: account keys, signatures,
connection-string SAS parts and delegation key values are redacted from the
rendered message before any formatter sees it. Console output goes to stderr
so URIs printed on stdout can be piped.
"""

import json
import logging
import logging.handlers
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Set

REDACTED = "***REDACTED***"

# Correlation id of the current command or task
correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_SECRET_PATTERNS = (
    re.compile(r"(AccountKey=)[^;\s]+", re.IGNORECASE),
    re.compile(r"(SharedAccessSignature=)[^;\s]+", re.IGNORECASE),
    re.compile(r"([?&]?sig=)[^;&\s]+", re.IGNORECASE),
    re.compile(r"([\"']?value[\"']?\s*[:=]\s*[\"']?)[A-Za-z0-9+/]{16,}={0,2}", re.IGNORECASE),
    re.compile(r"(Authorization:\s+)(?:Bearer\s+)?\S+", re.IGNORECASE),
)

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMG]?B)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {None: 1, "B": 1, "KB": 1024, "MB": 1024 ** 2, "GB": 1024 ** 3}

# Loggers given an explicit level by the last setup_logging call
_module_overrides: Set[str] = set()


def redact(text: str) -> str:
    """Replace secrets in ``text`` with ``***REDACTED***``."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(rf"\g<1>{REDACTED}", text)
    return text


class SensitiveDataFilter(logging.Filter):
    """Redact secrets from the rendered message and any attached context."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact(record.getMessage())
        record.args = ()

        context = getattr(record, "context", None)
        if isinstance(context, dict):
            record.context = {
                key: redact(value) if isinstance(value, str) else value
                for key, value in context.items()
            }
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }

        corr_id = correlation_id.get()
        if corr_id:
            entry["correlation_id"] = corr_id
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "context"):
            entry["context"] = record.context

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable single-line format."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def _attach(root: logging.Logger, handler: logging.Handler, formatter: logging.Formatter) -> None:
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    handler.addFilter(SensitiveDataFilter())
    root.addHandler(handler)


def setup_logging(
    level: str = "INFO",
    format_type: str = "json",
    log_file: Optional[str] = None,
    rotation_size: str = "10MB",
    rotation_count: int = 5,
    module_levels: Optional[Dict[str, str]] = None
) -> None:
    """
    Configure the root logger for sasforge.

    Replaces any handlers already on the root logger, so calling it again
    reconfigures rather than duplicates output. Module levels set by an
    earlier call and absent from ``module_levels`` revert to the root level.

    Args:
        level: Root log level name
        format_type: "json" or "text"
        log_file: Optional path of a size-rotated log file
        rotation_size: Rotation threshold such as "10MB"
        rotation_count: Rotated files to keep
        module_levels: Per-logger overrides, e.g. {"sasforge.auth.delegation": "DEBUG"}
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = JSONFormatter() if format_type == "json" else TextFormatter()

    _attach(root, logging.StreamHandler(sys.stderr), formatter)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        _attach(
            root,
            logging.handlers.RotatingFileHandler(
                filename=log_file,
                maxBytes=_parse_size(rotation_size),
                backupCount=rotation_count,
                encoding="utf-8",
            ),
            formatter,
        )
        root.info(f"Logging to {log_file} (rotate at {rotation_size}, keep {rotation_count})")

    for name in _module_overrides - set(module_levels or {}):
        logging.getLogger(name).setLevel(logging.NOTSET)
    _module_overrides.clear()
    for name, module_level in (module_levels or {}).items():
        logging.getLogger(name).setLevel(getattr(logging, module_level.upper()))
        _module_overrides.add(name)

    root.debug(f"Logging configured: level={level}, format={format_type}")


def _parse_size(size_str: str) -> int:
    """Convert "512", "10KB", "1.5MB" or "1GB" into bytes."""
    match = _SIZE_RE.match(size_str)
    if not match:
        raise ValueError(f"Invalid size: {size_str!r}")
    number, unit = match.groups()
    return int(float(number) * _SIZE_UNITS[unit.upper() if unit else None])


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_correlation_id(corr_id: str) -> None:
    correlation_id.set(corr_id)


def clear_correlation_id() -> None:
    correlation_id.set(None)


def log_with_context(logger: logging.Logger, level: int, message: str, **context: Any) -> None:
    """Log ``message`` with ``context`` attached as a structured field."""
    extra = {"context": context} if context else {}
    logger.log(level, message, extra=extra)
