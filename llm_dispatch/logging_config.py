"""Process-wide logging for the dispatcher: rotating log file plus optional console."""

import logging
import logging.handlers
from pathlib import Path
from typing import Any, Iterator, Mapping

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# One line per request; the adapters' own debug logs carry the bodies
_QUIET_LOGGERS = ("httpx", "httpcore")

_SENSITIVE_HEADERS = frozenset({"authorization", "api-key", "x-api-key"})


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Copy of headers safe to log: credential values reduced to their last 4 chars."""
    out: dict[str, str] = {}
    for name, value in headers.items():
        if name.lower() in _SENSITIVE_HEADERS and value:
            out[name] = f"***{value[-4:]}"
        else:
            out[name] = value
    return out


def _level(value: Any) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(str(value).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _handlers(project_root: Path, cfg: Mapping[str, Any]) -> Iterator[logging.Handler]:
    log_path = project_root / cfg.get("file", "logs/llm_dispatch.log")
    log_path.parent.mkdir(parents=True, exist_ok=True)
    yield logging.handlers.RotatingFileHandler(
        log_path,
        maxBytes=int(cfg.get("max_bytes", 10 * 1024 * 1024)),
        backupCount=int(cfg.get("backup_count", 3)),
        encoding="utf-8",
    )
    if cfg.get("log_to_console", False):
        yield logging.StreamHandler()


def setup_logging(project_root: Path, settings: Mapping[str, Any]) -> None:
    """Replace the root logger's handlers with the ones described by settings["logging"].

    The log file path is relative to project_root and its directory is created
    on demand. Level names are case-insensitive; unknown names mean INFO.
    """
    cfg = settings.get("logging") or {}
    level = _level(cfg.get("level", "INFO"))
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    root = logging.getLogger()
    for old in root.handlers[:]:
        root.removeHandler(old)
    root.setLevel(level)
    for handler in _handlers(project_root, cfg):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
