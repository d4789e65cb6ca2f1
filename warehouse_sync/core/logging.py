"""Loguru setup for the sync service, with table/node context and Slack alerts."""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from warehouse_sync.core.config import settings

LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]} {extra[context]}| "
    "{function}:{line} | {message}"
)
LOG_FILE = "warehouse_sync.log"
LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
LEVEL_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}

_logging_configured = False


class InterceptHandler(logging.Handler):
    """Redirect stdlib logs (SQLAlchemy, httpx, uvicorn) to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_name == "emit":
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def normalize_level(value: Optional[str]) -> str:
    level = (value or "INFO").strip().upper()
    level = LEVEL_ALIASES.get(level, level)
    return level if level in LEVELS else "INFO"


def describe_context(extra: Dict[str, Any]) -> str:
    """Render the table/node a log line belongs to, e.g. ``[positions node=1] ``."""
    parts = []
    if extra.get("table_id"):
        parts.append(str(extra["table_id"]))
    if extra.get("node") is not None:
        parts.append(f"node={extra['node']}")
    return f"[{' '.join(parts)}] " if parts else ""


def _add_context(record: Dict[str, Any]) -> None:
    record["extra"]["context"] = describe_context(record["extra"])


def format_alert(record: Dict[str, Any]) -> str:
    extra = record["extra"]
    name = extra.get("name") or record.get("name") or "warehouse_sync"
    header = f"[{record['level'].name}] {name} {describe_context(extra)}on {settings.NODE_ID}"
    return f"{header}\n{record['message']}"


def send_alert(text: str, webhook_url: Optional[str] = None, transport: Optional[httpx.BaseTransport] = None) -> bool:
    """Post one alert to Slack. Returns False when no webhook is set or delivery fails."""
    url = webhook_url or settings.SLACK_WEBHOOK_URL
    if not url:
        return False
    try:
        with httpx.Client(timeout=5.0, transport=transport) as client:
            client.post(url, json={"text": text}).raise_for_status()
    except httpx.HTTPError:
        # Logging here would re-enter this sink
        return False
    return True


def _slack_sink(message: Any) -> None:
    send_alert(format_alert(message.record))


def configure_logging(level: Optional[str] = None, log_dir: str = "logs") -> None:
    global _logging_configured

    if _logging_configured:
        return
    _logging_configured = True

    level = normalize_level(level or settings.effective_log_level)
    path = Path(log_dir)
    path.mkdir(exist_ok=True)

    logger.remove()
    logger.configure(extra={"name": "warehouse_sync", "context": ""}, patcher=_add_context)
    logger.add(sys.stdout, level=level, format=LOG_FORMAT, backtrace=False, diagnose=False)
    logger.add(
        path / LOG_FILE,
        level=level,
        format=LOG_FORMAT,
        rotation="10 MB",
        retention="14 days",
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )

    if settings.SLACK_WEBHOOK_URL:
        logger.add(_slack_sink, level="ERROR", enqueue=True)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for logger_name in ["uvicorn", "uvicorn.error", "uvicorn.access"]:
        logging.getLogger(logger_name).handlers = [InterceptHandler()]
        logging.getLogger(logger_name).propagate = False


def get_logger(name: str, **extra: Any) -> logger.__class__:
    """Logger bound to a component name plus optional ``table_id`` / ``node`` context."""
    return logger.bind(name=name, **extra)


configure_logging()
