"""Logging setup for a task run: rotating log file, optional console, audit context on every record."""

import logging
import logging.handlers
from pathlib import Path
from typing import Any

from tony.audit import AuditContextFilter

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s%(audit_context)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _build_handlers(project_root: Path, cfg: dict[str, Any]) -> list[logging.Handler]:
    log_path = project_root / cfg.get("file", "logs/tony.log")
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=int(cfg.get("max_bytes", 10 * 1024 * 1024)),
            backupCount=int(cfg.get("backup_count", 3)),
            encoding="utf-8",
        )
    ]
    # stdout carries streamed model output, so console logging goes to stderr and is opt-in
    if cfg.get("log_to_console", False):
        handlers.append(logging.StreamHandler())
    return handlers


def setup_logging(project_root: Path, settings: dict[str, Any]) -> None:
    """Replace root handlers with the ones described by settings["logging"].

    The log directory is created relative to project_root.
    """
    cfg = settings.get("logging", {})
    level = getattr(logging, str(cfg.get("level", "INFO")).upper(), logging.INFO)
    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)
    context_filter = AuditContextFilter()

    root = logging.getLogger()
    root.setLevel(level)
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    for handler in _build_handlers(project_root, cfg):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)
        root.addHandler(handler)
