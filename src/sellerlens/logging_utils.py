"""Unified logging utilities for SellerLens.

This module centralizes logging setup so every stage can emit:
  - system-readable logs (system.log)
  - user-readable run summaries (user_readable.log)

Design constraints:
  - No imports of pipeline modules to avoid circular dependencies.
  - Graceful degradation: if file handlers fail, keep console logging.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional


SYSTEM_FMT = "[%(asctime)s] [%(levelname)s] %(message)s"
HUMAN_FMT = "%(message)s"
ROOT_LOGGER = "sellerlens"


def _ensure_logs_dir(config: Optional[dict]) -> Path:
    paths = (config or {}).get("paths", {}) or {}
    logs_dir = Path(paths.get("logs_dir", "logs")).expanduser().resolve()
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def _safe_add_file_handler(logger: logging.Logger, path: Path, fmt: str, level: int) -> None:
    try:
        fh = logging.FileHandler(path, encoding="utf-8")
    except OSError as exc:  # pragma: no cover - filesystem issues
        logger.warning("[WARNING] Failed to attach file handler %s (%s)", str(path), exc)
        return
    fh.setLevel(level)
    fh.setFormatter(logging.Formatter(fmt))
    logger.addHandler(fh)


def get_logger(name: str, config: Optional[dict] = None, level: int = logging.INFO) -> logging.Logger:
    """Return a system logger with console + file handlers.

    - File: system.log under ``paths.logs_dir`` (machine-friendly format)
    - Console: same format
    - Level: INFO by default
    """
    logs_dir = _ensure_logs_dir(config)
    logger = logging.getLogger(name)
    logger.setLevel(level)
    # Reset handlers to avoid duplication across repeated initializations
    logger.handlers = []

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(logging.Formatter(SYSTEM_FMT))
    logger.addHandler(sh)

    _safe_add_file_handler(logger, logs_dir / "system.log", SYSTEM_FMT, level)
    return logger


def get_user_logger(config: Optional[dict] = None) -> logging.Logger:
    """Return a user-friendly logger that writes to user_readable.log and console."""
    logs_dir = _ensure_logs_dir(config)
    logger = logging.getLogger(f"{ROOT_LOGGER}.user")
    logger.setLevel(logging.INFO)
    logger.handlers = []
    logger.propagate = False

    sh = logging.StreamHandler()
    sh.setLevel(logging.INFO)
    sh.setFormatter(logging.Formatter(HUMAN_FMT))
    logger.addHandler(sh)

    _safe_add_file_handler(logger, logs_dir / "user_readable.log", HUMAN_FMT, logging.INFO)
    return logger


def log_system_event(logger: logging.Logger, message: str):
    logger.info("[SYSTEM] %s", message)


def log_warning(logger: logging.Logger, message: str):
    logger.warning("[WARNING] %s", message)


def log_error(logger: logging.Logger, message: str):
    logger.error("[ERROR] %s", message)
