"""Logging configuration for the conversation gateway."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

import colorlog

LOGGER_NAME = "gateway"
TRAFFIC_LOGGER_NAME = "gateway.traffic"
DEFAULT_LOG_PATH = "/var/log/conversation-gateway/gateway.log"

_LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


def setup_logging(level_name: str = "INFO", log_path: str | None = None) -> logging.Logger:
    """
    Configure the gateway logger.

    Records go to a rotating file (1 MB, 3 backups) at ``log_path``; if the
    file cannot be opened they go to stderr instead. ``DISABLE`` as the level
    turns logging off for the whole process.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = False

    level_name = (level_name or "INFO").upper().strip()
    if level_name == "DISABLE":
        logging.disable(logging.CRITICAL)
        logger.addHandler(logging.NullHandler())
        return logger

    logging.disable(logging.NOTSET)
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    log_path = log_path or DEFAULT_LOG_PATH
    fallback_err = _attach_handler(logger, log_path, _create_log_formatter())
    if fallback_err is not None:
        logger.warning("Failed to open log file %r (%s). Logging to stderr.", log_path, fallback_err)
    return logger


def setup_traffic_logging(enabled: bool, log_path: str) -> logging.Logger:
    """
    Configure the raw upstream traffic logger.

    Off unless DEBUG_TRAFFIC is set. It never propagates to the gateway log.
    """
    traffic = logging.getLogger(TRAFFIC_LOGGER_NAME)
    traffic.handlers.clear()
    traffic.propagate = False
    if not enabled:
        traffic.addHandler(logging.NullHandler())
        traffic.setLevel(logging.CRITICAL)
        return traffic

    traffic.setLevel(logging.DEBUG)
    fallback_err = _attach_handler(
        traffic,
        log_path,
        logging.Formatter("%(asctime)s %(message)s"),
        max_bytes=100_000_000,
    )
    if fallback_err is not None:
        logging.getLogger(LOGGER_NAME).warning(
            "Failed to open traffic log %r (%s). Traffic goes to stderr.", log_path, fallback_err
        )
    return traffic


def _attach_handler(
    logger: logging.Logger,
    log_path: str,
    formatter: logging.Formatter,
    max_bytes: int = 1_048_576,
) -> Exception | None:
    """Attach a rotating file handler, or a stream handler if the file is unusable."""
    try:
        handler: logging.Handler = RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=3, encoding="utf-8"
        )
        err = None
    except OSError as e:
        handler, err = logging.StreamHandler(), e
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    return err


def _create_log_formatter() -> logging.Formatter:
    if os.getenv("LOG_COLOR", "true").lower() in ("true", "1", "yes"):
        return colorlog.ColoredFormatter(
            "%(log_color)s%(asctime)s %(levelname)-8s%(reset)s %(name)s - %(message)s",
            log_colors=_LOG_COLORS,
        )
    return logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")


def mask_secret(s: str, keep_start: int = 6, keep_end: int = 4) -> str:
    """Mask a secret string, keeping only start and end characters."""
    s = (s or "").strip()
    if not s:
        return ""
    if len(s) <= keep_start + keep_end:
        return "*" * len(s)
    return f"{s[:keep_start]}...{s[-keep_end:]}"
