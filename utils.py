"""Utility functions for the conversation gateway."""

from __future__ import annotations

import logging
from pathlib import Path

log = logging.getLogger("gateway")


def load_env_files() -> None:
    """Load .env files from program and current directory."""
    try:
        from dotenv import load_dotenv
    except ImportError:
        log.warning("python-dotenv not installed; .env will NOT be loaded automatically.")
        return

    this_dir = Path(__file__).resolve().parent
    p1 = this_dir / ".env"
    p2 = Path.cwd() / ".env"

    loaded_any = False
    if p1.exists():
        loaded_any = load_dotenv(dotenv_path=str(p1), override=True) or loaded_any
        log.info("Loaded .env from %s", str(p1))
    else:
        log.info("No .env in program directory: %s", str(p1))

    if p2.exists() and p2 != p1:
        loaded_any = load_dotenv(dotenv_path=str(p2), override=True) or loaded_any
        log.info("Loaded .env from %s", str(p2))
    elif p2 != p1:
        log.info("No .env in current directory: %s", str(p2))

    if not loaded_any:
        log.info(".env not loaded (not found or no variables applied).")


def dump_config(config) -> None:
    """Log effective configuration at startup."""
    from logger import mask_secret

    log.info("=== Conversation gateway startup config ===")
    log.info("BACKEND_URL=%s", config.backend_url)
    log.info("PROXY_URL=%s", config.proxy_url or "<none>")
    log.info("DISABLE_HISTORY=%s", config.disable_history)
    log.info("DEFAULT_MODEL=%s", config.default_model)
    log.info("ACCESS_TOKEN_PREFIX=%r", config.access_token_prefix)
    log.info(
        "ARKOSE_TOKEN_set=%s value=%s",
        bool(config.arkose_token),
        mask_secret(config.arkose_token),
    )
    log.info("ARKOSE_TOKEN_URL=%s", config.arkose_token_url or "<none>")
    if not config.arkose_token and not config.arkose_token_url:
        log.info("No anti-automation token source configured; requests go out without one.")
    log.info("REQUEST_TIMEOUT_S=%s", config.request_timeout_s)
    log.info("CONNECT_TIMEOUT_S=%s", config.connect_timeout_s)
    log.info("MAX_LEGS=%s", config.max_legs)
    log.info("MAX_REQUEST_BYTES=%s", config.max_request_bytes)
    log.info("DEBUG_TRAFFIC=%s", config.debug_traffic)
    log.info("DEBUG_TRAFFIC_LOG_PATH=%s", config.debug_traffic_log_path)
    log.info("PORT=%s", config.port)
    log.info("LOG_LEVEL=%s", config.log_level)
    log.info("LOG_PATH=%s", config.log_path)
    log.info("USER_AGENT=%s", config.user_agent)
    log.info("WorkingDir=%s", str(Path.cwd()))
    log.info("ProgramDir=%s", str(Path(__file__).resolve().parent))
    log.info("===========================================")
