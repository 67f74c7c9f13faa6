"""Configuration management for the conversation gateway."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_BACKEND_URL = "https://chat.openai.com/backend-api/conversation"
DEFAULT_BACKEND_MODEL = "text-davinci-002-render-sha"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/112.0.0.0 Safari/537.36"
)
# JWT header of the backend's RS256 access tokens
DEFAULT_ACCESS_TOKEN_PREFIX = "eyJhbGciOiJSUzI1NiI"


def _env_bool(name: str, default: bool) -> bool:
    """Get boolean environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    """Get float environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    """Get integer environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    """Get string environment variable with fallback."""
    v = os.getenv(name)
    if v is None:
        return default
    return v


def _env_proxy() -> str:
    """Explicit PROXY_URL wins; otherwise the usual HTTPS_PROXY / HTTP_PROXY."""
    for name in ("PROXY_URL", "HTTPS_PROXY", "https_proxy", "HTTP_PROXY", "http_proxy"):
        v = (os.getenv(name) or "").strip()
        if v:
            return v
    return ""


@dataclass(frozen=True)
class AppConfig:
    """Application configuration."""

    # Backend settings
    backend_url: str
    proxy_url: str
    disable_history: bool
    default_model: str
    user_agent: str

    # Credentials handling
    access_token_prefix: str
    arkose_token: str
    arkose_token_url: str

    # Timeouts and limits
    request_timeout_s: float
    connect_timeout_s: float
    max_legs: int
    max_request_bytes: int

    # Debug traffic logging (VERY VERBOSE)
    debug_traffic: bool
    debug_traffic_log_path: str

    # Server settings
    port: int
    log_level: str
    log_path: str

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables."""
        return cls(
            backend_url=_env_str("BACKEND_URL", DEFAULT_BACKEND_URL),
            proxy_url=_env_proxy(),
            disable_history=_env_bool("DISABLE_HISTORY", True),
            default_model=_env_str("DEFAULT_MODEL", DEFAULT_BACKEND_MODEL),
            user_agent=_env_str("USER_AGENT", DEFAULT_USER_AGENT),
            access_token_prefix=_env_str("ACCESS_TOKEN_PREFIX", DEFAULT_ACCESS_TOKEN_PREFIX).strip(),
            arkose_token=_env_str("ARKOSE_TOKEN", "").strip(),
            arkose_token_url=_env_str("ARKOSE_TOKEN_URL", "").strip(),
            request_timeout_s=_env_float("REQUEST_TIMEOUT_S", 1800.0),
            connect_timeout_s=_env_float("CONNECT_TIMEOUT_S", 30.0),
            max_legs=_env_int("MAX_LEGS", 3),
            max_request_bytes=_env_int("MAX_REQUEST_BYTES", 2_000_000),  # ~2MB
            debug_traffic=_env_bool("DEBUG_TRAFFIC", False),
            debug_traffic_log_path=_env_str("DEBUG_TRAFFIC_LOG_PATH", "traffic.log"),
            port=_env_int("PORT", 9333),
            log_level=_env_str("LOG_LEVEL", "INFO").upper().strip(),
            log_path=_env_str("LOG_PATH", "/var/log/conversation-gateway/gateway.log"),
        )

    def validate(self) -> None:
        """Validate configuration."""
        if not self.backend_url:
            raise ValueError("BACKEND_URL must be non-empty")
        if not self.default_model:
            raise ValueError("DEFAULT_MODEL must be non-empty")
        if self.request_timeout_s <= 0:
            raise ValueError("REQUEST_TIMEOUT_S must be > 0")
        if self.connect_timeout_s <= 0:
            raise ValueError("CONNECT_TIMEOUT_S must be > 0")
        if self.max_legs < 1:
            raise ValueError("MAX_LEGS must be >= 1")
        if self.max_request_bytes <= 0:
            raise ValueError("MAX_REQUEST_BYTES must be > 0")
        if self.port <= 0:
            raise ValueError("PORT must be > 0")
        if not self.log_path:
            raise ValueError("LOG_PATH must be non-empty")
        if not self.user_agent:
            raise ValueError("USER_AGENT must be non-empty")


def load_config() -> AppConfig:
    """Load configuration from environment."""
    return AppConfig.from_env()
