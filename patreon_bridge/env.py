from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

from dotenv import load_dotenv

from .constants import (
    DEFAULT_CORS_ORIGINS,
    DEFAULT_PROVIDER_TIMEOUT,
    DEFAULT_SCOPES,
    DEFAULT_SESSION_TTL_SECONDS,
    DEFAULT_STATE_MAX_AGE_SECONDS,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    ENV_FILE,
    LOGGER,
)

REQUIRED_ENV = (
    "PATREON_CLIENT_ID",
    "PATREON_CLIENT_SECRET",
    "PATREON_REDIRECT_URI",
)


@dataclass
class BridgeSettings:
    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: list[str]
    redis_url: str | None = None
    session_fallback: bool = True
    session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS
    state_max_age_seconds: int = DEFAULT_STATE_MAX_AGE_SECONDS
    sweep_interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS
    provider_timeout: float = DEFAULT_PROVIDER_TIMEOUT
    code_fallback: bool = True
    cors_origins: set[str] = field(default_factory=set)
    debug: bool = True


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_csv_env(key: str, default: str = "") -> set[str]:
    raw = os.getenv(key, default)
    if not raw.strip():
        return set()
    return {item.strip() for item in raw.split(",") if item.strip()}


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")


def _get_env_flag(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    return is_truthy(raw)


def load_env() -> None:
    if not ENV_FILE.exists():
        return
    load_dotenv(ENV_FILE, override=True)


def validate_env() -> None:
    missing = [key for key in REQUIRED_ENV if not os.getenv(key, "").strip()]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    redirect_uri = os.getenv("PATREON_REDIRECT_URI", "").strip()
    parsed = urlparse(redirect_uri)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise RuntimeError(
            "PATREON_REDIRECT_URI must be an absolute http(s) URL (for example: "
            "https://auth.example.com/callback)."
        )
    if parsed.scheme == "http" and parsed.hostname not in {"localhost", "127.0.0.1"}:
        LOGGER.warning("PATREON_REDIRECT_URI is not HTTPS; Patreon rejects it outside local development.")


def load_settings() -> BridgeSettings:
    validate_env()

    session_ttl = _get_env_int("BRIDGE_SESSION_TTL_SECONDS", DEFAULT_SESSION_TTL_SECONDS)
    if session_ttl <= 0:
        raise RuntimeError("BRIDGE_SESSION_TTL_SECONDS must be positive.")

    return BridgeSettings(
        client_id=os.getenv("PATREON_CLIENT_ID", "").strip(),
        client_secret=os.getenv("PATREON_CLIENT_SECRET", "").strip(),
        redirect_uri=os.getenv("PATREON_REDIRECT_URI", "").strip(),
        scopes=os.getenv("PATREON_SCOPES", DEFAULT_SCOPES).split(),
        redis_url=os.getenv("REDIS_URL", "").strip() or None,
        session_fallback=_get_env_flag("BRIDGE_SESSION_FALLBACK", True),
        session_ttl_seconds=session_ttl,
        state_max_age_seconds=_get_env_int(
            "BRIDGE_STATE_MAX_AGE_SECONDS", DEFAULT_STATE_MAX_AGE_SECONDS
        ),
        sweep_interval_seconds=_get_env_int(
            "BRIDGE_SWEEP_INTERVAL_SECONDS", DEFAULT_SWEEP_INTERVAL_SECONDS
        ),
        provider_timeout=_get_env_float("PATREON_TIMEOUT", DEFAULT_PROVIDER_TIMEOUT),
        code_fallback=_get_env_flag("BRIDGE_CODE_FALLBACK", True),
        cors_origins=parse_csv_env("BRIDGE_CORS_ORIGINS", DEFAULT_CORS_ORIGINS),
        debug=_get_env_flag("BRIDGE_DEBUG", True),
    )


def setup_logging(debug_enabled: bool | None = None) -> bool:
    if debug_enabled is None:
        debug_enabled = _get_env_flag("BRIDGE_DEBUG", True)
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return debug_enabled
