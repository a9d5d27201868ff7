from __future__ import annotations

import logging
from pathlib import Path

LOGGER = logging.getLogger("patreon_bridge")
APP_VERSION = "1.0.0"
USER_AGENT = f"SketchShaper-Bridge/{APP_VERSION}"

DEFAULT_SCOPES = "identity identity[email] identity.memberships"
DEFAULT_CORS_ORIGINS = "https://api2.sketchshaper.com,http://localhost:3000,https://localhost:3000"

DEFAULT_SESSION_TTL_SECONDS = 15 * 60
DEFAULT_STATE_MAX_AGE_SECONDS = 30 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60
DEFAULT_PROVIDER_TIMEOUT = 10.0

ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
