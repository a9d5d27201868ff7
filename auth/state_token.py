from __future__ import annotations

import re
import secrets
import time

from auth.errors import ValidationError

STATE_RANDOM_BYTES = 32
STATE_SEPARATOR = "_"
STATE_PATTERN = re.compile(r"^[0-9a-f]{64}_[0-9]{1,16}$")
MAX_CLOCK_SKEW_SECONDS = 60


def _now_ms(now: float | None) -> int:
    current = time.time() if now is None else now
    return int(current * 1000)


def generate_state(now: float | None = None) -> str:
    """Return ``<64 hex chars>_<epoch milliseconds>``.

    The random half carries 256 bits from :mod:`secrets`; the timestamp half
    lets a holder judge staleness without a store lookup.
    """
    random_part = secrets.token_hex(STATE_RANDOM_BYTES)
    return f"{random_part}{STATE_SEPARATOR}{_now_ms(now)}"


def parse_state(state: str | None) -> int:
    if not isinstance(state, str) or not state:
        raise ValidationError("State parameter required.")
    if not STATE_PATTERN.match(state):
        raise ValidationError("Invalid authentication state.")
    return int(state.rsplit(STATE_SEPARATOR, 1)[1])


def state_age_seconds(state: str, now: float | None = None) -> float:
    return (_now_ms(now) - parse_state(state)) / 1000


def validate_state(state: str | None, *, max_age_seconds: float, now: float | None = None) -> int:
    issued_ms = parse_state(state)
    age = (_now_ms(now) - issued_ms) / 1000
    if age < -MAX_CLOCK_SKEW_SECONDS:
        raise ValidationError("Authentication state is issued in the future.")
    if age > max_age_seconds:
        raise ValidationError("Authentication state expired.")
    return issued_ms


def state_prefix(state: str) -> str:
    return state[:8]
