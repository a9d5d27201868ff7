from __future__ import annotations

import time
from dataclasses import dataclass, replace
from enum import Enum

from auth.errors import InvalidTransition
from auth.patreon_oauth2 import TokenBundle


class SessionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.PENDING


@dataclass
class AuthorizationSession:
    token: str
    status: SessionStatus
    created_at: float
    expires_at: float
    completed_at: float | None = None
    tokens: TokenBundle | None = None
    code: str | None = None
    fallback_reason: str | None = None
    error: str | None = None
    user_agent: str | None = None
    ip: str | None = None

    @classmethod
    def pending(
        cls,
        token: str,
        *,
        ttl_seconds: float,
        user_agent: str | None = None,
        ip: str | None = None,
        now: float | None = None,
    ) -> "AuthorizationSession":
        created_at = time.time() if now is None else now
        return cls(
            token=token,
            status=SessionStatus.PENDING,
            created_at=created_at,
            expires_at=created_at + ttl_seconds,
            user_agent=user_agent,
            ip=ip,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def is_expired(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current >= self.expires_at

    # -- transitions -----------------------------------------------------------

    def _finish(self, status: SessionStatus, **changes) -> "AuthorizationSession":
        if self.is_terminal:
            raise InvalidTransition(
                f"Session already {self.status.value}; cannot become {status.value}."
            )
        return replace(self, status=status, completed_at=time.time(), **changes)

    def complete(self, tokens: TokenBundle) -> "AuthorizationSession":
        return self._finish(SessionStatus.COMPLETED, tokens=tokens)

    def complete_with_code(self, code: str, reason: str) -> "AuthorizationSession":
        return self._finish(SessionStatus.COMPLETED, code=code, fallback_reason=reason)

    def fail(self, error: str) -> "AuthorizationSession":
        return self._finish(SessionStatus.ERROR, error=error)

    # -- wire format -----------------------------------------------------------

    def result_payload(self) -> dict:
        """Status document handed to the poller for this record."""
        if self.status is SessionStatus.PENDING:
            return {"status": "pending"}
        if self.status is SessionStatus.ERROR:
            return {"status": "error", "error": self.error or "Unknown error"}

        payload: dict = {"status": "completed"}
        if self.tokens is not None:
            payload.update(
                access_token=self.tokens.access_token,
                refresh_token=self.tokens.refresh_token,
                expires_in=self.tokens.expires_in,
                token_type=self.tokens.token_type,
            )
            if self.tokens.scope:
                payload["scope"] = self.tokens.scope
        else:
            payload.update(code=self.code, fallback_reason=self.fallback_reason)
        return payload

    def to_dict(self) -> dict:
        return {
            "token": self.token,
            "status": self.status.value,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "completed_at": self.completed_at,
            "tokens": self.tokens.to_dict() if self.tokens is not None else None,
            "code": self.code,
            "fallback_reason": self.fallback_reason,
            "error": self.error,
            "user_agent": self.user_agent,
            "ip": self.ip,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuthorizationSession":
        tokens = data.get("tokens")
        return cls(
            token=data["token"],
            status=SessionStatus(data["status"]),
            created_at=float(data["created_at"]),
            expires_at=float(data["expires_at"]),
            completed_at=data.get("completed_at"),
            tokens=TokenBundle(**tokens) if tokens else None,
            code=data.get("code"),
            fallback_reason=data.get("fallback_reason"),
            error=data.get("error"),
            user_agent=data.get("user_agent"),
            ip=data.get("ip"),
        )


@dataclass
class SweepResult:
    total: int = 0
    removed: int = 0

    @property
    def active(self) -> int:
        return self.total - self.removed

    def __add__(self, other: "SweepResult") -> "SweepResult":
        return SweepResult(total=self.total + other.total, removed=self.removed + other.removed)
