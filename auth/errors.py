from __future__ import annotations


class ValidationError(ValueError):
    """Malformed or missing client input (state, code, request body)."""

    status_code = 400


class StorageUnavailable(RuntimeError):
    """The session backend could not be reached."""

    status_code = 503


class SessionNotFound(LookupError):
    status_code = 400


class InvalidTransition(RuntimeError):
    """A terminal session was asked to transition again."""


class ProviderError(RuntimeError):
    pass


class ExchangeFailed(ProviderError):
    def __init__(self, http_status: int | None, body: str) -> None:
        if http_status is None:
            message = f"Token request failed: {body}"
        else:
            message = f"Token request failed with status {http_status}: {body}"
        super().__init__(message)
        self.http_status = http_status
        self.body = body

    @property
    def is_transient(self) -> bool:
        return self.http_status is None or self.http_status >= 500


class MalformedResponse(ProviderError):
    pass
