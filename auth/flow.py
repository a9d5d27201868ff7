from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable

import httpx

from auth import patreon_oauth2
from auth.errors import (
    ExchangeFailed,
    InvalidTransition,
    MalformedResponse,
    SessionNotFound,
    StorageUnavailable,
    ValidationError,
)
from auth.models import AuthorizationSession, SessionStatus, SweepResult
from auth.patreon_oauth2 import TokenBundle
from auth.session_store import SessionStore
from auth.state_token import (
    generate_state,
    parse_state,
    state_age_seconds,
    state_prefix,
    validate_state,
)
from patreon_bridge.constants import (
    DEFAULT_PROVIDER_TIMEOUT,
    DEFAULT_SCOPES,
    DEFAULT_SESSION_TTL_SECONDS,
    DEFAULT_STATE_MAX_AGE_SECONDS,
    LOGGER,
)

SUCCESS_MESSAGE = "Authentication successful! You can close this window."
REPLAY_MESSAGE = "This authentication request was already processed. You can close this window."


@dataclass
class BeginResult:
    state: str
    authorization_url: str
    expires_in: int
    backend: str


@dataclass
class CompleteResult:
    status: SessionStatus
    message: str
    fallback: bool = False
    replayed: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status is SessionStatus.COMPLETED


class AuthFlow:
    """The begin / complete / poll lifecycle of one Patreon authorization."""

    def __init__(
        self,
        *,
        store: SessionStore,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: list[str] | None = None,
        session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
        state_max_age_seconds: int = DEFAULT_STATE_MAX_AGE_SECONDS,
        code_fallback: bool = True,
        provider_timeout: float = DEFAULT_PROVIDER_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
        exchange_code_fn=patreon_oauth2.exchange_code,
        refresh_token_fn=patreon_oauth2.refresh_token,
    ) -> None:
        self.store = store
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes or DEFAULT_SCOPES.split()
        self.session_ttl_seconds = session_ttl_seconds
        self.state_max_age_seconds = state_max_age_seconds
        self.code_fallback = code_fallback
        self.provider_timeout = provider_timeout
        self.http_client = http_client

        self._exchange_code_fn = exchange_code_fn
        self._refresh_token_fn = refresh_token_fn

    # -- operations ------------------------------------------------------------

    async def begin(self, *, user_agent: str | None = None, ip: str | None = None) -> BeginResult:
        state = generate_state()
        record = AuthorizationSession.pending(
            state,
            ttl_seconds=self.session_ttl_seconds,
            user_agent=user_agent,
            ip=ip,
        )
        backend = await self.store.put(state, record, self.session_ttl_seconds)
        LOGGER.info("Starting OAuth flow for state %s (stored in %s)", state_prefix(state), backend)

        authorization_url = patreon_oauth2.build_authorization_url(
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            scopes=self.scopes,
            state=state,
        )
        return BeginResult(
            state=state,
            authorization_url=authorization_url,
            expires_in=self.session_ttl_seconds,
            backend=backend,
        )

    async def complete(
        self,
        state: str | None,
        *,
        code: str | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> CompleteResult:
        validate_state(state, max_age_seconds=self.state_max_age_seconds)
        await self._sweep_opportunistically()

        record = await self.store.get(state)
        if record is None:
            raise SessionNotFound("Authentication session expired or unknown.")
        if record.is_terminal:
            LOGGER.info("Ignoring replayed callback for state %s", state_prefix(state))
            return CompleteResult(record.status, REPLAY_MESSAGE, replayed=True)

        if error:
            message = error_description or error
            LOGGER.warning("Patreon returned error for state %s: %s", state_prefix(state), error)
            return await self._finish(
                state, lambda current: current.fail(message), f"Authentication failed: {message}"
            )

        if not code:
            LOGGER.warning("Callback for state %s is missing the authorization code", state_prefix(state))
            return await self._finish(
                state,
                lambda current: current.fail("Missing authorization code"),
                "Invalid callback parameters.",
            )

        try:
            tokens = await self._exchange_code_fn(
                client_id=self.client_id,
                client_secret=self.client_secret,
                code=code,
                redirect_uri=self.redirect_uri,
                client=self.http_client,
                timeout=self.provider_timeout,
            )
        except ExchangeFailed as failure:
            if self.code_fallback and failure.is_transient:
                LOGGER.warning(
                    "Token exchange failed for state %s; storing code for client-side exchange: %s",
                    state_prefix(state),
                    failure,
                )
                reason = str(failure)
                return await self._finish(
                    state,
                    lambda current: current.complete_with_code(code, reason),
                    SUCCESS_MESSAGE,
                    fallback=True,
                )
            LOGGER.error("Token exchange rejected for state %s: %s", state_prefix(state), failure)
            if failure.http_status is None:
                message = "Token exchange failed"
            else:
                message = f"Token exchange failed (HTTP {failure.http_status})"
            return await self._finish(
                state,
                lambda current: current.fail(message),
                "Failed to exchange authorization code.",
            )
        except MalformedResponse as failure:
            LOGGER.error("Unusable token response for state %s: %s", state_prefix(state), failure)
            return await self._finish(
                state,
                lambda current: current.fail("Token exchange returned an unusable response"),
                "Failed to exchange authorization code.",
            )

        LOGGER.info("Authentication completed for state %s", state_prefix(state))
        return await self._finish(state, lambda current: current.complete(tokens), SUCCESS_MESSAGE)

    async def poll(self, state: str | None) -> dict:
        parse_state(state)
        await self._sweep_opportunistically()

        record = await self.store.get(state)
        if record is None:
            if state_age_seconds(state) > self.session_ttl_seconds:
                return {"status": "expired", "error": "Session expired"}
            return {"status": "pending"}
        if not record.is_terminal:
            return {"status": "pending"}

        if not await self.store.delete(state):
            LOGGER.info("State %s already delivered to another poller", state_prefix(state))
            return {"status": "pending"}

        LOGGER.info("Delivered %s result for state %s", record.status.value, state_prefix(state))
        return record.result_payload()

    async def refresh(self, refresh_token: str | None) -> TokenBundle:
        if not isinstance(refresh_token, str) or not refresh_token.strip():
            raise ValidationError("Missing refresh token.")
        return await self._refresh_token_fn(
            client_id=self.client_id,
            client_secret=self.client_secret,
            refresh_token=refresh_token.strip(),
            client=self.http_client,
            timeout=self.provider_timeout,
        )

    async def sweep(self) -> SweepResult:
        result = await self.store.sweep()
        if result.removed:
            LOGGER.info("Cleaned up %s expired sessions", result.removed)
        return result

    async def sweep_forever(self, interval_seconds: float, *, sleep: Callable = asyncio.sleep) -> None:
        while True:
            await sleep(interval_seconds)
            try:
                await self.sweep()
            except StorageUnavailable as error:
                LOGGER.warning("Periodic sweep failed: %s", error)

    # -- helpers ---------------------------------------------------------------

    async def _sweep_opportunistically(self) -> None:
        try:
            await self.sweep()
        except StorageUnavailable as error:
            LOGGER.warning("Opportunistic sweep failed: %s", error)

    async def _finish(
        self,
        state: str,
        transition: Callable[[AuthorizationSession], AuthorizationSession],
        message: str,
        *,
        fallback: bool = False,
    ) -> CompleteResult:
        try:
            updated = await self.store.update(state, transition)
        except InvalidTransition:
            LOGGER.info("State %s was completed concurrently; keeping first result", state_prefix(state))
            current = await self.store.get(state)
            status = current.status if current is not None else SessionStatus.COMPLETED
            return CompleteResult(status, REPLAY_MESSAGE, replayed=True)

        if updated is None:
            raise SessionNotFound("Authentication session expired before it could be completed.")
        return CompleteResult(updated.status, message, fallback=fallback)
