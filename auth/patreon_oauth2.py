from __future__ import annotations

import urllib.parse
from dataclasses import asdict, dataclass

import httpx

from auth.errors import ExchangeFailed, MalformedResponse
from patreon_bridge.constants import DEFAULT_PROVIDER_TIMEOUT, USER_AGENT

PATREON_AUTHORIZE_URL = "https://www.patreon.com/oauth2/authorize"
PATREON_TOKEN_URL = "https://www.patreon.com/api/oauth2/token"

DEFAULT_EXPIRES_IN = 3600
DEFAULT_TOKEN_TYPE = "Bearer"


@dataclass
class TokenBundle:
    access_token: str
    refresh_token: str | None
    expires_in: int
    token_type: str
    scope: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenBundle":
        if not isinstance(payload, dict):
            raise MalformedResponse("Token response must be a JSON object.")

        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        expires_in = payload.get("expires_in", DEFAULT_EXPIRES_IN)
        token_type = payload.get("token_type") or DEFAULT_TOKEN_TYPE
        scope = payload.get("scope")

        if not isinstance(access_token, str) or not access_token:
            raise MalformedResponse("Token response missing access_token.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise MalformedResponse("Token response refresh_token must be a string.")
        if isinstance(expires_in, bool) or not isinstance(expires_in, int):
            raise MalformedResponse("Token response expires_in must be an integer.")
        if not isinstance(token_type, str):
            raise MalformedResponse("Token response token_type must be a string.")
        if scope is not None and not isinstance(scope, str):
            raise MalformedResponse("Token response scope must be a string.")

        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=expires_in,
            token_type=token_type,
            scope=scope,
        )


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    state: str,
) -> str:
    query = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": " ".join(scopes),
        "state": state,
    }
    return f"{PATREON_AUTHORIZE_URL}?{urllib.parse.urlencode(query)}"


async def _token_request(
    payload: dict[str, str],
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_PROVIDER_TIMEOUT,
) -> TokenBundle:
    own_client = client is None
    http_client = client or httpx.AsyncClient(
        timeout=timeout,
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
    )

    try:
        response = await http_client.post(PATREON_TOKEN_URL, data=payload)
        response.raise_for_status()
    except httpx.HTTPStatusError as error:
        raise ExchangeFailed(error.response.status_code, error.response.text) from error
    except httpx.TimeoutException as error:
        raise ExchangeFailed(None, "Request timeout") from error
    except httpx.HTTPError as error:
        raise ExchangeFailed(None, str(error) or type(error).__name__) from error
    finally:
        if own_client:
            await http_client.aclose()

    try:
        body = response.json()
    except ValueError as error:
        raise MalformedResponse("Token response is not valid JSON.") from error
    return TokenBundle.from_payload(body)


async def exchange_code(
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_PROVIDER_TIMEOUT,
) -> TokenBundle:
    return await _token_request(
        {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri,
        },
        client=client,
        timeout=timeout,
    )


async def refresh_token(
    client_id: str,
    client_secret: str,
    refresh_token: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_PROVIDER_TIMEOUT,
) -> TokenBundle:
    return await _token_request(
        {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": client_id,
            "client_secret": client_secret,
        },
        client=client,
        timeout=timeout,
    )
