import time

from auth.errors import ExchangeFailed
from auth.models import SessionStatus
from auth.pages import render_callback_page
from auth.session_store import FallbackSessionStore, MemorySessionStore
from auth.state_token import generate_state
from tests.oauth_helpers import (
    EXPECTED_COMPLETED,
    ExchangeRecorder,
    UnavailableStore,
    _build_client,
    _state_from_location,
)


def test_auth_redirects_to_patreon() -> None:
    client, store = _build_client()

    response = client.get("/auth", follow_redirects=False)

    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith("https://www.patreon.com/oauth2/authorize?")
    assert "redirect_uri=https%3A%2F%2Fbridge.example.com%2Fcallback" in location
    assert len(store) == 1


def test_root_is_an_alias_for_auth() -> None:
    client, store = _build_client()

    response = client.get("/", follow_redirects=False)

    assert response.status_code == 302
    assert len(store) == 1


def test_auth_json_format() -> None:
    client, _ = _build_client()

    response = client.get("/auth", params={"format": "json"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["expires_in"] == 900
    assert f"state={payload['state']}" in payload["auth_url"]


def test_auth_records_client_metadata() -> None:
    client, store = _build_client()

    response = client.get(
        "/auth",
        headers={"User-Agent": "SketchUp/2024", "X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
        follow_redirects=False,
    )

    state = _state_from_location(response.headers["location"])
    record = store._load(state)[0]
    assert record.user_agent == "SketchUp/2024"
    assert record.ip == "203.0.113.7"


def test_auth_returns_503_when_storage_is_down() -> None:
    client, _ = _build_client(store=UnavailableStore())

    response = client.get("/auth", follow_redirects=False)

    assert response.status_code == 503
    assert response.json() == {
        "status": "error",
        "error": "Session storage is unavailable.",
        "code": "storage_unavailable",
    }


def test_full_flow_over_http() -> None:
    exchange = ExchangeRecorder()
    client, _ = _build_client(exchange_code_fn=exchange)
    state = _state_from_location(client.get("/auth", follow_redirects=False).headers["location"])

    assert client.get("/auth-status", params={"state": state}).json() == {"status": "pending"}

    callback = client.get("/callback", params={"state": state, "code": "abc123def"})

    assert callback.status_code == 200
    assert "Authentication Successful!" in callback.text
    assert '"type": "patreon-auth-callback"' in callback.text
    assert exchange.calls[0]["code"] == "abc123def"
    assert client.get("/auth-status", params={"state": state}).json() == EXPECTED_COMPLETED
    assert client.get("/auth-status", params={"state": state}).json() == {"status": "pending"}


def test_callback_degraded_fallback_over_http() -> None:
    client, _ = _build_client(exchange_code_fn=ExchangeRecorder(ExchangeFailed(None, "Request timeout")))
    state = client.get("/auth", params={"format": "json"}).json()["state"]

    callback = client.get("/callback", params={"state": state, "code": "abc123def"})
    payload = client.get("/auth-status", params={"state": state}).json()

    assert callback.status_code == 200
    assert payload["status"] == "completed"
    assert payload["code"] == "abc123def"
    assert "fallback_reason" in payload


def test_callback_with_provider_error() -> None:
    client, store = _build_client()
    state = client.get("/auth", params={"format": "json"}).json()["state"]

    response = client.get(
        "/callback",
        params={"state": state, "error": "access_denied", "error_description": "User denied access"},
    )

    assert response.status_code == 200
    assert "Authentication Failed" in response.text
    assert "User denied access" in response.text
    assert store._load(state)[0].status is SessionStatus.ERROR


def test_callback_with_invalid_state() -> None:
    client, _ = _build_client()

    response = client.get("/callback", params={"state": "forged", "code": "abc123def"})

    assert response.status_code == 400
    assert "Invalid authentication state." in response.text


def test_callback_with_unknown_state() -> None:
    exchange = ExchangeRecorder()
    client, _ = _build_client(exchange_code_fn=exchange)

    response = client.get("/callback", params={"state": generate_state(), "code": "abc123def"})

    assert response.status_code == 400
    assert exchange.calls == []


def test_callback_replay_shows_already_processed_page() -> None:
    exchange = ExchangeRecorder()
    client, _ = _build_client(exchange_code_fn=exchange)
    state = client.get("/auth", params={"format": "json"}).json()["state"]
    client.get("/callback", params={"state": state, "code": "abc123def"})

    replay = client.get("/callback", params={"state": state, "code": "abc123def"})

    assert replay.status_code == 200
    assert "already processed" in replay.text
    assert len(exchange.calls) == 1


def test_callback_message_is_escaped() -> None:
    page = render_callback_page(success=False, message="<script>alert(1)</script>")

    assert "<script>alert(1)</script>" not in page
    assert "&lt;script&gt;" in page


def test_status_requires_state() -> None:
    client, _ = _build_client()

    response = client.get("/auth-status")

    assert response.status_code == 400
    assert response.json() == {
        "status": "error",
        "error": "State parameter required.",
        "code": "invalid_state",
    }


def test_status_rejects_malformed_state() -> None:
    client, _ = _build_client()

    response = client.get("/auth-status", params={"state": "abc"})

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_state"


def test_status_reports_expired_for_old_unknown_state() -> None:
    client, _ = _build_client()
    state = generate_state(now=time.time() - 3600)

    response = client.get("/auth-status", params={"state": state})

    assert response.status_code == 410
    assert response.json() == {"status": "expired", "error": "Session expired"}


def test_status_returns_503_when_storage_is_down() -> None:
    client, _ = _build_client(store=UnavailableStore())

    response = client.get("/auth-status", params={"state": generate_state()})

    assert response.status_code == 503


def test_refresh_returns_tokens() -> None:
    refresher = ExchangeRecorder()
    client, _ = _build_client(refresh_token_fn=refresher)

    response = client.post("/refresh", json={"refresh_token": "ref_1"})

    assert response.status_code == 200
    assert response.json() == {
        "access_token": "tok_1",
        "refresh_token": "ref_1",
        "expires_in": 3600,
        "token_type": "Bearer",
    }
    assert refresher.calls[0]["refresh_token"] == "ref_1"


def test_refresh_rejects_invalid_json() -> None:
    client, _ = _build_client()

    response = client.post(
        "/refresh",
        content="{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid JSON in request body."


def test_refresh_requires_refresh_token() -> None:
    client, _ = _build_client()

    response = client.post("/refresh", json={})

    assert response.status_code == 400
    assert response.json()["error"] == "Missing refresh token."


def test_refresh_reports_provider_failure() -> None:
    client, _ = _build_client(refresh_token_fn=ExchangeRecorder(ExchangeFailed(401, "unauthorized")))

    response = client.post("/refresh", json={"refresh_token": "expired"})

    assert response.status_code == 400
    assert response.json() == {
        "status": "error",
        "error": "Token refresh failed",
        "details": "Token request failed with status 401: unauthorized",
    }


def test_cleanup_reports_counts() -> None:
    client, store = _build_client()
    client.get("/auth", params={"format": "json"})
    client.get("/auth", params={"format": "json"})

    response = client.post("/cleanup")

    assert response.status_code == 200
    assert response.json() == {
        "status": "success",
        "message": "Cleanup completed",
        "total_sessions": 2,
        "cleaned_sessions": 0,
        "active_sessions": 2,
    }
    assert len(store) == 2


def test_lifespan_closes_store() -> None:
    closed = []

    class ClosingStore(UnavailableStore):
        async def close(self) -> None:
            closed.append(True)

    client, _ = _build_client(store=ClosingStore())

    with client:
        assert client.get("/health").status_code == 200

    assert closed == [True]


def test_callback_during_storage_outage_returns_503() -> None:
    exchange = ExchangeRecorder()
    client, _ = _build_client(
        store=FallbackSessionStore(UnavailableStore(), MemorySessionStore()),
        exchange_code_fn=exchange,
    )

    callback = client.get("/callback", params={"state": generate_state(), "code": "abc123def"})
    status = client.get("/auth-status", params={"state": generate_state()})

    assert callback.status_code == 503
    assert "Failed to store authentication session." in callback.text
    assert status.status_code == 503
    assert exchange.calls == []


def test_callback_replay_of_failed_session_returns_200() -> None:
    client, _ = _build_client()
    state = client.get("/auth", params={"format": "json"}).json()["state"]
    client.get("/callback", params={"state": state, "error": "access_denied"})

    replay = client.get("/callback", params={"state": state, "error": "access_denied"})

    assert replay.status_code == 200
    assert "already processed" in replay.text
