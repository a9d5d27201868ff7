from auth.session_store import FallbackSessionStore, MemorySessionStore
from tests.oauth_helpers import UnavailableStore, _build_client


def test_health_returns_200() -> None:
    client, _ = _build_client()

    response = client.get("/health")

    assert response.status_code == 200


def test_health_response_format() -> None:
    client, _ = _build_client()

    payload = client.get("/health").json()

    assert payload == {
        "status": "ok",
        "version": "1.0.0",
        "session_backend": "memory",
        "config": {
            "has_client_id": True,
            "has_client_secret": True,
            "redirect_uri": "https://bridge.example.com/callback",
        },
    }


def test_health_reports_fallback_backend() -> None:
    client, _ = _build_client(store=FallbackSessionStore(UnavailableStore(), MemorySessionStore()))

    payload = client.get("/health").json()

    assert payload["session_backend"] == "broken+memory"
