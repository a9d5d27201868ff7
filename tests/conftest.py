import fakeredis
import pytest
import pytest_asyncio

from auth.session_store import MemorySessionStore, RedisSessionStore


@pytest.fixture
def memory_store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def redis_server() -> fakeredis.FakeServer:
    return fakeredis.FakeServer()


@pytest_asyncio.fixture
async def redis_client(redis_server):
    client = fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def redis_store(redis_client) -> RedisSessionStore:
    return RedisSessionStore(redis_client, key_prefix="test:session:")


@pytest.fixture
def bridge_env(monkeypatch) -> None:
    for key in (
        "REDIS_URL",
        "PATREON_SCOPES",
        "BRIDGE_SESSION_FALLBACK",
        "BRIDGE_SESSION_TTL_SECONDS",
        "BRIDGE_STATE_MAX_AGE_SECONDS",
        "BRIDGE_SWEEP_INTERVAL_SECONDS",
        "BRIDGE_CODE_FALLBACK",
        "BRIDGE_CORS_ORIGINS",
        "BRIDGE_DEBUG",
        "PATREON_TIMEOUT",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("PATREON_CLIENT_ID", "patreon-client")
    monkeypatch.setenv("PATREON_CLIENT_SECRET", "patreon-secret")
    monkeypatch.setenv("PATREON_REDIRECT_URI", "https://bridge.example.com/callback")
