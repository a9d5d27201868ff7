from __future__ import annotations

import asyncio
import contextlib
import os

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from auth.cors import apply_cors_response, preflight_route
from auth.flow import AuthFlow
from auth.oauth_server import OAuthServer
from auth.session_store import (
    FallbackSessionStore,
    MemorySessionStore,
    RedisSessionStore,
    SessionStore,
)
from patreon_bridge.constants import APP_VERSION, LOGGER
from patreon_bridge.env import BridgeSettings, load_env, load_settings, setup_logging
from patreon_bridge.http import build_provider_client


def build_session_store(settings: BridgeSettings) -> SessionStore:
    if not settings.redis_url:
        LOGGER.warning(
            "REDIS_URL is not set; sessions are kept in process memory and are not shared "
            "between instances."
        )
        return MemorySessionStore()

    redis_store = RedisSessionStore.from_url(settings.redis_url)
    if not settings.session_fallback:
        return redis_store
    return FallbackSessionStore(redis_store, MemorySessionStore())


def health_route(settings: BridgeSettings, store: SessionStore) -> Route:
    async def health(request: Request) -> Response:
        return apply_cors_response(
            request,
            JSONResponse(
                {
                    "status": "ok",
                    "version": APP_VERSION,
                    "session_backend": store.name,
                    "config": {
                        "has_client_id": bool(settings.client_id),
                        "has_client_secret": bool(settings.client_secret),
                        "redirect_uri": settings.redirect_uri,
                    },
                }
            ),
            settings.cors_origins,
        )

    return Route("/health", health, methods=["GET"])


def create_app(
    settings: BridgeSettings | None = None,
    *,
    store: SessionStore | None = None,
    **flow_overrides,
) -> Starlette:
    if settings is None:
        load_env()
        settings = load_settings()
    setup_logging(settings.debug)

    session_store = store if store is not None else build_session_store(settings)
    http_client = build_provider_client(timeout=settings.provider_timeout)
    flow = AuthFlow(
        store=session_store,
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        redirect_uri=settings.redirect_uri,
        scopes=settings.scopes,
        session_ttl_seconds=settings.session_ttl_seconds,
        state_max_age_seconds=settings.state_max_age_seconds,
        code_fallback=settings.code_fallback,
        provider_timeout=settings.provider_timeout,
        http_client=http_client,
        **flow_overrides,
    )
    oauth_server = OAuthServer(flow, cors_origins=settings.cors_origins)

    routes = oauth_server.routes()
    routes.append(health_route(settings, session_store))
    routes.append(preflight_route("/health", settings.cors_origins))

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        sweeper = None
        if settings.sweep_interval_seconds > 0:
            sweeper = asyncio.create_task(flow.sweep_forever(settings.sweep_interval_seconds))
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sweeper
            await http_client.aclose()
            await session_store.close()

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.flow = flow
    app.state.session_store = session_store
    LOGGER.info(
        "Patreon bridge configured (redirect_uri=%s, session_backend=%s)",
        settings.redirect_uri,
        session_store.name,
    )
    return app


def main() -> None:
    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "3000"))
    app = create_app()
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
