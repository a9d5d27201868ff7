from __future__ import annotations

import logging

import httpx

from .constants import DEFAULT_PROVIDER_TIMEOUT, LOGGER, USER_AGENT

MAX_LOGGED_BODY = 1000


def _truncate(text: str, limit: int = MAX_LOGGED_BODY) -> str:
    if len(text) > limit:
        return text[:limit] + "...<truncated>"
    return text


def build_event_hooks(logger: logging.Logger | None = None) -> dict[str, list]:
    log = logger or LOGGER

    async def log_request(request: httpx.Request) -> None:
        # Form bodies carry client secrets and codes; only the line is logged.
        log.info("Patreon request %s %s", request.method, request.url)

    async def log_response(response: httpx.Response) -> None:
        log.info(
            "Patreon response %s %s -> %s",
            response.request.method,
            response.request.url,
            response.status_code,
        )
        if response.status_code >= 400:
            body = await response.aread()
            log.warning(
                "Patreon error body: %s",
                _truncate(body.decode("utf-8", errors="replace")),
            )

    return {"request": [log_request], "response": [log_response]}


def build_provider_client(
    *,
    timeout: float = DEFAULT_PROVIDER_TIMEOUT,
    transport: httpx.AsyncBaseTransport | None = None,
    logger: logging.Logger | None = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=timeout,
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        transport=transport,
        event_hooks=build_event_hooks(logger),
    )
