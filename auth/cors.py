from __future__ import annotations

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _allowed_origin(origin: str | None, allowed_origins: set[str]) -> str | None:
    if "*" in allowed_origins:
        return "*"
    if origin and origin in allowed_origins:
        return origin
    return None


def apply_cors_response(
    request: Request,
    response: Response,
    allowed_origins: set[str],
) -> Response:
    allowed = _allowed_origin(request.headers.get("origin"), allowed_origins)
    if allowed is not None:
        response.headers["Access-Control-Allow-Origin"] = allowed
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, User-Agent"
        if allowed != "*":
            response.headers["Vary"] = "Origin"
    response.headers.update(NO_CACHE_HEADERS)
    return response


def cors_preflight_response(request: Request, allowed_origins: set[str]) -> Response:
    return apply_cors_response(request, Response(status_code=204), allowed_origins)


def preflight_route(path: str, allowed_origins: set[str]) -> Route:
    async def preflight(request: Request) -> Response:
        return cors_preflight_response(request, allowed_origins)

    return Route(path, preflight, methods=["OPTIONS"])


def cors_error_response(
    request: Request,
    allowed_origins: set[str],
    code: str,
    description: str,
    status_code: int,
) -> Response:
    return apply_cors_response(
        request,
        JSONResponse(
            {"status": "error", "error": description, "code": code},
            status_code=status_code,
        ),
        allowed_origins,
    )
