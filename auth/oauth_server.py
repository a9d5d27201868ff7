from __future__ import annotations

from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from auth.cors import apply_cors_response, cors_error_response, preflight_route
from auth.errors import (
    ProviderError,
    SessionNotFound,
    StorageUnavailable,
    ValidationError,
)
from auth.flow import AuthFlow
from auth.pages import render_callback_page
from patreon_bridge.constants import LOGGER

ROUTE_PATHS = ("/", "/auth", "/callback", "/auth-status", "/refresh", "/cleanup")


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",", 1)[0].strip()
    if request.client is not None:
        return request.client.host
    return None


class OAuthServer:
    """HTTP entry points; each one wraps a single :class:`AuthFlow` operation."""

    def __init__(self, flow: AuthFlow, *, cors_origins: set[str] | None = None) -> None:
        self.flow = flow
        self.cors_origins = set(cors_origins or ())

    def routes(self) -> list[Route]:
        routes = [
            Route("/", self._handle_begin, methods=["GET"]),
            Route("/auth", self._handle_begin, methods=["GET"]),
            Route("/callback", self._handle_callback, methods=["GET"]),
            Route("/auth-status", self._handle_status, methods=["GET"]),
            Route("/refresh", self._handle_refresh, methods=["POST"]),
            Route("/cleanup", self._handle_cleanup, methods=["POST"]),
        ]
        routes.extend(preflight_route(path, self.cors_origins) for path in ROUTE_PATHS)
        return routes

    # -- handlers --------------------------------------------------------------

    async def _handle_begin(self, request: Request) -> Response:
        try:
            result = await self.flow.begin(
                user_agent=request.headers.get("user-agent"),
                ip=_client_ip(request),
            )
        except StorageUnavailable as error:
            LOGGER.error("Cannot start OAuth flow: %s", error)
            return self._error(request, "storage_unavailable", "Session storage is unavailable.", 503)
        except Exception:
            LOGGER.exception("Auth initiation error")
            return self._error(request, "internal_error", "Failed to start authentication.", 500)

        if request.query_params.get("format") == "json":
            return self._json(
                request,
                {
                    "state": result.state,
                    "auth_url": result.authorization_url,
                    "expires_in": result.expires_in,
                },
            )
        return apply_cors_response(
            request,
            RedirectResponse(url=result.authorization_url, status_code=302),
            self.cors_origins,
        )

    async def _handle_callback(self, request: Request) -> Response:
        params = request.query_params
        try:
            result = await self.flow.complete(
                params.get("state"),
                code=params.get("code"),
                error=params.get("error"),
                error_description=params.get("error_description"),
            )
        except (ValidationError, SessionNotFound) as error:
            return self._page(request, success=False, message=str(error), status_code=400)
        except StorageUnavailable as error:
            LOGGER.error("Cannot store callback result: %s", error)
            return self._page(
                request,
                success=False,
                message="Failed to store authentication session.",
                status_code=503,
            )
        except Exception:
            LOGGER.exception("Callback processing error")
            return self._page(
                request,
                success=False,
                message="Authentication processing failed.",
                status_code=500,
            )

        return self._page(
            request,
            success=result.succeeded,
            message=result.message,
            status_code=200,
        )

    async def _handle_status(self, request: Request) -> Response:
        try:
            payload = await self.flow.poll(request.query_params.get("state"))
        except ValidationError as error:
            return self._error(request, "invalid_state", str(error), 400)
        except StorageUnavailable as error:
            LOGGER.error("Cannot read session status: %s", error)
            return self._error(request, "storage_unavailable", "Session storage is unavailable.", 503)
        except Exception:
            LOGGER.exception("Auth status error")
            return self._error(request, "internal_error", "Internal server error.", 500)
        if payload["status"] == "expired":
            return self._json(request, payload, status_code=410)
        return self._json(request, payload)

    async def _handle_refresh(self, request: Request) -> Response:
        try:
            body = await request.json()
        except Exception:
            return self._error(request, "invalid_request", "Invalid JSON in request body.", 400)
        if not isinstance(body, dict):
            return self._error(request, "invalid_request", "Request body must be a JSON object.", 400)

        try:
            tokens = await self.flow.refresh(body.get("refresh_token"))
        except ValidationError as error:
            return self._error(request, "invalid_request", str(error), 400)
        except ProviderError as error:
            LOGGER.warning("Token refresh failed: %s", error)
            return apply_cors_response(
                request,
                JSONResponse(
                    {"status": "error", "error": "Token refresh failed", "details": str(error)},
                    status_code=400,
                ),
                self.cors_origins,
            )
        except Exception:
            LOGGER.exception("Token refresh error")
            return self._error(request, "internal_error", "Token refresh failed.", 500)

        payload = {
            "access_token": tokens.access_token,
            "refresh_token": tokens.refresh_token,
            "expires_in": tokens.expires_in,
            "token_type": tokens.token_type,
        }
        if tokens.scope:
            payload["scope"] = tokens.scope
        return self._json(request, payload)

    async def _handle_cleanup(self, request: Request) -> Response:
        try:
            result = await self.flow.sweep()
        except StorageUnavailable as error:
            LOGGER.error("Cleanup failed: %s", error)
            return self._error(request, "storage_unavailable", "Cleanup failed.", 503)
        return self._json(
            request,
            {
                "status": "success",
                "message": "Cleanup completed",
                "total_sessions": result.total,
                "cleaned_sessions": result.removed,
                "active_sessions": result.active,
            },
        )

    # -- helpers ---------------------------------------------------------------

    def _json(self, request: Request, payload: dict, status_code: int = 200) -> Response:
        return apply_cors_response(
            request,
            JSONResponse(payload, status_code=status_code),
            self.cors_origins,
        )

    def _page(self, request: Request, *, success: bool, message: str, status_code: int) -> Response:
        return apply_cors_response(
            request,
            HTMLResponse(render_callback_page(success=success, message=message), status_code=status_code),
            self.cors_origins,
        )

    def _error(self, request: Request, code: str, description: str, status_code: int) -> Response:
        return cors_error_response(
            request=request,
            allowed_origins=self.cors_origins,
            code=code,
            description=description,
            status_code=status_code,
        )
