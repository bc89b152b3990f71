"""
Authentication endpoint.

A single POST endpoint dispatched on the ``action`` field of the JSON body:
- signup, login, verify
- forgot-password, reset-password
- admin-set-password

Every response is JSON and carries a permissive CORS header.
"""

import logging
from typing import Any, Awaitable, Callable, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from authcore.auth import AuthServices
from authcore.errors import AuthError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["authentication"])

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}
PREFLIGHT_HEADERS = {
    **CORS_HEADERS,
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

MISCONFIGURED_BODY = {
    "error": "Server configuration error: JWT_SECRET not configured",
    "code": "server_misconfigured",
}
INTERNAL_ERROR_BODY = {"error": "Internal server error", "code": "internal_error"}


def json_response(body: dict[str, Any], status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=body, status_code=status_code, headers=CORS_HEADERS)


def bearer_token(request: Request) -> Optional[str]:
    """Token from ``Authorization: Bearer <token>``, if present."""
    header = request.headers.get("authorization") or ""
    if header.startswith("Bearer "):
        return header[7:].strip() or None
    return None


def _text(data: dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    return value if isinstance(value, str) else None


def _services(request: Request) -> Optional[AuthServices]:
    return getattr(request.app.state, "services", None)


# ==================== ACTIONS ====================


async def _signup(services: AuthServices, data: dict[str, Any], request: Request) -> JSONResponse:
    result = await services.sessions.signup(
        _text(data, "email"), _text(data, "password"), _text(data, "fullName")
    )
    return json_response(result, 201)


async def _login(services: AuthServices, data: dict[str, Any], request: Request) -> JSONResponse:
    return json_response(await services.sessions.login(_text(data, "email"), _text(data, "password")))


async def _forgot_password(services: AuthServices, data: dict[str, Any], request: Request) -> JSONResponse:
    return json_response(await services.recovery.request_reset(_text(data, "email")))


async def _reset_password(services: AuthServices, data: dict[str, Any], request: Request) -> JSONResponse:
    result = await services.recovery.confirm_reset(_text(data, "token"), _text(data, "password"))
    return json_response(result)


async def _admin_set_password(services: AuthServices, data: dict[str, Any], request: Request) -> JSONResponse:
    result = await services.sessions.admin_set_password(
        bearer_token(request),
        _text(data, "password"),
        user_id=_text(data, "userId"),
        email=_text(data, "email"),
    )
    return json_response(result)


async def _verify(services: AuthServices, data: dict[str, Any], request: Request) -> JSONResponse:
    # Body token wins over the header
    token = _text(data, "token") or bearer_token(request)
    return json_response(await services.sessions.verify_and_refresh(token))


Handler = Callable[[AuthServices, dict[str, Any], Request], Awaitable[JSONResponse]]

ACTIONS: dict[str, Handler] = {
    "signup": _signup,
    "login": _login,
    "forgot-password": _forgot_password,
    "reset-password": _reset_password,
    "admin-set-password": _admin_set_password,
    "verify": _verify,
}


# ==================== ROUTES ====================


@router.options("/{path:path}")
async def preflight(path: str):
    """CORS preflight for any path."""
    return Response(status_code=204, headers=PREFLIGHT_HEADERS)


@router.post("/")
async def dispatch(request: Request):
    """Run the action named in the request body."""
    services = _services(request)
    if services is None:
        return json_response(MISCONFIGURED_BODY, 500)

    try:
        data = await request.json()
    except ValueError:
        return json_response({"error": "Invalid JSON body", "code": "invalid_json"}, 400)
    if not isinstance(data, dict):
        return json_response({"error": "Invalid JSON body", "code": "invalid_json"}, 400)

    action = data.get("action")
    handler = ACTIONS.get(action) if isinstance(action, str) else None
    if handler is None:
        return json_response({"error": "Invalid action"}, 400)

    try:
        return await handler(services, data, request)
    except AuthError as e:
        return json_response(e.to_body(), e.status_code)
    except Exception:
        logger.exception(f"Auth action '{action}' failed")
        return json_response(INTERNAL_ERROR_BODY, 500)


@router.api_route("/", methods=["GET", "PUT", "PATCH", "DELETE"])
async def method_not_allowed(request: Request):
    if _services(request) is None:
        return json_response(MISCONFIGURED_BODY, 500)
    return json_response({"error": "Method not allowed"}, 405)
