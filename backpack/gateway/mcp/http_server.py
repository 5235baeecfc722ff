#!/usr/bin/env python3
"""
Backpack HTTP Server - web app plus MCP gateway

Features:
- Signup / login / dashboard pages with a session cookie
- MCP over SSE at /sse (messages at /sse/message)
- MCP streamable HTTP at /mcp
- API key or OAuth bearer token authentication for MCP clients
- OAuth 2.0 client-credentials token endpoint at /token
- PostgreSQL credential store (in-memory fallback)
- Redis-backed login throttle (in-memory fallback)

Usage:
    backpack serve

    Or with environment variables:
    DATABASE_URL=postgres://... REDIS_URL=redis://... backpack serve
"""

import asyncio
import base64
import contextlib
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import (
    HTMLResponse,
    JSONResponse,
    PlainTextResponse,
    RedirectResponse,
    Response,
    StreamingResponse,
)
from starlette.routing import Route

from backpack.core.auth import (
    authenticate_user,
    clear_session_cookie,
    create_oauth_token,
    create_session_cookie,
    create_user,
    get_session_from_cookie,
    get_user_by_email,
    verify_api_key,
    verify_oauth_client_credentials,
    verify_oauth_token,
)
from backpack.core.config import Settings
from backpack.core.store import CredentialStore, User, open_store
from backpack.core.throttle import LoginThrottle, create_throttle
from backpack.gateway.mcp.server import (
    MCP_SERVER_INFO,
    BackpackMCPServer,
    JsonRpcError,
    ToolContext,
    parse_payload,
)
from backpack.gateway.web import pages

logger = logging.getLogger(__name__)

SSE_KEEPALIVE_SECONDS = 30

# =============================================================================
# CORS
# =============================================================================


def cors_headers(settings: Settings) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": f"Content-Type, Authorization, {settings.api_key_header}",
        "Access-Control-Max-Age": "86400",
    }


class CorsMiddleware(BaseHTTPMiddleware):
    """Answer preflights and add CORS headers to every non-redirect response."""

    def __init__(self, app, headers: Dict[str, str]):
        super().__init__(app)
        self.headers = headers

    async def dispatch(self, request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=self.headers)

        response = await call_next(request)
        if not 300 <= response.status_code < 400:
            response.headers.update(self.headers)
        return response


# =============================================================================
# HELPERS
# =============================================================================

def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _store(request: Request) -> CredentialStore:
    return request.app.state.store


def _server_url(request: Request) -> str:
    return _settings(request).server_url or str(request.base_url).rstrip("/")


def _form_value(form, name: str, strip: bool = True) -> str:
    value = form.get(name)
    if not isinstance(value, str):
        return ""
    return value.strip() if strip else value


def _redirect(url: str, cookie: Optional[str] = None) -> RedirectResponse:
    response = RedirectResponse(url=url, status_code=302)
    if cookie is not None:
        response.headers["set-cookie"] = cookie
    return response


def extract_credential(request: Request, api_key_header: str) -> Optional[str]:
    """Custom header, then Authorization: Bearer, then ?api_key=."""
    header_value = request.headers.get(api_key_header, "").strip()
    if header_value:
        return header_value

    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()

    return request.query_params.get("api_key") or None


def resolve_user(store: CredentialStore, credential: str) -> Optional[User]:
    """A credential is either a user's API key or an OAuth access token."""
    return verify_api_key(store, credential) or verify_oauth_token(store, credential)


def authenticate_protocol_request(request: Request) -> Tuple[Optional[User], Optional[Response]]:
    credential = extract_credential(request, _settings(request).api_key_header)
    if not credential:
        return None, _unauthorized("Missing API key")

    user = resolve_user(_store(request), credential)
    if user is None:
        logger.info(f"Rejected MCP request to {request.url.path}: invalid credential")
        return None, _unauthorized("Invalid API key")
    return user, None


def _unauthorized(description: str) -> JSONResponse:
    return JSONResponse(
        {"error": "unauthorized", "error_description": description},
        status_code=401,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def not_found(request: Request, exc: Exception) -> Response:
    return PlainTextResponse("Not found", status_code=404)


# =============================================================================
# WEB APP
# =============================================================================

async def homepage(request: Request):
    return HTMLResponse(pages.landing_page())


async def signup(request: Request):
    settings = _settings(request)

    if request.method == "GET":
        return HTMLResponse(pages.signup_page(min_password_length=settings.min_password_length))

    def error_page(message: str, status_code: int) -> HTMLResponse:
        return HTMLResponse(
            pages.signup_page(message, min_password_length=settings.min_password_length),
            status_code=status_code,
        )

    form = await request.form()
    email = _form_value(form, "email")
    password = _form_value(form, "password", strip=False)

    if not email or not password:
        return error_page("Email and password are required", 400)

    if len(password) < settings.min_password_length:
        return error_page(f"Password must be at least {settings.min_password_length} characters", 400)

    store = _store(request)
    if get_user_by_email(store, email):
        return error_page("An account with this email already exists", 400)

    user = create_user(store, email, password)
    if user is None:
        return error_page("Failed to create account. Please try again.", 500)

    logger.info(f"Signup: user id={user.id}")
    return _redirect("/dashboard", create_session_cookie(user.api_key, settings.session_max_age))


async def login(request: Request):
    if request.method == "GET":
        return HTMLResponse(pages.login_page())

    form = await request.form()
    email = _form_value(form, "email")
    password = _form_value(form, "password", strip=False)

    if not email or not password:
        return HTMLResponse(pages.login_page("Email and password are required"), status_code=400)

    throttle: LoginThrottle = request.app.state.throttle
    if throttle.is_locked(email):
        return HTMLResponse(
            pages.login_page("Too many failed attempts. Please try again later."),
            status_code=429,
        )

    user = authenticate_user(_store(request), email, password)
    if user is None:
        throttle.record_failure(email)
        logger.info("Login failed: invalid credentials")
        return HTMLResponse(pages.login_page("Invalid email or password"), status_code=401)

    throttle.reset(email)
    return _redirect("/dashboard", create_session_cookie(user.api_key, _settings(request).session_max_age))


async def dashboard(request: Request):
    token = get_session_from_cookie(request.headers.get("cookie"))
    user = verify_api_key(_store(request), token) if token else None
    if user is None:
        return _redirect("/login")

    settings = _settings(request)
    return HTMLResponse(pages.dashboard_page(user, _server_url(request), settings.api_key_header))


async def logout(request: Request):
    return _redirect("/", clear_session_cookie())


# =============================================================================
# OAUTH 2.0
# =============================================================================

def _basic_credentials(authorization: str) -> Tuple[str, str]:
    scheme, _, encoded = authorization.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return "", ""
    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except ValueError:
        return "", ""
    client_id, _, client_secret = decoded.partition(":")
    return client_id, client_secret


async def oauth_token(request: Request):
    """OAuth 2.0 Token Endpoint (client_credentials grant)."""
    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
    else:
        form = await request.form()
        data = {key: value for key, value in form.items() if isinstance(value, str)}

    grant_type = data.get("grant_type", "")
    logger.info(f"OAuth token: grant_type={grant_type}")

    if grant_type != "client_credentials":
        return JSONResponse({"error": "unsupported_grant_type"}, status_code=400)

    client_id = data.get("client_id", "")
    client_secret = data.get("client_secret", "")
    if not client_id or not client_secret:
        client_id, client_secret = _basic_credentials(request.headers.get("authorization", ""))

    store = _store(request)
    user = verify_oauth_client_credentials(store, client_id, client_secret) if client_id and client_secret else None
    if user is None:
        return JSONResponse({"error": "invalid_client"}, status_code=401)

    token = create_oauth_token(store, user.id, ttl=_settings(request).oauth_token_ttl)
    if token is None:
        return JSONResponse({"error": "server_error"}, status_code=500)

    return JSONResponse(
        {
            "access_token": token["access_token"],
            "token_type": "Bearer",
            "expires_in": token["expires_in"],
        },
        headers={"Cache-Control": "no-store"},
    )


# =============================================================================
# MCP ENDPOINTS
# =============================================================================

@dataclass
class SseSession:
    user_id: int
    queue: asyncio.Queue


def _rpc_error_response(error: JsonRpcError, status_code: int = 400) -> JSONResponse:
    return JSONResponse({"jsonrpc": "2.0", "id": None, "error": error.to_dict()}, status_code=status_code)


async def _handle_rpc(request: Request, user: User) -> Tuple[Optional[Any], Optional[Response]]:
    """Parse the body and dispatch it. Returns (rpc_response, error_response)."""
    try:
        payload = parse_payload(await request.body())
    except JsonRpcError as e:
        return None, _rpc_error_response(e)

    server: BackpackMCPServer = request.app.state.mcp_server
    return server.handle_payload(payload, ToolContext(user=user)), None


async def mcp_sse_endpoint(request: Request):
    """SSE endpoint for MCP protocol."""
    user, error = authenticate_protocol_request(request)
    if error:
        return error

    sessions: Dict[str, SseSession] = request.app.state.sse_sessions
    session_id = uuid.uuid4().hex
    session = SseSession(user_id=user.id, queue=asyncio.Queue())
    sessions[session_id] = session
    logger.info(f"MCP SSE: New connection, session={session_id}")

    async def event_generator():
        try:
            yield f"event: endpoint\ndata: /sse/message?sessionId={session_id}\n\n"
            while True:
                try:
                    message = await asyncio.wait_for(session.queue.get(), timeout=SSE_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield f"event: message\ndata: {json.dumps(message)}\n\n"
        finally:
            sessions.pop(session_id, None)
            logger.info(f"MCP SSE: Connection closed, session={session_id}")

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"
        }
    )


async def mcp_message_endpoint(request: Request):
    """JSON-RPC messages for SSE clients."""
    user, error = authenticate_protocol_request(request)
    if error:
        return error

    session_id = request.query_params.get("sessionId") or request.query_params.get("session_id")
    session: Optional[SseSession] = request.app.state.sse_sessions.get(session_id) if session_id else None
    if session is not None and session.user_id != user.id:
        return JSONResponse({"error": "forbidden", "error_description": "Session belongs to another user"}, status_code=403)

    result, error = await _handle_rpc(request, user)
    if error:
        return error

    if session is not None:
        if result is not None:
            await session.queue.put(result)
        return PlainTextResponse("Accepted", status_code=202)

    if result is None:
        return Response(status_code=202)
    return JSONResponse(result)


async def mcp_streamable_http(request: Request):
    """Streamable HTTP endpoint for MCP."""
    if request.method == "GET":
        return await mcp_sse_endpoint(request)

    user, error = authenticate_protocol_request(request)
    if error:
        return error

    result, error = await _handle_rpc(request, user)
    if error:
        return error
    if result is None:
        return Response(status_code=202)

    if "text/event-stream" in request.headers.get("accept", ""):
        async def sse_response():
            yield f"event: message\ndata: {json.dumps(result)}\n\n"
        return StreamingResponse(sse_response(), media_type="text/event-stream")

    return JSONResponse(result)


async def legacy_message_redirect(request: Request):
    response = RedirectResponse(url="/sse/message", status_code=302)
    response.headers.update(cors_headers(_settings(request)))
    return response


# =============================================================================
# API ENDPOINTS
# =============================================================================

async def health_check(request: Request):
    """Health check endpoint."""
    server: BackpackMCPServer = request.app.state.mcp_server
    return JSONResponse({
        "status": "ok",
        "service": MCP_SERVER_INFO["name"],
        "version": MCP_SERVER_INFO["version"],
        "database": _store(request).name,
        "login_throttle": "redis" if request.app.state.throttle.redis_client is not None else "in-memory",
        "tools": [t["name"] for t in server.get_tools()],
        "timestamp": datetime.now(timezone.utc).isoformat()
    })


# =============================================================================
# APPLICATION
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    store: Optional[CredentialStore] = None,
    throttle: Optional[LoginThrottle] = None,
) -> Starlette:
    """Create the Starlette application."""
    settings = settings or Settings.load()
    if store is None:
        store = open_store(settings.database_url)
    if throttle is None:
        throttle = create_throttle(
            settings.login_max_failures,
            settings.login_lockout_seconds,
            settings.redis_url,
        )

    routes = [
        # Web app
        Route('/', homepage, methods=['GET']),
        Route('/signup', signup, methods=['GET', 'POST']),
        Route('/login', login, methods=['GET', 'POST']),
        Route('/dashboard', dashboard, methods=['GET']),
        Route('/logout', logout, methods=['POST']),

        # Health
        Route('/health', health_check, methods=['GET']),

        # OAuth 2.0
        Route('/token', oauth_token, methods=['POST']),

        # MCP endpoints
        Route('/sse', mcp_sse_endpoint, methods=['GET']),
        Route('/sse/message', mcp_message_endpoint, methods=['POST']),
        Route('/mcp', mcp_streamable_http, methods=['GET', 'POST']),
        Route('/message', legacy_message_redirect, methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE']),
    ]

    middleware = [
        Middleware(CorsMiddleware, headers=cors_headers(settings))
    ]

    @contextlib.asynccontextmanager
    async def lifespan(app):
        yield
        app.state.store.close()

    app = Starlette(
        routes=routes,
        middleware=middleware,
        exception_handlers={404: not_found, 405: not_found},
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.throttle = throttle
    app.state.mcp_server = BackpackMCPServer()
    app.state.sse_sessions = {}
    return app
