"""OAuth 2.1 authorization server endpoints.

The browser leg never logs anyone in here. Without a human session the
pending request is signed into ``state``, its nonce is recorded, and the
browser is sent to the login application, which returns it to
``/oauth/callback``.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response

from steeple.api.engine import PROTECTED_RESOURCE_PATH, Engine
from steeple.api.schemas import AuthorizationServerMetadata, ProtectedResourceMetadata
from steeple.auth.oauth import AuthorizationRequest, OAuthError
from steeple.auth.signing import InvalidSignatureError
from steeple.events.bus import Event
from steeple.events.types import AUTHORIZE_DENIED, AUTHORIZE_LOGIN_REDIRECT, STATE_REJECTED

logger = logging.getLogger(__name__)

router = APIRouter()

NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _get_engine(request: Request) -> Engine:
    return request.app.state.engine


def with_query(url: str, **params: Any) -> str:
    """Append parameters to a URL, keeping any query it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((key, str(value)) for key, value in params.items() if value is not None)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def _oauth_error(error: OAuthError, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(error.as_dict(), status_code=error.status_code, headers=headers)


# --- Discovery ---


@router.get(PROTECTED_RESOURCE_PATH, response_model=ProtectedResourceMetadata)
async def protected_resource_metadata(request: Request):
    config = _get_engine(request).config
    return ProtectedResourceMetadata(
        resource=f"{config.base_url}/mcp",
        authorization_servers=[config.base_url],
        scopes_supported=[config.oauth.default_scope],
    )


@router.get("/.well-known/oauth-authorization-server", response_model=AuthorizationServerMetadata)
async def authorization_server_metadata(request: Request):
    config = _get_engine(request).config
    return AuthorizationServerMetadata(
        issuer=config.base_url,
        authorization_endpoint=f"{config.base_url}/oauth/authorize",
        token_endpoint=f"{config.base_url}/oauth/token",
        scopes_supported=[config.oauth.default_scope],
    )


# --- Authorization endpoint ---


@router.get("/oauth/authorize")
async def authorize(request: Request) -> Response:
    engine = _get_engine(request)
    try:
        auth_request = AuthorizationRequest.from_params(
            dict(request.query_params), engine.config.oauth.default_scope,
        )
    except OAuthError as e:
        logger.info("Rejected authorization request: %s", e.description)
        return _oauth_error(e)
    return await _continue_authorization(request, engine, auth_request)


@router.get("/oauth/callback")
async def oauth_callback(request: Request, state: str = "") -> Response:
    """Re-entry point after the human has logged in."""
    engine = _get_engine(request)
    try:
        payload = engine.signer.verify(state, max_age=engine.config.oauth.state_ttl_seconds)
    except InvalidSignatureError as e:
        return _reject_state(engine, str(e))

    nonce = payload.get("nonce")
    params = payload.get("params")
    if not isinstance(nonce, str) or not isinstance(params, dict):
        return _reject_state(engine, "Incomplete state")
    if not await engine.oauth.consume_state(nonce):
        return _reject_state(engine, "State already used or expired")

    try:
        auth_request = AuthorizationRequest.from_params(params, engine.config.oauth.default_scope)
    except OAuthError as e:
        return _oauth_error(e)
    return await _continue_authorization(request, engine, auth_request)


def _reject_state(engine: Engine, reason: str) -> Response:
    logger.info("Rejected OAuth callback state: %s", reason)
    engine.event_bus.emit(Event(event_type=STATE_REJECTED, data={"reason": reason}))
    return PlainTextResponse("Invalid or expired authorization state", status_code=400)


async def _continue_authorization(
    request: Request,
    engine: Engine,
    auth_request: AuthorizationRequest,
) -> Response:
    human = await engine.session_provider.authenticate(request)
    if human is None:
        return await _redirect_to_login(engine, auth_request)

    if not human.can_authorize:
        engine.event_bus.emit(Event(
            event_type=AUTHORIZE_DENIED,
            subject_id=human.subject_id,
            data={"role": human.role, "client_id": auth_request.client_id},
        ))
        return RedirectResponse(
            with_query(
                auth_request.redirect_uri,
                error="access_denied",
                error_description="Admin or contributor role required",
                state=auth_request.state,
            ),
            status_code=302,
        )

    code = await engine.oauth.create_authorization_code(auth_request, human)
    return RedirectResponse(
        with_query(auth_request.redirect_uri, code=code, state=auth_request.state),
        status_code=302,
    )


async def _redirect_to_login(engine: Engine, auth_request: AuthorizationRequest) -> Response:
    nonce = secrets.token_urlsafe(16)
    await engine.oauth.remember_state(nonce)
    state = engine.signer.sign({"nonce": nonce, "params": auth_request.as_params()})
    callback_url = with_query(f"{engine.config.base_url}/oauth/callback", state=state)

    engine.event_bus.emit(Event(
        event_type=AUTHORIZE_LOGIN_REDIRECT,
        data={"client_id": auth_request.client_id},
    ))
    return RedirectResponse(
        with_query(engine.config.oauth.login_url, redirect=callback_url),
        status_code=302,
    )


# --- Token endpoint ---


def _form_value(form: Any, key: str) -> str | None:
    value = form.get(key)
    return value if isinstance(value, str) and value else None


@router.post("/oauth/token")
async def token(request: Request) -> Response:
    engine = _get_engine(request)
    form = await request.form()

    if _form_value(form, "grant_type") != "authorization_code":
        return _oauth_error(
            OAuthError("unsupported_grant_type", "Only authorization_code is supported"),
            NO_STORE,
        )

    code = _form_value(form, "code")
    redirect_uri = _form_value(form, "redirect_uri")
    code_verifier = _form_value(form, "code_verifier")
    if not code or not redirect_uri or not code_verifier:
        return _oauth_error(
            OAuthError("invalid_request", "code, redirect_uri, and code_verifier are required"),
            NO_STORE,
        )

    try:
        issued = await engine.oauth.exchange_code(
            code=code,
            redirect_uri=redirect_uri,
            code_verifier=code_verifier,
            client_id=_form_value(form, "client_id"),
        )
    except OAuthError as e:
        return _oauth_error(e, NO_STORE)
    return JSONResponse(issued.as_response(), headers=NO_STORE)
