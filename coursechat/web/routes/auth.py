"""
Authentication routes: Keycloak sign-in, callback, logout.

Flow:
    1. `/auth/login?redirect=` (alias `/sign-in`) sanitizes the requested
       in-app path, encodes it into the OIDC `state` token, stores the PKCE
       verifier and nonce server-side under that token, and redirects to the
       Keycloak authorization endpoint.
    2. `/auth/callback` consumes the pending sign-in, exchanges the code,
       verifies the ID token, creates a session, and redirects to the decoded
       target. The redirect never carries `code` or `state`, so the callback
       URL leaves the browser history and cannot be replayed.
    3. `/auth/logout` drops the session (and its metadata runs) and redirects
       to the Keycloak end-session endpoint.

Security:
    All responses carry `Cache-Control: private, no-store`. Redirect targets
    pass `sanitize_redirect`; anything off the allow-list becomes "/".
"""

from __future__ import annotations

import logging
import secrets
from typing import Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, RedirectResponse

from coursechat.identity_access.oidc import PKCEPair
from coursechat.identity_access.state_codec import HOME_PATH, encode_state, redirect_from_state, sanitize_redirect
from coursechat.identity_access.tokens import IDTokenVerificationError, verify_id_token

from ..auth_utils import SESSION_COOKIE_NAME, clear_session_cookie, current_user, private_no_store, set_session_cookie
from ..services import get_services

auth_router = APIRouter(tags=["Auth"])
logger = logging.getLogger("coursechat.web.auth")


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=302, headers=private_no_store())


def _error(code: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse({"error": code}, status_code=status_code, headers=private_no_store())


def _app_base(redirect_uri: str) -> str:
    """Return scheme://host[:port] of the configured callback URI."""
    parsed = urlparse(redirect_uri)
    if parsed.scheme and parsed.netloc:
        return f"{parsed.scheme}://{parsed.netloc}"
    return "https://chat.localhost"


@auth_router.get("/auth/login")
async def auth_login(request: Request, redirect: Optional[str] = None):
    """
    Start the OIDC flow with PKCE; redirect to the IdP.

    Behavior:
        - Generates code_verifier + S256 code_challenge and a nonce.
        - Sanitizes `redirect` (default "/") and encodes it into `state`.
        - A client-supplied `state` query parameter is ignored.
    Permissions:
        Public.
    """
    svc = get_services(request)
    target = sanitize_redirect(redirect) if redirect else HOME_PATH
    pkce = PKCEPair.new()
    nonce = secrets.token_urlsafe(16)
    rec = svc.states.create(
        make_state=lambda ts: encode_state(target, timestamp=ts),
        code_verifier=pkce.verifier,
        nonce=nonce,
    )
    url = svc.oidc.build_authorization_url(state=rec.state, code_challenge=pkce.challenge, nonce=nonce)
    return _redirect(url)


@auth_router.get("/sign-in")
async def sign_in(request: Request, redirect: Optional[str] = None):
    """Sign-in entry used by course gates; same behavior as `/auth/login`."""
    return await auth_login(request, redirect=redirect)


@auth_router.get("/auth/callback")
async def auth_callback(request: Request, code: Optional[str] = None, state: Optional[str] = None):
    """
    Complete sign-in and send the browser to the decoded redirect target.

    Behavior:
        - No `code`: not a callback, redirect to "/".
        - Unknown, expired or already consumed `state`: redirect to "/"
          without a session (the pending record is consumed on first use).
        - Token exchange or ID token failures answer 400 with an error code.
    """
    if not code:
        return _redirect(HOME_PATH)
    svc = get_services(request)
    rec = svc.states.pop_valid(state) if state else None
    if not rec:
        logger.info("Callback with unknown or consumed state")
        return _redirect(HOME_PATH)

    try:
        tokens = await run_in_threadpool(svc.oidc.exchange_code_for_tokens, code=code, code_verifier=rec.code_verifier)
    except Exception as exc:
        logger.warning("Token exchange failed: %s", exc.__class__.__name__)
        return _error("token_exchange_failed")
    id_token = tokens.get("id_token")
    if not id_token or not isinstance(id_token, str):
        return _error("invalid_id_token")
    try:
        claims = await run_in_threadpool(verify_id_token, id_token=id_token, cfg=svc.oidc_cfg, cache=svc.jwks)
    except IDTokenVerificationError as exc:
        logger.warning("ID token verification failed: %s", exc.code)
        return _error("invalid_id_token")
    if rec.nonce and claims.get("nonce") != rec.nonce:
        return _error("invalid_nonce")

    sub = str(claims.get("sub") or "")
    if not sub:
        return _error("invalid_id_token")
    email = str(claims.get("email") or "")
    name = claims.get("name") or claims.get("preferred_username") or (email.split("@")[0] if email else "")
    sess = svc.sessions.create(sub=sub, email=email, name=str(name), id_token=id_token)

    resp = _redirect(redirect_from_state(state))
    max_age = sess.ttl_seconds if svc.settings.is_prod_like else None
    set_session_cookie(resp, sess.session_id, environment=svc.settings.environment, max_age=max_age)
    return resp


@auth_router.get("/auth/logout")
async def auth_logout(request: Request, redirect: Optional[str] = None):
    """
    Clear the app session and redirect to the IdP end-session endpoint.

    `post_logout_redirect_uri` points back into the app (sanitized `redirect`,
    default "/"). The session's id_token is sent as `id_token_hint` when known.
    Public; never fails because of a missing session.
    """
    svc = get_services(request)
    sid = request.cookies.get(SESSION_COOKIE_NAME)
    id_token = getattr(request.state, "id_token", None)
    if sid:
        try:
            svc.sessions.delete(sid)
        except Exception as exc:
            logger.warning("Session delete failed during logout: %s", exc.__class__.__name__)
        await svc.runs.discard_session(sid)

    target = sanitize_redirect(redirect) if redirect else HOME_PATH
    dest = f"{_app_base(svc.settings.redirect_uri)}{target}"
    url = svc.oidc.build_logout_url(post_logout_redirect_uri=dest, id_token_hint=id_token)
    resp = _redirect(url)
    clear_session_cookie(resp, environment=svc.settings.environment)
    return resp


@auth_router.get("/api/UIUC-api/isSignedIn")
async def is_signed_in(request: Request):
    """Return the OIDC subject of the current session (`userId` null when signed out)."""
    user = current_user(request)
    return JSONResponse({"userId": user["sub"] if user else None}, headers=private_no_store())
