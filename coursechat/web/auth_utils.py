"""
Shared authentication utilities for the web adapter.

Cookie policy and session lookup live here so the app factory, the auth
router and the API routers agree on one cookie name and one set of flags.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from coursechat.identity_access.permissions import AuthContext

SESSION_COOKIE_NAME = "coursechat_session"


def cookie_opts(environment: str) -> dict:
    """Return hardened cookie flags (dev = prod).

    Returns a mapping with keys:
      - secure: True
      - samesite: "lax"  # top-level redirects back from the IdP must carry the cookie
    """
    return {"secure": True, "samesite": "lax"}


def set_session_cookie(response: Response, value: str, *, environment: str, max_age: Optional[int] = None) -> None:
    opts = cookie_opts(environment)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=value,
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        max_age=max_age,
    )


def clear_session_cookie(response: Response, *, environment: str) -> None:
    opts = cookie_opts(environment)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value="",
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        expires=0,
        max_age=0,
    )


def private_no_store() -> dict:
    return {"Cache-Control": "private, no-store"}


def current_user(request: Request) -> Optional[dict]:
    """Session user attached by the session middleware, or None."""
    return getattr(request.state, "user", None)


def session_id(request: Request) -> Optional[str]:
    user = current_user(request)
    return user.get("session_id") if user else None


def auth_context(request: Request) -> AuthContext:
    user = current_user(request)
    if not user:
        return AuthContext.anonymous()
    return AuthContext(is_authenticated=True, email=user.get("email") or None)


def json_error(code: str, status_code: int, detail: Optional[str] = None) -> JSONResponse:
    body = {"error": code}
    if detail:
        body["detail"] = detail
    return JSONResponse(body, status_code=status_code, headers=private_no_store())
