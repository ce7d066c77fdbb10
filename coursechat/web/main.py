"coursechat web application"
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import os
import sys
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .auth_utils import SESSION_COOKIE_NAME, private_no_store
from .config import Settings, ensure_secure_config_on_startup, load_settings
from .routes.auth import auth_router
from .routes.courses import courses_router
from .routes.ingest import ingest_router
from .routes.keys import keys_router
from .routes.metadata import metadata_router
from .services import AppServices, build_services

logger = logging.getLogger("coursechat.web")


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via COURSECHAT_ENABLE_DOTENV (default true
      outside pytest).
    """
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("COURSECHAT_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


def create_app(settings: Optional[Settings] = None, *, services: Optional[AppServices] = None) -> FastAPI:
    """Build the FastAPI app with its service container on `app.state`.

    Startup refuses insecure production configuration (SystemExit). Shutdown
    cancels every metadata run and closes the outbound HTTP client.
    """
    if services is not None:
        settings = services.settings
    if settings is None:
        if _should_load_dotenv():
            from dotenv import load_dotenv

            load_dotenv()
        settings = load_settings()
    ensure_secure_config_on_startup(settings)
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.services.aclose()

    app = FastAPI(title="coursechat", description="Course chatbot backend", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.services = services

    @app.middleware("http")
    async def attach_session(request: Request, call_next):
        # Identify the caller without enforcing auth; routes decide what needs a session.
        request.state.user = None
        request.state.id_token = None
        sid = request.cookies.get(SESSION_COOKIE_NAME)
        if sid:
            rec = None
            try:
                rec = services.sessions.get(sid)
            except Exception as exc:
                logger.warning("Session store get failed: %s", exc.__class__.__name__)
            if rec:
                request.state.user = {"sub": rec.sub, "email": rec.email, "name": rec.name, "session_id": rec.session_id}
                request.state.id_token = rec.id_token
        return await call_next(request)

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        if settings.is_prod_like:
            response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
        return response

    @app.get("/health")
    async def health_check():
        return JSONResponse({"status": "healthy"}, headers=private_no_store())

    app.include_router(auth_router)
    app.include_router(courses_router)
    app.include_router(metadata_router)
    app.include_router(ingest_router)
    app.include_router(keys_router)
    return app
