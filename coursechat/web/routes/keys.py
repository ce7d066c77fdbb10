"""
Chat-API key routes under /api/chat-api/keys/.

The caller is identified by the `sub` claim of the Bearer token (payload
decoded, signature not verified). Cookies play no part, so there is no CSRF
check here.

Endpoints:
    - POST   generate: 409 when an active key exists.
    - GET    fetch:    `{apiKey}` or `{apiKey: null}`.
    - PUT    rotate:   404 when there is no active key.
    - DELETE delete:   deactivates the key.
"""
from __future__ import annotations

import logging
from typing import Optional, Tuple

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from coursechat.identity_access.bearer import BearerIdentity, BearerTokenError, identity_from_authorization
from coursechat.keys.repo import ApiKeyExistsError, ApiKeyNotFoundError

from ..auth_utils import json_error, private_no_store
from ..services import get_services

keys_router = APIRouter(prefix="/api/chat-api/keys", tags=["API Keys"])
logger = logging.getLogger("coursechat.web.keys")


def _identity(request: Request) -> Tuple[Optional[BearerIdentity], Optional[JSONResponse]]:
    try:
        return identity_from_authorization(request.headers.get("authorization")), None
    except BearerTokenError as exc:
        return None, json_error(exc.code, 401)


async def _call(what: str, fn, identity: BearerIdentity):
    try:
        return await run_in_threadpool(fn, identity), None
    except (ApiKeyExistsError, ApiKeyNotFoundError):
        raise
    except Exception as exc:
        logger.warning("API key %s failed: %s", what, exc.__class__.__name__)
        return None, json_error("store_failed", 500)


@keys_router.post("/generate")
async def generate_key(request: Request):
    identity, err = _identity(request)
    if err is not None:
        return err
    try:
        key, err = await _call("generate", get_services(request).keys.generate, identity)
    except ApiKeyExistsError as exc:
        return json_error(exc.code, 409)
    if err is not None:
        return err
    return JSONResponse({"message": "API key generated successfully", "apiKey": key}, headers=private_no_store())


@keys_router.get("/fetch")
async def fetch_key(request: Request):
    identity, err = _identity(request)
    if err is not None:
        return err
    key, err = await _call("fetch", get_services(request).keys.active_key, identity)
    if err is not None:
        return err
    return JSONResponse({"apiKey": key}, headers=private_no_store())


@keys_router.put("/rotate")
async def rotate_key(request: Request):
    identity, err = _identity(request)
    if err is not None:
        return err
    try:
        key, err = await _call("rotate", get_services(request).keys.rotate, identity)
    except ApiKeyNotFoundError as exc:
        return json_error(exc.code, 404)
    if err is not None:
        return err
    return JSONResponse({"message": "API key rotated successfully", "newApiKey": key}, headers=private_no_store())


@keys_router.delete("/delete")
async def delete_key(request: Request):
    identity, err = _identity(request)
    if err is not None:
        return err
    _, err = await _call("delete", get_services(request).keys.deactivate, identity)
    if err is not None:
        return err
    return JSONResponse({"message": "API key deleted successfully"}, headers=private_no_store())
