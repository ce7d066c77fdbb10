"""
Course metadata API routes.

Endpoints:
    - GET  /api/UIUC-api/getCourseMetadata?course_name=
    - POST /api/UIUC-api/upsertCourseMetadata {courseName, courseMetadata}
    - GET  /api/UIUC-api/getCourseExists?course_name=
    - GET  /api/UIUC-api/getCoursePermission?course_name=
    - GET  /api/UIUC-api/courseGate?course_name=&path=

Permissions:
    Reads of a private course need at least `view`; the stored OpenAI key is
    never returned. Editing an existing course needs `edit`; creating a new
    one needs a signed-in user, who becomes the owner unless the payload
    names one.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from coursechat.courses.gate import course_gate
from coursechat.courses.models import CourseMetadata, CourseMetadataPatch
from coursechat.identity_access.permissions import Permission, get_user_permission

from ..auth_utils import auth_context, current_user, json_error, private_no_store
from ..services import get_services
from .security import _is_same_origin

courses_router = APIRouter(tags=["Courses"])
logger = logging.getLogger("coursechat.web.courses")


async def load_course(request: Request, course_name: str) -> Tuple[Optional[CourseMetadata], Optional[JSONResponse]]:
    """Fetch course metadata; on store failure return a 500 response instead."""
    svc = get_services(request)
    try:
        return await run_in_threadpool(svc.courses.get, course_name), None
    except Exception as exc:
        logger.warning("Course metadata lookup failed: %s", exc.__class__.__name__)
        return None, json_error("store_failed", 500)


async def require_course_permission(
    request: Request, course_name: Optional[str], require: Permission
) -> Tuple[Optional[CourseMetadata], Optional[JSONResponse]]:
    """Resolve the course and check the caller's permission.

    Returns (metadata, None) when allowed, else (None, error response):
    400 without a course name, 404 for an unknown course, 401 when signed out,
    403 when the permission is insufficient.
    """
    course_name = (course_name or "").strip()
    if not course_name:
        return None, json_error("bad_request", 400, "course_name_required")
    meta, err = await load_course(request, course_name)
    if err is not None:
        return None, err
    if meta is None:
        return None, json_error("course_not_found", 404)
    auth = auth_context(request)
    permission = get_user_permission(meta, auth)
    allowed = permission == "edit" if require == "edit" else permission in ("edit", "view")
    if allowed:
        return meta, None
    if not auth.is_authenticated:
        return None, json_error("unauthenticated", 401)
    return None, json_error("forbidden", 403)


@courses_router.get("/api/UIUC-api/getCourseMetadata")
async def get_course_metadata(request: Request, course_name: Optional[str] = None):
    """Return `{course_metadata}` (null when the course does not exist)."""
    name = (course_name or "").strip()
    if not name:
        return json_error("bad_request", 400, "course_name_required")
    meta, err = await load_course(request, name)
    if err is not None:
        return err
    if meta is None:
        return JSONResponse({"course_metadata": None}, headers=private_no_store())
    if meta.is_private:
        _, denied = await require_course_permission(request, name, "view")
        if denied is not None:
            return denied
    return JSONResponse({"course_metadata": meta.public_dict()}, headers=private_no_store())


@courses_router.post("/api/UIUC-api/upsertCourseMetadata")
async def upsert_course_metadata(request: Request):
    """Merge `courseMetadata` over the stored record of `courseName`.

    Security: cookie-authenticated write, so Origin/Referer must match.
    """
    if not _is_same_origin(request):
        return json_error("csrf_violation", 403)
    user = current_user(request)
    if not user:
        return json_error("unauthenticated", 401)
    try:
        payload: Dict[str, Any] = await request.json()
    except ValueError:
        return json_error("bad_request", 400, "invalid_json")
    if not isinstance(payload, dict):
        return json_error("bad_request", 400, "invalid_json")
    course_name = str(payload.get("courseName") or "").strip()
    if not course_name:
        return json_error("bad_request", 400, "course_name_required")
    try:
        patch = CourseMetadataPatch.model_validate(payload.get("courseMetadata") or {})
    except ValidationError:
        return json_error("bad_request", 400, "invalid_course_metadata")

    current, err = await load_course(request, course_name)
    if err is not None:
        return err
    if current is not None:
        _, denied = await require_course_permission(request, course_name, "edit")
        if denied is not None:
            return denied
    else:
        current = CourseMetadata(course_owner=user.get("email") or "")

    merged = patch.apply_to(current)
    svc = get_services(request)
    try:
        await run_in_threadpool(svc.courses.upsert, course_name, merged)
    except Exception as exc:
        logger.warning("Course metadata upsert failed: %s", exc.__class__.__name__)
        return json_error("store_failed", 500)
    return JSONResponse({"success": True}, headers=private_no_store())


@courses_router.get("/api/UIUC-api/getCourseExists")
async def get_course_exists(request: Request, course_name: Optional[str] = None):
    name = (course_name or "").strip()
    if not name:
        return JSONResponse(False, headers=private_no_store())
    svc = get_services(request)
    try:
        exists = await run_in_threadpool(svc.courses.exists, name)
    except Exception as exc:
        logger.warning("Course exists lookup failed: %s", exc.__class__.__name__)
        exists = False
    return JSONResponse(bool(exists), headers=private_no_store())


@courses_router.get("/api/UIUC-api/getCoursePermission")
async def get_course_permission(request: Request, course_name: Optional[str] = None):
    """Return `{permission}` of the current caller for the course."""
    name = (course_name or "").strip()
    if not name:
        return json_error("bad_request", 400, "course_name_required")
    meta, err = await load_course(request, name)
    if err is not None:
        return err
    if meta is None:
        return json_error("course_not_found", 404)
    permission = get_user_permission(meta, auth_context(request))
    return JSONResponse({"permission": permission}, headers=private_no_store())


@courses_router.get("/api/UIUC-api/courseGate")
async def get_course_gate(request: Request, course_name: Optional[str] = None, path: Optional[str] = None, require: str = "view"):
    """Return `{permission, redirect}` for a course page; `redirect` is null when it may render."""
    name = (course_name or "").strip()
    if not name:
        return json_error("bad_request", 400, "course_name_required")
    if require not in ("view", "edit"):
        return json_error("bad_request", 400, "invalid_require")
    meta, err = await load_course(request, name)
    if err is not None:
        return err
    decision = course_gate(name, meta, auth_context(request), requested_path=path, require=require)
    return JSONResponse({"permission": decision.permission, "redirect": decision.redirect}, headers=private_no_store())
