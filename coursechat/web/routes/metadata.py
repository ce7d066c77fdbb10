"""
Metadata generation API routes.

Read endpoints (signed-in callers; course-scoped ones need `edit`):
    - POST /api/UIUC-api/getDocumentStatuses {document_ids, run_id?}
    - GET  /api/UIUC-api/getMetadataFields?run_id=
    - GET  /api/UIUC-api/getMetadataHistory?course_name=
    - GET  /api/UIUC-api/getMetadataDocuments?course_name=

Run endpoints (one current run per session and course, `edit` required):
    - POST   /api/UIUC-api/metadataRuns {course_name, prompt, document_ids}
    - GET    /api/UIUC-api/metadataRuns/current?course_name=
    - DELETE /api/UIUC-api/metadataRuns/current?course_name=

A started run is driven by a server-side task; the browser polls the
`current` snapshot instead of talking to the generation service itself.
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from coursechat.metadata.orchestrator import InvalidRunRequestError, RunInFlightError, RunSnapshot

from ..auth_utils import current_user, json_error, private_no_store, session_id
from ..services import get_services
from .courses import require_course_permission
from .security import _is_same_origin

metadata_router = APIRouter(tags=["Metadata"])
logger = logging.getLogger("coursechat.web.metadata")


class StatusQuery(BaseModel):
    document_ids: List[int] = Field(..., min_length=1)
    run_id: Optional[int] = None


class StartRun(BaseModel):
    course_name: str = Field(..., min_length=1)
    prompt: str = ""
    document_ids: List[int] = Field(default_factory=list)


async def _read(what: str, fn, *args) -> Any:
    try:
        return await run_in_threadpool(fn, *args), None
    except Exception as exc:
        logger.warning("Metadata %s query failed: %s", what, exc.__class__.__name__)
        return None, json_error("store_failed", 500)


async def _json_body(request: Request, model):
    try:
        return model.model_validate(await request.json()), None
    except (ValueError, ValidationError):
        return None, json_error("bad_request", 400, "invalid_body")


# Status and field reads are keyed by document/run id only; no course check.
@metadata_router.post("/api/UIUC-api/getDocumentStatuses")
async def get_document_statuses(request: Request):
    if not current_user(request):
        return json_error("unauthenticated", 401)
    query, err = await _json_body(request, StatusQuery)
    if err is not None:
        return err
    svc = get_services(request)
    statuses, err = await _read("statuses", svc.metadata.document_statuses, query.document_ids, query.run_id)
    if err is not None:
        return err
    return JSONResponse([s.model_dump() for s in statuses], headers=private_no_store())


# Keyed by run id only, like getDocumentStatuses.
@metadata_router.get("/api/UIUC-api/getMetadataFields")
async def get_metadata_fields(request: Request, run_id: Optional[int] = None):
    """Return `{metadata}` for a run; confidence scores are percentages."""
    if not current_user(request):
        return json_error("unauthenticated", 401)
    if run_id is None:
        return json_error("bad_request", 400, "run_id_required")
    svc = get_services(request)
    fields, err = await _read("fields", svc.metadata.fields, run_id)
    if err is not None:
        return err
    return JSONResponse({"metadata": [f.model_dump() for f in fields]}, headers=private_no_store())


@metadata_router.get("/api/UIUC-api/getMetadataHistory")
async def get_metadata_history(request: Request, course_name: Optional[str] = None):
    """Return `{history}`: runs grouped from field rows, newest first, at most 50."""
    _, denied = await require_course_permission(request, course_name, "edit")
    if denied is not None:
        return denied
    svc = get_services(request)
    runs, err = await _read("history", svc.metadata.history, course_name.strip())
    if err is not None:
        return err
    history = [r.model_dump(exclude={"document_ids"}) for r in runs]
    return JSONResponse({"history": history}, headers=private_no_store())


@metadata_router.get("/api/UIUC-api/getMetadataDocuments")
async def get_metadata_documents(request: Request, course_name: Optional[str] = None):
    _, denied = await require_course_permission(request, course_name, "edit")
    if denied is not None:
        return denied
    svc = get_services(request)
    docs, err = await _read("documents", svc.metadata.list_documents, course_name.strip())
    if err is not None:
        return err
    return JSONResponse([d.model_dump() for d in docs], headers=private_no_store())


def _snapshot_response(snapshot: RunSnapshot, status_code: int = 200) -> JSONResponse:
    return JSONResponse(snapshot.to_dict(), status_code=status_code, headers=private_no_store())


@metadata_router.post("/api/UIUC-api/metadataRuns")
async def start_metadata_run(request: Request):
    """Start the current run for (session, course).

    Responses: 202 with the snapshot; 400 for a blank prompt, no documents or
    documents outside the course; 409 while a run is in flight.
    """
    if not _is_same_origin(request):
        return json_error("csrf_violation", 403)
    body, err = await _json_body(request, StartRun)
    if err is not None:
        return err
    course_name = body.course_name.strip()
    _, denied = await require_course_permission(request, course_name, "edit")
    if denied is not None:
        return denied

    svc = get_services(request)
    docs, err = await _read("documents", svc.metadata.list_documents, course_name)
    if err is not None:
        return err
    known = {d.id for d in docs}
    if any(doc_id not in known for doc_id in body.document_ids):
        return json_error("bad_request", 400, "unknown_documents")

    orch = svc.runs.get_or_create(session_id(request), course_name)
    try:
        orch.start(body.prompt, body.document_ids)
    except RunInFlightError as exc:
        return json_error(exc.code, 409)
    except InvalidRunRequestError as exc:
        return json_error("bad_request", 400, exc.code)
    logger.info("Metadata run started course=%s documents=%s", course_name, len(body.document_ids))
    return _snapshot_response(orch.snapshot, status_code=202)


@metadata_router.get("/api/UIUC-api/metadataRuns/current")
async def get_current_metadata_run(request: Request, course_name: Optional[str] = None):
    _, denied = await require_course_permission(request, course_name, "edit")
    if denied is not None:
        return denied
    orch = get_services(request).runs.get(session_id(request), course_name.strip())
    return _snapshot_response(orch.snapshot if orch else RunSnapshot())


@metadata_router.delete("/api/UIUC-api/metadataRuns/current")
async def cancel_current_metadata_run(request: Request, course_name: Optional[str] = None):
    if not _is_same_origin(request):
        return json_error("csrf_violation", 403)
    _, denied = await require_course_permission(request, course_name, "edit")
    if denied is not None:
        return denied
    cancelled = await get_services(request).runs.discard(session_id(request), course_name.strip())
    return JSONResponse({"cancelled": cancelled}, headers=private_no_store())
