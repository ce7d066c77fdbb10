"""
Course materials ingest routes.

Endpoints:
    - POST /api/UIUC-api/webScrape {url, courseName, maxPagesToCrawl?,
      scrapeStrategy?, canvasOptions?}: routes the URL by source. Canvas
      course URLs go to the Canvas ingest service, MIT OCW URLs to its
      downloader, Coursera is refused, everything else goes to the crawler.
    - POST /api/UIUC-api/ingest {uniqueFileName, courseName, readableFilename}:
      submits an uploaded file to the ingest task queue.

Permissions:
    Signed-in caller; an existing course needs `edit`. The first successful
    ingest into an unknown course creates its metadata with the caller as
    owner.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from coursechat.courses.models import new_course_metadata
from coursechat.ingest.clients import (
    CANVAS_CONTENT_OPTIONS,
    DEFAULT_MAX_PAGES,
    DEFAULT_SCRAPE_STRATEGY,
    SCRAPE_STRATEGIES,
    IngestUpstreamError,
)
from coursechat.ingest.sources import canvas_course_id, classify_source, validate_url

from ..auth_utils import current_user, json_error, private_no_store
from ..services import get_services
from .courses import load_course, require_course_permission
from .security import _is_same_origin

ingest_router = APIRouter(tags=["Ingest"])
logger = logging.getLogger("coursechat.web.ingest")


class WebScrapeRequest(BaseModel):
    url: str = Field(..., min_length=1)
    courseName: str = Field(..., min_length=1)
    maxPagesToCrawl: int = Field(DEFAULT_MAX_PAGES, ge=1)
    scrapeStrategy: str = DEFAULT_SCRAPE_STRATEGY
    canvasOptions: List[str] = Field(default_factory=lambda: list(CANVAS_CONTENT_OPTIONS))


class FileIngestRequest(BaseModel):
    uniqueFileName: str = Field(..., min_length=1)
    courseName: str = Field(..., min_length=1)
    readableFilename: str = Field(..., min_length=1)


async def _authorize_ingest(request: Request, course_name: str) -> Tuple[bool, Optional[JSONResponse]]:
    """Return (is_new_course, error)."""
    if not _is_same_origin(request):
        return False, json_error("csrf_violation", 403)
    if not current_user(request):
        return False, json_error("unauthenticated", 401)
    meta, err = await load_course(request, course_name)
    if err is not None:
        return False, err
    if meta is None:
        return True, None
    _, denied = await require_course_permission(request, course_name, "edit")
    return False, denied


async def _create_course_if_new(request: Request, course_name: str, is_new: bool) -> Optional[JSONResponse]:
    if not is_new:
        return None
    user = current_user(request) or {}
    svc = get_services(request)
    try:
        await run_in_threadpool(svc.courses.upsert, course_name, new_course_metadata(user.get("email") or ""))
    except Exception as exc:
        logger.warning("Course creation after ingest failed: %s", exc.__class__.__name__)
        return json_error("store_failed", 500)
    logger.info("Course created by first ingest course=%s", course_name)
    return None


async def _parse(request: Request, model):
    try:
        return model.model_validate(await request.json()), None
    except (ValueError, ValidationError):
        return None, json_error("bad_request", 400, "invalid_body")


@ingest_router.post("/api/UIUC-api/webScrape")
async def web_scrape(request: Request):
    body, err = await _parse(request, WebScrapeRequest)
    if err is not None:
        return err
    course_name = body.courseName.strip()
    if not validate_url(body.url):
        return json_error("bad_request", 400, "invalid_url")
    if body.scrapeStrategy not in SCRAPE_STRATEGIES:
        return json_error("bad_request", 400, "invalid_scrape_strategy")
    is_new, denied = await _authorize_ingest(request, course_name)
    if denied is not None:
        return denied

    svc = get_services(request)
    source = classify_source(body.url)
    try:
        if source == "coursera":
            return json_error("unsupported_source", 422, "coursera")
        if source == "canvas":
            course_id = canvas_course_id(body.url)
            if not course_id:
                return json_error("bad_request", 400, "invalid_canvas_url")
            unknown = set(body.canvasOptions) - set(CANVAS_CONTENT_OPTIONS)
            if unknown:
                return json_error("bad_request", 400, "invalid_canvas_options")
            result = await svc.ingest.ingest_canvas(course_id, course_name, body.canvasOptions)
        elif source == "mit_ocw":
            result = await svc.ingest.download_mit_course(body.url, course_name)
        else:
            result = await svc.ingest.crawl(
                body.url, course_name, max_pages=body.maxPagesToCrawl, strategy=body.scrapeStrategy
            )
    except IngestUpstreamError as exc:
        return json_error(exc.code, 502)

    failed = await _create_course_if_new(request, course_name, is_new)
    if failed is not None:
        return failed
    return JSONResponse({"source": source, "result": result}, headers=private_no_store())


@ingest_router.post("/api/UIUC-api/ingest")
async def ingest_file(request: Request):
    body, err = await _parse(request, FileIngestRequest)
    if err is not None:
        return err
    course_name = body.courseName.strip()
    is_new, denied = await _authorize_ingest(request, course_name)
    if denied is not None:
        return denied
    svc = get_services(request)
    try:
        result = await svc.ingest.enqueue_file(
            course_name=course_name,
            unique_file_name=body.uniqueFileName,
            readable_filename=body.readableFilename,
        )
    except IngestUpstreamError as exc:
        return json_error(exc.code, 502)
    failed = await _create_course_if_new(request, course_name, is_new)
    if failed is not None:
        return failed
    return JSONResponse(result, headers=private_no_store())
