"""
Outbound clients for the ingest services.

- Crawler: `POST {crawler_url}/crawl` with `{"params": {...}}`.
- Canvas/MIT ingest service: `GET {canvas_url}/ingestCanvas` and
  `GET {canvas_url}/mit-download`.
- Beam task queue: `POST {queue_url}` with a Bearer API key.

Each call is a single attempt. Failures raise `IngestUpstreamError` carrying a
short code; the web adapter maps it to 502.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

import httpx

from .sources import build_match_pattern, format_url

logger = logging.getLogger("coursechat.ingest")

CRAWL_MAX_TOKENS = 2_000_000
DEFAULT_MAX_PAGES = 50
DEFAULT_SCRAPE_STRATEGY = "equal-and-below"
SCRAPE_STRATEGIES = frozenset({"equal-and-below", "same-hostname", "same-domain", "all"})
CANVAS_CONTENT_OPTIONS = ("files", "pages", "modules", "syllabus", "assignments", "discussions")


class IngestUpstreamError(Exception):
    def __init__(self, code: str, status: Optional[int] = None):
        super().__init__(code)
        self.code = code
        self.status = status


def crawl_params(url: str, course_name: str, *, max_pages: int, strategy: str) -> Dict[str, Any]:
    full_url = format_url(url)
    return {
        "url": full_url,
        "courseName": course_name,
        "maxPagesToCrawl": max_pages,
        "scrapeStrategy": strategy,
        "match": build_match_pattern(full_url),
        "maxTokens": CRAWL_MAX_TOKENS,
    }


def canvas_params(course_id: str, course_name: str, options: Iterable[str]) -> Dict[str, str]:
    selected = set(options)
    params = {"course_id": course_id, "course_name": course_name}
    for opt in CANVAS_CONTENT_OPTIONS:
        params[opt] = "true" if opt in selected else "false"
    return params


def s3_path(course_name: str, unique_file_name: str) -> str:
    return f"courses/{course_name}/{unique_file_name}"


class IngestClient:
    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        crawler_url: str,
        canvas_url: str,
        queue_url: str,
        beam_api_key: str = "",
    ) -> None:
        self._http = http
        self._crawler_url = crawler_url.rstrip("/")
        self._canvas_url = canvas_url.rstrip("/")
        self._queue_url = queue_url
        self._beam_api_key = beam_api_key

    async def _send(self, what: str, method: str, url: str, **kwargs: Any) -> Any:
        try:
            resp = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s unreachable: %s", what, exc.__class__.__name__)
            raise IngestUpstreamError("upstream_unreachable") from exc
        if resp.status_code >= 300:
            logger.warning("%s rejected request: status=%s", what, resp.status_code)
            raise IngestUpstreamError("upstream_status", resp.status_code)
        try:
            return resp.json()
        except ValueError:
            return {}

    async def crawl(self, url: str, course_name: str, *, max_pages: int = DEFAULT_MAX_PAGES, strategy: str = DEFAULT_SCRAPE_STRATEGY) -> Any:
        params = crawl_params(url, course_name, max_pages=max_pages, strategy=strategy)
        logger.info("Submitting web scrape course=%s max_pages=%s strategy=%s", course_name, max_pages, strategy)
        return await self._send("Crawler", "POST", f"{self._crawler_url}/crawl", json={"params": params})

    async def ingest_canvas(self, course_id: str, course_name: str, options: Iterable[str]) -> Any:
        params = canvas_params(course_id, course_name, options)
        logger.info("Submitting Canvas ingest course=%s", course_name)
        return await self._send("Canvas ingest", "GET", f"{self._canvas_url}/ingestCanvas", params=params)

    async def download_mit_course(self, url: str, course_name: str, local_dir: str = "local_dir") -> Any:
        params = {"url": url, "course_name": course_name, "local_dir": local_dir}
        logger.info("Submitting MIT OCW download course=%s", course_name)
        return await self._send("MIT download", "GET", f"{self._canvas_url}/mit-download", params=params)

    async def enqueue_file(self, *, course_name: str, unique_file_name: str, readable_filename: str) -> Any:
        body = {
            "course_name": course_name,
            "readable_filename": readable_filename,
            "s3_paths": s3_path(course_name, unique_file_name),
        }
        headers = {"Authorization": f"Bearer {self._beam_api_key}", "Accept": "*/*"}
        logger.info("Submitting file to ingest queue course=%s", course_name)
        return await self._send("Ingest queue", "POST", self._queue_url, json=body, headers=headers)
