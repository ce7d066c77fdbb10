"""
URL helpers for web-scrape ingest.

Behavior:
    - `format_url` adds `http://` when the input has no scheme.
    - `build_match_pattern` turns a start URL into the crawler's glob
      (`**<host/path>/**`, no scheme, no query, no trailing slash).
    - `classify_source` decides which ingest path a URL takes.
"""
from __future__ import annotations

import re
from typing import Literal, Optional

SourceKind = Literal["coursera", "mit_ocw", "github", "canvas", "web"]

_SCHEME = re.compile(r"^https?://", re.IGNORECASE)
_COURSERA = re.compile(r"^https?://(www\.)?coursera\.org/learn/.+")
_MIT_OCW = re.compile(r"^https?://ocw\.mit\.edu/.+")
_GITHUB = re.compile(r"^https?://(www\.)?github\.com/.+")
_CANVAS = re.compile(r"^https?://canvas\.illinois\.edu/courses/(\d+)")
_ANY = re.compile(r"^(https?://)?.+")

CANVAS_MARKER = "canvas.illinois.edu/courses/"


def format_url(url: str) -> str:
    url = url.strip()
    return url if _SCHEME.match(url) else f"http://{url}"


def build_match_pattern(url: str) -> str:
    base = _SCHEME.sub("", format_url(url)).split("?", 1)[0]
    if base.endswith("/"):
        base = base[:-1]
    return f"**{base}/**"


def validate_url(url: str) -> bool:
    if not url or not url.strip():
        return False
    candidate = url.strip()
    return any(p.match(candidate) for p in (_COURSERA, _MIT_OCW, _GITHUB, _CANVAS, _ANY))


def classify_source(url: str) -> SourceKind:
    if "coursera.org" in url:
        return "coursera"
    if "ocw.mit.edu" in url:
        return "mit_ocw"
    if CANVAS_MARKER in url:
        return "canvas"
    if "github.com" in url:
        return "github"
    return "web"


def canvas_course_id(url: str) -> Optional[str]:
    """Return the numeric Canvas course id from a course URL, if present."""
    if CANVAS_MARKER not in url:
        return None
    tail = url.split(CANVAS_MARKER, 1)[1]
    course_id = tail.split("/", 1)[0].split("?", 1)[0]
    return course_id if course_id.isdigit() else None
