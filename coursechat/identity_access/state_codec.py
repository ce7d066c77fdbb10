"""
OIDC `state` codec and post-login redirect sanitizer.

The sign-in flow carries the page a user wanted to reach through the identity
provider inside the `state` query parameter. The value is the URL-safe base64
form (RFC 4648 section 5, unpadded) of a compact JSON object:

    {"redirect": "/<course>/chat", "timestamp": 1700000000000}

On callback the token is decoded and the redirect target is checked against a
static allow-list of application routes before the browser is sent there.
Decoding never raises; a malformed token yields None and callers fall back
to the home page.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
import re
import time
from typing import Optional, TypedDict
from urllib.parse import parse_qs, urlencode

logger = logging.getLogger("coursechat.identity_access.state")


class AuthState(TypedDict):
    redirect: str
    timestamp: int


HOME_PATH = "/"

# Route templates; ":course_name" matches exactly one course-name segment.
AUTHORIZED_PATHS: tuple[str, ...] = (
    "/",
    "/new",
    "/chat",
    "/settings",
    "/silent-renew",
    "/:course_name",
    "/:course_name/chat",
    "/:course_name/dashboard",
    "/:course_name/tools",
    "/:course_name/not_authorized",
    "/:course_name/index",
    "/:course_name/prompt",
    "/:course_name/analysis",
    "/:course_name/api",
    "/:course_name/llms",
    "/:course_name/materials",
    "/:course_name/metadata",
)

SAFE_QUERY_PARAMS: tuple[str, ...] = (
    "tab",
    "view",
    "id",
    "course_name",
    "redirect",
    "state",
    "code",
    "session_state",
)

# First path segments owned by the platform, never a course name.
RESERVED_SEGMENTS = frozenset({"api", "auth", "static", "sign-in", "sign-up"})

_COURSE_SEGMENT = re.compile(r"^[A-Za-z0-9_\-.]+$")
_MULTI_SLASH = re.compile(r"/+")


def _now_ms() -> int:
    return int(time.time() * 1000)


def encode_state(redirect: str, *, timestamp: Optional[int] = None) -> str:
    """Encode a redirect target into an unpadded URL-safe base64 `state` token."""
    payload = {"redirect": redirect, "timestamp": _now_ms() if timestamp is None else int(timestamp)}
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    encoded = base64.b64encode(raw).decode("ascii")
    return encoded.replace("+", "-").replace("/", "_").rstrip("=")


def decode_state(token: str) -> Optional[AuthState]:
    """Decode a `state` token; return None for anything that is not a valid AuthState."""
    try:
        padding = "=" * ((4 - len(token) % 4) % 4)
        standard = (token + padding).replace("-", "+").replace("_", "/")
        data = json.loads(base64.b64decode(standard, validate=True).decode("utf-8"))
    except (TypeError, ValueError, binascii.Error, RecursionError) as exc:
        logger.info("State decode failed: %s", exc.__class__.__name__)
        return None
    if not isinstance(data, dict):
        return None
    redirect = data.get("redirect")
    timestamp = data.get("timestamp")
    if not isinstance(redirect, str):
        return None
    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        return None
    return AuthState(redirect=redirect, timestamp=timestamp)


def _segment_matches(template: str, segment: str) -> bool:
    if template.startswith(":"):
        if segment in RESERVED_SEGMENTS or segment in (".", ".."):
            return False
        return bool(_COURSE_SEGMENT.match(segment))
    return template == segment


def is_authorized_path(path: str) -> bool:
    """Return True when `path` (no query string) matches an allow-listed route."""
    if not path.startswith("/"):
        return False
    if path == HOME_PATH:
        return True
    segments = path.rstrip("/").split("/")[1:]
    if any(not s for s in segments):
        return False
    for template in AUTHORIZED_PATHS:
        parts = template.split("/")[1:]
        if template == HOME_PATH or len(parts) != len(segments):
            continue
        if all(_segment_matches(t, s) for t, s in zip(parts, segments)):
            return True
    return False


def sanitize_redirect(redirect_path: str) -> str:
    """Return a safe in-app redirect target; fall back to "/".

    Repeated slashes are collapsed, unknown paths are replaced by the home
    page, and only allow-listed query parameters (first value, non-empty)
    survive.
    """
    if not isinstance(redirect_path, str):
        return HOME_PATH
    normalized = _MULTI_SLASH.sub("/", redirect_path)
    path, _, query = normalized.partition("?")
    path = path or HOME_PATH
    if not is_authorized_path(path):
        logger.warning("Unauthorized redirect path, using homepage")
        return HOME_PATH
    if not query:
        return path
    params = parse_qs(query, keep_blank_values=False)
    kept = [(name, params[name][0]) for name in SAFE_QUERY_PARAMS if params.get(name) and params[name][0]]
    return f"{path}?{urlencode(kept)}" if kept else path


def redirect_from_state(token: Optional[str]) -> str:
    """Resolve the post-login destination for a callback `state` value."""
    if not token:
        return HOME_PATH
    state = decode_state(token)
    if not state or not state["redirect"]:
        return HOME_PATH
    return sanitize_redirect(state["redirect"])
