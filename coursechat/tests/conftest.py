"""
Pytest configuration for coursechat tests.

Why: Force AnyIO to use the asyncio backend, and build apps from the factory
with in-memory repositories and fake upstreams so no test needs Supabase,
Keycloak or the generation service.
"""
from __future__ import annotations

import base64
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from coursechat.courses.models import CourseMetadata
from coursechat.courses.repo import InMemoryCourseRepo
from coursechat.keys.repo import InMemoryApiKeyRepo
from coursechat.metadata.repo import InMemoryMetadataRepo
from coursechat.web.auth_utils import SESSION_COOKIE_NAME
from coursechat.web.config import Settings
from coursechat.web.main import create_app
from coursechat.web.services import build_services
from coursechat.web.supabase_wiring import Repos

BASE_URL = "http://test"
OWNER = "owner@illinois.edu"
ADMIN = "admin@illinois.edu"
STUDENT = "student@illinois.edu"


@pytest.fixture
def anyio_backend():
    return "asyncio"


class UpstreamRecorder:
    """httpx MockTransport handler that records requests and replays canned responses."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.responses: Dict[str, Any] = {}

    def respond(self, path: str, status: int = 200, body: Any = None) -> None:
        self.responses[path] = (status, body if body is not None else {})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.responses.get(request.url.path, (200, {}))
        if isinstance(body, Exception):
            raise body
        return httpx.Response(status, json=body)

    def bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content or b"{}") for r in self.requests]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="dev",
        kc_base_url="http://kc:8080",
        kc_public_base_url="https://login.test",
        redirect_uri="http://test/auth/callback",
        metadata_service_url="http://metadata.svc",
        crawler_url="http://crawler.svc",
        canvas_ingest_url="http://canvas.svc",
        ingest_queue_url="http://queue.svc/taskqueue/ingest",
        beam_api_key="beam-secret",
        metadata_poll_seconds=0.0,
    )


@pytest.fixture
def upstream() -> UpstreamRecorder:
    return UpstreamRecorder()


@pytest.fixture
def repos() -> Repos:
    courses = InMemoryCourseRepo(
        {
            "public-course": CourseMetadata(course_owner=OWNER, course_admins=[ADMIN]),
            "private-course": CourseMetadata(course_owner=OWNER, is_private=True, approved_emails_list=[STUDENT]),
        }
    )
    return Repos(courses=courses, metadata=InMemoryMetadataRepo(), keys=InMemoryApiKeyRepo())


@pytest.fixture
def services(settings, upstream, repos):
    http = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    return build_services(settings, http=http, repos=repos)


@pytest.fixture
def app(services):
    return create_app(services=services)


@pytest.fixture
async def client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=BASE_URL) as c:
        yield c


def sign_in(client: httpx.AsyncClient, services, email: str, sub: Optional[str] = None) -> str:
    """Create a session directly in the store and attach its cookie."""
    rec = services.sessions.create(sub=sub or f"sub-{email}", email=email, name=email.split("@")[0])
    client.cookies.set(SESSION_COOKIE_NAME, rec.session_id)
    return rec.session_id


def bearer(claims: Dict[str, Any]) -> Dict[str, str]:
    def seg(data: Dict[str, Any]) -> str:
        return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")

    token = f"{seg({'alg': 'RS256', 'typ': 'JWT'})}.{seg(claims)}.signature"
    return {"Authorization": f"Bearer {token}"}
