"""
App-level behavior: health, security headers, session middleware, CSRF helper.
"""
from __future__ import annotations

import pytest

from conftest import OWNER, sign_in

pytestmark = pytest.mark.anyio("asyncio")


async def test_health_is_public_and_uncached(client):
    r = await client.get("/health")
    assert r.status_code == 200 and r.json() == {"status": "healthy"}
    assert r.headers["cache-control"] == "private, no-store"


async def test_security_headers_present(client):
    r = await client.get("/health")
    assert r.headers["x-frame-options"] == "SAMEORIGIN"
    assert r.headers["x-content-type-options"] == "nosniff"
    assert r.headers["referrer-policy"] == "strict-origin-when-cross-origin"
    assert "cross-origin-opener-policy" not in r.headers


async def test_unknown_session_cookie_is_anonymous(client):
    client.cookies.set("coursechat_session", "forged")
    r = await client.get("/api/UIUC-api/isSignedIn")
    assert r.json() == {"userId": None}


async def test_same_origin_referer_is_accepted(client, services, repos):
    sign_in(client, services, OWNER)
    r = await client.post(
        "/api/UIUC-api/upsertCourseMetadata",
        json={"courseName": "public-course", "courseMetadata": {"is_private": True}},
        headers={"Referer": "http://test/public-course/dashboard"},
    )
    assert r.status_code == 200
    assert repos.courses.get("public-course").is_private is True


async def test_malformed_origin_is_rejected(client, services):
    sign_in(client, services, OWNER)
    r = await client.post(
        "/api/UIUC-api/upsertCourseMetadata",
        json={"courseName": "public-course", "courseMetadata": {}},
        headers={"Origin": "null"},
    )
    assert r.status_code == 403


async def test_forwarded_origin_ignored_unless_proxy_trusted(client, services):
    sign_in(client, services, OWNER)
    r = await client.post(
        "/api/UIUC-api/upsertCourseMetadata",
        json={"courseName": "public-course", "courseMetadata": {}},
        headers={"Origin": "https://chat.example.com", "X-Forwarded-Proto": "https", "X-Forwarded-Host": "chat.example.com"},
    )
    assert r.status_code == 403
