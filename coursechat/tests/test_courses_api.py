"""
Course metadata API: reads, upsert permissions, existence, permission and gate.
"""
from __future__ import annotations

import pytest

from conftest import ADMIN, OWNER, STUDENT, sign_in

pytestmark = pytest.mark.anyio("asyncio")


async def test_get_public_course_metadata_hides_openai_key(client, repos):
    meta = repos.courses.get("public-course")
    repos.courses.upsert("public-course", meta.model_copy(update={"openai_api_key": "sk-secret"}))
    r = await client.get("/api/UIUC-api/getCourseMetadata", params={"course_name": "public-course"})
    assert r.status_code == 200
    body = r.json()["course_metadata"]
    assert body["course_owner"] == OWNER
    assert body["openai_api_key"] is None
    assert r.headers["cache-control"] == "private, no-store"


async def test_get_unknown_course_metadata_is_null(client):
    r = await client.get("/api/UIUC-api/getCourseMetadata", params={"course_name": "nope"})
    assert r.json() == {"course_metadata": None}


async def test_private_course_metadata_requires_view(client, services):
    r = await client.get("/api/UIUC-api/getCourseMetadata", params={"course_name": "private-course"})
    assert r.status_code == 401
    sign_in(client, services, "stranger@x.edu")
    r = await client.get("/api/UIUC-api/getCourseMetadata", params={"course_name": "private-course"})
    assert r.status_code == 403
    sign_in(client, services, STUDENT)
    r = await client.get("/api/UIUC-api/getCourseMetadata", params={"course_name": "private-course"})
    assert r.status_code == 200


async def test_course_exists(client):
    assert (await client.get("/api/UIUC-api/getCourseExists", params={"course_name": "public-course"})).json() is True
    assert (await client.get("/api/UIUC-api/getCourseExists", params={"course_name": "missing"})).json() is False


@pytest.mark.parametrize(
    "email,course,expected",
    [
        (None, "public-course", "view"),
        (ADMIN, "public-course", "edit"),
        (None, "private-course", "no_permission"),
        (STUDENT, "private-course", "view"),
        (OWNER, "private-course", "edit"),
    ],
)
async def test_course_permission(client, services, email, course, expected):
    if email:
        sign_in(client, services, email)
    r = await client.get("/api/UIUC-api/getCoursePermission", params={"course_name": course})
    assert r.json() == {"permission": expected}


async def test_course_permission_unknown_course_404(client):
    r = await client.get("/api/UIUC-api/getCoursePermission", params={"course_name": "missing"})
    assert r.status_code == 404 and r.json() == {"error": "course_not_found"}


async def test_upsert_requires_sign_in(client):
    r = await client.post("/api/UIUC-api/upsertCourseMetadata", json={"courseName": "public-course", "courseMetadata": {}})
    assert r.status_code == 401


async def test_upsert_existing_course_requires_edit(client, services):
    sign_in(client, services, STUDENT)
    r = await client.post(
        "/api/UIUC-api/upsertCourseMetadata",
        json={"courseName": "public-course", "courseMetadata": {"is_private": True}},
    )
    assert r.status_code == 403


async def test_upsert_merges_over_stored_record(client, services, repos):
    sign_in(client, services, ADMIN)
    r = await client.post(
        "/api/UIUC-api/upsertCourseMetadata",
        json={"courseName": "public-course", "courseMetadata": {"is_private": True, "approved_emails_list": [STUDENT]}},
    )
    assert r.status_code == 200 and r.json() == {"success": True}
    stored = repos.courses.get("public-course")
    assert stored.is_private is True
    assert stored.course_owner == OWNER
    assert stored.course_admins == [ADMIN]
    assert stored.approved_emails_list == [STUDENT]


async def test_upsert_new_course_makes_caller_owner(client, services, repos):
    sign_in(client, services, STUDENT)
    r = await client.post("/api/UIUC-api/upsertCourseMetadata", json={"courseName": "fresh", "courseMetadata": {}})
    assert r.status_code == 200
    assert repos.courses.get("fresh").course_owner == STUDENT


async def test_upsert_rejects_cross_origin(client, services):
    sign_in(client, services, OWNER)
    r = await client.post(
        "/api/UIUC-api/upsertCourseMetadata",
        json={"courseName": "public-course", "courseMetadata": {}},
        headers={"Origin": "https://evil.example"},
    )
    assert r.status_code == 403 and r.json() == {"error": "csrf_violation"}


async def test_upsert_validates_payload(client, services):
    sign_in(client, services, OWNER)
    r = await client.post("/api/UIUC-api/upsertCourseMetadata", json={"courseName": "", "courseMetadata": {}})
    assert r.status_code == 400
    r = await client.post(
        "/api/UIUC-api/upsertCourseMetadata",
        json={"courseName": "public-course", "courseMetadata": {"is_private": "maybe"}},
    )
    assert r.status_code == 400


async def test_course_gate_redirects(client, services):
    r = await client.get("/api/UIUC-api/courseGate", params={"course_name": "missing"})
    assert r.json() == {"permission": None, "redirect": "/new?course_name=missing"}

    r = await client.get("/api/UIUC-api/courseGate", params={"course_name": "private-course", "path": "/private-course/chat"})
    assert r.json()["redirect"] == "/sign-in?redirect=%2Fprivate-course%2Fchat"

    sign_in(client, services, "stranger@x.edu")
    r = await client.get("/api/UIUC-api/courseGate", params={"course_name": "private-course"})
    assert r.json() == {"permission": "no_permission", "redirect": "/private-course/not_authorized"}

    r = await client.get("/api/UIUC-api/courseGate", params={"course_name": "public-course", "require": "edit"})
    assert r.json() == {"permission": "view", "redirect": "/public-course/not_authorized"}


async def test_course_gate_allows_view(client):
    r = await client.get("/api/UIUC-api/courseGate", params={"course_name": "public-course"})
    assert r.json() == {"permission": "view", "redirect": None}
