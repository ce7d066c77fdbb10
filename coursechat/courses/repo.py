"""
Course metadata persistence.

Two implementations share one small protocol:
- `InMemoryCourseRepo` for tests and offline development.
- `SupabaseCourseRepo` backed by the `course_metadatas` table
  (`course_name text primary key, metadata jsonb`).

Repos return validated `CourseMetadata` objects and raise on store failures;
the web adapter turns failures into 500 responses.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

from .models import CourseMetadata

logger = logging.getLogger("coursechat.courses")

COURSE_TABLE = "course_metadatas"


class CourseRepoProtocol(Protocol):
    def get(self, course_name: str) -> Optional[CourseMetadata]:
        ...

    def exists(self, course_name: str) -> bool:
        ...

    def upsert(self, course_name: str, metadata: CourseMetadata) -> None:
        ...


class InMemoryCourseRepo:
    def __init__(self, initial: Optional[Dict[str, CourseMetadata]] = None) -> None:
        self._courses: Dict[str, CourseMetadata] = dict(initial or {})

    def get(self, course_name: str) -> Optional[CourseMetadata]:
        meta = self._courses.get(course_name)
        return meta.model_copy(deep=True) if meta else None

    def exists(self, course_name: str) -> bool:
        return course_name in self._courses

    def upsert(self, course_name: str, metadata: CourseMetadata) -> None:
        self._courses[course_name] = metadata.model_copy(deep=True)


class SupabaseCourseRepo:
    """Course metadata stored through a supabase-py client (service role)."""

    def __init__(self, client: Any, *, table: str = COURSE_TABLE) -> None:
        self._client = client
        self._table = table

    def _row(self, course_name: str) -> Optional[Dict[str, Any]]:
        resp = (
            self._client.table(self._table)
            .select("course_name, metadata")
            .eq("course_name", course_name)
            .limit(1)
            .execute()
        )
        rows = resp.data or []
        return rows[0] if rows else None

    def get(self, course_name: str) -> Optional[CourseMetadata]:
        row = self._row(course_name)
        if not row or not row.get("metadata"):
            return None
        return CourseMetadata.model_validate(row["metadata"])

    def exists(self, course_name: str) -> bool:
        return self._row(course_name) is not None

    def upsert(self, course_name: str, metadata: CourseMetadata) -> None:
        self._client.table(self._table).upsert(
            {"course_name": course_name, "metadata": metadata.model_dump()},
            on_conflict="course_name",
        ).execute()
        logger.info("Course metadata upserted for course=%s", course_name)
