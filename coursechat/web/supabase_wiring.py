"""
Repository wiring for the app factory.

Why:
    Local development and tests run without Supabase. When SUPABASE_URL and
    SUPABASE_SERVICE_ROLE_KEY are configured the service-role client backs the
    course, metadata and API-key repos; otherwise in-memory repos are used.
    Production never reaches the in-memory branch because the startup guard
    refuses to boot without Supabase credentials.

Security:
    The service-role key stays server-side; it is never logged or returned.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Optional

from coursechat.courses.repo import CourseRepoProtocol, InMemoryCourseRepo, SupabaseCourseRepo
from coursechat.keys.repo import ApiKeyRepoProtocol, InMemoryApiKeyRepo, SupabaseApiKeyRepo
from coursechat.metadata.repo import InMemoryMetadataRepo, MetadataRepoProtocol, SupabaseMetadataRepo

from .config import Settings

logger = logging.getLogger("coursechat.web")


@dataclass
class Repos:
    courses: CourseRepoProtocol
    metadata: MetadataRepoProtocol
    keys: ApiKeyRepoProtocol
    backend: str = "memory"


def _create_supabase_client(settings: Settings) -> Optional[Any]:
    if not settings.supabase_url or not settings.supabase_service_role_key:
        return None
    from supabase import create_client

    try:
        return create_client(settings.supabase_url, settings.supabase_service_role_key)
    except Exception as exc:
        logger.warning("Supabase client unavailable: %s", exc.__class__.__name__)
        if settings.is_prod_like:
            raise
        return None


def build_repos(settings: Settings) -> Repos:
    """Return Supabase-backed repos when configured, else in-memory repos."""
    client = _create_supabase_client(settings)
    if client is None:
        logger.info("Repositories wired: in-memory")
        return Repos(courses=InMemoryCourseRepo(), metadata=InMemoryMetadataRepo(), keys=InMemoryApiKeyRepo())
    logger.info("Repositories wired: Supabase")
    return Repos(
        courses=SupabaseCourseRepo(client),
        metadata=SupabaseMetadataRepo(client),
        keys=SupabaseApiKeyRepo(client),
        backend="supabase",
    )
