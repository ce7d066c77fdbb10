"""
Course permission evaluation.

Maps (course visibility, owner/admin/approved-list membership, authentication
state) to one of three decisions. Pure and synchronous; the web layer decides
what to render or where to redirect.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Literal, Mapping, Optional, Union

from coursechat.courses.models import CourseMetadata

logger = logging.getLogger("coursechat.identity_access.permissions")

Permission = Literal["edit", "view", "no_permission"]


class CourseMetadataMissingError(ValueError):
    """Raised when permission is requested for a course that has no metadata."""

    code = "course_metadata_missing"


@dataclass(frozen=True)
class AuthContext:
    """Authentication state of the caller as seen by the permission check."""

    is_authenticated: bool = False
    email: Optional[str] = None
    is_loading: bool = False
    error: Optional[str] = None

    @classmethod
    def anonymous(cls) -> "AuthContext":
        return cls()


def _coerce(course_metadata: Union[CourseMetadata, Mapping[str, Any], None]) -> CourseMetadata:
    if isinstance(course_metadata, CourseMetadata):
        return course_metadata
    if not course_metadata:
        raise CourseMetadataMissingError(f"No course metadata provided: {course_metadata!r}")
    return CourseMetadata.model_validate(dict(course_metadata))


def _is_owner_or_admin(meta: CourseMetadata, email: Optional[str]) -> bool:
    if not email:
        return False
    return email == meta.course_owner or email in meta.course_admins


def get_user_permission(
    course_metadata: Union[CourseMetadata, Mapping[str, Any], None],
    auth: AuthContext,
) -> Permission:
    """Return "edit", "view" or "no_permission" for `auth` on a course.

    Raises CourseMetadataMissingError when `course_metadata` is absent or
    empty; callers resolve course existence first. Owner/admin is checked
    before the approved list, so admins always receive "edit".
    """
    meta = _coerce(course_metadata)

    if auth.is_loading:
        return "no_permission"
    if auth.error:
        logger.warning("Auth error during permission check: %s", auth.error)
        return "no_permission"

    if not meta.is_private:
        if not auth.is_authenticated:
            return "view"
        return "edit" if _is_owner_or_admin(meta, auth.email) else "view"

    if not auth.is_authenticated:
        return "no_permission"
    if _is_owner_or_admin(meta, auth.email):
        return "edit"
    if auth.email and auth.email in meta.approved_emails_list:
        return "view"
    return "no_permission"
