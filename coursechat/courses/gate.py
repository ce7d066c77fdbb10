"""Map a permission decision for a course page to where the browser should go."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, urlencode

from coursechat.identity_access.permissions import AuthContext, Permission, get_user_permission

from .models import CourseMetadata


@dataclass(frozen=True)
class GateDecision:
    permission: Optional[Permission]
    redirect: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.redirect is None


def course_gate(
    course_name: str,
    metadata: Optional[CourseMetadata],
    auth: AuthContext,
    *,
    requested_path: Optional[str] = None,
    require: Permission = "view",
) -> GateDecision:
    """Decide whether a course page may render.

    - No metadata: the course does not exist yet, go to `/new?course_name=`.
    - Private course, signed out: `/sign-in?redirect=<requested page>`.
    - Below the required permission: `/<course>/not_authorized`.
    """
    if metadata is None:
        return GateDecision(None, "/new?" + urlencode({"course_name": course_name}))
    permission = get_user_permission(metadata, auth)
    needed = ("edit",) if require == "edit" else ("edit", "view")
    if permission in needed:
        return GateDecision(permission)
    if metadata.is_private and not auth.is_authenticated:
        target = requested_path or f"/{course_name}"
        return GateDecision(permission, "/sign-in?" + urlencode({"redirect": target}))
    return GateDecision(permission, f"/{quote(course_name)}/not_authorized")
