"""
Permission evaluator tests.

Covers public/private courses, owner/admin precedence over the approved list,
loading/error states, and missing metadata.
"""
from __future__ import annotations

import pytest

from coursechat.courses.models import CourseMetadata
from coursechat.identity_access.permissions import AuthContext, CourseMetadataMissingError, get_user_permission

OWNER = "owner@illinois.edu"
ADMIN = "admin@illinois.edu"
FRIEND = "friend@illinois.edu"


def _meta(**overrides) -> CourseMetadata:
    data = {"course_owner": OWNER, "course_admins": [ADMIN], "approved_emails_list": [FRIEND], "is_private": False}
    data.update(overrides)
    return CourseMetadata(**data)


def _signed_in(email: str | None) -> AuthContext:
    return AuthContext(is_authenticated=True, email=email)


def test_public_course_anonymous_can_view():
    assert get_user_permission(_meta(), AuthContext.anonymous()) == "view"


@pytest.mark.parametrize("email", [OWNER, ADMIN])
def test_public_course_owner_and_admin_can_edit(email):
    assert get_user_permission(_meta(), _signed_in(email)) == "edit"


def test_public_course_other_user_views():
    assert get_user_permission(_meta(), _signed_in("someone@else.edu")) == "view"


def test_private_course_anonymous_has_no_permission():
    assert get_user_permission(_meta(is_private=True), AuthContext.anonymous()) == "no_permission"


def test_private_course_approved_email_views():
    assert get_user_permission(_meta(is_private=True), _signed_in(FRIEND)) == "view"


def test_private_course_stranger_has_no_permission():
    assert get_user_permission(_meta(is_private=True), _signed_in("x@y.z")) == "no_permission"


def test_admin_listed_as_approved_still_edits():
    meta = _meta(is_private=True, approved_emails_list=[ADMIN])
    assert get_user_permission(meta, _signed_in(ADMIN)) == "edit"


def test_signed_in_without_email_is_not_owner():
    meta = _meta(is_private=True)
    assert get_user_permission(meta, _signed_in(None)) == "no_permission"
    assert get_user_permission(_meta(), _signed_in(None)) == "view"


def test_email_match_is_exact():
    assert get_user_permission(_meta(is_private=True), _signed_in(OWNER.upper())) == "no_permission"


def test_loading_or_error_yields_no_permission_even_for_public():
    assert get_user_permission(_meta(), AuthContext(is_loading=True)) == "no_permission"
    assert get_user_permission(_meta(), AuthContext(is_authenticated=True, email=OWNER, error="expired")) == "no_permission"


def test_accepts_plain_mapping():
    meta = {"course_owner": OWNER, "course_admins": None, "approved_emails_list": None, "is_private": True}
    assert get_user_permission(meta, _signed_in(OWNER)) == "edit"


@pytest.mark.parametrize("missing", [None, {}])
def test_missing_metadata_raises(missing):
    with pytest.raises(CourseMetadataMissingError):
        get_user_permission(missing, AuthContext.anonymous())
