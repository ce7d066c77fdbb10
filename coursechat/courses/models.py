"""Course metadata model (per-course tenant configuration)."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.functional_validators import field_validator


class CourseMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    course_owner: str = ""
    course_admins: List[str] = Field(default_factory=list)
    approved_emails_list: List[str] = Field(default_factory=list)
    is_private: bool = False
    banner_image_s3: Optional[str] = None
    course_intro_message: Optional[str] = None
    openai_api_key: Optional[str] = None
    example_questions: Optional[List[str]] = None

    @field_validator("course_admins", "approved_emails_list", mode="before")
    @classmethod
    def _none_to_list(cls, v):
        return [] if v is None else v

    def public_dict(self) -> Dict[str, Any]:
        """Serialize for API responses; the stored OpenAI key is never echoed."""
        data = self.model_dump()
        data["openai_api_key"] = None
        return data


class CourseMetadataPatch(BaseModel):
    """Partial update accepted by the upsert endpoint; unset fields keep stored values."""

    model_config = ConfigDict(extra="ignore")

    course_owner: Optional[str] = None
    course_admins: Optional[List[str]] = None
    approved_emails_list: Optional[List[str]] = None
    is_private: Optional[bool] = None
    banner_image_s3: Optional[str] = None
    course_intro_message: Optional[str] = None
    openai_api_key: Optional[str] = None
    example_questions: Optional[List[str]] = None

    def apply_to(self, current: Optional[CourseMetadata]) -> CourseMetadata:
        base = current.model_dump() if current else CourseMetadata().model_dump()
        base.update(self.model_dump(exclude_unset=True, exclude_none=True))
        return CourseMetadata.model_validate(base)


def new_course_metadata(owner_email: str) -> CourseMetadata:
    """Defaults written when a course receives its first materials."""
    return CourseMetadata(course_owner=owner_email, course_admins=[], approved_emails_list=[], is_private=False)
