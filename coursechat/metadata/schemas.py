"""
Schemas for metadata generation payloads.

Every payload that crosses a network boundary (external generation service,
status/fields/history queries) is validated into one of these models. Calls
into the backend return a tagged `Ok | Err` result instead of raising.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, List, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.functional_validators import field_validator

RUNNING_STATUSES = frozenset({"running"})
FAILED_STATUS = "failed"


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class GenerateMetadataRequest(_Lenient):
    prompt: str = Field(..., min_length=1)
    document_ids: List[int] = Field(..., min_length=1)

    @field_validator("prompt")
    @classmethod
    def _strip_prompt(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("prompt must not be blank")
        return stripped


class GenerateMetadataResponse(_Lenient):
    run_id: int
    status: str = "started"
    error: Optional[str] = None


class DocumentStatus(_Lenient):
    document_id: int
    run_status: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.run_status in RUNNING_STATUSES

    @property
    def is_failed(self) -> bool:
        return self.run_status == FAILED_STATUS


class MetadataField(_Lenient):
    document_id: int
    field_name: str
    field_value: Any = None
    confidence_score: Optional[float] = None
    extraction_method: Optional[str] = None
    created_at: Optional[str] = None


class MetadataRun(_Lenient):
    run_id: int
    timestamp: Optional[str] = None
    prompt: str = ""
    status: Literal["completed", "failed", "running"] = "completed"
    document_ids: List[int] = Field(default_factory=list)
    document_count: int = 0


class MetadataDocument(_Lenient):
    id: int
    readable_filename: Optional[str] = None
    metadata_status: Optional[str] = None


T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    kind: Literal["ok"] = "ok"


@dataclass(frozen=True)
class Err:
    code: str
    detail: Optional[str] = None
    kind: Literal["error"] = "error"


Result = Union[Ok[T], Err]
