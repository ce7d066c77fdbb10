"""
Read-side persistence for metadata generation.

Tables (written by the external generation service, read here):
- `cedar_documents`: id, course_name, readable_filename, metadata_status,
  last_error, created_at
- `cedar_runs`: run_id, document_id, run_status, last_error
- `cedar_document_metadata`: id, document_id, run_id, field_name,
  field_value, confidence_score (0..1), extraction_method, created_at

Runs are not stored as entities; `group_history` derives them from field rows.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from .schemas import DocumentStatus, MetadataDocument, MetadataField, MetadataRun

logger = logging.getLogger("coursechat.metadata.repo")

DOCUMENTS_TABLE = "cedar_documents"
RUNS_TABLE = "cedar_runs"
FIELDS_TABLE = "cedar_document_metadata"
HISTORY_LIMIT = 50


class MetadataRepoProtocol(Protocol):
    def list_documents(self, course_name: str) -> List[MetadataDocument]:
        ...

    def document_statuses(self, document_ids: Sequence[int], run_id: Optional[int]) -> List[DocumentStatus]:
        ...

    def fields(self, run_id: int) -> List[MetadataField]:
        ...

    def history(self, course_name: str) -> List[MetadataRun]:
        ...


def as_percentage(score: Optional[float]) -> Optional[float]:
    return None if score is None else score * 100


def _prompt_text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


def group_history(rows: Iterable[Mapping[str, Any]], *, limit: int = HISTORY_LIMIT) -> List[MetadataRun]:
    """Group metadata field rows (newest first) into runs.

    The first row seen for a run supplies its timestamp; a `prompt` field row
    supplies the prompt. Rows without a run_id are ignored. A run with field
    rows is reported as completed.
    """
    runs: Dict[int, Dict[str, Any]] = {}
    for row in rows:
        run_id = row.get("run_id")
        if run_id is None:
            continue
        doc_id = row.get("document_id")
        run = runs.get(run_id)
        if run is None:
            run = {"run_id": run_id, "timestamp": row.get("created_at"), "prompt": "", "status": "completed", "document_ids": []}
            runs[run_id] = run
        if doc_id is not None and doc_id not in run["document_ids"]:
            run["document_ids"].append(doc_id)
        if row.get("field_name") == "prompt":
            run["prompt"] = _prompt_text(row.get("field_value"))
    ordered = sorted(runs.values(), key=lambda r: str(r["timestamp"] or ""), reverse=True)
    return [
        MetadataRun(**r, document_count=len(r["document_ids"]))
        for r in ordered[:limit]
    ]


class InMemoryMetadataRepo:
    """Dict-backed repo for tests; mirrors the table layout above."""

    def __init__(self) -> None:
        self.documents: List[Dict[str, Any]] = []
        self.run_statuses: Dict[tuple, Dict[str, Any]] = {}
        self.field_rows: List[Dict[str, Any]] = []

    def add_document(self, *, id: int, course_name: str, readable_filename: str, metadata_status: Optional[str] = None, created_at: str = "") -> None:
        self.documents.append(
            {"id": id, "course_name": course_name, "readable_filename": readable_filename, "metadata_status": metadata_status, "created_at": created_at}
        )

    def set_status(self, run_id: int, document_id: int, run_status: str, last_error: Optional[str] = None) -> None:
        self.run_statuses[(run_id, document_id)] = {"document_id": document_id, "run_status": run_status, "last_error": last_error}

    def add_field(self, **row: Any) -> None:
        self.field_rows.append(dict(row))

    def list_documents(self, course_name: str) -> List[MetadataDocument]:
        docs = [d for d in self.documents if d["course_name"] == course_name]
        docs.sort(key=lambda d: d.get("created_at") or "", reverse=True)
        return [MetadataDocument.model_validate(d) for d in docs]

    def document_statuses(self, document_ids: Sequence[int], run_id: Optional[int]) -> List[DocumentStatus]:
        out: List[DocumentStatus] = []
        for doc_id in document_ids:
            if run_id is not None:
                row = self.run_statuses.get((run_id, doc_id))
                if row:
                    out.append(DocumentStatus.model_validate(row))
                continue
            for d in self.documents:
                if d["id"] == doc_id:
                    out.append(DocumentStatus(document_id=doc_id, run_status=d.get("metadata_status"), last_error=d.get("last_error")))
        return out

    def fields(self, run_id: int) -> List[MetadataField]:
        rows = sorted((r for r in self.field_rows if r.get("run_id") == run_id), key=lambda r: r.get("created_at") or "")
        return [MetadataField.model_validate({**r, "confidence_score": as_percentage(r.get("confidence_score"))}) for r in rows]

    def history(self, course_name: str) -> List[MetadataRun]:
        doc_ids = {d["id"] for d in self.documents if d["course_name"] == course_name}
        rows = [r for r in self.field_rows if r.get("document_id") in doc_ids]
        rows.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        return group_history(rows)


class SupabaseMetadataRepo:
    """Supabase-backed implementation (service role client)."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def _table(self, name: str):
        return self._client.table(name)

    def list_documents(self, course_name: str) -> List[MetadataDocument]:
        resp = (
            self._table(DOCUMENTS_TABLE)
            .select("id, readable_filename, metadata_status")
            .eq("course_name", course_name)
            .order("created_at", desc=True)
            .execute()
        )
        return [MetadataDocument.model_validate(r) for r in resp.data or []]

    def document_statuses(self, document_ids: Sequence[int], run_id: Optional[int]) -> List[DocumentStatus]:
        ids = list(document_ids)
        if run_id is None:
            resp = self._table(DOCUMENTS_TABLE).select("id, metadata_status, last_error").in_("id", ids).execute()
            return [
                DocumentStatus(document_id=r["id"], run_status=r.get("metadata_status"), last_error=r.get("last_error"))
                for r in resp.data or []
            ]
        resp = (
            self._table(RUNS_TABLE)
            .select("document_id, run_status, last_error")
            .eq("run_id", run_id)
            .in_("document_id", ids)
            .execute()
        )
        return [DocumentStatus.model_validate(r) for r in resp.data or []]

    def fields(self, run_id: int) -> List[MetadataField]:
        resp = (
            self._table(FIELDS_TABLE)
            .select("id, document_id, field_name, field_value, confidence_score, extraction_method, created_at")
            .eq("run_id", run_id)
            .order("created_at")
            .execute()
        )
        return [
            MetadataField.model_validate({**r, "confidence_score": as_percentage(r.get("confidence_score"))})
            for r in resp.data or []
        ]

    def history(self, course_name: str) -> List[MetadataRun]:
        docs = self._table(DOCUMENTS_TABLE).select("id").eq("course_name", course_name).execute()
        doc_ids = [d["id"] for d in docs.data or []]
        if not doc_ids:
            return []
        resp = (
            self._table(FIELDS_TABLE)
            .select("id, created_at, run_id, field_name, field_value, document_id")
            .in_("document_id", doc_ids)
            .order("created_at", desc=True)
            .execute()
        )
        return group_history(resp.data or [])
