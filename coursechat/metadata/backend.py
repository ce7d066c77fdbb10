"""
Backend port for the metadata run orchestrator and its service implementation.

The orchestrator needs three calls: submit a generation request, read the
per-document statuses of a run, and read the extracted fields of a run.
`ServiceMetadataBackend` sends the first to the external generation service
over HTTP and answers the other two from the metadata repo. Every call
returns `Ok | Err`; nothing is retried.
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Protocol, Sequence

import httpx
from pydantic import ValidationError

from .repo import MetadataRepoProtocol
from .schemas import DocumentStatus, Err, GenerateMetadataResponse, MetadataField, Ok, Result

logger = logging.getLogger("coursechat.metadata.backend")


class MetadataBackendProtocol(Protocol):
    async def generate(self, prompt: str, document_ids: Sequence[int]) -> Result[GenerateMetadataResponse]:
        ...

    async def statuses(self, document_ids: Sequence[int], run_id: int) -> Result[List[DocumentStatus]]:
        ...

    async def fields(self, run_id: int) -> Result[List[MetadataField]]:
        ...


class ServiceMetadataBackend:
    def __init__(self, *, http: httpx.AsyncClient, repo: MetadataRepoProtocol, service_url: str) -> None:
        self._http = http
        self._repo = repo
        self._generate_url = f"{service_url.rstrip('/')}/generateMetadata"

    async def generate(self, prompt: str, document_ids: Sequence[int]) -> Result[GenerateMetadataResponse]:
        body = {"metadata_prompt": prompt, "document_ids": list(document_ids)}
        try:
            resp = await self._http.post(self._generate_url, json=body)
        except httpx.HTTPError as exc:
            logger.warning("Metadata service unreachable: %s", exc.__class__.__name__)
            return Err("upstream_unreachable", exc.__class__.__name__)
        if resp.status_code >= 300:
            logger.warning("Metadata service rejected request: status=%s", resp.status_code)
            return Err("upstream_status", str(resp.status_code))
        try:
            parsed = GenerateMetadataResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            logger.warning("Metadata service returned invalid payload: %s", exc.__class__.__name__)
            return Err("invalid_payload", exc.__class__.__name__)
        if parsed.status == "failed":
            return Err("generation_failed", parsed.error)
        return Ok(parsed)

    async def statuses(self, document_ids: Sequence[int], run_id: int) -> Result[List[DocumentStatus]]:
        return await self._from_repo("statuses", self._repo.document_statuses, list(document_ids), run_id)

    async def fields(self, run_id: int) -> Result[List[MetadataField]]:
        return await self._from_repo("fields", self._repo.fields, run_id)

    async def _from_repo(self, what: str, fn, *args) -> Result:
        # Repo clients are blocking; keep them off the event loop.
        try:
            value = await asyncio.to_thread(fn, *args)
        except Exception as exc:
            logger.warning("Metadata %s query failed: %s", what, exc.__class__.__name__)
            return Err("store_failed", exc.__class__.__name__)
        return Ok(value)


def first_error(statuses: List[DocumentStatus]) -> Optional[str]:
    for s in statuses:
        if s.is_failed:
            return s.last_error or f"document {s.document_id} failed"
    return None
