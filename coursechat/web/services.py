"""
Service container built once per application.

`build_services` constructs every client (Supabase repos, the outbound httpx
client, the OIDC client, stores, the metadata run registry) from `Settings`.
The app factory stores the result on `app.state.services`; routers read it
through `get_services(request)`. Tests pass their own container to
`create_app` to swap in fakes.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request

from coursechat.courses.repo import CourseRepoProtocol
from coursechat.identity_access.oidc import OIDCClient, OIDCConfig
from coursechat.identity_access.stores import SessionStore, StateStore
from coursechat.identity_access.tokens import JWKSCache
from coursechat.ingest.clients import IngestClient
from coursechat.keys.repo import ApiKeyRepoProtocol
from coursechat.metadata.backend import MetadataBackendProtocol, ServiceMetadataBackend
from coursechat.metadata.orchestrator import MetadataRunOrchestrator
from coursechat.metadata.repo import MetadataRepoProtocol
from coursechat.metadata.runs import RunRegistry

from .config import Settings
from .supabase_wiring import build_repos


@dataclass
class AppServices:
    settings: Settings
    courses: CourseRepoProtocol
    metadata: MetadataRepoProtocol
    keys: ApiKeyRepoProtocol
    sessions: SessionStore
    states: StateStore
    oidc_cfg: OIDCConfig
    oidc: OIDCClient
    jwks: JWKSCache
    http: httpx.AsyncClient
    metadata_backend: MetadataBackendProtocol
    runs: RunRegistry
    ingest: IngestClient

    async def aclose(self) -> None:
        await self.runs.aclose()
        await self.http.aclose()


def oidc_config(settings: Settings) -> OIDCConfig:
    return OIDCConfig(
        base_url=settings.kc_base_url,
        realm=settings.kc_realm,
        client_id=settings.kc_client_id,
        redirect_uri=settings.redirect_uri,
        public_base_url=settings.kc_public_base_url,
    )


def run_registry(settings: Settings, backend: MetadataBackendProtocol) -> RunRegistry:
    return RunRegistry(
        lambda: MetadataRunOrchestrator(
            backend,
            poll_interval=settings.metadata_poll_seconds,
            max_polls=settings.metadata_max_polls,
        )
    )


def build_services(
    settings: Settings,
    *,
    http: Optional[httpx.AsyncClient] = None,
    repos=None,
    metadata_backend: Optional[MetadataBackendProtocol] = None,
) -> AppServices:
    repos = repos or build_repos(settings)
    http = http or httpx.AsyncClient(timeout=settings.upstream_timeout_seconds)
    backend = metadata_backend or ServiceMetadataBackend(
        http=http, repo=repos.metadata, service_url=settings.metadata_service_url
    )
    cfg = oidc_config(settings)
    return AppServices(
        settings=settings,
        courses=repos.courses,
        metadata=repos.metadata,
        keys=repos.keys,
        sessions=SessionStore(),
        states=StateStore(),
        oidc_cfg=cfg,
        oidc=OIDCClient(cfg),
        jwks=JWKSCache(),
        http=http,
        metadata_backend=backend,
        runs=run_registry(settings, backend),
        ingest=IngestClient(
            http=http,
            crawler_url=settings.crawler_url,
            canvas_url=settings.canvas_ingest_url,
            queue_url=settings.ingest_queue_url,
            beam_api_key=settings.beam_api_key,
        ),
    )


def get_services(request: Request) -> AppServices:
    return request.app.state.services
