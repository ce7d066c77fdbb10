"""
Configuration and startup security checks for coursechat.

Why: Course data and API keys live behind this service. A production
deployment that silently falls back to development defaults (plain HTTP to
the IdP, a placeholder service-role key) must not start.

Settings are read once from the environment into a frozen `Settings` object;
the app factory passes it to everything it builds.
"""
from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Mapping, Optional


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def _float(raw: Optional[str], default: float) -> float:
    try:
        return float(raw) if raw not in (None, "") else default
    except ValueError:
        return default


def _optional_int(raw: Optional[str]) -> Optional[int]:
    try:
        return int(raw) if raw not in (None, "") else None
    except ValueError:
        return None


@dataclass(frozen=True)
class Settings:
    environment: str = "dev"
    kc_base_url: str = "http://localhost:8080"
    kc_public_base_url: Optional[str] = None
    kc_realm: str = "illinois-chat-realm"
    kc_client_id: str = "illinois-chat"
    redirect_uri: str = "https://chat.localhost/auth/callback"
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    metadata_service_url: str = "http://localhost:8000"
    crawler_url: str = "http://localhost:3000"
    canvas_ingest_url: str = "http://localhost:8001"
    ingest_queue_url: str = "https://app.beam.cloud/taskqueue/ingest_task_queue/latest"
    beam_api_key: str = ""
    metadata_poll_seconds: float = 5.0
    metadata_max_polls: Optional[int] = None
    upstream_timeout_seconds: float = 30.0
    trust_proxy: bool = False

    @property
    def is_prod_like(self) -> bool:
        return _is_prod_like(self.environment)


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ
    base = env.get("KC_BASE_URL", "http://localhost:8080")
    return Settings(
        environment=(env.get("COURSECHAT_ENV", "dev") or "dev").lower(),
        kc_base_url=base,
        kc_public_base_url=env.get("KC_PUBLIC_BASE_URL") or base,
        kc_realm=env.get("KC_REALM", "illinois-chat-realm"),
        kc_client_id=env.get("KC_CLIENT_ID", "illinois-chat"),
        redirect_uri=env.get("REDIRECT_URI", "https://chat.localhost/auth/callback"),
        supabase_url=(env.get("SUPABASE_URL") or "").strip(),
        supabase_service_role_key=(env.get("SUPABASE_SERVICE_ROLE_KEY") or "").strip(),
        metadata_service_url=env.get("METADATA_SERVICE_URL", "http://localhost:8000"),
        crawler_url=env.get("CRAWLER_URL", "http://localhost:3000"),
        canvas_ingest_url=env.get("CANVAS_INGEST_URL", "http://localhost:8001"),
        ingest_queue_url=env.get("INGEST_QUEUE_URL", "https://app.beam.cloud/taskqueue/ingest_task_queue/latest"),
        beam_api_key=(env.get("BEAM_API_KEY") or "").strip(),
        metadata_poll_seconds=_float(env.get("METADATA_POLL_SECONDS"), 5.0),
        metadata_max_polls=_optional_int(env.get("METADATA_MAX_POLLS")),
        upstream_timeout_seconds=_float(env.get("UPSTREAM_TIMEOUT_SECONDS"), 30.0),
        trust_proxy=(env.get("COURSECHAT_TRUST_PROXY", "false") or "").lower() == "true",
    )


def ensure_secure_config_on_startup(settings: Optional[Settings] = None) -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - Supabase URL and service role key must be set; the key must not be a
      known dummy placeholder.
    - Keycloak endpoints and the redirect URI must use HTTPS.
    - The ingest queue key must be set.
    """
    settings = settings or load_settings()
    if not settings.is_prod_like:
        return  # dev/test remain permissive

    # 1) Supabase
    srole = settings.supabase_service_role_key
    if not srole or srole.upper() == "DUMMY_DO_NOT_USE":
        raise SystemExit(
            "Refusing to start: SUPABASE_SERVICE_ROLE_KEY is unset or a dummy placeholder in production."
        )
    if not settings.supabase_url:
        raise SystemExit("Refusing to start: SUPABASE_URL is unset in production.")

    # 2) HTTPS towards the IdP and for the callback
    def _must_be_https(url_value: Optional[str], var_name: str) -> None:
        if not url_value:
            return
        if url_value.strip().lower().startswith("http://"):
            raise SystemExit(
                f"Refusing to start: {var_name} must use https in production (got http)."
            )

    _must_be_https(settings.kc_base_url, "KC_BASE_URL")
    _must_be_https(settings.kc_public_base_url, "KC_PUBLIC_BASE_URL")
    _must_be_https(settings.redirect_uri, "REDIRECT_URI")

    # 3) File ingest needs its queue credential
    if not settings.beam_api_key:
        raise SystemExit("Refusing to start: BEAM_API_KEY is unset in production.")
