"""
Security config guard tests.

Production/staging must fail fast on placeholder credentials or plain HTTP
towards the IdP; development stays permissive.
"""
from __future__ import annotations

from dataclasses import replace

import pytest

from coursechat.web import config as cfg
from coursechat.web.main import create_app

PROD = cfg.Settings(
    environment="prod",
    kc_base_url="https://id.example.com",
    kc_public_base_url="https://id.example.com",
    redirect_uri="https://chat.example.com/auth/callback",
    supabase_url="https://db.example.com",
    supabase_service_role_key="REAL_NON_DUMMY",
    beam_api_key="beam-real",
)


def test_valid_prod_config_passes():
    cfg.ensure_secure_config_on_startup(PROD)


@pytest.mark.parametrize(
    "changes",
    [
        {"supabase_service_role_key": "DUMMY_DO_NOT_USE"},
        {"supabase_service_role_key": ""},
        {"supabase_url": ""},
        {"kc_base_url": "http://keycloak:8080"},
        {"kc_public_base_url": "http://id.example.com"},
        {"redirect_uri": "http://chat.example.com/auth/callback"},
        {"beam_api_key": ""},
        {"environment": "staging", "beam_api_key": ""},
    ],
)
def test_insecure_prod_config_refuses_to_start(changes):
    with pytest.raises(SystemExit):
        cfg.ensure_secure_config_on_startup(replace(PROD, **changes))


def test_dev_allows_dummy_everything():
    cfg.ensure_secure_config_on_startup(cfg.Settings(environment="dev", supabase_service_role_key="DUMMY_DO_NOT_USE"))


def test_create_app_runs_the_guard():
    with pytest.raises(SystemExit):
        create_app(replace(PROD, beam_api_key=""))


def test_load_settings_reads_environment():
    settings = cfg.load_settings(
        {
            "COURSECHAT_ENV": "Production",
            "KC_BASE_URL": "https://id.example.com",
            "SUPABASE_SERVICE_ROLE_KEY": "  key  ",
            "METADATA_POLL_SECONDS": "2.5",
            "METADATA_MAX_POLLS": "120",
            "COURSECHAT_TRUST_PROXY": "TRUE",
        }
    )
    assert settings.is_prod_like
    assert settings.kc_public_base_url == "https://id.example.com"
    assert settings.supabase_service_role_key == "key"
    assert settings.metadata_poll_seconds == 2.5
    assert settings.metadata_max_polls == 120
    assert settings.trust_proxy is True


def test_load_settings_defaults_tolerate_garbage():
    settings = cfg.load_settings({"METADATA_POLL_SECONDS": "soon", "METADATA_MAX_POLLS": "many"})
    assert settings.environment == "dev"
    assert settings.metadata_poll_seconds == 5.0
    assert settings.metadata_max_polls is None
    assert settings.kc_realm == "illinois-chat-realm"
