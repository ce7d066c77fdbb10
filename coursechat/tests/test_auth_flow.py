"""
Sign-in flow through the web adapter.

Token exchange and ID token verification are monkeypatched; everything else
(state encoding, the pending-sign-in store, sessions, redirects) is real.
"""
from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest

from coursechat.identity_access.state_codec import decode_state, encode_state
from coursechat.identity_access.tokens import IDTokenVerificationError
from coursechat.web.auth_utils import SESSION_COOKIE_NAME
from coursechat.web.routes import auth as auth_routes

from conftest import sign_in

pytestmark = pytest.mark.anyio("asyncio")


class FakeOIDC:
    def __init__(self, real, *, fail: bool = False):
        self._real = real
        self.fail = fail
        self.exchanges = []

    def build_authorization_url(self, **kwargs):
        return self._real.build_authorization_url(**kwargs)

    def build_logout_url(self, **kwargs):
        return self._real.build_logout_url(**kwargs)

    def exchange_code_for_tokens(self, *, code: str, code_verifier: str):
        self.exchanges.append((code, code_verifier))
        if self.fail:
            raise ValueError("token_exchange_failed")
        return {"id_token": "fake-id-token"}


def _query(location: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(location).query).items()}


@pytest.fixture
def fake_oidc(services, monkeypatch):
    fake = FakeOIDC(services.oidc)
    monkeypatch.setattr(services, "oidc", fake)
    return fake


@pytest.fixture
def accept_tokens(monkeypatch):
    claims = {"sub": "kc-123", "email": "owner@illinois.edu", "name": "Owner"}

    def fake_verify(*, id_token, cfg, cache):
        return dict(claims)

    monkeypatch.setattr(auth_routes, "verify_id_token", fake_verify)
    return claims


async def _login(client, redirect: str) -> dict:
    r = await client.get("/auth/login", params={"redirect": redirect}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["cache-control"] == "private, no-store"
    return _query(r.headers["location"])


async def test_login_redirects_to_keycloak_with_pkce_and_encoded_state(client):
    r = await client.get("/auth/login?redirect=/cs101/chat?tab=x&state=attacker", follow_redirects=False)
    loc = r.headers["location"]
    assert loc.startswith("https://login.test/realms/illinois-chat-realm/protocol/openid-connect/auth?")
    q = _query(loc)
    assert q["code_challenge_method"] == "S256"
    assert q["nonce"]
    assert q["state"] != "attacker"
    assert decode_state(q["state"])["redirect"] == "/cs101/chat?tab=x"


async def test_login_sanitizes_external_redirect(client):
    q = await _login(client, "https://evil.com/steal")
    assert decode_state(q["state"])["redirect"] == "/"


async def test_sign_in_alias_behaves_like_login(client):
    r = await client.get("/sign-in", params={"redirect": "/new?course_name=cs101&x=1"}, follow_redirects=False)
    assert r.status_code == 302
    assert decode_state(_query(r.headers["location"])["state"])["redirect"] == "/new?course_name=cs101"


async def test_callback_creates_session_and_redirects_cleanly(client, services, fake_oidc, accept_tokens, monkeypatch):
    q = await _login(client, "/cs101/materials?tab=docs")
    accept_tokens["nonce"] = q["nonce"]

    r = await client.get("/auth/callback", params={"code": "abc", "state": q["state"]}, follow_redirects=False)

    assert r.status_code == 302
    assert r.headers["location"] == "/cs101/materials?tab=docs"
    assert r.headers["cache-control"] == "private, no-store"
    cookie = r.headers["set-cookie"]
    assert f"{SESSION_COOKIE_NAME}=" in cookie
    assert "HttpOnly" in cookie and "Secure" in cookie and "samesite=lax" in cookie.lower()
    assert fake_oidc.exchanges and fake_oidc.exchanges[0][0] == "abc"
    sid = cookie.split(f"{SESSION_COOKIE_NAME}=", 1)[1].split(";", 1)[0]
    rec = services.sessions.get(sid)
    assert rec.sub == "kc-123" and rec.email == "owner@illinois.edu"


async def test_callback_state_is_consumed_once(client, fake_oidc, accept_tokens):
    q = await _login(client, "/cs101/chat")
    accept_tokens["nonce"] = q["nonce"]
    first = await client.get("/auth/callback", params={"code": "abc", "state": q["state"]}, follow_redirects=False)
    assert first.headers["location"] == "/cs101/chat"

    replay = await client.get("/auth/callback", params={"code": "abc", "state": q["state"]}, follow_redirects=False)
    assert replay.status_code == 302
    assert replay.headers["location"] == "/"
    assert "set-cookie" not in replay.headers
    assert len(fake_oidc.exchanges) == 1


async def test_callback_without_code_goes_home(client, fake_oidc):
    r = await client.get("/auth/callback", params={"state": encode_state("/cs101")}, follow_redirects=False)
    assert r.status_code == 302 and r.headers["location"] == "/"
    assert fake_oidc.exchanges == []


async def test_callback_with_forged_state_goes_home(client, fake_oidc):
    r = await client.get("/auth/callback", params={"code": "abc", "state": "%%%garbage"}, follow_redirects=False)
    assert r.headers["location"] == "/"
    assert fake_oidc.exchanges == []


async def test_callback_token_exchange_failure(client, fake_oidc):
    fake_oidc.fail = True
    q = await _login(client, "/")
    r = await client.get("/auth/callback", params={"code": "abc", "state": q["state"]}, follow_redirects=False)
    assert r.status_code == 400
    assert r.json() == {"error": "token_exchange_failed"}
    assert r.headers["cache-control"] == "private, no-store"


async def test_callback_rejects_invalid_id_token(client, fake_oidc, monkeypatch):
    def reject(**kwargs):
        raise IDTokenVerificationError("unknown_kid")

    monkeypatch.setattr(auth_routes, "verify_id_token", reject)
    q = await _login(client, "/")
    r = await client.get("/auth/callback", params={"code": "abc", "state": q["state"]}, follow_redirects=False)
    assert r.status_code == 400 and r.json() == {"error": "invalid_id_token"}


async def test_callback_rejects_nonce_mismatch(client, fake_oidc, accept_tokens):
    accept_tokens["nonce"] = "other"
    q = await _login(client, "/")
    r = await client.get("/auth/callback", params={"code": "abc", "state": q["state"]}, follow_redirects=False)
    assert r.status_code == 400 and r.json() == {"error": "invalid_nonce"}


async def test_is_signed_in(client, services):
    r = await client.get("/api/UIUC-api/isSignedIn")
    assert r.json() == {"userId": None}
    sign_in(client, services, "owner@illinois.edu", sub="kc-1")
    r = await client.get("/api/UIUC-api/isSignedIn")
    assert r.json() == {"userId": "kc-1"}


async def test_logout_drops_session_and_redirects_to_end_session(client, services):
    sid = sign_in(client, services, "owner@illinois.edu")
    r = await client.get("/auth/logout", params={"redirect": "/cs101"}, follow_redirects=False)
    assert r.status_code == 302
    loc = r.headers["location"]
    assert loc.startswith("https://login.test/realms/illinois-chat-realm/protocol/openid-connect/logout?")
    q = _query(loc)
    assert q["post_logout_redirect_uri"] == "http://test/cs101"
    assert q["client_id"] == "illinois-chat"
    assert services.sessions.get(sid) is None
    assert "max-age=0" in r.headers["set-cookie"].lower()
