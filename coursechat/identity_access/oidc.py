"""
OIDC client for the Keycloak realm that signs users into coursechat.

Browser-facing URLs (authorize, end-session) use the public host; the token
exchange and the issuer use the internal host the server reaches Keycloak on.
PKCE is always S256. The caller keeps the verifier and nonce server-side (see
`identity_access.stores.StateStore`).
"""
from __future__ import annotations

import base64
from dataclasses import dataclass
import hashlib
import os
from typing import Any, Dict, Optional
from urllib.parse import urlencode

# module alias so tests can monkeypatch `http.post`
import requests as http

HTTP_TIMEOUT_SECONDS = 5


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


@dataclass(frozen=True)
class PKCEPair:
    verifier: str
    challenge: str

    @classmethod
    def new(cls) -> "PKCEPair":
        verifier = OIDCClient.generate_code_verifier()
        return cls(verifier=verifier, challenge=OIDCClient.code_challenge_s256(verifier))


@dataclass(frozen=True)
class OIDCConfig:
    base_url: str
    realm: str
    client_id: str
    redirect_uri: str
    public_base_url: Optional[str] = None
    scope: str = "openid profile email"

    def _realm_url(self, base: str) -> str:
        return f"{base.rstrip('/')}/realms/{self.realm}"

    @property
    def issuer(self) -> str:
        return self._realm_url(self.base_url)

    @property
    def auth_endpoint(self) -> str:
        return f"{self._realm_url(self.public_base_url or self.base_url)}/protocol/openid-connect/auth"

    @property
    def logout_endpoint(self) -> str:
        return f"{self._realm_url(self.public_base_url or self.base_url)}/protocol/openid-connect/logout"

    @property
    def token_endpoint(self) -> str:
        return f"{self.issuer}/protocol/openid-connect/token"


class OIDCClient:
    def __init__(self, config: OIDCConfig):
        self.cfg = config

    @staticmethod
    def generate_code_verifier(length: int = 64) -> str:
        """URL-safe verifier; 64 random bytes encode to 86 chars (RFC 7636 allows 43..128)."""
        return _b64url(os.urandom(length))

    @staticmethod
    def code_challenge_s256(code_verifier: str) -> str:
        return _b64url(hashlib.sha256(code_verifier.encode("ascii")).digest())

    def build_authorization_url(self, *, state: str, code_challenge: str, nonce: Optional[str] = None) -> str:
        params = {
            "response_type": "code",
            "client_id": self.cfg.client_id,
            "redirect_uri": self.cfg.redirect_uri,
            "scope": self.cfg.scope,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        if nonce:
            params["nonce"] = nonce
        return f"{self.cfg.auth_endpoint}?{urlencode(params)}"

    def build_logout_url(self, *, post_logout_redirect_uri: str, id_token_hint: Optional[str] = None) -> str:
        """End-session URL; Keycloak needs either the id_token_hint or the client_id."""
        params = {"post_logout_redirect_uri": post_logout_redirect_uri}
        if id_token_hint:
            params["id_token_hint"] = id_token_hint
        else:
            params["client_id"] = self.cfg.client_id
        return f"{self.cfg.logout_endpoint}?{urlencode(params)}"

    def exchange_code_for_tokens(self, *, code: str, code_verifier: str) -> Dict[str, Any]:
        """POST the authorization code to the token endpoint; ValueError on any non-200."""
        resp = http.post(
            self.cfg.token_endpoint,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "client_id": self.cfg.client_id,
                "redirect_uri": self.cfg.redirect_uri,
                "code_verifier": code_verifier,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=HTTP_TIMEOUT_SECONDS,
        )
        if resp.status_code != 200:
            raise ValueError("token_exchange_failed")
        return resp.json()
