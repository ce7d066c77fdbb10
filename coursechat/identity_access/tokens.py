"""
ID token verification against the Keycloak realm keys.

The realm JWKS is fetched with `requests` and cached per issuer. A token whose
key id is not in the cached set triggers a single refetch, so a realm key
rotation does not lock users out until the cache expires.

Security: Only RS256 is accepted, whatever the JWKS advertises. Signature,
issuer and audience are checked by python-jose; exp/iat/nbf are checked here
with a small clock-skew allowance.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Any, Dict, Optional

import requests
from jose import jwt
from jose.exceptions import JOSEError

from .oidc import OIDCConfig

logger = logging.getLogger("coursechat.identity_access")

ALLOWED_ALGORITHMS = ["RS256"]
MAX_CLOCK_SKEW_SECONDS = 5
JWKS_TIMEOUT_SECONDS = 5

Claims = Dict[str, Any]


class IDTokenVerificationError(Exception):
    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


def fetch_jwks(url: str) -> Dict[str, Any]:
    try:
        resp = requests.get(url, timeout=JWKS_TIMEOUT_SECONDS)
    except requests.RequestException as exc:
        raise IDTokenVerificationError("jwks_fetch_failed") from exc
    if resp.status_code != 200:
        raise IDTokenVerificationError("jwks_fetch_failed")
    try:
        jwks = resp.json()
    except ValueError as exc:
        raise IDTokenVerificationError("jwks_invalid") from exc
    if not isinstance(jwks, dict) or not isinstance(jwks.get("keys"), list):
        raise IDTokenVerificationError("jwks_invalid")
    return jwks


@dataclass
class _Cached:
    jwks: Dict[str, Any]
    fetched_at: float


class JWKSCache:
    def __init__(self, ttl_seconds: int = 300):
        self.ttl_seconds = ttl_seconds
        self._by_issuer: Dict[str, _Cached] = {}

    def get(self, cfg: OIDCConfig, *, refresh: bool = False) -> Dict[str, Any]:
        now = time.time()
        cached = self._by_issuer.get(cfg.issuer)
        if cached and not refresh and now - cached.fetched_at < self.ttl_seconds:
            return cached.jwks
        jwks = fetch_jwks(f"{cfg.issuer}/protocol/openid-connect/certs")
        self._by_issuer[cfg.issuer] = _Cached(jwks=jwks, fetched_at=now)
        return jwks


def find_key(jwks: Dict[str, Any], kid: str) -> Optional[Dict[str, Any]]:
    for key in jwks.get("keys") or []:
        if isinstance(key, dict) and key.get("kid") == kid:
            return key
    return None


def check_time_claims(claims: Claims, now: Optional[float] = None) -> None:
    """Reject expired tokens and tokens issued or valid only in the future."""
    now = time.time() if now is None else now
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)) or exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise IDTokenVerificationError("token_expired")
    for name in ("iat", "nbf"):
        value = claims.get(name)
        if isinstance(value, (int, float)) and value - MAX_CLOCK_SKEW_SECONDS > now:
            raise IDTokenVerificationError("token_not_yet_valid")


def verify_id_token(*, id_token: str, cfg: OIDCConfig, cache: JWKSCache) -> Claims:
    """Return the verified claims of an ID token or raise IDTokenVerificationError."""
    try:
        kid = jwt.get_unverified_header(id_token).get("kid")
    except JOSEError as exc:
        raise IDTokenVerificationError("invalid_id_token") from exc
    if not kid:
        raise IDTokenVerificationError("missing_kid")

    key = find_key(cache.get(cfg), kid)
    if key is None:
        logger.info("Unknown signing key id, refreshing JWKS")
        key = find_key(cache.get(cfg, refresh=True), kid)
    if key is None:
        raise IDTokenVerificationError("unknown_kid")

    try:
        claims = jwt.decode(
            id_token,
            key,
            algorithms=ALLOWED_ALGORITHMS,
            audience=cfg.client_id,
            issuer=cfg.issuer,
            # time claims are checked below with our own skew allowance
            options={"verify_exp": False, "verify_iat": False, "verify_nbf": False, "verify_at_hash": False},
        )
    except JOSEError as exc:
        raise IDTokenVerificationError("invalid_id_token") from exc

    check_time_claims(claims)
    return claims
