"""
Bearer token subject extraction for the chat-API key routes.

The key routes identify the caller by the `sub` claim of the Keycloak access
token sent as `Authorization: Bearer <jwt>`. The payload segment is only
base64-decoded here; its signature is NOT verified.
"""
from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Optional


class BearerTokenError(Exception):
    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass(frozen=True)
class BearerIdentity:
    sub: str
    user_id: Optional[str] = None
    clerk_id: Optional[str] = None

    @property
    def preferred_id(self) -> str:
        return self.clerk_id or self.sub


def _b64url_json(segment: str) -> dict:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    try:
        raw = base64.urlsafe_b64decode(segment + padding)
        data = json.loads(raw.decode("utf-8"))
    except (ValueError, binascii.Error, RecursionError) as exc:
        raise BearerTokenError("invalid_token_payload") from exc
    if not isinstance(data, dict):
        raise BearerTokenError("invalid_token_payload")
    return data


def identity_from_authorization(header: Optional[str]) -> BearerIdentity:
    """Parse `Authorization: Bearer <jwt>` into the caller's identifiers."""
    if not header or not header.startswith("Bearer "):
        raise BearerTokenError("missing_bearer")
    token = header[len("Bearer "):].strip()
    parts = token.split(".")
    if len(parts) < 2 or not parts[1]:
        raise BearerTokenError("invalid_token_payload")
    claims = _b64url_json(parts[1])
    sub = claims.get("sub")
    if not isinstance(sub, str) or not sub:
        raise BearerTokenError("missing_subject")
    user_id = claims.get("user_id")
    clerk_id = claims.get("clerk_id")
    return BearerIdentity(
        sub=sub,
        user_id=user_id if isinstance(user_id, str) else None,
        clerk_id=clerk_id if isinstance(clerk_id, str) else None,
    )
