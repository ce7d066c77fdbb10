"""
Chat-API key persistence (`api_keys` table).

Row layout: `user_id` (legacy Clerk id or null), `keycloak_id`, `key`,
`is_active`, `modified_at`. One row per user; rotating or deleting updates
that row in place. Keys look like `uc_<32 hex>`.

Owner lookup: a legacy Clerk id (`user_...`) matches `user_id`, anything
else matches `keycloak_id`. All four operations use the same lookup.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple
import uuid

from coursechat.identity_access.bearer import BearerIdentity

logger = logging.getLogger("coursechat.keys")

KEYS_TABLE = "api_keys"
KEY_PREFIX = "uc_"


class ApiKeyExistsError(Exception):
    code = "api_key_exists"


class ApiKeyNotFoundError(Exception):
    code = "api_key_not_found"


@dataclass
class ApiKey:
    keycloak_id: str
    key: str
    is_active: bool = True
    user_id: Optional[str] = None


def new_api_key() -> str:
    return f"{KEY_PREFIX}{uuid.uuid4().hex}"


def owner_column(identity: BearerIdentity) -> Tuple[str, str]:
    preferred = identity.preferred_id
    if preferred.startswith("user_"):
        return "user_id", preferred
    return "keycloak_id", identity.sub


class ApiKeyRepoProtocol(Protocol):
    def active_key(self, identity: BearerIdentity) -> Optional[str]:
        ...

    def generate(self, identity: BearerIdentity) -> str:
        ...

    def rotate(self, identity: BearerIdentity) -> str:
        ...

    def deactivate(self, identity: BearerIdentity) -> None:
        ...


class InMemoryApiKeyRepo:
    def __init__(self) -> None:
        self.rows: List[ApiKey] = []

    def _rows_for(self, identity: BearerIdentity) -> List[ApiKey]:
        column, value = owner_column(identity)
        return [r for r in self.rows if getattr(r, column) == value]

    def active_key(self, identity: BearerIdentity) -> Optional[str]:
        for row in self._rows_for(identity):
            if row.is_active:
                return row.key
        return None

    def generate(self, identity: BearerIdentity) -> str:
        if self.active_key(identity):
            raise ApiKeyExistsError("user already has an active API key")
        key = new_api_key()
        rows = self._rows_for(identity)
        if rows:
            for row in rows:
                row.key, row.is_active = key, True
        else:
            self.rows.append(ApiKey(keycloak_id=identity.sub, user_id=identity.clerk_id, key=key))
        return key

    def rotate(self, identity: BearerIdentity) -> str:
        if not self.active_key(identity):
            raise ApiKeyNotFoundError("no active API key")
        key = new_api_key()
        for row in self._rows_for(identity):
            row.key, row.is_active = key, True
        return key

    def deactivate(self, identity: BearerIdentity) -> None:
        for row in self._rows_for(identity):
            row.is_active = False


class SupabaseApiKeyRepo:
    def __init__(self, client: Any) -> None:
        self._client = client

    def _select(self, identity: BearerIdentity, *, active_only: bool) -> List[Dict[str, Any]]:
        column, value = owner_column(identity)
        query = self._client.table(KEYS_TABLE).select("key, is_active").eq(column, value)
        if active_only:
            query = query.eq("is_active", True)
        return query.execute().data or []

    def _update(self, identity: BearerIdentity, values: Dict[str, Any]) -> None:
        column, value = owner_column(identity)
        values = {**values, "modified_at": datetime.now(timezone.utc).isoformat()}
        self._client.table(KEYS_TABLE).update(values).eq(column, value).execute()

    def active_key(self, identity: BearerIdentity) -> Optional[str]:
        rows = self._select(identity, active_only=True)
        return rows[0]["key"] if rows else None

    def generate(self, identity: BearerIdentity) -> str:
        rows = self._select(identity, active_only=False)
        if any(r.get("is_active") for r in rows):
            raise ApiKeyExistsError("user already has an active API key")
        key = new_api_key()
        if rows:
            self._update(identity, {"key": key, "is_active": True})
        else:
            self._client.table(KEYS_TABLE).insert(
                {"user_id": identity.clerk_id, "keycloak_id": identity.sub, "key": key, "is_active": True}
            ).execute()
        logger.info("API key generated")
        return key

    def rotate(self, identity: BearerIdentity) -> str:
        if not self._select(identity, active_only=True):
            raise ApiKeyNotFoundError("no active API key")
        key = new_api_key()
        self._update(identity, {"key": key, "is_active": True})
        logger.info("API key rotated")
        return key

    def deactivate(self, identity: BearerIdentity) -> None:
        self._update(identity, {"is_active": False})
        logger.info("API key deactivated")
