"""
In-memory stores for pending sign-ins (StateStore) and sessions (SessionStore).

Why: Keep the PKCE code_verifier and the session data server-side; the browser
only carries the encoded `state` during sign-in and an opaque session id
afterwards.

Security: A pending sign-in is consumed exactly once; `pop_valid` removes it
whether or not it is still fresh, so a revisited callback URL cannot replay
a code exchange.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Optional
import secrets
import time


def _now() -> int:
    return int(time.time())


@dataclass
class StateRecord:
    state: str
    code_verifier: str
    nonce: Optional[str]
    expires_at: int


class StateStore:
    def __init__(self):
        self._data: Dict[str, StateRecord] = {}

    def create(
        self,
        *,
        make_state: Callable[[int], str],
        code_verifier: str,
        nonce: Optional[str] = None,
        ttl_seconds: int = 900,
    ) -> StateRecord:
        """Register a pending sign-in under a fresh state token.

        `make_state` receives a millisecond timestamp and returns the encoded
        token; the timestamp is bumped until the token is unused.
        """
        self._sweep(_now())
        ts = int(time.time() * 1000)
        state = make_state(ts)
        while state in self._data:
            ts += 1
            state = make_state(ts)
        rec = StateRecord(state=state, code_verifier=code_verifier, nonce=nonce, expires_at=_now() + ttl_seconds)
        self._data[state] = rec
        return rec

    def _sweep(self, now: int) -> None:
        # abandoned sign-ins never reach the callback
        for key in [k for k, r in self._data.items() if r.expires_at < now]:
            del self._data[key]

    def pop_valid(self, state: str) -> Optional[StateRecord]:
        rec = self._data.pop(state, None)
        if not rec:
            return None
        if rec.expires_at < _now():
            return None
        return rec


@dataclass
class SessionRecord:
    session_id: str
    sub: str
    email: str
    name: str
    id_token: Optional[str] = None
    expires_at: Optional[int] = None
    ttl_seconds: int = 3600


class SessionStore:
    def __init__(self):
        self._data: Dict[str, SessionRecord] = {}

    def create(self, *, sub: str, email: str, name: str, id_token: Optional[str] = None, ttl_seconds: int = 3600) -> SessionRecord:
        sid = secrets.token_urlsafe(24)
        rec = SessionRecord(
            session_id=sid,
            sub=sub,
            email=email,
            name=name,
            id_token=id_token,
            expires_at=_now() + ttl_seconds,
            ttl_seconds=ttl_seconds,
        )
        self._data[sid] = rec
        return rec

    def get(self, session_id: str) -> Optional[SessionRecord]:
        rec = self._data.get(session_id)
        if not rec:
            return None
        if rec.expires_at and rec.expires_at < _now():
            self._data.pop(session_id, None)
            return None
        return rec

    def delete(self, session_id: str) -> None:
        self._data.pop(session_id, None)
