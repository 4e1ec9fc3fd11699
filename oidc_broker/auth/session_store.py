"""
OIDC Session Store
==================

Keyed storage for in-flight and completed authentication sessions.

A session is created by the begin request, completed once by the provider
callback and read by client polls. Records are immutable pydantic models:
``commit`` builds a new record from the old one and swaps it in under the
store lock, so a reader sees either the old record or the new one, never a
mix.

The store lock only covers dictionary operations. Provider exchanges run
outside it; callbacks for the same session are serialised with a
per-session lock obtained from ``session_lock``.

Records expire ``ttl_seconds`` after creation. Expired records are dropped
lazily on access and in bulk by ``reap_expired``.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..oauth2.base import OAuthProvider
from ..oauth2.errors import DuplicateSession
from ..tokens import Token

logger = logging.getLogger(__name__)


DEFAULT_SESSION_TTL_SECONDS = 600


# =============================================================================
# Session Record
# =============================================================================

class AuthSession(BaseModel):
    """
    One OIDC login attempt.

    Pending while ``auth_token`` is None, completed once it is set.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    code: str = Field(..., description="Session code, also the OAuth state parameter")
    id: str = Field(..., description="Client-supplied correlation id")
    uuid: bytes = Field(..., description="Client uuid decoded from base64")
    provider: OAuthProvider = Field(..., description="Strategy bound at begin time")
    redirect_url: str
    callback_url: str

    authorization_code: Optional[str] = None
    auth_token: Optional[Token] = None
    name: Optional[str] = None
    email: Optional[str] = None
    is_admin: bool = False

    created_at: float = 0.0
    expires_at: float = 0.0

    @property
    def is_completed(self) -> bool:
        return self.auth_token is not None

    @property
    def is_pending(self) -> bool:
        return self.auth_token is None

    @property
    def short_code(self) -> str:
        return self.code[:8]


SessionUpdater = Callable[[AuthSession], AuthSession]


# =============================================================================
# Store
# =============================================================================

class SessionStore:
    """
    Concurrency-safe in-memory session store.

    Args:
        ttl_seconds: Lifetime of a record counted from creation
        clock: Monotonic time source (overridable in tests)
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, AuthSession] = {}
        self._session_locks: Dict[str, asyncio.Lock] = {}
        self._lock = asyncio.Lock()

    async def create(self, session: AuthSession) -> AuthSession:
        """
        Insert a new session, stamping its creation and expiry times.

        Raises:
            DuplicateSession: If the code is already in use
        """
        now = self._clock()
        session = session.model_copy(update={"created_at": now, "expires_at": now + self.ttl_seconds})

        async with self._lock:
            existing = self._sessions.get(session.code)
            if existing is not None and not self._expired(existing, now):
                raise DuplicateSession(f"Session {session.short_code} already exists")
            self._sessions[session.code] = session

        logger.debug(f"Created OIDC session {session.short_code}")
        return session

    async def get(self, code: str) -> Optional[AuthSession]:
        """Return the live session for ``code`` or None."""
        session = self._sessions.get(code)
        if session is None:
            return None
        if self._expired(session):
            await self._drop(code, session)
            return None
        return session

    async def commit(self, code: str, updater: SessionUpdater) -> Optional[AuthSession]:
        """
        Atomically replace a session with ``updater(session)``.

        The updater must be pure and return a new record; the code, client
        binding, provider and timestamps of the original are preserved.

        Returns:
            The committed record, or None if the session is absent/expired
        """
        async with self._lock:
            current = self._sessions.get(code)
            if current is None:
                return None
            if self._expired(current):
                self._sessions.pop(code, None)
                self._session_locks.pop(code, None)
                return None

            updated = updater(current)
            if updated is current:
                return current

            updated = updated.model_copy(update={
                "code": current.code,
                "id": current.id,
                "uuid": current.uuid,
                "provider": current.provider,
                "created_at": current.created_at,
                "expires_at": current.expires_at,
            })
            self._sessions[code] = updated

        logger.debug(f"Committed OIDC session {updated.short_code} (completed={updated.is_completed})")
        return updated

    def session_lock(self, code: str) -> asyncio.Lock:
        """Per-session lock serialising callbacks for one session code."""
        lock = self._session_locks.get(code)
        if lock is None:
            lock = self._session_locks.setdefault(code, asyncio.Lock())
        return lock

    async def reap_expired(self) -> int:
        """Remove every expired record. Returns the number removed."""
        now = self._clock()
        async with self._lock:
            expired = [code for code, s in self._sessions.items() if self._expired(s, now)]
            for code in expired:
                del self._sessions[code]

            # Includes locks that were still held when their session expired
            stale = [
                code for code, lock in self._session_locks.items()
                if code not in self._sessions and not lock.locked()
            ]
            for code in stale:
                del self._session_locks[code]

        if expired:
            logger.info(f"Reaped {len(expired)} expired OIDC session(s)")
        return len(expired)

    def stats(self) -> Dict[str, int]:
        completed = sum(1 for s in self._sessions.values() if s.is_completed)
        return {
            "total": len(self._sessions),
            "pending": len(self._sessions) - completed,
            "completed": completed,
        }

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, code: str) -> bool:
        return code in self._sessions

    def _expired(self, session: AuthSession, now: Optional[float] = None) -> bool:
        if now is None:
            now = self._clock()
        return now >= session.expires_at

    async def _drop(self, code: str, session: AuthSession) -> None:
        async with self._lock:
            if self._sessions.get(code) is session:
                del self._sessions[code]
                self._session_locks.pop(code, None)
        logger.debug(f"Dropped expired OIDC session {session.short_code}")
