"""
Bearer-token issuance for OAuth2-authenticated users.

The broker hands every successful login to ``UserDirectory.issue_token``,
which records the user on first sight and issues a fresh bearer ``Token``.
The rest of the system authenticates API calls with ``lookup``.

Users are keyed by the provider key (``op``) plus the provider's stable
subject. Display names are profile data the user controls, so they never
decide who a user is or whether they are an administrator.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Set, Tuple

from ..tokens import Token

logger = logging.getLogger(__name__)

UserKey = Tuple[str, str]


@dataclass
class UserRecord:
    op: str
    subject: str
    name: str
    email: str = ""
    is_admin: bool = False
    third_auth_type: str = "Oauth2"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_login: Optional[datetime] = None


@dataclass(frozen=True)
class IssuedToken:
    token: Token
    name: str
    email: str
    is_admin: bool


def parse_admin_identity(entry: str) -> Optional[UserKey]:
    """
    Parse an ``op:subject`` administrator entry.

    The provider key is case-insensitive, the subject is compared as-is
    (GitHub subjects are already lowercased logins).

    Example:
        >>> parse_admin_identity(" GitHub:octocat ")
        ('github', 'octocat')
    """
    op, sep, subject = entry.strip().partition(":")
    if not sep or not op.strip() or not subject.strip():
        return None
    return op.strip().lower(), subject.strip()


class UserDirectory:
    """
    In-memory user directory and token issuer.

    Args:
        admin_users: ``op:subject`` identities that receive the
            administrative flag, e.g. ``github:octocat`` or ``dex:Cg1hbm4``
    """

    def __init__(self, admin_users: Iterable[str] = ()):
        self._admins: Set[UserKey] = set()
        for entry in admin_users:
            if not entry or not entry.strip():
                continue
            key = parse_admin_identity(entry)
            if key is None:
                logger.warning(f"Ignoring admin entry {entry.strip()!r}: expected 'op:subject'")
                continue
            self._admins.add(key)

        self._users: Dict[UserKey, UserRecord] = {}
        self._tokens: Dict[Token, UserKey] = {}
        self._lock = asyncio.Lock()

    async def issue_token(self, op: str, subject: str, name: str, email: str = "") -> IssuedToken:
        """
        Create or refresh the user and issue a new bearer token.

        Args:
            op: Provider key the user signed in with
            subject: Stable provider-side identifier
            name: Display name reported by the provider
            email: Email reported by the provider, may be empty
        """
        key = (op.lower(), subject)
        token = Token.new_random()

        async with self._lock:
            user = self._users.get(key)
            if user is None:
                user = UserRecord(
                    op=key[0],
                    subject=subject,
                    name=name,
                    email=email,
                    is_admin=key in self._admins,
                )
                self._users[key] = user
                logger.info(f"Registered OAuth2 user {key[0]}:{subject} ({name!r})")
            else:
                user.name = name or user.name
                user.email = email or user.email
            user.last_login = datetime.now(timezone.utc)
            self._tokens[token] = key

        return IssuedToken(token=token, name=user.name, email=user.email, is_admin=user.is_admin)

    def lookup(self, token: Token) -> Optional[UserRecord]:
        key = self._tokens.get(token)
        if key is None:
            return None
        return self._users.get(key)

    def revoke(self, token: Token) -> bool:
        return self._tokens.pop(token, None) is not None

    def get_user(self, op: str, subject: str) -> Optional[UserRecord]:
        return self._users.get((op.lower(), subject))
