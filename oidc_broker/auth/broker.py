"""
OIDC Auth Broker
================

Lets a client that cannot receive an HTTP redirect (desktop agent, CLI)
log in through a third-party identity provider. Three requests arrive
independently and in any order across sessions:

1. begin (client): pick a provider, get a browser URL and a session code
2. callback (provider): the user's browser delivers the authorization code
3. poll (client): repeat with the session code until a token is available

The session code doubles as the OAuth ``state`` parameter. Polls must
present the correlation id and client uuid used at begin time; a session
code alone is not enough to collect someone else's token.

Result conventions (consumed by the HTTP layer):
- begin: ``BeginResult(url, code)``; ``code == "UUID_ERROR"`` for a bad
  uuid, both empty when the provider cannot be used
- callback: the completed session, or ``SessionNotFound`` /
  ``ExchangeFailure``
- poll: ``PollResult`` or None (unknown, expired, mismatched and pending
  are indistinguishable)
"""

import asyncio
import base64
import binascii
import hmac
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

from ..oauth2.errors import (
    DuplicateSession,
    ExchangeFailure,
    ExchangeTimeout,
    InputDecodeError,
    ProviderNotConfigured,
    ProviderUnsupported,
    SessionNotFound,
)
from ..oauth2.registry import ProviderRegistry
from ..tokens import Token
from .session_store import AuthSession, SessionStore
from .users import UserDirectory

logger = logging.getLogger(__name__)


UUID_ERROR = "UUID_ERROR"
DEFAULT_EXCHANGE_TIMEOUT_SECONDS = 15.0
MAX_CODE_ATTEMPTS = 3

CallbackUrl = Union[str, Callable[[], str]]


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class BeginResult:
    url: str
    code: str

    @property
    def started(self) -> bool:
        return bool(self.url and self.code and self.code != UUID_ERROR)


BEGIN_UUID_ERROR = BeginResult(url="", code=UUID_ERROR)
BEGIN_UNAVAILABLE = BeginResult(url="", code="")


@dataclass(frozen=True)
class PollResult:
    token: Token
    name: str
    email: str
    is_admin: bool


# =============================================================================
# Helpers
# =============================================================================

def decode_client_uuid(value: str) -> bytes:
    """
    Decode the client's base64 (standard alphabet) uuid.

    Raises:
        InputDecodeError: If the value is empty or not valid base64
    """
    # "" is valid base64, but an empty uuid cannot bind a poll to its client
    if not value:
        raise InputDecodeError("Empty client uuid")
    try:
        decoded = base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise InputDecodeError(f"Client uuid is not base64: {e}") from e
    if not decoded:
        raise InputDecodeError("Empty client uuid")
    return decoded


def client_uuid_matches(stored: bytes, presented: str) -> bool:
    """
    Compare a poll's uuid with the one stored at begin time.

    Clients may send the uuid either as its raw text or base64 encoded,
    as they did at begin time.
    """
    if not presented:
        return False
    candidate = presented.encode("utf-8")
    if hmac.compare_digest(stored, candidate):
        return True
    try:
        decoded = base64.b64decode(candidate, validate=True)
    except binascii.Error:
        return False
    return hmac.compare_digest(stored, decoded)


# =============================================================================
# Broker
# =============================================================================

class AuthBroker:
    """
    Orchestrates begin / callback / poll over a shared ``SessionStore``.

    Args:
        registry: Configured providers, loaded once at startup
        store: Session storage
        users: Bearer-token issuer
        exchange_timeout: Deadline for one provider code exchange, in seconds
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        store: SessionStore,
        users: UserDirectory,
        exchange_timeout: float = DEFAULT_EXCHANGE_TIMEOUT_SECONDS,
    ):
        self.registry = registry
        self.store = store
        self.users = users
        self.exchange_timeout = exchange_timeout

    # -------------------------------------------------------------------------
    # Begin
    # -------------------------------------------------------------------------

    async def begin_auth(
        self,
        correlation_id: str,
        client_uuid_b64: str,
        provider_key: str,
        callback_url: CallbackUrl,
    ) -> BeginResult:
        """
        Start a login: create a pending session and build the browser URL.

        Args:
            correlation_id: Client-chosen id, required again when polling
            client_uuid_b64: Client uuid, base64 encoded
            provider_key: Operator key of the provider to use
            callback_url: Callback URL, or a callable producing it

        Returns:
            BeginResult; see module docstring for sentinel values
        """
        try:
            client_uuid = decode_client_uuid(client_uuid_b64)
        except InputDecodeError as e:
            logger.info(f"Rejected OIDC begin for id={correlation_id!r}: {e}")
            return BEGIN_UUID_ERROR

        try:
            config = self.registry.resolve_provider(provider_key)
            provider = self.registry.strategy_for(config)
        except (ProviderNotConfigured, ProviderUnsupported) as e:
            logger.warning(f"Cannot start OIDC login for id={correlation_id!r}: {e}")
            return BEGIN_UNAVAILABLE

        resolved_callback = callback_url() if callable(callback_url) else callback_url

        for _ in range(MAX_CODE_ATTEMPTS):
            code = Token.new_random().to_base64()
            redirect_url = provider.get_redirect_url(resolved_callback, code)
            session = AuthSession(
                code=code,
                id=correlation_id,
                uuid=client_uuid,
                provider=provider,
                redirect_url=redirect_url,
                callback_url=resolved_callback,
            )
            try:
                await self.store.create(session)
            except DuplicateSession:
                logger.error("Session code collision, regenerating")
                continue

            logger.info(
                f"Started OIDC session {code[:8]} with provider {config.op!r}",
                extra={"correlation_id": correlation_id, "provider": config.provider.value},
            )
            return BeginResult(url=redirect_url, code=code)

        return BEGIN_UNAVAILABLE

    # -------------------------------------------------------------------------
    # Callback
    # -------------------------------------------------------------------------

    async def handle_callback(self, authorization_code: str, session_code: str) -> AuthSession:
        """
        Exchange the provider's authorization code and complete the session.

        A repeated delivery for an already completed session returns the
        stored session without contacting the provider again.

        Returns:
            The completed session

        Raises:
            SessionNotFound: Unknown or expired session code
            ExchangeFailure: Provider exchange failed; the session stays pending
        """
        if await self.store.get(session_code) is None:
            raise SessionNotFound(f"Unknown OIDC session {session_code[:8]}")

        async with self.store.session_lock(session_code):
            session = await self.store.get(session_code)
            if session is None:
                raise SessionNotFound(f"OIDC session {session_code[:8]} expired")

            if session.is_completed:
                if session.authorization_code != authorization_code:
                    logger.warning(
                        f"Ignoring callback with a different code for completed session {session.short_code}"
                    )
                else:
                    logger.info(f"Duplicate callback for completed session {session.short_code}")
                return session

            provider = session.provider
            try:
                response = await asyncio.wait_for(
                    provider.exchange_code(authorization_code, session.callback_url),
                    timeout=self.exchange_timeout,
                )
            except asyncio.TimeoutError as e:
                raise ExchangeTimeout(
                    f"Code exchange exceeded {self.exchange_timeout}s",
                    provider=provider.provider_kind().value,
                ) from e
            except ExchangeFailure as e:
                logger.warning(
                    f"Code exchange failed for session {session.short_code}: {e}",
                    extra={"provider": e.provider, "retryable": e.retryable},
                )
                raise

            issued = await self.users.issue_token(
                provider.config.op, response.subject, response.username, response.email
            )

            def complete(current: AuthSession) -> AuthSession:
                if current.is_completed:
                    return current
                return current.model_copy(update={
                    "authorization_code": authorization_code,
                    "auth_token": issued.token,
                    "name": issued.name,
                    "email": issued.email or response.email,
                    "is_admin": issued.is_admin,
                })

            committed = await self.store.commit(session_code, complete)
            if committed is None:
                self.users.revoke(issued.token)
                raise SessionNotFound(f"OIDC session {session_code[:8]} expired during exchange")

        logger.info(f"Completed OIDC session {committed.short_code} for user {committed.name!r}")
        return committed

    # -------------------------------------------------------------------------
    # Poll
    # -------------------------------------------------------------------------

    async def poll(self, session_code: str, expected_id: str, expected_uuid: str) -> Optional[PollResult]:
        """
        Return the issued token once the session is completed.

        Returns None when the session is unknown, expired, still pending,
        or was started by a different client.
        """
        session = await self.store.get(session_code)
        if session is None:
            return None

        if not hmac.compare_digest(session.id.encode("utf-8"), (expected_id or "").encode("utf-8")):
            logger.warning(f"Poll for session {session.short_code} with mismatched id")
            return None
        if not client_uuid_matches(session.uuid, expected_uuid):
            logger.warning(f"Poll for session {session.short_code} with mismatched uuid")
            return None

        if session.is_pending:
            return None

        return PollResult(
            token=session.auth_token,
            name=session.name or "",
            email=session.email or "",
            is_admin=session.is_admin,
        )
