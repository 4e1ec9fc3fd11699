"""
Shared fixtures for the OIDC broker tests.

Identity providers are simulated with ``httpx.MockTransport``; ID tokens
are minted with PyJWT.
"""

import asyncio
import base64
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl

import httpx
import jwt
import pytest

from oidc_broker.auth.broker import AuthBroker
from oidc_broker.auth.session_store import SessionStore
from oidc_broker.auth.users import UserDirectory
from oidc_broker.oauth2.config import ProviderConfig
from oidc_broker.oauth2.registry import ProviderRegistry


DEX_ISSUER = "https://dex.example.com"
CALLBACK_URL = "https://desk.example.com/api/oidc/callback"
CLIENT_ID = "desk-client-1"
CLIENT_UUID = "0d9f6a9e-4a73-4a52-9d6a-9c3b1e0b3e11"


def make_id_token(name: Optional[str] = "Ann", email: str = "ann@example.com", **extra) -> str:
    """Create an HS256 ID token (signature is never checked by the broker)."""
    payload = {"sub": "user-1", "iss": DEX_ISSUER, "email": email, **extra}
    if name is not None:
        payload["name"] = name
    return jwt.encode(payload, "test-signing-secret-0123456789abcdef", algorithm="HS256")


class ProviderStub:
    """
    Scripted identity provider.

    Attributes:
        token_status / token_body: answer of the token endpoint
        delay: seconds to wait before answering the token endpoint
        error: exception raised instead of answering the token endpoint
        userinfo: answer of the userinfo endpoint
        github_user: answer of the GitHub /user endpoint
    """

    def __init__(self):
        self.token_calls: List[Dict[str, str]] = []
        self.requests: List[httpx.Request] = []
        self.token_status = 200
        self.token_body: Any = {
            "access_token": "provider-access-token",
            "token_type": "bearer",
            "id_token": make_id_token(),
        }
        self.delay = 0.0
        self.error: Optional[Exception] = None
        self.userinfo: Any = {"sub": "user-1", "name": "Ann Userinfo", "email": "ann@example.com"}
        self.github_user: Any = {"login": "octocat", "name": "The Octocat", "email": "octo@example.com"}

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.path.endswith(("/token", "/access_token")):
            self.token_calls.append(dict(parse_qsl(request.content.decode())))
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            if isinstance(self.token_body, (dict, list)):
                return httpx.Response(self.token_status, json=self.token_body)
            return httpx.Response(self.token_status, text=self.token_body)

        if request.url.path.endswith("/userinfo"):
            return httpx.Response(200, json=self.userinfo)

        if request.url.path == "/user":
            return httpx.Response(200, json=self.github_user)

        return httpx.Response(404, json={"error": "not_found"})


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def client_uuid() -> str:
    return CLIENT_UUID


@pytest.fixture
def client_uuid_b64() -> str:
    return base64.b64encode(CLIENT_UUID.encode()).decode()


@pytest.fixture
def callback_url() -> str:
    return CALLBACK_URL


@pytest.fixture
def provider_stub() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def http_client(provider_stub) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(provider_stub.handler))


@pytest.fixture
def provider_configs() -> List[ProviderConfig]:
    return [
        ProviderConfig(
            op="dex",
            op_auth_string="Company SSO",
            provider="dex",
            issuer=DEX_ISSUER,
            client_id="desk",
            client_secret="dex-secret",
        ),
        ProviderConfig(
            op="github",
            op_auth_string="GitHub",
            provider="github",
            client_id="gh-client",
            client_secret="gh-secret",
        ),
        ProviderConfig(
            op="apple",
            op_auth_string="Apple",
            provider="apple",
            client_id="apple-client",
        ),
    ]


@pytest.fixture
def registry(provider_configs, http_client) -> ProviderRegistry:
    return ProviderRegistry(provider_configs, http_client=http_client)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> SessionStore:
    return SessionStore(ttl_seconds=600, clock=clock)


@pytest.fixture
def users() -> UserDirectory:
    return UserDirectory(["dex:user-1"])


@pytest.fixture
def broker(registry, store, users) -> AuthBroker:
    return AuthBroker(registry=registry, store=store, users=users, exchange_timeout=2.0)
