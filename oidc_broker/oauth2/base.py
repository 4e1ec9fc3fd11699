"""
Provider Strategy contract
==========================

Every identity provider implements ``OAuthProvider``:

- ``get_redirect_url``: build the authorization URL the user opens in a browser
- ``exchange_code``: trade the authorization code for an access token and
  resolve the user's stable subject, display name and email
- ``provider_kind``: identify the implementation

The shared helpers below perform the HTTP calls with ``httpx`` and classify
failures into the ``ExchangeFailure`` family so the broker can tell a
transient outage from a rejected code.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from .config import ProviderConfig, ProviderKind
from .errors import (
    ExchangeMalformedResponse,
    ExchangeNetworkError,
    ExchangeRejected,
    ExchangeTimeout,
)

logger = logging.getLogger(__name__)


DEFAULT_HTTP_TIMEOUT = 10.0
USER_AGENT = "oidc-broker/1.0"


@dataclass(frozen=True)
class ProviderIdentity:
    """User as identified by the provider. ``subject`` is stable, ``name`` is not."""

    subject: str
    name: str
    email: str = ""


@dataclass(frozen=True)
class OAuthResponse:
    """Result of a successful code exchange."""

    access_token: str
    subject: str
    username: str
    email: str = ""


class OAuthProvider(ABC):
    """
    Base class for identity provider strategies.

    Subclasses declare ``kind`` and their default endpoints, and implement
    ``resolve_identity`` to turn the token response into a ``ProviderIdentity``.

    Args:
        config: Provider configuration entry
        http_client: Optional shared client (tests pass one backed by
            ``httpx.MockTransport``); a short-lived client is created per
            call otherwise
    """

    kind: ProviderKind
    default_authorization_url: str = ""
    default_token_url: str = ""
    default_userinfo_url: str = ""
    default_scope: str = ""

    def __init__(self, config: ProviderConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._http_client = http_client

    # -------------------------------------------------------------------------
    # Endpoints
    # -------------------------------------------------------------------------

    @property
    def authorization_url(self) -> str:
        return self.config.authorization_url or self.default_authorization_url

    @property
    def token_url(self) -> str:
        return self.config.token_exchange_url or self.default_token_url

    @property
    def userinfo_url(self) -> str:
        return self.config.userinfo_url or self.default_userinfo_url

    @property
    def scope(self) -> str:
        return self.config.scope if self.config.scope is not None else self.default_scope

    def provider_kind(self) -> ProviderKind:
        return self.kind

    # -------------------------------------------------------------------------
    # Contract
    # -------------------------------------------------------------------------

    def authorization_params(self, callback_url: str, state: str) -> Dict[str, str]:
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": callback_url,
            "response_type": "code",
        }
        if self.scope:
            params["scope"] = self.scope
        params["state"] = state
        return params

    def get_redirect_url(self, callback_url: str, state: str) -> str:
        """
        Build the provider authorization URL.

        Args:
            callback_url: Where the provider must send the user back
            state: Opaque session code echoed back by the provider

        Returns:
            Absolute authorization URL
        """
        params = self.authorization_params(callback_url, state)
        separator = "&" if "?" in self.authorization_url else "?"
        return f"{self.authorization_url}{separator}{urlencode(params)}"

    async def exchange_code(self, code: str, callback_url: str) -> OAuthResponse:
        """
        Exchange an authorization code and resolve the user identity.

        Args:
            code: Authorization code from the callback
            callback_url: Redirect URI used when the flow started

        Returns:
            OAuthResponse with access token, subject, display name and email

        Raises:
            ExchangeNetworkError: Transport failure or provider 5xx
            ExchangeTimeout: HTTP timeout
            ExchangeRejected: Provider refused the code
            ExchangeMalformedResponse: Unusable provider response
        """
        token_data = await self.request_token(code, callback_url)
        access_token = token_data.get("access_token")
        if not access_token or not isinstance(access_token, str):
            raise ExchangeMalformedResponse(
                "Token response missing access_token", provider=self.kind.value
            )

        identity = await self.resolve_identity(access_token, token_data)
        return OAuthResponse(
            access_token=access_token,
            subject=identity.subject,
            username=identity.name,
            email=identity.email or "",
        )

    @abstractmethod
    async def resolve_identity(self, access_token: str, token_data: Dict[str, Any]) -> ProviderIdentity:
        """Return the stable subject, display name and email of the authenticated user."""

    # -------------------------------------------------------------------------
    # HTTP helpers
    # -------------------------------------------------------------------------

    def token_request_payload(self, code: str, callback_url: str) -> Dict[str, str]:
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": callback_url,
            "client_id": self.config.client_id,
        }
        if self.config.client_secret:
            payload["client_secret"] = self.config.client_secret
        return payload

    async def request_token(self, code: str, callback_url: str) -> Dict[str, Any]:
        """POST to the token endpoint and return the decoded JSON body."""
        response = await self._send(
            "POST",
            self.token_url,
            data=self.token_request_payload(code, callback_url),
            headers={
                "Accept": "application/json",
                "Content-Type": "application/x-www-form-urlencoded",
            },
        )
        data = self._json_body(response)

        # GitHub answers 200 with an error field for a bad code
        if data.get("error"):
            raise ExchangeRejected(
                f"Token exchange rejected: {data.get('error_description') or data['error']}",
                provider=self.kind.value,
                error_code=data["error"],
            )
        return data

    async def get_json(self, url: str, access_token: str, params: Optional[Dict[str, str]] = None) -> Any:
        """GET a profile resource with the bearer access token."""
        response = await self._send(
            "GET",
            url,
            params=params,
            headers={
                "Accept": "application/json",
                "Authorization": f"Bearer {access_token}",
            },
        )
        return self._json_body(response, expect_object=False)

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = {"User-Agent": USER_AGENT, **kwargs.pop("headers", {})}
        try:
            if self._http_client is not None:
                response = await self._http_client.request(method, url, headers=headers, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT) as client:
                    response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise ExchangeTimeout(f"Timeout calling {url}: {e}", provider=self.kind.value) from e
        except httpx.HTTPError as e:
            raise ExchangeNetworkError(f"Error calling {url}: {e}", provider=self.kind.value) from e

        if response.status_code >= 500:
            raise ExchangeNetworkError(
                f"Provider returned HTTP {response.status_code} for {url}",
                provider=self.kind.value,
            )
        if response.status_code >= 400:
            error_code, detail = self._error_details(response)
            raise ExchangeRejected(
                f"Provider returned HTTP {response.status_code}: {detail}",
                provider=self.kind.value,
                error_code=error_code,
            )
        return response

    def _json_body(self, response: httpx.Response, expect_object: bool = True) -> Any:
        try:
            data = response.json()
        except ValueError as e:
            raise ExchangeMalformedResponse(
                f"Provider response is not JSON (HTTP {response.status_code})",
                provider=self.kind.value,
            ) from e
        if expect_object and not isinstance(data, dict):
            raise ExchangeMalformedResponse(
                "Provider response is not a JSON object", provider=self.kind.value
            )
        return data

    @staticmethod
    def _error_details(response: httpx.Response) -> tuple:
        try:
            data = response.json()
        except ValueError:
            return None, response.reason_phrase or "error"
        if not isinstance(data, dict):
            return None, "error"
        error = data.get("error")
        if isinstance(error, dict):
            # Facebook / Graph style
            return error.get("type"), error.get("message") or "error"
        return error, data.get("error_description") or error or "error"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(op={self.config.op!r})"
