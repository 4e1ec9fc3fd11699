"""
OAuth2 / OpenID Connect provider package.

Modules:
- config: provider configuration file loading
- base: the provider strategy contract and HTTP exchange helpers
- providers: one strategy per supported provider kind
- registry: operator key -> strategy lookup
- claims: unverified ID token claim decoding
- profiles: userinfo and profile API payload validation
- errors: exception taxonomy
"""

from .base import OAuthProvider, OAuthResponse, ProviderIdentity
from .claims import decode_identity_claims
from .config import ProviderConfig, ProviderKind, load_providers_config
from .errors import (
    ClaimsDecodeError,
    DuplicateSession,
    ExchangeFailure,
    ExchangeMalformedResponse,
    ExchangeNetworkError,
    ExchangeRejected,
    ExchangeTimeout,
    InputDecodeError,
    Oauth2Error,
    ProviderConfigError,
    ProviderNotConfigured,
    ProviderUnsupported,
    SessionNotFound,
)
from .registry import ProviderRegistry

__all__ = [
    "OAuthProvider",
    "OAuthResponse",
    "ProviderIdentity",
    "decode_identity_claims",
    "ProviderConfig",
    "ProviderKind",
    "load_providers_config",
    "ProviderRegistry",
    "Oauth2Error",
    "InputDecodeError",
    "ClaimsDecodeError",
    "ProviderConfigError",
    "ProviderNotConfigured",
    "ProviderUnsupported",
    "SessionNotFound",
    "DuplicateSession",
    "ExchangeFailure",
    "ExchangeNetworkError",
    "ExchangeTimeout",
    "ExchangeRejected",
    "ExchangeMalformedResponse",
]
