"""
OAuth2 error taxonomy.

Input and lookup errors are resolved inside the broker and turned into
sentinel results. Only ``ExchangeFailure`` escapes ``handle_callback``.
"""

from typing import Optional


class Oauth2Error(Exception):
    """Base exception for the OAuth2 broker"""
    pass


# =============================================================================
# Input Decoding
# =============================================================================

class InputDecodeError(Oauth2Error):
    """Malformed client input (base64 uuid, identity-claims payload)"""
    pass


class ClaimsDecodeError(InputDecodeError):
    """Identity token payload could not be decoded"""
    pass


# =============================================================================
# Configuration / Capability
# =============================================================================

class ProviderConfigError(Oauth2Error):
    """Provider configuration source is missing or invalid"""
    pass


class ProviderNotConfigured(Oauth2Error):
    """No provider is configured under the requested operator key"""

    def __init__(self, key: str):
        super().__init__(f"Provider not configured: {key!r}")
        self.key = key


class ProviderUnsupported(Oauth2Error):
    """A provider kind is configured but has no strategy implementation"""

    def __init__(self, kind: str):
        super().__init__(f"Provider kind not supported: {kind}")
        self.kind = kind


# =============================================================================
# Session
# =============================================================================

class SessionNotFound(Oauth2Error):
    """Unknown, expired or mismatched session"""
    pass


class DuplicateSession(Oauth2Error):
    """A session with the same code already exists"""
    pass


# =============================================================================
# Code Exchange
# =============================================================================

class ExchangeFailure(Oauth2Error):
    """
    Authorization-code exchange failed.

    Attributes:
        provider: Provider kind that failed
        retryable: Whether a later callback delivery could succeed
    """

    retryable: bool = False

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class ExchangeNetworkError(ExchangeFailure):
    """Transport-level failure or provider 5xx"""
    retryable = True


class ExchangeTimeout(ExchangeNetworkError):
    """Exchange did not finish within the configured deadline"""
    pass


class ExchangeRejected(ExchangeFailure):
    """Provider refused the authorization code (expired, revoked, reused)"""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message, provider)
        self.error_code = error_code


class ExchangeMalformedResponse(ExchangeFailure):
    """Provider answered with a body the strategy cannot interpret"""
    pass


__all__ = [
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
