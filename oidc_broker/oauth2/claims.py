"""
Identity-claim decoding for OIDC ID tokens.

Trust boundary: the signature of the ID token is NOT verified here. The
token must have been received directly from the provider's token endpoint
over an authenticated server-to-server TLS exchange. Tokens coming from any
other channel (browser, client) must never be fed to this function.
"""

import binascii
import json
from typing import Tuple

from jose.utils import base64url_decode
from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from .errors import ClaimsDecodeError


class IdentityClaims(BaseModel):
    """Subset of the ID token payload the broker cares about."""

    model_config = ConfigDict(extra="allow")

    name: str
    email: str
    sub: str = ""

    @model_validator(mode="before")
    @classmethod
    def fill_name(cls, data):
        # Some providers only send a username unless the profile scope is granted
        if isinstance(data, dict) and not data.get("name"):
            for alias in ("preferred_username", "nickname", "given_name"):
                if data.get(alias):
                    data = {**data, "name": data[alias]}
                    break
        return data


def decode_identity_claims(id_token: str) -> Tuple[str, str]:
    """
    Extract display name and email from an ID token payload.

    Args:
        id_token: Three-segment ``header.payload.signature`` token

    Returns:
        Tuple of (name, email)

    Raises:
        ClaimsDecodeError: If the payload segment is missing, is not base64url,
            or does not carry the expected claims

    Example:
        >>> decode_identity_claims("h.eyJuYW1lIjoiQW5uIiwiZW1haWwiOiJhbm5AZXhhbXBsZS5jb20ifQ.s")
        ('Ann', 'ann@example.com')
    """
    claims = parse_identity_claims(id_token)
    return claims.name, claims.email


def parse_identity_claims(id_token: str) -> IdentityClaims:
    """Decode and validate the ID token payload. See ``decode_identity_claims``."""
    if not isinstance(id_token, str):
        raise ClaimsDecodeError("ID token must be a string")

    parts = id_token.split(".")
    if len(parts) < 2 or not parts[1]:
        raise ClaimsDecodeError("ID token has no payload segment")

    try:
        payload = base64url_decode(parts[1].encode("ascii"))
    except (binascii.Error, ValueError, UnicodeEncodeError) as e:
        raise ClaimsDecodeError(f"ID token payload is not base64url: {e}") from e

    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ClaimsDecodeError(f"ID token payload is not JSON: {e}") from e

    if not isinstance(data, dict):
        raise ClaimsDecodeError("ID token payload is not a JSON object")

    try:
        claims = IdentityClaims.model_validate(data)
    except ValidationError as e:
        raise ClaimsDecodeError(f"ID token payload is missing claims: {e}") from e

    return claims
