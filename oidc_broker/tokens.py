"""
Opaque Token Primitive
======================

Fixed-size random values with a canonical URL-safe base64 (unpadded) text
form. The same shape serves two unrelated roles in the broker:

- the session code, which is also sent to the identity provider as the
  OAuth ``state`` parameter
- the bearer credential issued to the client after a successful login

Each role gets its own independently generated value.
"""

import base64
import binascii
import secrets
from dataclasses import dataclass


TOKEN_LENGTH = 32


class TokenDecodeError(ValueError):
    """Raised when a string is not the canonical encoding of a Token"""
    pass


@dataclass(frozen=True, order=True)
class Token:
    """
    Immutable 32-byte random value.

    Equality, ordering and hashing are defined over the raw bytes.

    Example:
        >>> token = Token.new_random()
        >>> Token.from_str(token.to_base64()) == token
        True
    """

    raw: bytes

    def __post_init__(self):
        if not isinstance(self.raw, bytes) or len(self.raw) != TOKEN_LENGTH:
            raise TokenDecodeError(f"Token must be exactly {TOKEN_LENGTH} bytes")

    @classmethod
    def new_random(cls) -> "Token":
        """Generate a fresh token from the OS CSPRNG."""
        return cls(secrets.token_bytes(TOKEN_LENGTH))

    def to_base64(self) -> str:
        """Canonical text form: URL-safe base64 without padding."""
        return base64.urlsafe_b64encode(self.raw).decode("ascii").rstrip("=")

    @classmethod
    def from_str(cls, value: str) -> "Token":
        """
        Parse the canonical text form.

        Args:
            value: URL-safe base64 string, padding optional

        Returns:
            Decoded Token

        Raises:
            TokenDecodeError: If the string is not canonical URL-safe base64
                or has the wrong length
        """
        if not isinstance(value, str) or not value:
            raise TokenDecodeError("Empty token string")

        # b64decode maps the altchars but still accepts '+' and '/'
        if "+" in value or "/" in value:
            raise TokenDecodeError("Token must use the URL-safe base64 alphabet")

        padded = value + "=" * (-len(value) % 4)
        try:
            raw = base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
        except (binascii.Error, UnicodeEncodeError) as e:
            raise TokenDecodeError(f"Invalid token encoding: {e}") from e

        token = cls(raw)
        # Unused trailing bits must be zero
        if token.to_base64() != value.rstrip("="):
            raise TokenDecodeError("Token string is not in canonical form")
        return token

    def short(self) -> str:
        """Prefix of the text form, safe to write to logs."""
        return self.to_base64()[:8]

    def __str__(self) -> str:
        return self.to_base64()

    def __repr__(self) -> str:
        return f"Token({self.short()}...)"


__all__ = [
    "TOKEN_LENGTH",
    "Token",
    "TokenDecodeError",
]
