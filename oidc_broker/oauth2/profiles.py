"""
Provider profile payloads.

Userinfo and profile API responses are validated before the broker trusts
any field of them. Every user is identified by a stable provider-side
subject (OIDC ``sub``, GitHub ``login``, Facebook ``id``); the display name
is free-form profile data and is never used to identify a user.
"""

from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import ExchangeMalformedResponse


class Profile(BaseModel):
    model_config = ConfigDict(extra="ignore")


ProfileT = TypeVar("ProfileT", bound=Profile)


# =============================================================================
# OpenID Connect
# =============================================================================

class UserinfoProfile(Profile):
    """OIDC userinfo response."""

    sub: str = Field(..., min_length=1)
    name: Optional[str] = None
    preferred_username: Optional[str] = None
    nickname: Optional[str] = None
    email: Optional[str] = None

    @property
    def display_name(self) -> str:
        return (
            self.name
            or self.preferred_username
            or self.nickname
            or (self.email or "").split("@")[0]
            or self.sub
        )


# =============================================================================
# GitHub
# =============================================================================

class GithubUser(Profile):
    login: str = Field(..., min_length=1)
    name: Optional[str] = None
    email: Optional[str] = None


class GithubEmail(Profile):
    email: str
    primary: bool = False
    verified: bool = False


GITHUB_EMAILS = TypeAdapter(List[GithubEmail])


# =============================================================================
# Facebook
# =============================================================================

class FacebookProfile(Profile):
    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    email: Optional[str] = None


# =============================================================================
# Validation
# =============================================================================

def parse_profile(model: Type[ProfileT], data: Any, provider: str) -> ProfileT:
    """
    Validate a provider profile payload.

    Raises:
        ExchangeMalformedResponse: If the payload is not an object or a
            field has the wrong type
    """
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ExchangeMalformedResponse(
            f"Unexpected {model.__name__} payload ({e.error_count()} invalid field(s))",
            provider=provider,
        ) from e


def parse_github_emails(data: Any, provider: str) -> List[GithubEmail]:
    try:
        return GITHUB_EMAILS.validate_python(data)
    except ValidationError as e:
        raise ExchangeMalformedResponse(
            f"Unexpected GitHub emails payload ({e.error_count()} invalid field(s))",
            provider=provider,
        ) from e
