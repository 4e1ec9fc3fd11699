"""
Concrete identity provider strategies.

OpenID Connect providers resolve the user from the ``id_token`` returned by
the token endpoint (see ``claims.decode_identity_claims`` for the trust
model) and fall back to the userinfo endpoint. GitHub and Facebook are plain
OAuth2 and query their profile APIs with the access token.

Users are identified by the OIDC ``sub`` claim, the GitHub ``login`` or the
Facebook ``id``. Profile bodies are validated with the models in
``profiles``.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from .base import OAuthProvider, ProviderIdentity
from .claims import parse_identity_claims
from .config import ProviderConfig, ProviderKind
from .errors import ClaimsDecodeError, ExchangeMalformedResponse, ExchangeRejected, ProviderConfigError
from .profiles import FacebookProfile, GithubUser, UserinfoProfile, parse_github_emails, parse_profile

logger = logging.getLogger(__name__)


OIDC_SCOPE = "openid profile email"


# =============================================================================
# OpenID Connect
# =============================================================================

class OpenIDProvider(OAuthProvider):
    """Common behaviour for providers that return an OIDC ``id_token``."""

    default_scope = OIDC_SCOPE

    async def resolve_identity(self, access_token: str, token_data: Dict[str, Any]) -> ProviderIdentity:
        id_token = token_data.get("id_token")
        if id_token:
            try:
                claims = parse_identity_claims(id_token)
            except ClaimsDecodeError as e:
                logger.warning(f"{self.kind.value}: unusable id_token, falling back to userinfo: {e}")
            else:
                if claims.sub:
                    return ProviderIdentity(subject=claims.sub, name=claims.name or claims.sub, email=claims.email)
                logger.warning(f"{self.kind.value}: id_token has no 'sub' claim, falling back to userinfo")

        if not self.userinfo_url:
            raise ExchangeMalformedResponse(
                "No id_token in token response and no userinfo endpoint configured",
                provider=self.kind.value,
            )

        info = await self.get_json(self.userinfo_url, access_token)
        profile = parse_profile(UserinfoProfile, info, self.kind.value)
        return ProviderIdentity(subject=profile.sub, name=profile.display_name, email=profile.email or "")


class IssuerProvider(OpenIDProvider):
    """OIDC provider whose endpoints hang off an operator-supplied issuer."""

    authorization_path = "/authorize"
    token_path = "/token"
    userinfo_path = "/userinfo"
    default_issuer: Optional[str] = None

    def __init__(self, config: ProviderConfig, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(config, http_client)
        issuer = config.issuer or self.default_issuer
        needs_issuer = not (config.authorization_url and config.token_exchange_url)
        if not issuer and needs_issuer:
            raise ProviderConfigError(f"Provider {config.op!r} ({self.kind.value}) requires 'issuer'")
        self.issuer = issuer or ""

    @property
    def default_authorization_url(self) -> str:
        return f"{self.issuer}{self.authorization_path}"

    @property
    def default_token_url(self) -> str:
        return f"{self.issuer}{self.token_path}"

    @property
    def default_userinfo_url(self) -> str:
        return f"{self.issuer}{self.userinfo_path}" if self.issuer else ""


class GoogleProvider(OpenIDProvider):
    kind = ProviderKind.GOOGLE
    default_authorization_url = "https://accounts.google.com/o/oauth2/v2/auth"
    default_token_url = "https://oauth2.googleapis.com/token"
    default_userinfo_url = "https://openidconnect.googleapis.com/v1/userinfo"


class AzureProvider(OpenIDProvider):
    """Microsoft Entra ID (v2.0 endpoints). Tenant defaults to ``common``."""

    kind = ProviderKind.AZURE
    default_userinfo_url = "https://graph.microsoft.com/oidc/userinfo"

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.config.tenant or 'common'}"

    @property
    def default_authorization_url(self) -> str:
        return f"{self.authority}/oauth2/v2.0/authorize"

    @property
    def default_token_url(self) -> str:
        return f"{self.authority}/oauth2/v2.0/token"

    def authorization_params(self, callback_url: str, state: str) -> Dict[str, str]:
        params = super().authorization_params(callback_url, state)
        params["response_mode"] = "query"
        return params


class DexProvider(IssuerProvider):
    kind = ProviderKind.DEX
    authorization_path = "/auth"


class GitlabProvider(IssuerProvider):
    kind = ProviderKind.GITLAB
    default_issuer = "https://gitlab.com"
    authorization_path = "/oauth/authorize"
    token_path = "/oauth/token"
    userinfo_path = "/oauth/userinfo"


class OktaProvider(IssuerProvider):
    """Issuer is the authorization server, e.g. ``https://dev-1.okta.com/oauth2/default``."""

    kind = ProviderKind.OKTA
    authorization_path = "/v1/authorize"
    token_path = "/v1/token"
    userinfo_path = "/v1/userinfo"


class Auth0Provider(IssuerProvider):
    kind = ProviderKind.AUTH0
    token_path = "/oauth/token"


# =============================================================================
# Plain OAuth2
# =============================================================================

class GithubProvider(OAuthProvider):
    kind = ProviderKind.GITHUB
    default_authorization_url = "https://github.com/login/oauth/authorize"
    default_token_url = "https://github.com/login/oauth/access_token"
    default_userinfo_url = "https://api.github.com/user"
    default_scope = "read:user user:email"

    async def resolve_identity(self, access_token: str, token_data: Dict[str, Any]) -> ProviderIdentity:
        data = await self.get_json(self.userinfo_url, access_token)
        user = parse_profile(GithubUser, data, self.kind.value)

        email = user.email or ""
        if not email:
            email = await self._primary_email(access_token)
        # Logins are case-insensitive on GitHub
        return ProviderIdentity(subject=user.login.lower(), name=user.name or user.login, email=email)

    async def _primary_email(self, access_token: str) -> str:
        # Private emails are only exposed through /user/emails
        try:
            data = await self.get_json(f"{self.userinfo_url}/emails", access_token)
        except ExchangeRejected as e:
            logger.debug(f"github: cannot list emails: {e}")
            return ""

        for entry in parse_github_emails(data, self.kind.value):
            if entry.primary and entry.verified:
                return entry.email
        return ""


class FacebookProvider(OAuthProvider):
    kind = ProviderKind.FACEBOOK
    default_authorization_url = "https://www.facebook.com/v19.0/dialog/oauth"
    default_token_url = "https://graph.facebook.com/v19.0/oauth/access_token"
    default_userinfo_url = "https://graph.facebook.com/v19.0/me"
    default_scope = "public_profile email"

    async def resolve_identity(self, access_token: str, token_data: Dict[str, Any]) -> ProviderIdentity:
        me = await self.get_json(self.userinfo_url, access_token, params={"fields": "id,name,email"})
        profile = parse_profile(FacebookProfile, me, self.kind.value)
        return ProviderIdentity(subject=profile.id, name=profile.name or profile.id, email=profile.email or "")


# =============================================================================
# Kind -> Strategy mapping
# =============================================================================

# Apple is recognised but has no strategy: it needs a per-request signed
# client secret and a form_post callback.
PROVIDER_CLASSES = {
    ProviderKind.GITHUB: GithubProvider,
    ProviderKind.GITLAB: GitlabProvider,
    ProviderKind.GOOGLE: GoogleProvider,
    ProviderKind.OKTA: OktaProvider,
    ProviderKind.FACEBOOK: FacebookProvider,
    ProviderKind.AZURE: AzureProvider,
    ProviderKind.AUTH0: Auth0Provider,
    ProviderKind.DEX: DexProvider,
}
