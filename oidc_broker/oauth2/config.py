"""
Provider configuration loading.

The operator maintains a TOML file with one ``[[provider]]`` table per
identity provider. It is read once at startup and turned into immutable
``ProviderConfig`` records.

Example::

    [[provider]]
    op = "github"
    op_auth_string = "GitHub"
    provider = "github"
    client_id = "Iv1.0123456789abcdef"
    client_secret = "..."
"""

import logging
import tomllib
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ProviderConfigError

logger = logging.getLogger(__name__)


class ProviderKind(str, Enum):
    """Identity provider families known to the broker."""

    GITHUB = "github"
    GITLAB = "gitlab"
    GOOGLE = "google"
    APPLE = "apple"
    OKTA = "okta"
    FACEBOOK = "facebook"
    AZURE = "azure"
    AUTH0 = "auth0"
    DEX = "dex"


class ProviderConfig(BaseModel):
    """One configured identity provider (read-only for the process lifetime)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    op: str = Field(..., min_length=1, description="Operator key used by clients to select the provider")
    op_auth_string: str = Field("", description="Display string shown in the login options")
    provider: ProviderKind = Field(..., description="Provider family")
    client_id: str = Field(..., min_length=1)
    client_secret: str = Field("", repr=False)

    authorization_url: Optional[str] = Field(None, description="Override of the authorization endpoint")
    token_exchange_url: Optional[str] = Field(None, description="Override of the token endpoint")
    userinfo_url: Optional[str] = Field(None, description="Override of the profile endpoint")
    issuer: Optional[str] = Field(None, description="Issuer base URL (okta, auth0, dex, self-hosted gitlab)")
    tenant: Optional[str] = Field(None, description="Directory tenant (azure)")
    scope: Optional[str] = Field(None, description="Override of the requested scopes")

    @field_validator("provider", mode="before")
    @classmethod
    def normalize_kind(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("issuer", "authorization_url", "token_exchange_url", "userinfo_url")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        return v.rstrip("/") or None

    @property
    def display_name(self) -> str:
        return self.op_auth_string or self.op


def parse_providers_config(data: dict) -> List[ProviderConfig]:
    """
    Validate a decoded configuration document.

    Args:
        data: Parsed TOML document

    Returns:
        Provider configurations in file order

    Raises:
        ProviderConfigError: On schema errors or duplicate operator keys
    """
    entries = data.get("provider", [])
    if isinstance(entries, dict):
        entries = [entries]
    if not isinstance(entries, list):
        raise ProviderConfigError("'provider' must be an array of tables")

    configs: List[ProviderConfig] = []
    seen = set()
    for index, entry in enumerate(entries):
        try:
            config = ProviderConfig.model_validate(entry)
        except ValidationError as e:
            raise ProviderConfigError(f"Invalid provider entry #{index}: {e}") from e

        if config.op in seen:
            raise ProviderConfigError(f"Duplicate provider key: {config.op!r}")
        seen.add(config.op)
        configs.append(config)

    return configs


def load_providers_config(path: Union[str, Path]) -> List[ProviderConfig]:
    """
    Read and validate the provider configuration file.

    Args:
        path: Location of the TOML file

    Returns:
        Provider configurations in file order

    Raises:
        ProviderConfigError: If the file is missing, unreadable or invalid
    """
    path = Path(path)
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError as e:
        raise ProviderConfigError(f"Provider configuration file not found: {path}") from e
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ProviderConfigError(f"Cannot read provider configuration {path}: {e}") from e

    configs = parse_providers_config(data)
    logger.info(f"Loaded {len(configs)} OAuth2 provider(s) from {path}")
    return configs
