"""
Provider Registry.

Holds the provider configurations loaded at startup and maps an operator
key to a ready-to-use strategy. Immutable after construction.
"""

import logging
from types import MappingProxyType
from typing import Dict, List, Optional, Sequence

import httpx

from .base import OAuthProvider
from .config import ProviderConfig, load_providers_config
from .errors import ProviderNotConfigured, ProviderUnsupported
from .providers import PROVIDER_CLASSES

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Lookup of configured providers by operator key.

    Strategies are built once per configuration entry so that invalid
    entries (e.g. an OIDC provider without issuer) fail at startup.

    Args:
        configs: Provider configurations in display order
        http_client: Optional HTTP client shared by all strategies
    """

    def __init__(self, configs: Sequence[ProviderConfig], http_client: Optional[httpx.AsyncClient] = None):
        self._configs: Dict[str, ProviderConfig] = {c.op: c for c in configs}
        self._order: List[str] = [c.op for c in configs]
        strategies: Dict[str, OAuthProvider] = {}

        for config in configs:
            provider_cls = PROVIDER_CLASSES.get(config.provider)
            if provider_cls is None:
                logger.warning(
                    f"Provider {config.op!r} uses unsupported kind {config.provider.value!r}; "
                    "login requests for it will be refused"
                )
                continue
            strategies[config.op] = provider_cls(config, http_client=http_client)

        self._strategies = MappingProxyType(strategies)

    @classmethod
    def from_file(cls, path, http_client: Optional[httpx.AsyncClient] = None) -> "ProviderRegistry":
        return cls(load_providers_config(path), http_client=http_client)

    def resolve_provider(self, key: str) -> ProviderConfig:
        """
        Look up a configuration by operator key.

        Raises:
            ProviderNotConfigured: If no entry uses ``key``
        """
        config = self._configs.get(key)
        if config is None:
            raise ProviderNotConfigured(key)
        return config

    def strategy_for(self, config: ProviderConfig) -> OAuthProvider:
        """
        Return the strategy bound to a configuration entry.

        Raises:
            ProviderUnsupported: If the provider kind has no implementation
        """
        strategy = self._strategies.get(config.op)
        if strategy is None or strategy.config != config:
            raise ProviderUnsupported(config.provider.value)
        return strategy

    def login_options(self) -> List[str]:
        """Display strings of the configured providers, in file order."""
        return [self._configs[op].display_name for op in self._order]

    def __len__(self) -> int:
        return len(self._configs)

    def __contains__(self, key: str) -> bool:
        return key in self._configs
