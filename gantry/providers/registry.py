"""
Provider Registry - Resource type to provider lookup.

Providers are registered explicitly or loaded from `module:attribute` import
paths (a provider instance, a provider class, or a callable returning either
or an iterable of them).
"""

from __future__ import annotations

import importlib
from collections.abc import Iterable
from typing import Any

from loguru import logger

from gantry.core.exceptions import InvalidConfigError, UnknownResourceTypeError
from gantry.providers.base import ResourceProvider, ResourceSchema


class ProviderRegistry:
    """
    Registry of providers keyed by resource type.

    Usage:
        registry = ProviderRegistry()
        registry.register(VpcProvider())
        provider = registry.get("aws_vpc")
    """

    def __init__(self, providers: Iterable[ResourceProvider] | None = None) -> None:
        self._providers: dict[str, ResourceProvider] = {}
        for provider in providers or ():
            self.register(provider)

    def register(self, provider: ResourceProvider, replace: bool = False) -> None:
        """
        Register a provider for its schema's resource type.

        Raises:
            ValueError: If the type is already registered and replace is False
        """
        resource_type = provider.resource_type
        if resource_type in self._providers and not replace:
            raise ValueError(f"Provider for '{resource_type}' is already registered")
        self._providers[resource_type] = provider
        logger.debug(f"Registered provider {provider.__class__.__name__} for {resource_type}")

    def get(self, resource_type: str) -> ResourceProvider:
        """
        Get the provider for a resource type.

        Raises:
            UnknownResourceTypeError: If no provider handles the type
        """
        try:
            return self._providers[resource_type]
        except KeyError:
            raise UnknownResourceTypeError(resource_type) from None

    def schema(self, resource_type: str) -> ResourceSchema:
        return self.get(resource_type).schema

    def has(self, resource_type: str) -> bool:
        return resource_type in self._providers

    def types(self) -> list[str]:
        return sorted(self._providers)

    def __contains__(self, resource_type: str) -> bool:
        return self.has(resource_type)

    def __len__(self) -> int:
        return len(self._providers)

    def load_plugin(self, path: str) -> list[str]:
        """
        Load providers from a `module:attribute` import path.

        Returns:
            Resource types registered by the plugin

        Raises:
            InvalidConfigError: If the path cannot be imported or yields no provider
        """
        module_name, _, attr = path.partition(":")
        if not module_name or not attr:
            raise InvalidConfigError(
                f"Provider plugin path must look like 'module:attribute', got {path!r}"
            )
        try:
            module = importlib.import_module(module_name)
            target = getattr(module, attr)
        except (ImportError, AttributeError) as e:
            raise InvalidConfigError(f"Cannot load provider plugin {path!r}: {e}") from e

        registered = []
        for provider in _instantiate(target):
            self.register(provider)
            registered.append(provider.resource_type)

        if not registered:
            raise InvalidConfigError(f"Provider plugin {path!r} did not yield any provider")
        logger.info(f"Loaded provider plugin {path}: {', '.join(registered)}")
        return registered


def _instantiate(target: Any) -> list[ResourceProvider]:
    if isinstance(target, ResourceProvider):
        return [target]
    if isinstance(target, type) and issubclass(target, ResourceProvider):
        return [target()]
    if callable(target):
        return _instantiate(target())
    if isinstance(target, Iterable) and not isinstance(target, (str, bytes)):
        providers: list[ResourceProvider] = []
        for item in target:
            providers.extend(_instantiate(item))
        return providers
    return []
