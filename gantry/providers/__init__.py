"""
Gantry Providers - Pluggable per-type resource capabilities.
"""

from gantry.providers.base import ID_ATTRIBUTE, ResourceProvider, ResourceSchema
from gantry.providers.memory import MemoryCloud, MemoryProvider, memory_providers
from gantry.providers.registry import ProviderRegistry

__all__ = [
    "ID_ATTRIBUTE",
    "MemoryCloud",
    "MemoryProvider",
    "ProviderRegistry",
    "ResourceProvider",
    "ResourceSchema",
    "memory_providers",
]
