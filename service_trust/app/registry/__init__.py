"""
Trusted registry package.

A registry is a published JSON array of key-location (``jku``) URLs whose
signers are considered trustworthy. This package caches fetched registries
per URI and resolves the configured registry set for a single verification.
"""

from .cache import RegistryCache, RegistryEntry, default_registry_cache
from .aggregator import RegistryAggregator

__all__ = [
    "RegistryAggregator",
    "RegistryCache",
    "RegistryEntry",
    "default_registry_cache",
]
