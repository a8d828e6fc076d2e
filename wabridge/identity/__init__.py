"""Identity resolution for inbound conversations."""

from .cache import Identity, IdentityCache, IdentityCacheEntry

__all__ = ["Identity", "IdentityCache", "IdentityCacheEntry"]
