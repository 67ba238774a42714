from .tiered_cache import CacheEntry, TieredCache, TTLStore

__all__ = ["CacheEntry", "TieredCache", "TTLStore"]
