"""
实时位置追踪模块
"""

from .location_cache import CachedLocation, LocationCache, location_key

__all__ = ["CachedLocation", "LocationCache", "location_key"]
