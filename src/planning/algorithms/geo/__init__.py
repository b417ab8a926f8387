"""
地理邻近检索模块
"""

from .proximity import ProximityHit, find_nearest

__all__ = ["ProximityHit", "find_nearest"]
