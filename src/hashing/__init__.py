"""
Media identity hashing.
"""

from .hasher import (
    STRATEGY_COMPOSITE,
    STRATEGY_FULL,
    STRATEGY_HYBRID,
    STRATEGY_STREAM,
    MediaHasher,
)

__all__ = [
    "MediaHasher",
    "STRATEGY_COMPOSITE",
    "STRATEGY_FULL",
    "STRATEGY_HYBRID",
    "STRATEGY_STREAM",
]
