"""
Infrastructure Package.

Provides the bounded browser worker pool used for page extraction.
"""

from .browser_pool import (
    BrowserPool,
    BrowserHealth,
    PoolStatus,
    HandleStats,
    WorkerHandle,
)

__all__ = [
    "BrowserPool",
    "BrowserHealth",
    "PoolStatus",
    "HandleStats",
    "WorkerHandle",
]
