from __future__ import annotations

from ._basic import ConnectionPool
from ._sentinel import SentinelConnectionPool

__all__ = [
    "ConnectionPool",
    "SentinelConnectionPool",
]
