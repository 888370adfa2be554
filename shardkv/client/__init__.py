from __future__ import annotations

from .basic import Redis
from .cluster import RedisCluster

__all__ = ["Redis", "RedisCluster"]
