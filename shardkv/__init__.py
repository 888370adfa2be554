"""
shardkv
-------

shardkv is an async key-value store client with support for single
servers, sharded clusters & sentinel managed deployments.
"""

from __future__ import annotations

import logging

from shardkv.client import Redis, RedisCluster
from shardkv.config import Config
from shardkv.connection import BaseConnection, ClusterConnection, TCPConnection, TCPLocation
from shardkv.patterns import ClusterSubscription, Pipeline, Subscription, Transaction
from shardkv.pool import ConnectionPool, SentinelConnectionPool
from shardkv.sentinel import Sentinel
from shardkv.typing import NULL_ARRAY

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = [
    "Config",
    "Redis",
    "RedisCluster",
    "Sentinel",
    "BaseConnection",
    "TCPConnection",
    "ClusterConnection",
    "TCPLocation",
    "ConnectionPool",
    "SentinelConnectionPool",
    "Pipeline",
    "Transaction",
    "Subscription",
    "ClusterSubscription",
    "NULL_ARRAY",
]

__version__ = "0.1.0"
