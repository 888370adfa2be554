from __future__ import annotations

from .pipeline import Pipeline, Transaction
from .pubsub import ClusterSubscription, PubSubMessage, Subscription

__all__ = [
    "ClusterSubscription",
    "Pipeline",
    "PubSubMessage",
    "Subscription",
    "Transaction",
]
