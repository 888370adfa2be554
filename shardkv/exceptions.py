from __future__ import annotations


class RedisError(Exception):
    """
    Base exception from which all other exceptions in shardkv
    derive from.
    """


class ConnectionError(RedisError):
    pass


class ProtocolError(ConnectionError):
    """
    Raised when the bytes received from the server can not be framed
    as a valid reply. The connection that produced them is unusable.
    """


class TimeoutError(RedisError):
    pass


class ResponseError(RedisError):
    """
    An error reply sent by the server
    """


class BusyLoadingError(ResponseError):
    pass


class UnknownCommandError(ResponseError):
    pass


class WrongTypeError(ResponseError):
    """
    Raised when an operation is performed on a key
    containing a datatype that doesn't support the operation
    """


class ExecAbortError(ResponseError):
    """
    Raised when ``EXEC`` is rejected because a command failed to queue
    """


class NoScriptError(ResponseError):
    pass


class ReadOnlyError(ResponseError):
    pass


class AuthenticationError(ResponseError):
    """
    Base class for authentication errors
    """


class AuthenticationFailureError(AuthenticationError):
    """
    Raised when credentials were provided but were rejected
    """


class AuthenticationRequiredError(AuthenticationError):
    """
    Raised when the server requires credentials but none were provided
    """


class AuthorizationError(ResponseError):
    """
    Raised when the authenticated user lacks permission for a command
    """


class WatchError(RedisError):
    """
    Raised when a transaction was not executed because a watched
    key was modified
    """


class PipelineError(RedisError):
    """
    Raised when a pipeline is asked for a reply that was never requested
    """


class PubSubError(RedisError):
    pass


class RedisClusterError(RedisError):
    """Base exception for the cluster router"""


class SlotError(RedisClusterError):
    """
    Raised when no node in the current topology owns a hash slot
    """

    def __init__(self, slot: int) -> None:
        super().__init__(f"No node serves slot {slot}")
        self.slot = slot


class ClusterReloadError(RedisClusterError):
    """
    Raised when none of the seed nodes could provide the cluster topology
    """


class ClusterRoutingError(RedisClusterError):
    """Raised when an operation can not be routed to a single node"""


class ClusterCrossSlotError(ResponseError):
    """Raised when keys in a request don't hash to the same slot"""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "Keys in request don't hash to the same slot")


class ClusterDownError(ResponseError):
    """
    ``CLUSTERDOWN`` reply. The cluster stops serving queries while any
    hash slot is uncovered.
    """


class TryAgainError(ResponseError):
    """
    ``TRYAGAIN`` reply. Sent for multi key operations on a slot that is being
    migrated when the keys are split between the source and destination node.
    """


class AskError(ResponseError):
    """
    ``ASK`` reply sent for a slot that is being migrated.

    The command should be sent once to the node named in the reply,
    preceded by ``ASKING``. The topology itself has not changed.
    """

    def __init__(self, resp: str) -> None:
        super().__init__(resp)
        slot_id, new_node = resp.split(" ")
        host, port = new_node.rsplit(":", 1)
        self.slot_id = int(slot_id)
        self.node_addr = self.host, self.port = host, int(port)


class MovedError(AskError):
    """
    ``MOVED`` reply. The slot is permanently served by the node named in the
    reply and the cached topology is stale.
    """


class SentinelConnectionError(ConnectionError):
    pass


class PrimaryNotFoundError(SentinelConnectionError):
    """
    Raised when no sentinel could report the primary of a service
    """


class ReplicaNotFoundError(SentinelConnectionError):
    """
    Raised when no usable replica (or primary fallback) was found for a service
    """
