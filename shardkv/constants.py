"""
RESP2 protocol constants
"""

from __future__ import annotations

import enum
from typing import Final


class DataType(enum.IntEnum):
    """
    Markers used by the server to signal the type of the value
    that follows on the wire.
    """

    SIMPLE_STRING = ord(b"+")
    ERROR = ord(b"-")
    INT = ord(b":")
    BULK_STRING = ord(b"$")
    ARRAY = ord(b"*")


SYM_STAR: Final[bytes] = b"*"
SYM_DOLLAR: Final[bytes] = b"$"
SYM_DASH: Final[bytes] = b"-"
SYM_COLON: Final[bytes] = b":"
SYM_CRLF: Final[bytes] = b"\r\n"
SYM_EMPTY: Final[bytes] = b""

#: Arguments larger than this are written as separate chunks
#: instead of being copied into the command buffer.
CHUNK_THRESHOLD: Final[int] = 6000


class PubSubMessageTypes(bytes, enum.Enum):
    MESSAGE = b"message"
    PMESSAGE = b"pmessage"
    SMESSAGE = b"smessage"
    SUBSCRIBE = b"subscribe"
    UNSUBSCRIBE = b"unsubscribe"
    PSUBSCRIBE = b"psubscribe"
    PUNSUBSCRIBE = b"punsubscribe"
    SSUBSCRIBE = b"ssubscribe"
    SUNSUBSCRIBE = b"sunsubscribe"


PUBLISH_MESSAGE_TYPES: Final[frozenset[bytes]] = frozenset(
    {
        PubSubMessageTypes.MESSAGE.value,
        PubSubMessageTypes.PMESSAGE.value,
        PubSubMessageTypes.SMESSAGE.value,
    }
)
SUBUNSUB_MESSAGE_TYPES: Final[frozenset[bytes]] = frozenset(
    t.value for t in PubSubMessageTypes if t.value not in PUBLISH_MESSAGE_TYPES
)
