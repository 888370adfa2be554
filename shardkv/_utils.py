from __future__ import annotations

import logging
from typing import Any

from wrapt import ObjectProxy

from shardkv.typing import Final, Iterable, KeyT, Mapping, ResponseType, StringT

logger = logging.getLogger("shardkv")

#: Number of hash slots the key space is partitioned into
HASH_SLOTS: Final[int] = 16384


class EncodingInsensitiveDict(ObjectProxy):  # type: ignore
    """
    Mapping proxy that answers lookups for ``str`` keys with values
    stored under the equivalent ``bytes`` key (and vice versa).
    """

    def __init__(
        self,
        mapping: Mapping[Any, Any] | None = None,
        encoding: str = "utf-8",
    ):
        super().__init__(dict(mapping or {}))
        self._self_encoding = encoding

    def _alternate(self, item: StringT) -> StringT:
        if isinstance(item, str):
            return item.encode(self._self_encoding)
        return item.decode(self._self_encoding)

    def __getitem__(self, item: StringT) -> Any:
        if item not in self.__wrapped__ and isinstance(item, (str, bytes)):
            return self.__wrapped__[self._alternate(item)]
        return self.__wrapped__[item]

    def get(self, item: StringT, default: object | None = None) -> Any:
        try:
            return self.__getitem__(item)
        except KeyError:
            return default

    def __contains__(self, key: object) -> bool:
        if isinstance(key, (str, bytes)):
            return key in self.__wrapped__ or self._alternate(key) in self.__wrapped__
        return key in self.__wrapped__

    def __repr__(self) -> str:
        return repr(self.__wrapped__)


def b(x: ResponseType, encoding: str | None = None) -> bytes:
    if isinstance(x, bytes):
        return x
    _v = x if isinstance(x, str) else str(x)
    return _v.encode(encoding) if encoding else _v.encode()


def nativestr(x: ResponseType, encoding: str = "utf-8") -> str:
    if isinstance(x, (str, bytes)):
        return x if isinstance(x, str) else x.decode(encoding, "replace")
    elif isinstance(x, int):
        return str(x)
    raise ValueError(f"Unable to cast {x} to string")


def pairs_to_dict(response: ResponseType, encoding: str = "utf-8") -> EncodingInsensitiveDict:
    """
    Converts a flat ``[field, value, field, value, ...]`` reply into a mapping
    that can be indexed with either ``str`` or ``bytes`` field names.
    """
    if not isinstance(response, list):
        return EncodingInsensitiveDict(encoding=encoding)
    it = iter(response)
    return EncodingInsensitiveDict(dict(zip(it, it)), encoding)


def _build_crc16_table() -> tuple[int, ...]:
    table = []
    for byte in range(256):
        crc = byte << 8
        for _ in range(8):
            crc = ((crc << 1) ^ 0x1021) if crc & 0x8000 else crc << 1
        table.append(crc & 0xFFFF)
    return tuple(table)


x_mode_m_crc16_lookup: Final[tuple[int, ...]] = _build_crc16_table()


def crc16(data: bytes) -> int:
    """CRC16 (XMODEM) of :paramref:`data`"""
    crc = 0
    for byte in data:
        crc = ((crc << 8) & 0xFF00) ^ x_mode_m_crc16_lookup[((crc >> 8) & 0xFF) ^ byte]
    return crc & 0xFFFF


def hash_slot(key: bytes) -> int:
    """
    Hash slot of :paramref:`key`. If the key contains a non empty hash tag
    (the text between the first ``{`` and the next ``}``) only the tag is hashed.
    """
    start = key.find(b"{")
    if start > -1:
        end = key.find(b"}", start + 1)
        if end > -1 and end != start + 1:
            key = key[start + 1 : end]
    return crc16(key) % HASH_SLOTS


def slot_for(key: KeyT, encoding: str = "utf-8") -> int:
    return hash_slot(b(key, encoding))


def slots_for(keys: Iterable[KeyT], encoding: str = "utf-8") -> dict[int, list[KeyT]]:
    """
    Groups :paramref:`keys` by hash slot, preserving the order
    in which they were given.
    """
    slots: dict[int, list[KeyT]] = {}
    for key in keys:
        slots.setdefault(slot_for(key, encoding), []).append(key)
    return slots


__all__ = [
    "EncodingInsensitiveDict",
    "HASH_SLOTS",
    "b",
    "crc16",
    "hash_slot",
    "logger",
    "nativestr",
    "pairs_to_dict",
    "slot_for",
    "slots_for",
]
