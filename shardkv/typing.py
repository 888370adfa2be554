from __future__ import annotations

from collections.abc import (
    AsyncGenerator,
    AsyncIterator,
    Awaitable,
    Callable,
    Coroutine,
    Iterable,
    Iterator,
    Mapping,
    Sequence,
)
from typing import (
    TYPE_CHECKING,
    Any,
    ClassVar,
    Final,
    Literal,
    NamedTuple,
    ParamSpec,
    TypeVar,
)

import beartype
from typing_extensions import NotRequired, Self, TypedDict, Unpack

from shardkv.config import Config

if TYPE_CHECKING:
    from shardkv.exceptions import RedisError

P = ParamSpec("P")
R = TypeVar("R")
T = TypeVar("T")


def add_runtime_checks(func: Callable[P, R]) -> Callable[P, R]:
    """
    Wraps :paramref:`func` with :func:`beartype.beartype` when runtime
    checks are enabled through :data:`shardkv.Config`
    """
    if Config.runtime_checks and not TYPE_CHECKING:
        return beartype.beartype(func)
    return func


class NullArray:
    """
    Type of the ``*-1`` reply. Kept apart from ``None`` (the ``$-1`` reply)
    so that both survive decoding distinctly.
    """

    __slots__ = ()
    _instance: ClassVar[NullArray | None] = None

    def __new__(cls) -> NullArray:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NULL_ARRAY"

    def __reduce__(self) -> str:
        return "NULL_ARRAY"


#: The null array reply
NULL_ARRAY: Final[NullArray] = NullArray()

#: Represents the acceptable types of a key
KeyT = str | bytes

#: Values accepted as command arguments. These are encoded using the
#: configured encoding before being transmitted.
ValueT = str | bytes | int | float

#: The canonical type used for input parameters that represent "strings"
StringT = str | bytes

#: Scalars returned by the server
ResponsePrimitive = StringT | int | None

#: Represents the total structure of any reply.
#:
#: Error replies are decoded into exception instances and are part of the
#: union since pipelines deliver them as values.
if TYPE_CHECKING:
    ResponseType = ResponsePrimitive | NullArray | list["ResponseType"] | RedisError
else:
    ResponseType = ResponsePrimitive | NullArray | list[Any] | Exception

__all__ = [
    "Any",
    "AsyncGenerator",
    "AsyncIterator",
    "Awaitable",
    "Callable",
    "ClassVar",
    "Coroutine",
    "Final",
    "Iterable",
    "Iterator",
    "KeyT",
    "Literal",
    "Mapping",
    "NamedTuple",
    "NotRequired",
    "NULL_ARRAY",
    "NullArray",
    "P",
    "R",
    "ResponsePrimitive",
    "ResponseType",
    "Self",
    "Sequence",
    "StringT",
    "T",
    "TypedDict",
    "TypeVar",
    "Unpack",
    "ValueT",
    "TYPE_CHECKING",
    "add_runtime_checks",
]
