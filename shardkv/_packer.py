from __future__ import annotations

from shardkv.constants import (
    CHUNK_THRESHOLD,
    SYM_COLON,
    SYM_CRLF,
    SYM_DASH,
    SYM_DOLLAR,
    SYM_EMPTY,
    SYM_STAR,
)
from shardkv.exceptions import RedisError
from shardkv.typing import NullArray, ResponseType, Sequence, ValueT


class Packer:
    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def encode(self, value: ValueT) -> bytes:
        """Returns the wire representation of a single argument"""
        if isinstance(value, bytes):
            return value
        if isinstance(value, str):
            return value.encode(self.encoding)
        if isinstance(value, bool):
            raise TypeError("Boolean arguments are ambiguous; pass an int or a string")
        if isinstance(value, int):
            return b"%d" % value
        if isinstance(value, float):
            return b"%.15g" % value
        raise TypeError(f"Unable to encode argument of type {type(value).__name__}")

    def pack_command(self, command: ValueT, *args: ValueT) -> list[bytes]:
        """
        Pack a command and its arguments as an array of bulk strings.

        A multi word command name (e.g. ``CLUSTER SHARDS``) is split so that
        each word is sent as its own argument.
        """
        name = self.encode(command)
        arguments: tuple[ValueT, ...] = (
            tuple(name.split()) + args if b" " in name else (name,) + args
        )
        output: list[bytes] = []
        buff = SYM_EMPTY.join((SYM_STAR, b"%d" % len(arguments), SYM_CRLF))

        for argument in arguments:
            arg = self.encode(argument)
            # large values are appended as their own chunk instead of
            # being copied into the running buffer
            if len(buff) > CHUNK_THRESHOLD or len(arg) > CHUNK_THRESHOLD:
                output.append(SYM_EMPTY.join((buff, SYM_DOLLAR, b"%d" % len(arg), SYM_CRLF)))
                output.append(arg)
                buff = SYM_CRLF
            else:
                buff = SYM_EMPTY.join((buff, SYM_DOLLAR, b"%d" % len(arg), SYM_CRLF, arg, SYM_CRLF))
        output.append(buff)
        return output

    def pack_commands(self, commands: Sequence[Sequence[ValueT]]) -> list[bytes]:
        output: list[bytes] = []
        pieces: list[bytes] = []
        buffer_length = 0

        for command in commands:
            for chunk in self.pack_command(*command):
                pieces.append(chunk)
                buffer_length += len(chunk)

            if buffer_length > CHUNK_THRESHOLD:
                output.append(SYM_EMPTY.join(pieces))
                buffer_length = 0
                pieces = []

        if pieces:
            output.append(SYM_EMPTY.join(pieces))
        return output

    def pack_reply(self, value: ResponseType) -> bytes:
        """
        Encode :paramref:`value` the way a server would send it as a reply.
        Strings become bulk strings, ``None`` the null bulk string,
        :data:`~shardkv.typing.NULL_ARRAY` the null array and
        :exc:`~shardkv.exceptions.RedisError` instances error replies.
        """
        output: list[bytes] = []
        stack: list[ResponseType] = [value]
        while stack:
            item = stack.pop()
            if item is None:
                output.append(b"$-1\r\n")
            elif isinstance(item, NullArray):
                output.append(b"*-1\r\n")
            elif isinstance(item, RedisError):
                output.append(SYM_EMPTY.join((SYM_DASH, self.encode(str(item)), SYM_CRLF)))
            elif isinstance(item, bool):
                raise TypeError("Boolean replies are not part of the protocol")
            elif isinstance(item, int):
                output.append(SYM_EMPTY.join((SYM_COLON, b"%d" % item, SYM_CRLF)))
            elif isinstance(item, (str, bytes)):
                data = self.encode(item)
                output.append(SYM_EMPTY.join((SYM_DOLLAR, b"%d" % len(data), SYM_CRLF, data, SYM_CRLF)))
            elif isinstance(item, list):
                output.append(SYM_EMPTY.join((SYM_STAR, b"%d" % len(item), SYM_CRLF)))
                stack.extend(reversed(item))
            else:
                raise TypeError(f"Unable to encode reply of type {type(item).__name__}")
        return SYM_EMPTY.join(output)
