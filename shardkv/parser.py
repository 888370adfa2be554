from __future__ import annotations

from io import BytesIO

from shardkv.constants import SYM_CRLF, DataType
from shardkv.exceptions import (
    AskError,
    AuthenticationFailureError,
    AuthenticationRequiredError,
    AuthorizationError,
    BusyLoadingError,
    ClusterCrossSlotError,
    ClusterDownError,
    ConnectionError,
    ExecAbortError,
    MovedError,
    NoScriptError,
    ProtocolError,
    ReadOnlyError,
    RedisError,
    ResponseError,
    TryAgainError,
    UnknownCommandError,
    WrongTypeError,
)
from shardkv.typing import NULL_ARRAY, Final, NamedTuple, ResponseType


class NotEnoughData:
    pass


NOT_ENOUGH_DATA: Final[NotEnoughData] = NotEnoughData()


class ListNode:
    """
    An array whose elements are still being read. ``depth`` is the
    number of elements still missing.
    """

    __slots__ = ("container", "depth")

    def __init__(self, depth: int) -> None:
        self.depth = depth
        self.container: list[ResponseType] = []

    def append(self, item: ResponseType) -> None:
        self.depth -= 1
        self.container.append(item)


class UnpackedResponse(NamedTuple):
    response_type: int
    response: ResponseType


class Parser:
    """
    Incremental reply decoder. Bytes received from the server are
    :meth:`feed`-ed in and complete replies are taken out with :meth:`parse`.

    Nested arrays are assembled on an explicit stack so that the nesting depth
    of a reply is never bound to the interpreter's recursion limit.
    """

    EXCEPTION_CLASSES: dict[str, type[RedisError] | dict[str, type[RedisError]]] = {
        "ASK": AskError,
        "CLUSTERDOWN": ClusterDownError,
        "CROSSSLOT": ClusterCrossSlotError,
        "ERR": {
            "max number of clients reached": ConnectionError,
            "unknown command": UnknownCommandError,
            "unknown subcommand": UnknownCommandError,
        },
        "EXECABORT": ExecAbortError,
        "LOADING": BusyLoadingError,
        "MOVED": MovedError,
        "NOAUTH": AuthenticationRequiredError,
        "NOPERM": AuthorizationError,
        "NOSCRIPT": NoScriptError,
        "READONLY": ReadOnlyError,
        "TRYAGAIN": TryAgainError,
        "WRONGPASS": AuthenticationFailureError,
        "WRONGTYPE": WrongTypeError,
    }

    def __init__(self) -> None:
        self.localbuffer: BytesIO = BytesIO(b"")
        self.bytes_read: int = 0
        self.bytes_written: int = 0
        self.nodes: list[ListNode] = []

    def feed(self, data: bytes) -> None:
        self.localbuffer.seek(self.bytes_written)
        self.bytes_written += self.localbuffer.write(data)
        self.localbuffer.seek(self.bytes_read)

    def reset(self) -> None:
        """Drops any buffered bytes and partially assembled replies"""
        self.localbuffer.seek(0)
        self.localbuffer.truncate()
        self.bytes_read = self.bytes_written = 0
        self.nodes.clear()

    def can_read(self) -> bool:
        return (self.bytes_written - self.bytes_read) > 0

    def try_decode(self, data: bytes, encoding: str) -> bytes | str:
        try:
            return data.decode(encoding)
        except ValueError:
            return data

    def parse(
        self,
        decode_bytes: bool = False,
        encoding: str | None = None,
    ) -> UnpackedResponse | NotEnoughData:
        """
        :param decode_bytes: Whether to decode simple and bulk strings
        :param encoding: The encoding to use when decoding
        :return: The next complete reply in the buffer or
         :data:`NOT_ENOUGH_DATA` if more bytes are needed.
        :raises: :exc:`~shardkv.exceptions.ProtocolError` if the buffered bytes are
         not valid framing.
        """
        parsed: UnpackedResponse | None = None
        self.localbuffer.seek(self.bytes_read)

        while True:
            data = self.localbuffer.readline()
            if not data[-2:] == SYM_CRLF:
                return NOT_ENOUGH_DATA
            data_len = len(data)
            self.bytes_read += data_len
            marker, chunk = data[0], data[1:-2]
            response: ResponseType = None
            if marker == DataType.SIMPLE_STRING:
                response = chunk
                if decode_bytes and encoding:
                    response = self.try_decode(response, encoding)
            elif marker == DataType.BULK_STRING:
                length = self._length(chunk)
                if length >= 0:
                    if (self.bytes_written - self.bytes_read) < length + 2:
                        self.bytes_read -= data_len
                        return NOT_ENOUGH_DATA
                    data = self.localbuffer.read(length + 2)
                    self.bytes_read += length + 2
                    if data[-2:] != SYM_CRLF:
                        raise ProtocolError("Bulk string is not terminated by CRLF")
                    response = data[:-2]
                    if decode_bytes and encoding:
                        response = self.try_decode(response, encoding)
            elif marker == DataType.INT:
                response = self._length(chunk)
            elif marker == DataType.ARRAY:
                length = self._length(chunk)
                if length >= 0:
                    self.nodes.append(ListNode(length))
                    if length > 0:
                        continue
                else:
                    response = NULL_ARRAY
            elif marker == DataType.ERROR:
                response = self.parse_error(bytes(chunk).decode("utf-8", "replace"))
            else:
                raise ProtocolError(f"Protocol Error: {chr(marker)!r}, {bytes(chunk)!r}")

            if self.nodes:
                if self.nodes[-1].depth > 0:
                    self.nodes[-1].append(response)
                while len(self.nodes) > 1 and self.nodes[-1].depth == 0:
                    self.nodes[-2].append(self.nodes.pop().container)
                if len(self.nodes) == 1 and self.nodes[-1].depth == 0:
                    parsed = UnpackedResponse(DataType.ARRAY, self.nodes.pop().container)
                    break
            else:
                parsed = UnpackedResponse(marker, response)
                break

        if self.bytes_read == self.bytes_written:
            self.localbuffer.seek(0)
            self.localbuffer.truncate()
            self.bytes_read = self.bytes_written = 0
        return parsed

    def _length(self, chunk: bytes) -> int:
        try:
            return int(chunk)
        except ValueError:
            raise ProtocolError(f"Invalid integer in reply header: {bytes(chunk)!r}")

    def parse_error(self, response: str) -> RedisError:
        """
        Maps an error reply to an exception instance using
        the error code (first word) of the reply

        :meta private:
        """
        error_code = response.split(" ")[0]
        if error_code in self.EXCEPTION_CLASSES:
            response = response[len(error_code) + 1 :]
            exception_class = self.EXCEPTION_CLASSES[error_code]

            if isinstance(exception_class, dict):
                options = exception_class.items()
                exception_class = ResponseError
                for err, exc in options:
                    if response.lower().startswith(err):
                        exception_class = exc
                        break
            return exception_class(response)
        return ResponseError(response)
