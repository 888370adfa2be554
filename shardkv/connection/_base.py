from __future__ import annotations

import builtins
import dataclasses
import inspect
import ssl
from abc import ABC, abstractmethod

from anyio import (
    BrokenResourceError,
    ClosedResourceError,
    EndOfStream,
    aclose_forcefully,
    get_cancelled_exc_class,
    move_on_after,
)
from anyio.abc import ByteStream

from shardkv._packer import Packer
from shardkv._utils import logger
from shardkv.exceptions import (
    ConnectionError,
    ProtocolError,
    RedisError,
    TimeoutError,
)
from shardkv.parser import NotEnoughData, Parser
from shardkv.typing import (
    Awaitable,
    Callable,
    NotRequired,
    ResponseType,
    Self,
    TypedDict,
    ValueT,
)


@dataclasses.dataclass(unsafe_hash=True)
class Location:
    """
    Abstract location
    """

    ...


class BaseConnectionParams(TypedDict):
    """
    The common parameters accepted by :class:`shardkv.connection.BaseConnection`
    """

    #: Maximum time to wait for a reply once a request was sent
    stream_timeout: NotRequired[float | None]
    #: Maximum time to wait for establishing a connection
    connect_timeout: NotRequired[float | None]

    #: Encoding used for ``str`` arguments and for decoding replies
    encoding: NotRequired[str]
    #: Whether to decode string replies using :paramref:`encoding`
    decode_responses: NotRequired[bool]

    #: Optional name to register with the server.
    client_name: NotRequired[str | None]
    #: The username to authenticate with
    username: NotRequired[str | None]
    #: The password to authenticate with
    password: NotRequired[str | None]
    #: If provided the connection will switch to this database as part of the handshake
    db: NotRequired[int | None]
    #: For TLS connections, the ssl context to use when performing the TLS handshake
    ssl_context: NotRequired[ssl.SSLContext | None]


class BaseConnection(ABC):
    """
    A single framed duplex stream to one server.

    Requests are buffered with :meth:`write_command` and sent with :meth:`flush`
    so that several commands can be coalesced into one network write. Replies
    are read one at a time, strictly in the order the requests were sent, with
    :meth:`read_response`.

    A connection is owned by exactly one caller at a time (see
    :class:`~shardkv.pool.ConnectionPool`) and is not safe for concurrent use
    by multiple tasks.

    Subclasses must implement :meth:`_connect` to establish the transport.
    """

    Params = BaseConnectionParams
    """
    :meta private:
    """

    def __init__(
        self,
        location: Location,
        *,
        stream_timeout: float | None = None,
        connect_timeout: float | None = None,
        encoding: str = "utf-8",
        decode_responses: bool = False,
        client_name: str | None = None,
        username: str | None = None,
        password: str | None = None,
        db: int | None = 0,
        ssl_context: ssl.SSLContext | None = None,
    ):
        """
        :param location: The location of the server this connection is connecting to
        :param stream_timeout: Maximum time to wait for a reply
        :param connect_timeout: Maximum time to wait for establishing a connection
        :param encoding: Encoding used for string arguments and decoded replies
        :param decode_responses: Whether to decode string replies
        :param client_name: Optional name to register with the server.
        :param username: The username to authenticate with
        :param password: The password to authenticate with
        :param db: If provided the connection will switch to this database
         as part of the handshake
        :param ssl_context: For TLS connections, the ssl context to use when
         performing the TLS handshake.
        """
        self.location = location
        self.client_name = client_name

        self._stream_timeout = stream_timeout
        self._connect_timeout = connect_timeout
        self._encoding = encoding
        self._decode_responses = decode_responses
        self._username = username
        self._password = password
        self._db = db
        self._ssl_context = ssl_context

        self._connect_callbacks: list[
            Callable[[Self], Awaitable[None]] | Callable[[Self], None]
        ] = []

        self.stream: ByteStream | None = None
        self._parser = Parser()
        self._packer = Packer(encoding)
        self._write_buffer: list[bytes] = []

        self._last_error: BaseException | None = None
        self._ready = False
        self._transport_failed = False

    def __repr__(self) -> str:
        return self.describe()

    @abstractmethod
    def describe(self) -> str: ...

    @property
    def encoding(self) -> str:
        return self._encoding

    @property
    def decode_responses(self) -> bool:
        return self._decode_responses

    @property
    def is_connected(self) -> bool:
        """
        Whether the underlying transport is open
        """
        return self.stream is not None

    @property
    def transport_healthy(self) -> bool:
        """
        Whether the transport is open and the last I/O on it did not fail
        or time out
        """
        return self.stream is not None and not self._transport_failed

    @property
    def usable(self) -> bool:
        """
        Whether the connection is established, the handshake was
        completed and no I/O has failed since
        """
        return self.transport_healthy and self._ready

    def register_connect_callback(
        self,
        callback: Callable[[Self], None] | Callable[[Self], Awaitable[None]],
    ) -> None:
        """
        Registers a callback that will be executed after the handshake and
        before the connection is marked usable.

        .. caution:: Any exception raised by a connect callback results in a
           failed connection attempt.
        """
        self._connect_callbacks.append(callback)

    async def _trigger_connect_callbacks(self) -> None:
        for callback in self._connect_callbacks:
            task = callback(self)
            if inspect.isawaitable(task):
                await task

    @abstractmethod
    async def _connect(self) -> ByteStream:
        """
        Establish and return the underlying transport to the server.
        """
        ...

    async def connect(self) -> None:
        """
        Establish the transport and perform the handshake
        (``AUTH``, ``SELECT``, ``CLIENT SETNAME`` and any connect callbacks).

        :raises: :exc:`~shardkv.exceptions.ConnectionError` (or the error reply
         that failed the handshake) if the connection could not be established,
         :exc:`~shardkv.exceptions.TimeoutError` if it took longer than ``connect_timeout``.
        """
        if self.stream is not None or self._transport_failed:
            raise RuntimeError("Connection cannot be reused")
        try:
            self.stream = await self._connect()
            await self.__perform_handshake()
        except Exception as connection_error:
            self._last_error = connection_error
            self._transport_failed = True
            await self.close()
            if isinstance(connection_error, RedisError):
                raise
            if isinstance(connection_error, builtins.TimeoutError):
                raise TimeoutError(
                    f"Timed out connecting to {self.location}"
                ) from connection_error
            # Wrap any other errors so that the pool (and callers) only have to
            # deal with library errors when a connection can not be created.
            raise ConnectionError("Unable to establish a connection") from connection_error

    async def __perform_handshake(self) -> None:
        if self._username or self._password:
            credentials = (
                (self._username, self._password or "") if self._username else (self._password,)
            )
            await self.execute_command(b"AUTH", *credentials)
        if self._db:
            if await self.execute_command(b"SELECT", self._db, decode=False) != b"OK":
                raise ConnectionError(f"Invalid Database {self._db}")
        if self.client_name is not None:
            if await self.execute_command(b"CLIENT SETNAME", self.client_name, decode=False) != b"OK":
                raise ConnectionError(f"Failed to set client name: {self.client_name}")
        await self._trigger_connect_callbacks()
        self._ready = True

    def write_command(self, command: ValueT, *args: ValueT) -> None:
        """
        Buffer a request. Nothing is sent until :meth:`flush` is called.
        """
        self._write_buffer.extend(self._packer.pack_command(command, *args))

    async def flush(self) -> None:
        """
        Send all buffered requests in a single write
        """
        if not self._write_buffer:
            return
        if self.stream is None:
            raise ConnectionError("Connection not established") from self._last_error
        data = b"".join(self._write_buffer)
        self._write_buffer.clear()
        try:
            await self.stream.send(data)
        except (ClosedResourceError, BrokenResourceError, OSError) as err:
            self._fail(err)
            raise ConnectionError("Connection lost while sending request") from err
        except get_cancelled_exc_class() as err:
            # a partially written request leaves the stream in an unknown state
            self._fail(err)
            raise

    async def read_response(
        self, decode: bool | None = None, *, blocking: bool = False
    ) -> ResponseType:
        """
        Read exactly one reply. Error replies are returned as exception
        instances, not raised.

        :param decode: Overrides :paramref:`BaseConnection.decode_responses`
        :param blocking: If ``True`` wait for a reply without applying the
         configured ``stream_timeout`` (used by subscriptions).
        """
        decode = self._decode_responses if decode is None else decode
        while True:
            try:
                response = self._parser.parse(decode, self._encoding)
            except ProtocolError as err:
                self._fail(err)
                raise
            if not isinstance(response, NotEnoughData):
                return response.response
            await self._receive(None if blocking else self._stream_timeout)

    async def _receive(self, timeout: float | None) -> None:
        if self.stream is None:
            raise ConnectionError("Connection not established") from self._last_error
        try:
            with move_on_after(timeout) as scope:
                data = await self.stream.receive()
        except (EndOfStream, ClosedResourceError, BrokenResourceError, OSError) as err:
            self._fail(err)
            raise ConnectionError("Connection lost while receiving response") from err
        except get_cancelled_exc_class() as err:
            # the reply that was being waited on will arrive on a stream
            # nobody is reading in lockstep anymore.
            self._fail(err)
            raise
        if scope.cancelled_caught:
            err = TimeoutError(f"Timed out waiting for a reply from {self.location}")
            self._fail(err)
            raise err
        self._parser.feed(data)

    async def execute_command(
        self, command: ValueT, *args: ValueT, decode: bool | None = None
    ) -> ResponseType:
        """
        Send a single command and wait for its reply

        :raises: The error reply as an exception if the server replied with an error.
        """
        self.write_command(command, *args)
        await self.flush()
        response = await self.read_response(decode)
        if isinstance(response, RedisError):
            raise response
        return response

    def _fail(self, error: BaseException) -> None:
        self._last_error = error
        self._transport_failed = True

    async def close(self) -> None:
        """
        Close the transport. The connection can not be used afterwards.
        """
        self._ready = False
        self._transport_failed = True
        self._write_buffer.clear()
        self._parser.reset()
        if self.stream is not None:
            stream, self.stream = self.stream, None
            logger.debug("Closing %s", self.describe())
            await aclose_forcefully(stream)
