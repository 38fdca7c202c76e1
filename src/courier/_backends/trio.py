import ssl
import typing

import trio

from .base import AsyncBackend, AsyncSocket, is_readable
from courier import utils

TrioStream = typing.Union[trio.SocketStream, trio.SSLStream]


class TrioBackend(AsyncBackend):
    async def connect(
        self, host: str, port: int, *, connect_timeout: float
    ) -> "TrioSocket":
        with trio.fail_after(connect_timeout):
            stream = await trio.open_tcp_stream(host, port)
        return TrioSocket(stream)


class TrioSocket(AsyncSocket):
    def __init__(self, stream: TrioStream):
        self._stream = stream

    async def start_tls(
        self, server_hostname: typing.Optional[str], ssl_context: ssl.SSLContext
    ) -> "TrioSocket":
        """Layers TLS over this stream, which may itself be a tunnel
        through a proxy or a TLS connection to an HTTPS proxy.
        """
        tls_stream = trio.SSLStream(
            self._stream,
            ssl_context,
            server_hostname=server_hostname,
            https_compatible=True,
        )
        await tls_stream.do_handshake()
        return TrioSocket(tls_stream)

    async def send_all(self, data: bytes) -> None:
        await self._stream.send_all(data)

    async def receive_some(self, read_timeout: float) -> bytes:
        with trio.fail_after(read_timeout):
            return await self._stream.receive_some(utils.CHUNK_SIZE)

    def forceful_close(self) -> None:
        # Synchronous, so the TLS layer is dropped without close_notify.
        self._raw_socket().close()

    def is_connected(self) -> bool:
        # An idle HTTP/1.1 connection is never readable unless
        # the peer closed it or sent bytes we didn't ask for.
        sock = self._raw_socket()
        return sock.fileno() != -1 and not is_readable(sock)

    def _raw_socket(self) -> trio.socket.SocketType:
        stream: typing.Any = self._stream
        while isinstance(stream, trio.SSLStream):
            stream = stream.transport_stream
        return typing.cast(trio.SocketStream, stream).socket
