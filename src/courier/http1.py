import logging
import typing

import h11

from ._backends import AsyncSocket, wrap_exceptions
from .exceptions import ProxyError, RemoteProtocolError
from .models import Request, Response

READ_TIMEOUT = 10.0

logger = logging.getLogger(__name__)


class HTTP11Transaction:
    """One HTTP/1.1 request / response cycle over a socket. Once the
    response body has been read to the end the socket is handed to
    'on_release' if h11 says it can carry another cycle, otherwise
    it's closed.
    """

    def __init__(
        self,
        socket: AsyncSocket,
        *,
        on_release: typing.Optional[typing.Callable[[AsyncSocket], None]] = None,
        initial_data: bytes = b"",
    ):
        self.socket = socket
        self.h11 = h11.Connection(h11.CLIENT)
        self._on_release = on_release
        if initial_data:
            self.h11.receive_data(initial_data)

    async def send_request(
        self,
        request: Request,
        request_data: typing.AsyncIterator[bytes],
        *,
        decompress: bool = True,
    ) -> Response:
        """Sends the request head and body then waits for the response
        head. The body is left on the wire to be streamed by the Response.
        """
        response_history: typing.List[Response] = []

        with wrap_exceptions(is_connect=False):
            await self.socket.send_all(self.h11.send(_request_to_h11_event(request)))
            async for chunk in request_data:
                if chunk:
                    await self.socket.send_all(self.h11.send(h11.Data(data=chunk)))
            await self.socket.send_all(self.h11.send(h11.EndOfMessage()))

            while True:
                event = await self._next_event()
                if isinstance(event, h11.InformationalResponse):
                    response_history.append(
                        Response(
                            status_code=event.status_code,
                            headers=event.headers,
                            http_version=f"HTTP/{event.http_version.decode()}",
                            request=request,
                        )
                    )
                elif isinstance(event, h11.Response):
                    break
                else:
                    raise RemoteProtocolError(
                        f"unexpected event while waiting for a response: {event!r}"
                    )

        response = Response(
            status_code=event.status_code,
            headers=event.headers,
            http_version=f"HTTP/{event.http_version.decode()}",
            request=request,
            raw_data=self.receive_response_data(),
            decompress=decompress,
        )
        response.history = response_history
        return response

    async def receive_response_data(self) -> typing.AsyncIterator[bytes]:
        with wrap_exceptions(is_connect=False):
            while True:
                event = await self._next_event()
                if isinstance(event, h11.Data):
                    yield bytes(event.data)
                elif isinstance(event, h11.EndOfMessage):
                    break
                else:
                    raise RemoteProtocolError(
                        f"unexpected event while reading the response body: {event!r}"
                    )

        await self.close()

    async def close(self) -> None:
        """Readies the socket to be used for a different transaction if possible."""
        try:
            self.h11.start_next_cycle()
        except h11.ProtocolError:
            self.socket.forceful_close()
            return

        if self._on_release is None:
            self.socket.forceful_close()
        else:
            self._on_release(self.socket)

    async def _next_event(self) -> typing.Any:
        return await _next_event(self.h11, self.socket)


async def open_tunnel(socket: AsyncSocket, request: Request) -> bytes:
    """Sends 'CONNECT' over 'socket' and waits for the proxy to accept.
    Returns any bytes the proxy sent after its response head as they
    belong to the tunnelled protocol.
    """
    conn = h11.Connection(h11.CLIENT)

    with wrap_exceptions(is_connect=True):
        await socket.send_all(
            conn.send(_request_to_h11_event(request)) + conn.send(h11.EndOfMessage())
        )
        while True:
            event = await _next_event(conn, socket)
            if isinstance(event, h11.Response):
                break
            elif not isinstance(event, h11.InformationalResponse):
                raise ProxyError(
                    f"unexpected event while waiting for the proxy: {event!r}",
                    request=request,
                )

    if conn.our_state is not h11.SWITCHED_PROTOCOL:
        raise ProxyError(
            f"proxy responded to CONNECT {request.target} with {event.status_code}",
            request=request,
            response=Response(
                status_code=event.status_code,
                headers=event.headers,
                http_version=f"HTTP/{event.http_version.decode()}",
                request=request,
            ),
        )

    logger.debug("Tunnel established to %s", request.target)
    data, _ = conn.trailing_data
    return bytes(data)


async def _next_event(conn: h11.Connection, socket: AsyncSocket) -> typing.Any:
    while True:
        event = conn.next_event()
        if event is not h11.NEED_DATA:
            return event
        conn.receive_data(await socket.receive_some(READ_TIMEOUT))


def _request_to_h11_event(request: Request) -> h11.Request:
    # Put the 'Host' header first in the request as it's required.
    h11_headers = [(b"host", request.headers["host"].encode())]
    for k, v in request.headers.items():
        if k.lower() != "host" and v is not None:
            h11_headers.append((k.encode(), v.encode()))
    return h11.Request(
        method=request.method.encode(),
        target=request.target.encode(),
        headers=h11_headers,
    )
