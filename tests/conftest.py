import functools
import json
import ssl
import typing

import h11
import pytest
import trio
import trustme


class ServerRequest(typing.NamedTuple):
    method: str
    target: str
    headers: typing.Dict[str, str]
    body: bytes


ServerResponse = typing.Tuple[int, typing.List[typing.Tuple[str, str]], bytes]
Handler = typing.Callable[[ServerRequest], ServerResponse]


def echo(request: ServerRequest) -> ServerResponse:
    content = json.dumps(
        {
            "method": request.method,
            "target": request.target,
            "headers": request.headers,
            "body": request.body.decode("utf-8", errors="replace"),
        }
    ).encode()
    return 200, [("content-type", "application/json")], content


async def read_request(
    conn: h11.Connection, stream: trio.abc.Stream
) -> typing.Optional[ServerRequest]:
    request = None
    body = b""
    while True:
        event = conn.next_event()
        if event is h11.NEED_DATA:
            conn.receive_data(await stream.receive_some(65536))
        elif isinstance(event, h11.Request):
            request = event
        elif isinstance(event, h11.Data):
            body += event.data
        elif isinstance(event, h11.EndOfMessage):
            break
        else:
            return None

    assert request is not None
    headers: typing.Dict[str, str] = {}
    for name, value in request.headers:
        key = name.decode().lower()
        headers[key] = (headers[key] + ", " if key in headers else "") + value.decode()
    method, target = request.method.decode(), request.target.decode()
    return ServerRequest(method, target, headers, body)


class Server:
    """HTTP/1.1 server on 127.0.0.1 which dispatches on the request path
    and records every request and connection it sees.
    """

    def __init__(self, scheme: str = "http") -> None:
        self.scheme = scheme
        self.port = 0
        self.routes: typing.Dict[str, Handler] = {}
        self.requests: typing.List[ServerRequest] = []
        self.connections = 0

    @property
    def origin(self) -> str:
        return f"{self.scheme}://127.0.0.1:{self.port}"

    def url(self, path: str = "/") -> str:
        return self.origin + path

    async def serve(self, stream: trio.abc.Stream) -> None:
        self.connections += 1
        conn = h11.Connection(h11.SERVER)
        try:
            while True:
                request = await read_request(conn, stream)
                if request is None:
                    return
                self.requests.append(request)

                path = request.target.split("?", 1)[0]
                status, headers, content = self.routes.get(path, echo)(request)
                if not any(k.lower() == "content-length" for k, _ in headers):
                    headers = headers + [("content-length", str(len(content)))]

                await stream.send_all(
                    conn.send(h11.Response(status_code=status, headers=headers))
                )
                if content and request.method != "HEAD":
                    await stream.send_all(conn.send(h11.Data(data=content)))
                await stream.send_all(conn.send(h11.EndOfMessage()))

                if conn.our_state is not h11.DONE or conn.their_state is not h11.DONE:
                    return
                conn.start_next_cycle()
        except (h11.ProtocolError, trio.BrokenResourceError, trio.ClosedResourceError):
            pass
        finally:
            await stream.aclose()


class Proxy:
    """Forward proxy that only understands 'CONNECT'. Replies with
    'status' and relays bytes to the requested host when it's 200.
    """

    def __init__(self) -> None:
        self.port = 0
        self.status = 200
        self.requests: typing.List[ServerRequest] = []

    def url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    async def serve(self, stream: trio.SocketStream) -> None:
        conn = h11.Connection(h11.SERVER)
        try:
            request = await read_request(conn, stream)
            if request is None:
                return
            self.requests.append(request)

            if request.method != "CONNECT" or self.status != 200:
                headers = [("content-length", "0"), ("connection", "close")]
                await stream.send_all(
                    conn.send(h11.Response(status_code=self.status, headers=headers))
                )
                await stream.send_all(conn.send(h11.EndOfMessage()))
                return

            await stream.send_all(conn.send(h11.Response(status_code=200, headers=[])))
            trailing_data, _ = conn.trailing_data
            host, port = request.target.rsplit(":", 1)
            upstream = await trio.open_tcp_stream(host, int(port))
            async with upstream:
                if trailing_data:
                    await upstream.send_all(bytes(trailing_data))
                async with trio.open_nursery() as nursery:
                    nursery.start_soon(relay, stream, upstream, nursery.cancel_scope)
                    nursery.start_soon(relay, upstream, stream, nursery.cancel_scope)
        except (h11.ProtocolError, trio.BrokenResourceError, trio.ClosedResourceError):
            pass
        finally:
            await stream.aclose()


async def relay(
    source: trio.abc.Stream, sink: trio.abc.Stream, cancel_scope: trio.CancelScope
) -> None:
    try:
        while True:
            data = await source.receive_some(65536)
            if not data:
                break
            await sink.send_all(data)
    except (trio.BrokenResourceError, trio.ClosedResourceError):
        pass
    finally:
        cancel_scope.cancel()


async def start_listening(nursery: trio.Nursery, handler: typing.Any) -> int:
    listeners = await nursery.start(
        functools.partial(trio.serve_tcp, handler, 0, host="127.0.0.1")
    )
    return listeners[0].socket.getsockname()[1]


@pytest.fixture
async def server(nursery):
    srv = Server()
    srv.port = await start_listening(nursery, srv.serve)
    return srv


@pytest.fixture
async def proxy(nursery):
    prx = Proxy()
    prx.port = await start_listening(nursery, prx.serve)
    return prx


@pytest.fixture(scope="session")
def ca():
    return trustme.CA()


@pytest.fixture
async def https_server(nursery, ca):
    srv = Server(scheme="https")
    ssl_context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    ca.issue_cert("127.0.0.1", "localhost").configure_cert(ssl_context)
    listeners = await nursery.start(
        functools.partial(
            trio.serve_ssl_over_tcp,
            srv.serve,
            0,
            ssl_context,
            host="127.0.0.1",
            https_compatible=True,
        )
    )
    srv.port = listeners[0].transport_listener.socket.getsockname()[1]
    return srv
