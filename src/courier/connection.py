import collections
import logging
import math
import typing

import trio

from .body import RequestData
from .exceptions import (
    CourierError,
    ExchangeError,
    HTTPStatusError,
    LocalProtocolError,
)
from .models import Request, Response
from .utils import sync_or_async, to_bytes

if typing.TYPE_CHECKING:
    from .options import RequestOptions

logger = logging.getLogger(__name__)

Listener = typing.Callable[[typing.Any], typing.Any]
Runner = typing.Callable[["Connection"], typing.Awaitable[Response]]

EVENTS = ("request", "response", "error")


class Connection:
    """One in-flight HTTP exchange, handed out before any I/O happens.

    The writable side buffers request body bytes written with 'write()'
    and 'end()', or takes a whole 'RequestData' with 'pipe()'. Nothing
    goes on the wire until the connection is run, either by awaiting it
    ('await conn', 'await conn.wait()', 'async with conn as response')
    or by scheduling it with 'conn.start_soon(nursery)'.

    Listeners registered with 'on()' receive the 'request' event with
    the wire Request right before the body is sent, then exactly one
    of 'response' with the final Response or 'error' with a CourierError.
    """

    def __init__(self, options: "RequestOptions", request: Request, runner: Runner):
        self.options = options
        self.request = request
        self.response: typing.Optional[Response] = None
        self.error: typing.Optional[CourierError] = None

        self._runner = runner
        self._listeners: typing.DefaultDict[
            str, typing.List[Listener]
        ] = collections.defaultdict(list)
        self._send_channel, self._receive_channel = trio.open_memory_channel(math.inf)
        self._source: typing.Optional[RequestData] = None
        self._ended = False
        self._bytes_written = 0
        self._request_emitted = False
        self._headers_sent = False
        self._started = False
        self._done = trio.Event()

    def on(self, event: str, listener: Listener) -> "Connection":
        if event not in EVENTS:
            raise ValueError(f"unknown event '{event}', expected one of {EVENTS}")
        self._listeners[event].append(listener)
        return self

    async def emit(self, event: str, value: typing.Any) -> None:
        if event == "request":
            if self._request_emitted:
                return
            self._request_emitted = True
        for listener in list(self._listeners[event]):
            await sync_or_async(listener, value)

    def set_header(self, name: str, value: typing.Any) -> None:
        if self._headers_sent:
            raise LocalProtocolError("headers can't be changed after they were sent")
        self.request.headers[name] = value

    def get_header(self, name: str) -> typing.Optional[str]:
        return self.request.headers.get_one(name)

    def write(self, data: typing.Union[str, bytes]) -> None:
        if self._ended:
            raise LocalProtocolError("write() called after end()")
        data = to_bytes(data)
        if data:
            self._bytes_written += len(data)
            self._send_channel.send_nowait(data)

    def end(self, data: typing.Optional[typing.Union[str, bytes]] = None) -> None:
        if self._ended:
            raise LocalProtocolError("end() called twice")
        if data is not None:
            self.write(data)
        self._ended = True
        self._send_channel.close()

    def pipe(self, source: RequestData) -> None:
        """Uses 'source' as the entire request body, ending the writable side."""
        if self._bytes_written:
            raise LocalProtocolError("pipe() called after data was written")
        self.end()
        self._source = source

    @property
    def ended(self) -> bool:
        return self._ended

    def apply_framing(self) -> None:
        """Settles how the body is delimited on the wire. A length
        set by the caller or the body encoder is kept, then a length
        the piped source knows up front. An ended body without any
        bytes is sent without one and everything else is chunked.
        """
        self._headers_sent = True
        headers = self.request.headers
        if "content-length" in headers or "transfer-encoding" in headers:
            return
        if self._source is not None:
            content_length = self._source.content_length()
            if content_length is not None:
                headers["Content-Length"] = str(content_length)
                return
        elif self._ended and not self._bytes_written:
            return
        headers["Transfer-Encoding"] = "chunked"

    async def body_chunks(self) -> typing.AsyncIterator[bytes]:
        if self._source is not None:
            async for chunk in self._source.data_chunks():
                yield chunk
            return
        async with self._receive_channel:
            async for chunk in self._receive_channel:
                yield chunk

    def start_soon(self, nursery: trio.Nursery) -> "Connection":
        """Runs the exchange in 'nursery'. Errors are only delivered
        to 'error' listeners and 'wait()', never to the nursery.
        """
        self._claim()
        nursery.start_soon(self._run)
        return self

    async def wait(self) -> Response:
        """Runs the exchange if nobody has yet and waits for it to
        finish. Returns the final Response or raises the CourierError
        the connection failed with.

        A writable side that's still open is ended first, use
        'start_soon()' to keep writing while the request is sent.
        """
        if not self._started:
            self._claim()
            if not self._ended:
                self.end()
            await self._run()
        else:
            await self._done.wait()

        if self.error is not None:
            raise self.error
        if self.response is None:
            raise RuntimeError("connection stopped before a response was received")
        return self.response

    async def body(self) -> typing.Any:
        """Reads the whole response body. Returns bytes if 'raw' was set,
        the decoded JSON for JSON content types, and text otherwise.
        """
        response = await self.wait()
        if self.options.raw:
            return await response.data()
        if response.content_type.endswith("json"):
            if not await response.data():
                return None
            return await response.json()
        return await response.text()

    def _claim(self) -> None:
        if self._started:
            raise RuntimeError("a connection can only be run once")
        self._started = True

    async def _run(self) -> None:
        try:
            try:
                response = await self._runner(self)
            except CourierError as e:
                logger.debug("Request to %s failed: %r", self.options.uri, e)
                self.error = e
            except Exception as e:
                logger.debug("Request to %s failed: %r", self.options.uri, e)
                self.error = ExchangeError(
                    str(e) or type(e).__name__, request=self.request, error=e
                )
            else:
                if self.options.reject_error and response.status_code >= 400:
                    self.error = HTTPStatusError(
                        f"server responded with {response.status_code}",
                        request=response.request,
                        response=response,
                    )
                else:
                    self.response = response

            if self.error is not None:
                await self._settle("error", self.error)
            else:
                await self._settle("response", self.response)
        finally:
            self._done.set()

    async def _settle(self, event: str, value: typing.Any) -> None:
        # The outcome is final at this point, a failing listener
        # can't turn a response into an error or the other way round.
        for listener in list(self._listeners[event]):
            try:
                await sync_or_async(listener, value)
            except Exception:
                logger.exception("'%s' listener %r failed", event, listener)

    def __await__(self) -> typing.Generator[typing.Any, None, typing.Any]:
        if self.options.simple:
            return self.body().__await__()
        return self.wait().__await__()

    async def __aenter__(self) -> Response:
        return await self.wait()

    async def __aexit__(self, *_: typing.Any) -> None:
        if self.response is not None:
            await self.response.close()

    def __repr__(self) -> str:
        return f"<Connection [{self.options.method} {self.options.uri}]>"
