import logging
import typing

from ._backends import AsyncSocket, wrap_exceptions
from .auth import BasicAuth
from .body import NoData
from .connection import Connection
from .decoders import accept_encoding
from .exceptions import ProtocolUnsupportedError
from .http1 import HTTP11Transaction, open_tunnel
from .models import URL, Headers, Request, Response, TLSConfig, create_ssl_context
from .options import RequestOptions, normalize
from .pool import ConnectionConfig, connect_socket, start_http_transaction
from .utils import user_agent

logger = logging.getLogger(__name__)

SUPPORTED_SCHEMES = ("http", "https")

Connector = typing.Callable[[RequestOptions], Connection]


def select_connector(options: RequestOptions) -> Connector:
    """Picks the tunnel connector if a proxy is configured and the direct
    connector otherwise. Fails if either end doesn't speak HTTP(S).
    """
    schemes = [options.uri.scheme]
    if options.proxy is not None:
        schemes.append(options.proxy.uri.scheme)
    for scheme in schemes:
        if scheme not in SUPPORTED_SCHEMES:
            raise ProtocolUnsupportedError(f"protocol '{scheme}' not supported")

    if options.proxy is not None:
        logger.debug("Tunnelling %s through %s", options.uri, options.proxy.uri)
        return connect_via_proxy
    return connect_direct


def prepare_request(options: RequestOptions) -> Request:
    """Builds the head of the request to the target."""
    headers = Headers(options.headers)
    headers.setdefault("Host", options.uri.authority)
    headers.setdefault("User-Agent", user_agent())
    if options.decompress:
        headers.setdefault("Accept-Encoding", accept_encoding())

    request = Request(options.method, options.uri, headers=headers)
    if options.auth is not None:
        BasicAuth(options.auth.username, options.auth.password)(request)
    return request


async def send_request(
    options: RequestOptions,
    request: Request,
    request_data: typing.AsyncIterator[bytes],
) -> Response:
    config = ConnectionConfig(options.uri.origin, options.tls)
    transaction = await start_http_transaction(options.agent, config)
    try:
        return await transaction.send_request(
            request, request_data, decompress=options.decompress
        )
    except BaseException:
        transaction.socket.forceful_close()
        raise


def resolve_location(uri: URL, location: typing.Optional[str]) -> str:
    """Qualifies a 'Location' header against the URI that was requested.
    Root-relative paths are joined to the origin and everything else
    is used as-is. A missing header points at the origin's root.
    """
    if not location:
        return f"{uri.origin}/"
    if location.startswith("/"):
        return f"{uri.origin}{location}"
    return location


async def follow_redirects(response: Response, options: RequestOptions) -> Response:
    """Chases 301, 302 and 303 responses with 'GET' requests while
    the redirect budget allows. Every superseded response is read to
    the end so its socket can go back into the pool.

    The returned response carries the URIs that were followed in
    'Response.redirects', in the order they were visited.
    """
    trail: typing.List[str] = []

    while response.is_redirect and options.max_redirects > 0:
        location = resolve_location(options.uri, response.headers.get_one("location"))
        await response.close()

        options = normalize(
            location,
            {
                "method": "GET",
                "max_redirects": options.max_redirects - 1,
                "agent": options.agent,
                "tls": options.tls,
                "decompress": options.decompress,
            },
        )
        if options.uri.scheme not in SUPPORTED_SCHEMES:
            raise ProtocolUnsupportedError(
                f"can't follow redirect to protocol '{options.uri.scheme}'"
            )

        logger.debug("Following %d redirect to %s", response.status_code, location)
        trail.append(location)
        response = await send_request(
            options, prepare_request(options), NoData().data_chunks()
        )

    response.redirects = trail
    return response


def connect_direct(options: RequestOptions) -> Connection:
    """Returns a connection that sends the request straight to the
    target, through the pool picked by 'agent'.
    """

    async def run(conn: Connection) -> Response:
        await conn.emit("request", conn.request)
        conn.apply_framing()
        response = await send_request(options, conn.request, conn.body_chunks())
        return await follow_redirects(response, options)

    return Connection(options, prepare_request(options), run)


def build_connect_request(options: RequestOptions) -> Request:
    """Builds the 'CONNECT host:port' request sent to the proxy."""
    proxy = typing.cast(typing.Any, options.proxy)
    uri = options.uri
    port = uri.port or URL.DEFAULT_PORT_BY_SCHEME[typing.cast(str, uri.scheme)]

    headers = Headers()
    headers["Host"] = uri.authority
    headers["User-Agent"] = Headers(options.headers).get_one("user-agent", user_agent())

    request = Request(
        "CONNECT", proxy.uri, headers=headers, target=f"{uri.host}:{port}"
    )
    if proxy.username and proxy.password:
        BasicAuth(proxy.username, proxy.password, header="proxy-authorization")(request)
    return request


async def open_proxy_tunnel(options: RequestOptions) -> HTTP11Transaction:
    """Connects to the proxy, asks it for a tunnel to the target and
    layers TLS over the tunnel for 'https' targets. The socket is
    never pooled as it's bound to this one target.
    """
    proxy = typing.cast(typing.Any, options.proxy)
    socket: AsyncSocket = await connect_socket(
        ConnectionConfig(proxy.uri.origin, proxy.tls)
    )
    try:
        trailing_data = await open_tunnel(socket, build_connect_request(options))
        if options.uri.scheme == "https":
            # A TLS server never sends data before the handshake.
            trailing_data = b""
            tls = options.tls or TLSConfig()
            with wrap_exceptions(is_connect=True):
                socket = await socket.start_tls(
                    server_hostname=tls.server_hostname or options.uri.host,
                    ssl_context=create_ssl_context(tls),
                )
    except BaseException:
        socket.forceful_close()
        raise

    return HTTP11Transaction(socket, initial_data=trailing_data)


def connect_via_proxy(options: RequestOptions) -> Connection:
    """Returns a connection that reaches the target through a 'CONNECT'
    tunnel. Body bytes written before the tunnel is up stay buffered in
    the connection. Redirects aren't followed for tunnelled requests.
    """

    async def run(conn: Connection) -> Response:
        transaction = await open_proxy_tunnel(options)
        await conn.emit("request", conn.request)
        conn.apply_framing()
        try:
            return await transaction.send_request(
                conn.request, conn.body_chunks(), decompress=options.decompress
            )
        except BaseException:
            transaction.socket.forceful_close()
            raise

    return Connection(options, prepare_request(options), run)
