import logging
import typing

import trio

from ._backends import AsyncSocket, get_backend, wrap_exceptions
from .http1 import HTTP11Transaction
from .models import Origin, TLSConfig, create_ssl_context

CONNECT_TIMEOUT = 10.0

logger = logging.getLogger(__name__)


class ConnectionConfig(typing.NamedTuple):
    """Identifies a socket that can serve a request. Sockets
    are only shared between requests with equal configs.
    """

    origin: Origin
    tls: typing.Optional[TLSConfig] = None

    @property
    def server_hostname(self) -> str:
        if self.tls is not None and self.tls.server_hostname:
            return self.tls.server_hostname
        return self.origin.host


async def connect_socket(config: ConnectionConfig) -> AsyncSocket:
    """Opens a new socket for 'config', upgrading to TLS for 'https'."""
    scheme, host, port = config.origin
    with wrap_exceptions(is_connect=True):
        socket = await get_backend().connect(
            host, port, connect_timeout=CONNECT_TIMEOUT
        )
        if scheme == "https":
            try:
                ctx = create_ssl_context(config.tls or TLSConfig())
                socket = await socket.start_tls(
                    server_hostname=config.server_hostname, ssl_context=ctx
                )
            except BaseException:
                socket.forceful_close()
                raise
    return socket


class ConnectionPool:
    """Keeps idle keep-alive sockets around for reuse. A socket is only
    put back after its response body was read to the end, so sockets
    in the pool are never shared by two transactions at once.
    """

    def __init__(self, max_idle_per_config: int = 10):
        self.max_idle_per_config = max_idle_per_config
        self._idle: typing.Dict[ConnectionConfig, typing.List[AsyncSocket]] = {}

    async def start_http_transaction(
        self, config: ConnectionConfig
    ) -> HTTP11Transaction:
        socket = self._pop_idle(config)
        if socket is None:
            socket = await connect_socket(config)
        else:
            logger.debug("Reusing connection to %s", config.origin)

        return HTTP11Transaction(
            socket, on_release=lambda sock: self.release(config, sock)
        )

    def release(self, config: ConnectionConfig, socket: AsyncSocket) -> None:
        idle = self._idle.setdefault(config, [])
        if len(idle) >= self.max_idle_per_config:
            socket.forceful_close()
        else:
            idle.append(socket)

    def idle_count(self, config: typing.Optional[ConnectionConfig] = None) -> int:
        if config is not None:
            return len(self._idle.get(config, ()))
        return sum(len(x) for x in self._idle.values())

    def close(self) -> None:
        for sockets in self._idle.values():
            for socket in sockets:
                socket.forceful_close()
        self._idle.clear()

    def _pop_idle(self, config: ConnectionConfig) -> typing.Optional[AsyncSocket]:
        idle = self._idle.get(config, [])
        while idle:
            socket = idle.pop()
            if socket.is_connected():
                return socket
            logger.warning("Discarding closed pooled connection to %s", config.origin)
            socket.forceful_close()
        return None


_default_pool: "trio.lowlevel.RunVar[ConnectionPool]" = trio.lowlevel.RunVar(
    "courier_default_pool"
)


def default_pool() -> ConnectionPool:
    """The pool used when 'agent' isn't given, one per 'trio.run()'
    since sockets can't outlive the run that opened them.
    """
    try:
        return _default_pool.get()
    except LookupError:
        pool = ConnectionPool()
        _default_pool.set(pool)
        return pool


async def start_http_transaction(
    agent: typing.Union[None, bool, ConnectionPool], config: ConnectionConfig
) -> HTTP11Transaction:
    """Starts a transaction with the pooling behavior asked for by 'agent':
    'None' uses the default pool, 'False' opens a socket that's closed
    once the response is read, and a ConnectionPool is used directly.
    """
    if agent is False:
        return HTTP11Transaction(await connect_socket(config))
    pool = default_pool() if agent is None else typing.cast(ConnectionPool, agent)
    return await pool.start_http_transaction(config)
