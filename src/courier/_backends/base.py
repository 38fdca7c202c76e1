import contextlib
import select
import socket
import ssl
import typing

import h11
import trio

from courier.exceptions import (
    CertificateError,
    CertificateHostnameMismatch,
    ConnectTimeout,
    ExpiredCertificate,
    LocalProtocolError,
    NameResolutionError,
    ReadTimeout,
    RemoteProtocolError,
    SelfSignedCertificate,
    TLSError,
    TransportError,
)


def is_readable(sock: typing.Any) -> bool:
    """Polls 'sock' without blocking."""
    readable, _, _ = select.select([sock], [], [], 0)
    return bool(readable)


def _certificate_error(err: ssl.SSLCertVerificationError) -> TransportError:
    reason = str(err).lower()
    if "self" in reason and "signed" in reason:
        return SelfSignedCertificate("self signed certificate", error=err)
    if "hostname" in reason and "mismatch" in reason:
        return CertificateHostnameMismatch("certificate hostname mismatch", error=err)
    if "expired" in reason:
        return ExpiredCertificate("certificate has expired", error=err)
    return CertificateError("certificate verification failed", error=err)


def _translate(err: Exception, is_connect: bool) -> typing.Optional[TransportError]:
    if isinstance(err, socket.gaierror):
        return NameResolutionError("name resolution failed", error=err)
    if isinstance(err, trio.TooSlowError):
        if is_connect:
            return ConnectTimeout("timed out while connecting", error=err)
        return ReadTimeout("timed out while reading", error=err)
    if isinstance(err, ssl.SSLCertVerificationError):
        return _certificate_error(err)
    if isinstance(err, ssl.SSLError):
        return TLSError("tls error", error=err)
    if isinstance(err, h11.RemoteProtocolError):
        return RemoteProtocolError(str(err), error=err)
    if isinstance(err, h11.LocalProtocolError):
        return LocalProtocolError(str(err), error=err)
    if isinstance(err, OSError):
        return TransportError(str(err) or "connection error", error=err)
    return None


@contextlib.contextmanager
def wrap_exceptions(is_connect: bool) -> typing.Iterator[None]:
    """Rewrites socket, TLS and h11 failures into the TransportError
    hierarchy so callers can handle one family of errors no matter
    which layer failed. Anything else propagates untouched.
    """
    try:
        yield
    except TransportError:
        raise
    except trio.BrokenResourceError as err:
        # trio keeps the error that broke the stream as the cause.
        cause = err.__cause__
        translated = (
            _translate(cause, is_connect) if isinstance(cause, Exception) else None
        )
        if translated is None:
            translated = TransportError("connection was broken", error=err)
        raise translated from err
    except Exception as err:
        translated = _translate(err, is_connect)
        if translated is None:
            raise
        raise translated from err


class AsyncBackend:
    async def connect(
        self, host: str, port: int, *, connect_timeout: float
    ) -> "AsyncSocket":
        raise NotImplementedError()


class AsyncSocket:
    """The byte stream a transaction runs over. Implementations
    may be plain TCP or TLS, possibly layered over a proxy tunnel.
    """

    async def start_tls(
        self, server_hostname: typing.Optional[str], ssl_context: ssl.SSLContext
    ) -> "AsyncSocket":
        raise NotImplementedError()

    async def send_all(self, data: bytes) -> None:
        raise NotImplementedError()

    async def receive_some(self, read_timeout: float) -> bytes:
        raise NotImplementedError()

    def forceful_close(self) -> None:
        raise NotImplementedError()

    def is_connected(self) -> bool:
        raise NotImplementedError()
