import typing

if typing.TYPE_CHECKING:
    from .models import Request, Response


class CourierError(Exception):
    """Base error type for 'courier' which may carry the Request
    that initiated the exchange, the response at the end of the
    exchange, and the encapsulated error if this error wraps
    a different exception.
    """

    def __init__(
        self,
        message: str,
        request: typing.Optional["Request"] = None,
        response: typing.Optional["Response"] = None,
        error: typing.Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.request = request
        self.response = response
        self.error = error


class ConfigurationError(CourierError):
    """Error raised when the options given can't describe a request,
    most commonly because there's no absolute URI to send it to.
    """


class ProtocolUnsupportedError(CourierError):
    """Error raised when a URI scheme is neither 'http' nor 'https'"""


class LocalProtocolError(CourierError):
    """Error raised when HTTP framing is violated locally"""


class HTTPStatusError(CourierError):
    """Error raised for a terminal response with a status code of 400
    or greater when the request was sent with 'reject_error=True'.
    """


class ExchangeError(CourierError):
    """Error raised when an exchange fails for a reason outside the
    network, such as a request body stream or a 'request' listener
    raising. The original exception is kept as 'error'.
    """


class TransportError(CourierError):
    """Generic error raised while connecting, tunnelling or exchanging
    bytes with a peer. These are never raised from 'courier.request()',
    they're delivered through the 'Connection' instead.
    """


class RemoteProtocolError(TransportError):
    """Error raised when the remote peer violates HTTP/1.1"""


class ConnectTimeout(TransportError):
    """Error raised when a socket connection times out"""


class ReadTimeout(TransportError):
    """Error raised when reading from a socket times out"""


class NameResolutionError(TransportError):
    """Error raised when DNS fails to resolve a hostname"""


class ProxyError(TransportError):
    """Error raised when a proxy fails to establish a tunnel"""


class TLSError(TransportError):
    """Generic error related to the TLS protocol"""


class CertificateError(TLSError):
    """Generic error related to certificate verification"""


class CertificateHostnameMismatch(CertificateError):
    """Certificate was valid but didn't have the correct
    'subjectAltName' or 'commonName' (if no subjectAltName)
    """


class SelfSignedCertificate(CertificateError):
    """Certificate was self-signed"""


class ExpiredCertificate(CertificateError):
    """Certificate is past its 'notAfter' date"""
