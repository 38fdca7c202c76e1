import logging

from .exceptions import (
    CourierError,
    ConfigurationError,
    ProtocolUnsupportedError,
    LocalProtocolError,
    HTTPStatusError,
    ExchangeError,
    TransportError,
    RemoteProtocolError,
    ConnectTimeout,
    ReadTimeout,
    NameResolutionError,
    ProxyError,
    TLSError,
    CertificateError,
    CertificateHostnameMismatch,
    SelfSignedCertificate,
    ExpiredCertificate,
)
from .models import URL, Origin, Headers, Request, Response, TLSVersion, TLSConfig
from .body import (
    RequestData,
    NoData,
    Bytes,
    Stream,
    JSON,
    URLEncodedForm,
    MultipartFormField,
    MultipartForm,
)
from .options import RequestOptions, ProxyOptions, Credentials, normalize
from .pool import ConnectionPool
from .connection import Connection
from .api import Requester, request

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "__version__",
    "request",
    "Requester",
    "Connection",
    "ConnectionPool",
    "RequestOptions",
    "ProxyOptions",
    "Credentials",
    "normalize",
    "URL",
    "Origin",
    "Headers",
    "Request",
    "Response",
    "TLSVersion",
    "TLSConfig",
    "RequestData",
    "NoData",
    "Bytes",
    "Stream",
    "JSON",
    "URLEncodedForm",
    "MultipartFormField",
    "MultipartForm",
    "CourierError",
    "ConfigurationError",
    "ProtocolUnsupportedError",
    "LocalProtocolError",
    "HTTPStatusError",
    "ExchangeError",
    "TransportError",
    "RemoteProtocolError",
    "ConnectTimeout",
    "ReadTimeout",
    "NameResolutionError",
    "ProxyError",
    "TLSError",
    "CertificateError",
    "CertificateHostnameMismatch",
    "SelfSignedCertificate",
    "ExpiredCertificate",
]

__version__ = "0.4.0"
