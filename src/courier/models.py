import enum
import json
import os
import ssl
import typing
import urllib.parse

import certifi

from .decoders import get_content_decoder
from .exceptions import ConfigurationError
from .utils import encoding_detector, is_known_encoding, parse_mimetype

CACertsType = typing.Union[str, bytes]
URLType = typing.Union[str, "URL"]
HeadersType = typing.Union[
    typing.Mapping[str, typing.Union[str, typing.Sequence[str]]],
    typing.Iterable[typing.Tuple[str, str]],
    "Headers",
]

REDIRECT_STATUSES = {
    301,  # Moved Permanently
    302,  # Found
    303,  # See Other
}


class Origin(typing.NamedTuple):
    scheme: str
    host: str
    port: int

    def __str__(self) -> str:
        """Renders the origin the way browsers serialize it,
        leaving out the port when it's the scheme's default.
        """
        host = f"[{self.host}]" if ":" in self.host else self.host
        if URL.DEFAULT_PORT_BY_SCHEME.get(self.scheme) == self.port:
            return f"{self.scheme}://{host}"
        return f"{self.scheme}://{host}:{self.port}"


class URL:
    DEFAULT_PORT_BY_SCHEME: typing.Dict[str, int] = {
        "http": 80,
        "https": 443,
    }

    def __init__(
        self,
        url: typing.Optional[str] = None,
        *,
        scheme: typing.Optional[str] = None,
        username: typing.Optional[str] = None,
        password: typing.Optional[str] = None,
        host: typing.Optional[str] = None,
        port: typing.Optional[int] = None,
        path: typing.Optional[str] = None,
        query: typing.Optional[str] = None,
        fragment: typing.Optional[str] = None,
    ):
        self.scheme = scheme
        self.username = username
        self.password = password
        self.host = host
        self.port = port
        self.path = path
        self.query = query
        self.fragment = fragment

        if url is not None:
            try:
                parts = urllib.parse.urlsplit(url)
                port = parts.port
            except ValueError as e:
                raise ConfigurationError(f"invalid uri '{url}'", error=e) from None

            self.scheme = parts.scheme.lower() or None
            self.username = _unquote(parts.username)
            self.password = _unquote(parts.password)
            self.host = parts.hostname or None
            self.port = port
            self.path = parts.path or None
            self.query = parts.query or None
            self.fragment = parts.fragment or None

    @classmethod
    def parse(cls, value: typing.Any) -> "URL":
        if isinstance(value, URL):
            return value.copy_with()
        if isinstance(value, str) or not hasattr(value, "host"):
            return cls(str(value))
        # Any other parsed URL object, going by its attributes.
        port = getattr(value, "port", None)
        return cls(
            scheme=(value.scheme or "").lower() or None,
            username=getattr(value, "username", None),
            password=getattr(value, "password", None),
            host=value.host or None,
            port=int(port) if port else None,
            path=getattr(value, "path", None) or None,
            query=(getattr(value, "query", None) or "").lstrip("?") or None,
            fragment=getattr(value, "fragment", None) or None,
        )

    @property
    def is_absolute(self) -> bool:
        return bool(self.scheme and self.host)

    @property
    def origin(self) -> Origin:
        if self.scheme is None or self.host is None:
            raise ConfigurationError("origin can't be determined for relative URLs")
        if self.port is None:
            if self.scheme not in self.DEFAULT_PORT_BY_SCHEME:
                raise ConfigurationError(
                    f"unknown default port for scheme '{self.scheme}'"
                )
            port = self.DEFAULT_PORT_BY_SCHEME[self.scheme]
        else:
            port = self.port
        return Origin(self.scheme, self.host, port)

    @property
    def authority(self) -> str:
        """The 'host[:port]' value used for the 'Host' header,
        the port is only included if it isn't the scheme default.
        """
        host = f"[{self.host}]" if self.host and ":" in self.host else (self.host or "")
        if self.port is not None and self.port != self.DEFAULT_PORT_BY_SCHEME.get(
            self.scheme or ""
        ):
            return f"{host}:{self.port}"
        return host

    @property
    def target(self) -> str:
        return f"{self.path or '/'}{'?' + self.query if self.query else ''}"

    def copy_with(self, **kwargs: typing.Any) -> "URL":
        values = dict(
            scheme=self.scheme,
            username=self.username,
            password=self.password,
            host=self.host,
            port=self.port,
            path=self.path,
            query=self.query,
            fragment=self.fragment,
        )
        values.update(kwargs)
        return URL(**values)

    def __str__(self) -> str:
        netloc = self.authority
        if self.username is not None or self.password is not None:
            userinfo = urllib.parse.quote(self.username or "", safe="")
            if self.password is not None:
                userinfo += ":" + urllib.parse.quote(self.password, safe="")
            netloc = f"{userinfo}@{netloc}"
        return urllib.parse.urlunsplit(
            (
                self.scheme or "",
                netloc,
                self.path or "",
                self.query or "",
                self.fragment or "",
            )
        )

    def __eq__(self, other: object) -> bool:
        if isinstance(other, str):
            other = URL(other)
        if not isinstance(other, URL):
            return NotImplemented
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(str(self))

    def __repr__(self) -> str:
        return f"<URL {str(self)!r}>"


def _unquote(value: typing.Optional[str]) -> typing.Optional[str]:
    return urllib.parse.unquote(value) if value else None


class Headers:
    """Case-insensitive multi-mapping of header names to values
    which remembers the casing of the name it was first given.
    """

    def __init__(self, values: typing.Optional[HeadersType] = None):
        self._internal: typing.Dict[str, typing.List[typing.Tuple[str, str]]] = {}
        if values:
            self.extend(values)

    def get_one(
        self, key: str, default: typing.Optional[str] = None
    ) -> typing.Optional[str]:
        try:
            return self._internal[key.lower()][0][1]
        except (KeyError, IndexError):
            return default

    get = get_one

    def get_all(self, key: str) -> typing.List[str]:
        return [v for _, v in self._internal.get(key.lower(), [])]

    def add(self, key: str, value: typing.Any) -> None:
        if isinstance(key, bytes):
            key = key.decode("latin-1")
        if isinstance(value, bytes):
            value = value.decode("latin-1")
        self._internal.setdefault(key.lower(), []).append((key, str(value)))

    def extend(self, items: HeadersType) -> None:
        for k, vs in items.items() if hasattr(items, "items") else items:
            if isinstance(vs, (list, tuple)):
                for v in vs:
                    self.add(k, v)
            else:
                self.add(k, vs)

    def setdefault(self, key: str, value: str) -> str:
        if key not in self:
            self.add(key, value)
        return typing.cast(str, self.get_one(key))

    def get_folded(self, key: str) -> str:
        return ", ".join(self.get_all(key))

    def keys(self) -> typing.Iterator[str]:
        for items in self._internal.values():
            if items:
                yield items[0][0]

    def items(self) -> typing.Iterator[typing.Tuple[str, str]]:
        for items in self._internal.values():
            for k, v in items:
                yield k, v

    def __contains__(self, item: str) -> bool:
        return bool(self._internal.get(item.lower(), None))

    def __getitem__(self, item: str) -> str:
        try:
            return self._internal[item.lower()][0][1]
        except (KeyError, IndexError):
            raise KeyError(item) from None

    def __setitem__(self, key: str, value: typing.Any) -> None:
        self._internal.pop(key.lower(), None)
        self.add(key, value)

    def __delitem__(self, key: str) -> None:
        self._internal.pop(key.lower(), None)

    def __iter__(self) -> typing.Iterator[str]:
        return self.keys()

    def __len__(self) -> int:
        return sum(len(x) for x in self._internal.values())

    def __repr__(self) -> str:
        # Smart repr that switches to list-of-tuple mode when
        # multiple values for one key are detected.
        if any(len(x) > 1 for x in self._internal.values()):
            internal_repr = repr(list(self.items()))
        else:
            internal_repr = repr({k: v for (k, v), in self._internal.values()})
        return f"<Headers {internal_repr}>"


class Request:
    """The head of an HTTP request as it'll be put on the wire.
    Request.target defaults to the URL's path and query but can be
    set explicitly, which is how 'CONNECT host:port' is expressed.
    """

    def __init__(
        self,
        method: str,
        url: URLType,
        *,
        headers: typing.Optional[HeadersType] = None,
        target: typing.Optional[str] = None,
    ):
        self.method = method
        self.url = url if isinstance(url, URL) else URL(url)
        self.headers = headers if isinstance(headers, Headers) else Headers(headers)
        self._target = target

    @property
    def target(self) -> str:
        if self._target is not None:
            return self._target
        return self.url.target

    @target.setter
    def target(self, value: str) -> None:
        self._target = value

    def __repr__(self) -> str:
        return f"<Request [{self.method}]>"


class Response:
    def __init__(
        self,
        status_code: int,
        http_version: str,
        headers: HeadersType,
        request: typing.Optional[Request] = None,
        raw_data: typing.Optional[typing.AsyncIterator[bytes]] = None,
        decompress: bool = True,
    ):
        self.status_code = status_code
        self.http_version = http_version
        self.headers = headers if isinstance(headers, Headers) else Headers(headers)
        self.request = request

        # Informational (1XX) responses received before this one.
        self.history: typing.List[Response] = []
        # URIs followed to reach this response, filled in by the redirect loop.
        self.redirects: typing.List[str] = []

        self._raw_data = raw_data
        self._decompress = decompress
        self._content: typing.Optional[bytes] = None
        self._encoding: typing.Optional[str] = None

    @property
    def content_type(self) -> str:
        """Gets the effective 'Content-Type' of the response either from headers
        or returns 'application/octet-stream' if no such header if found.
        """
        if "content-type" not in self.headers:
            return "application/octet-stream"
        return str(parse_mimetype(self.headers.get_folded("content-type")))

    @property
    def content_length(self) -> typing.Optional[int]:
        values = self.headers.get_all("content-length")
        if values and len(set(values)) == 1 and values[0].isdigit():
            return int(values[0])
        return None

    @property
    def is_redirect(self) -> bool:
        return self.status_code in REDIRECT_STATUSES

    @property
    def encoding(self) -> typing.Optional[str]:
        """Returns the 'encoding' of the response body.
        - If encoding has been set manually, always use that value.
        - If the response has no body, return 'ascii'
        - If there is a 'charset=X' within the 'Content-Type' header
          and its an encoding that Python understands.
        Otherwise 'None' until the body has been read and fed to chardet.
        """
        if self._encoding:
            return self._encoding
        if self.content_length == 0:
            self._encoding = "ascii"
        elif "content-type" in self.headers:
            mimetype = parse_mimetype(self.headers.get_folded("content-type"))
            charset = mimetype.parameters.get("charset")
            if charset:
                self._encoding = is_known_encoding(charset)
        return self._encoding

    @encoding.setter
    def encoding(self, value: str) -> None:
        self._encoding = value

    async def stream(self) -> typing.AsyncIterator[bytes]:
        """Streams the response body as an iterator of bytes,
        applying any 'Content-Encoding' unless 'decompress=False'.
        """
        if self._raw_data is None:
            return
        if self._decompress:
            content_encoding = self.headers.get_folded("content-encoding")
        else:
            content_encoding = "identity"
        decoder = get_content_decoder(content_encoding or "identity")

        async for chunk in self._raw_data:
            chunk = decoder.decompress(chunk)
            if chunk:
                yield chunk
        chunk = decoder.flush()
        if chunk:
            yield chunk

    async def data(self) -> bytes:
        """Basically calls b''.join(self.stream()) and hands it to you"""
        if self._content is None:
            self._content = b"".join([chunk async for chunk in self.stream()])
        return self._content

    async def text(self) -> str:
        data = await self.data()
        encoding = self.encoding
        if encoding is None:
            if not data:
                encoding = "ascii"
            else:
                detector = encoding_detector()
                detector.feed(data)
                detector.close()
                encoding = detector.result["encoding"] or "utf-8"
            self._encoding = encoding
        return data.decode(encoding, errors="replace")

    async def json(self) -> typing.Any:
        """Attempts to decode self.text() into JSON."""
        return json.loads(await self.text())

    async def close(self) -> None:
        """Reads the rest of the response body without keeping it
        which releases the connection back into the pool.
        """
        if self._raw_data is None:
            return
        async for _ in self._raw_data:
            pass

    drain = close

    async def __aenter__(self) -> "Response":
        return self

    async def __aexit__(self, *_: typing.Any) -> None:
        """Closes the response once the context manager is exited"""
        await self.close()

    def __repr__(self) -> str:
        return "<Response [%d]>" % self.status_code


class TLSVersion(enum.Enum):
    """Version specifier for TLS. Unless attempting to connect
    with only a single TLS version 'max_version' should
    be 'MAXIMUM_SUPPORTED'
    """

    MINIMUM_SUPPORTED = "MINIMUM_SUPPORTED"
    TLSv1 = "TLSv1"
    TLSv1_1 = "TLSv1.1"
    TLSv1_2 = "TLSv1.2"
    TLSv1_3 = "TLSv1.3"
    MAXIMUM_SUPPORTED = "MAXIMUM_SUPPORTED"

    def to_ssl(self) -> ssl.TLSVersion:
        return getattr(ssl.TLSVersion, self.name)


class TLSConfig(typing.NamedTuple):
    """Options for one TLS leg, either the target connection or the
    connection to a proxy. If 'ssl_context' is given it's used as-is
    and every other field except 'server_hostname' is ignored.
    """

    ca_certs: typing.Optional[CACertsType] = certifi.where()
    verify: bool = True
    server_hostname: typing.Optional[str] = None
    min_version: TLSVersion = TLSVersion.TLSv1_2
    max_version: TLSVersion = TLSVersion.MAXIMUM_SUPPORTED
    ssl_context: typing.Optional[ssl.SSLContext] = None


def create_ssl_context(tls: TLSConfig) -> ssl.SSLContext:
    if tls.ssl_context is not None:
        return tls.ssl_context

    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.minimum_version = tls.min_version.to_ssl()
    ctx.maximum_version = tls.max_version.to_ssl()
    ctx.set_alpn_protocols(["http/1.1"])

    if tls.verify:
        ca_certs = tls.ca_certs
        if isinstance(ca_certs, bytes):
            ctx.load_verify_locations(cadata=ca_certs.decode("ascii"))
        elif ca_certs and os.path.isdir(ca_certs):
            ctx.load_verify_locations(capath=ca_certs)
        elif ca_certs:
            ctx.load_verify_locations(cafile=ca_certs)
        else:
            ctx.load_default_certs()
        ctx.verify_mode = ssl.CERT_REQUIRED
        ctx.check_hostname = True
    else:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE

    return ctx
