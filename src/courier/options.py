import math
import ssl
import typing
import urllib.parse

from .exceptions import ConfigurationError
from .models import URL, TLSConfig, TLSVersion
from .utils import encode_flat_params, encode_nested_params

OptionsType = typing.Mapping[str, typing.Any]
RedirectBudget = typing.Union[int, float]

OPTION_KEYS = frozenset(
    (
        "method",
        "headers",
        "uri",
        "proxy",
        "max_redirects",
        "follow_all_redirects",
        "auth",
        "body",
        "form",
        "form_data",
        "qs",
        "query",
        "decompress",
        "reject_error",
        "raw",
        "tls",
        "simple",
        "path",
        "agent",
    )
)


class Credentials(typing.NamedTuple):
    username: str
    password: str


class ProxyOptions(typing.NamedTuple):
    uri: URL
    tls: typing.Optional[TLSConfig] = None
    username: typing.Optional[str] = None
    password: typing.Optional[str] = None


class RequestOptions(typing.NamedTuple):
    """The fully resolved description of one request attempt.
    Built by 'normalize()' and never modified afterwards, a redirect
    builds a new one instead.
    """

    uri: URL
    method: str = "GET"
    headers: typing.Dict[str, typing.Union[str, typing.List[str]]] = {}
    proxy: typing.Optional[ProxyOptions] = None
    max_redirects: RedirectBudget = 0
    auth: typing.Optional[Credentials] = None
    body: typing.Any = None
    form: typing.Any = None
    form_data: typing.Any = None
    qs: typing.Optional[OptionsType] = None
    query: typing.Optional[OptionsType] = None
    decompress: bool = True
    reject_error: bool = False
    raw: bool = False
    tls: typing.Optional[TLSConfig] = None
    simple: bool = False
    path: typing.Optional[str] = None
    agent: typing.Any = None


def is_uri(value: typing.Any) -> bool:
    """A URI is a string or anything that quacks like a parsed URL."""
    return isinstance(value, (str, URL)) or (
        hasattr(value, "scheme") and hasattr(value, "host")
    )


def parse_uri(value: typing.Any) -> URL:
    url = URL.parse(value)
    if not url.is_absolute:
        raise ConfigurationError(f"uri must be absolute, got '{value}'")
    return url


class OptionLayers:
    """Composes options from ordered layers, each later layer
    overriding the ones before it key by key. 'headers' are the one
    exception and are merged by header name.

    The entry point layers options from lowest to highest priority:
    'defaults()' layers (outermost first), the verb preset, the
    per-call options mapping, per-call keyword arguments, and finally
    the positional URI.
    """

    def __init__(self, *layers: typing.Optional[OptionsType]):
        self.layers: typing.Tuple[OptionsType, ...] = tuple(
            dict(layer) for layer in layers if layer
        )

    def push(self, *layers: typing.Optional[OptionsType]) -> "OptionLayers":
        return OptionLayers(*self.layers, *layers)

    def resolve(self) -> typing.Dict[str, typing.Any]:
        resolved: typing.Dict[str, typing.Any] = {}
        for layer in self.layers:
            for key, value in layer.items():
                if key == "headers" and resolved.get("headers") and value:
                    resolved["headers"] = merge_headers(resolved["headers"], value)
                else:
                    resolved[key] = value
        return resolved


def merge_headers(
    base: OptionsType, override: OptionsType
) -> typing.Dict[str, typing.Any]:
    """Header names are compared case-insensitively, 'override' wins."""
    names = {name.lower() for name in override}
    merged = {k: v for k, v in base.items() if k.lower() not in names}
    merged.update(override)
    return merged


def resolve_max_redirects(options: OptionsType) -> RedirectBudget:
    max_redirects = options.get("max_redirects")
    if isinstance(max_redirects, (int, float)) and not isinstance(max_redirects, bool):
        if math.isnan(max_redirects):
            raise ConfigurationError("max_redirects must be a number, got nan")
        if max_redirects <= 0:
            return 0
        if max_redirects == math.inf:
            return math.inf
        return math.floor(max_redirects)
    if options.get("follow_all_redirects") is True:
        return math.inf
    return 0


def resolve_tls(value: typing.Any) -> typing.Optional[TLSConfig]:
    if value is None or isinstance(value, TLSConfig):
        return value
    if isinstance(value, ssl.SSLContext):
        return TLSConfig(ssl_context=value)
    if isinstance(value, typing.Mapping):
        unknown = set(value) - set(TLSConfig._fields)
        if unknown:
            names = ", ".join(sorted(unknown))
            raise ConfigurationError(f"unknown tls options: {names}")
        values = dict(value)
        for key in ("min_version", "max_version"):
            if isinstance(values.get(key), str):
                values[key] = TLSVersion(values[key])
        return TLSConfig(**values)
    raise ConfigurationError(f"invalid tls options: {value!r}")


def resolve_proxy(value: typing.Any) -> typing.Optional[ProxyOptions]:
    if value is None or isinstance(value, ProxyOptions):
        return value
    if is_uri(value):
        return ProxyOptions(uri=parse_uri(value))
    if isinstance(value, typing.Mapping):
        if value.get("uri") is None:
            raise ConfigurationError("proxy.uri must be defined")
        return ProxyOptions(
            uri=parse_uri(value["uri"]),
            tls=resolve_tls(value.get("tls")),
            username=value.get("username"),
            password=value.get("password"),
        )
    raise ConfigurationError(f"invalid proxy: {value!r}")


def resolve_auth(value: typing.Any) -> typing.Optional[Credentials]:
    if value is None or isinstance(value, Credentials):
        return value
    if isinstance(value, typing.Mapping):
        return Credentials(value.get("username") or "", value.get("password") or "")
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return Credentials(*value)
    raise ConfigurationError(f"invalid auth: {value!r}")


def merge_query(uri: URL, params: OptionsType, nested: bool) -> URL:
    """Merges 'params' over the URI's current query string and replaces it"""
    merged: typing.Dict[str, typing.Any] = dict(
        urllib.parse.parse_qsl(uri.query or "", keep_blank_values=True)
    )
    merged.update(params)
    encoded = encode_nested_params(merged) if nested else encode_flat_params(merged)
    return uri.copy_with(query=encoded or None)


def normalize(
    uri_or_options: typing.Any = None, options: typing.Optional[OptionsType] = None
) -> RequestOptions:
    """Resolves either a URI and an options mapping, or a single options
    mapping holding 'uri', into a RequestOptions. Fails with
    ConfigurationError if there's no absolute URI to send the request to.
    """
    if is_uri(uri_or_options):
        opts = {**(options or {}), "uri": uri_or_options}
    elif isinstance(uri_or_options, typing.Mapping) or uri_or_options is None:
        opts = {**(options or {}), **(uri_or_options or {})}
    else:
        raise ConfigurationError(f"expected a uri or options, got {uri_or_options!r}")

    unknown = set(opts) - OPTION_KEYS
    if unknown:
        raise ConfigurationError(f"unknown options: {', '.join(sorted(unknown))}")
    if opts.get("uri") is None:
        raise ConfigurationError("uri must be defined")

    uri = parse_uri(opts["uri"])
    auth = resolve_auth(opts.get("auth"))

    # Credentials in the URI are used when none were given explicitly,
    # either way they're never sent as part of the URI.
    if uri.username is not None or uri.password is not None:
        if auth is None:
            auth = Credentials(uri.username or "", uri.password or "")
        uri = uri.copy_with(username=None, password=None)

    if opts.get("path") is not None:
        uri = uri.copy_with(path=opts["path"])

    if opts.get("qs"):
        uri = merge_query(uri, opts["qs"], nested=True)
    elif opts.get("query"):
        uri = merge_query(uri, opts["query"], nested=False)

    return RequestOptions(
        uri=uri,
        method=(opts.get("method") or "GET").upper(),
        headers=dict(opts.get("headers") or {}),
        proxy=resolve_proxy(opts.get("proxy")),
        max_redirects=resolve_max_redirects(opts),
        auth=auth,
        body=opts.get("body"),
        form=opts.get("form"),
        form_data=opts.get("form_data"),
        qs=opts.get("qs"),
        query=opts.get("query"),
        decompress=opts.get("decompress") is not False,
        reject_error=opts.get("reject_error") is True,
        raw=opts.get("raw") is True,
        tls=resolve_tls(opts.get("tls")),
        simple=opts.get("simple") is True,
        path=opts.get("path"),
        agent=opts.get("agent"),
    )
