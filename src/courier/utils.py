import codecs
import functools
import platform
import sys
import typing

import chardet

CHUNK_SIZE = 65536

RetType = typing.TypeVar("RetType")
MaybeAsyncCallable = typing.Union[
    typing.Callable[..., RetType], typing.Callable[..., typing.Awaitable[RetType]],
]


def _int_to_urlenc(space: str, safe: typing.FrozenSet[int]) -> typing.Dict[int, str]:
    """Creates a mapping of ordinals to their url-encoded form"""
    values = {}
    for byte in range(256):
        if (
            (0x61 <= byte <= 0x7A)
            or (0x30 <= byte <= 0x39)
            or (0x41 <= byte <= 0x5A)
            or (byte in safe)
        ):  # Keep the ASCII
            values[byte] = chr(byte)
        elif byte == 0x20:
            values[byte] = space
        else:  # Percent-encoded
            values[byte] = "%" + hex(byte)[2:].upper().zfill(2)
    return values


# application/x-www-form-urlencoded, space becomes '+'
INT_TO_URLENC = _int_to_urlenc("+", frozenset((0x2A, 0x2D, 0x2E, 0x5F)))
# RFC 3986 query components, only unreserved characters are kept
INT_TO_PCTENC = _int_to_urlenc("%20", frozenset((0x2D, 0x2E, 0x5F, 0x7E)))

ParamsType = typing.Mapping[str, typing.Any]


def percent_encode(value: str, table: typing.Dict[int, str] = INT_TO_PCTENC) -> str:
    return "".join([table[byte] for byte in value.encode("utf-8")])


def _param_to_str(value: typing.Any) -> str:
    # Booleans and nulls are rendered the way web backends expect them.
    if value is True:
        return "true"
    elif value is False:
        return "false"
    elif value is None:
        return ""
    elif isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def _encode_pair(key: str, value: typing.Any, table: typing.Dict[int, str]) -> str:
    encoded = percent_encode(_param_to_str(value), table)
    return percent_encode(key, table) + "=" + encoded


def encode_nested_params(
    params: ParamsType, table: typing.Dict[int, str] = INT_TO_PCTENC
) -> str:
    """Array-aware encoding. Sequences are rendered with indices
    and mappings with their keys in brackets: 'a[0]=x&a[1]=y&b[c]=z'.
    """
    pairs: typing.List[str] = []

    def walk(key: str, value: typing.Any) -> None:
        if isinstance(value, typing.Mapping):
            for k, v in value.items():
                walk(f"{key}[{k}]", v)
        elif isinstance(value, (list, tuple)):
            for i, v in enumerate(value):
                walk(f"{key}[{i}]", v)
        else:
            pairs.append(_encode_pair(key, value, table))

    for key, value in params.items():
        walk(str(key), value)
    return "&".join(pairs)


def encode_flat_params(
    params: ParamsType, table: typing.Dict[int, str] = INT_TO_PCTENC
) -> str:
    """Flat encoding. Sequences repeat their key ('a=x&a=y') and
    anything that isn't a scalar is rendered as an empty value.
    """
    pairs: typing.List[str] = []
    for key, value in params.items():
        values = value if isinstance(value, (list, tuple)) else (value,)
        for v in values:
            if isinstance(v, (typing.Mapping, list, tuple)):
                v = None
            pairs.append(_encode_pair(str(key), v, table))
    return "&".join(pairs)


class MimeType(typing.NamedTuple):
    type: str
    subtype: str
    suffix: str
    parameters: typing.Dict[str, typing.Optional[str]]

    def __str__(self) -> str:
        """Renders the mime type without parameters"""
        if not self.type:
            return ""
        return (
            f"{self.type}"
            f"{'/' + self.subtype if self.subtype else ''}"
            f"{'+' + self.suffix if self.suffix else ''}"
        )


def parse_mimetype(mimetype: str) -> MimeType:
    if not mimetype:
        return MimeType(type="", subtype="", suffix="", parameters={})

    parts = mimetype.split(";")
    params = {}
    for item in parts[1:]:
        if not item:
            continue
        key, value = typing.cast(
            typing.Tuple[str, typing.Optional[str]],
            item.split("=", 1) if "=" in item else (item, None),
        )
        params[key.lower().strip()] = value.strip(' "') if value else value

    mimetype_no_params = parts[0].strip().lower()
    if mimetype_no_params == "*":
        mimetype_no_params = "*/*"

    type, subtype = typing.cast(
        typing.Tuple[str, str],
        mimetype_no_params.split("/", 1)
        if "/" in mimetype_no_params
        else (mimetype_no_params, ""),
    )
    subtype, suffix = typing.cast(
        typing.Tuple[str, str],
        subtype.split("+", 1) if "+" in subtype else (subtype, ""),
    )
    return MimeType(type=type, subtype=subtype, suffix=suffix, parameters=params)


@functools.lru_cache(128)
def is_known_encoding(encoding: str) -> typing.Optional[str]:
    """Given an encoding type, return either it's normalized name
    if we understand the codec otherwise return 'None'.
    """
    try:
        return codecs.lookup(encoding).name
    except LookupError:
        return None


def encoding_detector() -> chardet.UniversalDetector:
    return chardet.UniversalDetector()


def to_bytes(value: typing.Union[str, bytes], encoding: str = "utf-8") -> bytes:
    if isinstance(value, str):
        return value.encode(encoding)
    return bytes(value)


@functools.lru_cache(1)
def user_agent() -> str:
    from . import __version__

    return "courier/%s (Python %s; %s %s)" % (
        __version__,
        platform.python_version(),
        sys.platform,
        platform.machine(),
    )


async def sync_or_async(
    f: MaybeAsyncCallable, *args: typing.Any, **kwargs: typing.Any
) -> typing.Any:
    ret = f(*args, **kwargs)
    if hasattr(ret, "__await__"):
        ret = await ret
    return ret
